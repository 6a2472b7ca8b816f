"""Core functionality for formulanet."""

from .exceptions import (
    FormulaNetError,
    FormulaParseError,
    ExpressionEvaluationError,
    EmptyDesignMatrixError,
    LayerSpecError,
    DimensionMismatchError,
    ConfigurationError,
    UnseenLevelWarning,
)

__all__ = [
    "FormulaNetError",
    "FormulaParseError",
    "ExpressionEvaluationError",
    "EmptyDesignMatrixError",
    "LayerSpecError",
    "DimensionMismatchError",
    "ConfigurationError",
    "UnseenLevelWarning",
]
