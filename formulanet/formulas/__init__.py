"""
Formula system for formulanet.

Provides formula parsing, expression evaluation, design matrix construction
and outcome encoding.
"""

from .parser import FormulaCompiler, parse_formula, build_registry
from .terms import Term, TermType, FeatureKind, create_term, parse_terms
from .functions import FunctionRegistry, HelperFunction, default_registry
from .evaluator import ExpressionEvaluator
from .spec import FormulaSpec, EvaluatedFormula
from .design_matrix import (
    DesignMatrixBuilder,
    DesignMatrix,
    DesignSchema,
    ColumnSpec,
    build_design_matrix,
)
from .outcome import OutcomeEncoder, OutcomeEncoding, OutcomeMode, encode_outcome

__all__ = [
    # Main API
    "parse_formula",
    "build_design_matrix",
    "encode_outcome",
    # Core classes
    "FormulaCompiler",
    "ExpressionEvaluator",
    "DesignMatrixBuilder",
    "OutcomeEncoder",
    "FormulaSpec",
    "EvaluatedFormula",
    "DesignMatrix",
    "DesignSchema",
    "ColumnSpec",
    "OutcomeEncoding",
    "OutcomeMode",
    # Helpers
    "FunctionRegistry",
    "HelperFunction",
    "default_registry",
    "build_registry",
    # Terms
    "Term",
    "TermType",
    "FeatureKind",
    "create_term",
    "parse_terms",
]
