"""
Exception classes for formulanet.

Provides rich error information with actionable suggestions and documentation links.
"""

from typing import List, Optional, Dict, Any


class FormulaNetError(Exception):
    """
    Base exception class for formulanet with rich error information.

    Provides structured error information including suggestions for resolution
    and links to relevant documentation.
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        documentation_link: Optional[str] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.suggestions = suggestions or []
        self.documentation_link = documentation_link
        self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error message with suggestions."""
        message = super().__str__()

        if self.error_code:
            message = f"[{self.error_code}] {message}"

        if self.suggestions:
            message += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                message += f"\n  {i}. {suggestion}"

        if self.documentation_link:
            message += f"\n\nDocumentation: {self.documentation_link}"

        return message


class FormulaParseError(FormulaNetError):
    """Exception raised for malformed formula strings."""

    def __init__(
        self,
        formula: Optional[str] = None,
        reason: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
        **kwargs,
    ):
        if formula is not None and reason:
            message = f"Invalid formula '{formula}': {reason}"
        elif formula is not None:
            message = f"Invalid formula: '{formula}'"
        else:
            message = "Formula parse error"

        if suggestions is None:
            suggestions = [
                "Use the form 'outcome ~ predictor_1 + predictor_2'",
                "Wrap arithmetic on predictors in I(), e.g. I(x1 + x2)",
                "Only registered helper functions may be called",
            ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            documentation_link="https://docs.formulanet.org/formulas",
            error_code="FORMULA_PARSE",
            context={"formula": formula, "reason": reason},
            **kwargs,
        )


class ExpressionEvaluationError(FormulaNetError):
    """Exception raised when an expression fails against the record set."""

    def __init__(
        self,
        expression: str,
        cause: Optional[BaseException] = None,
        reason: Optional[str] = None,
        available_fields: Optional[List[str]] = None,
        **kwargs,
    ):
        detail = reason or (f"{type(cause).__name__}: {cause}" if cause else "unknown error")
        message = f"Could not evaluate expression '{expression}': {detail}"

        suggestions = [
            "Check field names used in the expression",
            "Check helper function arguments",
        ]
        if available_fields:
            suggestions.insert(0, f"Available fields: {', '.join(sorted(available_fields))}")

        kwargs.pop("suggestions", None)

        self.expression = expression
        self.cause = cause

        super().__init__(
            message=message,
            suggestions=suggestions,
            documentation_link="https://docs.formulanet.org/expressions",
            error_code="EXPRESSION",
            context={"expression": expression, "cause": repr(cause) if cause else None},
            **kwargs,
        )


class EmptyDesignMatrixError(FormulaNetError):
    """Exception raised when no usable predictor columns remain."""

    def __init__(
        self,
        formula: Optional[str] = None,
        dropped_columns: Optional[List[str]] = None,
        **kwargs,
    ):
        message = "Design matrix has no usable columns"
        if formula:
            message += f" for formula '{formula}'"

        suggestions = [
            "Check that predictors vary across records",
            "Constant and all-missing columns are dropped",
        ]
        if dropped_columns:
            suggestions.insert(0, f"Dropped columns: {', '.join(dropped_columns)}")

        kwargs.pop("suggestions", None)

        super().__init__(
            message=message,
            suggestions=suggestions,
            documentation_link="https://docs.formulanet.org/design-matrix",
            error_code="EMPTY_DESIGN",
            context={"formula": formula, "dropped_columns": dropped_columns},
            **kwargs,
        )


class LayerSpecError(FormulaNetError):
    """Exception raised for malformed or inconsistent layer specifications."""

    def __init__(self, reason: Optional[str] = None, layer_index: Optional[int] = None, **kwargs):
        if reason and layer_index is not None:
            message = f"Invalid layer specification at layer {layer_index}: {reason}"
        elif reason:
            message = f"Invalid layer specification: {reason}"
        else:
            message = "Invalid layer specification"

        kwargs.pop("suggestions", None)

        super().__init__(
            message=message,
            suggestions=[
                "units, activation and dropout must have the same length",
                "The last layer must use units='auto' and no dropout",
                "Dropout rates must lie in [0, 1)",
            ],
            documentation_link="https://docs.formulanet.org/layers",
            error_code="LAYER_SPEC",
            context={"reason": reason, "layer_index": layer_index},
            **kwargs,
        )


class DimensionMismatchError(FormulaNetError):
    """Exception raised when a supplied model disagrees with the design matrix width."""

    def __init__(
        self,
        expected_width: Optional[int] = None,
        actual_width: Optional[int] = None,
        reason: Optional[str] = None,
        **kwargs,
    ):
        if expected_width is not None and actual_width is not None:
            message = (
                f"Model expects input width {expected_width} "
                f"but design matrix has {actual_width} columns"
            )
        else:
            message = reason or "Model input dimension does not match the design matrix"

        kwargs.pop("suggestions", None)

        super().__init__(
            message=message,
            suggestions=[
                "Rebuild the model with the design matrix width",
                "Check which predictor levels were observed when fitting",
            ],
            documentation_link="https://docs.formulanet.org/external-models",
            error_code="DIMENSION",
            context={"expected_width": expected_width, "actual_width": actual_width},
            **kwargs,
        )


class ConfigurationError(FormulaNetError):
    """Exception raised for configuration and hyperparameter issues."""

    def __init__(self, config_key: Optional[str] = None, reason: Optional[str] = None, **kwargs):
        if config_key:
            message = f"Invalid configuration for '{config_key}'"
            if reason:
                message += f": {reason}"
            suggestions = [
                f"Check the value for configuration key '{config_key}'",
                "Review configuration file syntax",
                "Check environment variable formatting",
                "Use formulanet.get_config() to inspect current settings",
            ]
        else:
            message = reason or "Configuration error"
            suggestions = [
                "Check configuration file syntax",
                "Verify all required settings are provided",
            ]

        kwargs.pop("suggestions", None)

        super().__init__(
            message=message,
            suggestions=suggestions,
            documentation_link="https://docs.formulanet.org/configuration",
            error_code="CONFIG",
            context={"config_key": config_key},
            **kwargs,
        )


class UnseenLevelWarning(UserWarning):
    """A categorical level in new data was not seen when the schema was fit."""
