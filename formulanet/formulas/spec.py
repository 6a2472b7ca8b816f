"""
Formula specification classes for formulanet.

Defines the structure of a parsed formula and of its evaluated columns.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from .terms import Term, FeatureKind
from ..core.exceptions import FormulaParseError


@dataclass(frozen=True)
class FormulaSpec:
    """
    Parsed model formula: one outcome expression and ordered predictors.

    Examples:
        retweet_count ~ n(hashtags) + source
        cut(y, c(-1, 0, 1, 10)) ~ x1 + x2
        y ~ .
    """

    formula_string: str
    outcome: Term
    predictors: Tuple[Term, ...]

    def __post_init__(self):
        if not self.predictors:
            raise FormulaParseError(
                formula=self.formula_string,
                reason="at least one predictor expression is required",
            )

    @property
    def outcome_expression(self) -> str:
        return self.outcome.expression

    @property
    def predictor_expressions(self) -> List[str]:
        return [term.expression for term in self.predictors]

    def get_variable_names(self) -> List[str]:
        """Record fields referenced anywhere in the formula."""
        names = set(self.outcome.get_variable_names())
        for term in self.predictors:
            names.update(term.get_variable_names())
        return sorted(names)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formula": self.formula_string,
            "outcome": self.outcome_expression,
            "predictors": self.predictor_expressions,
            "declared_kinds": {
                term.expression: term.declared_kind.value if term.declared_kind else None
                for term in self.predictors
            },
        }

    def __str__(self) -> str:
        return f"{self.outcome_expression} ~ {' + '.join(self.predictor_expressions)}"


@dataclass
class EvaluatedFormula:
    """Columns produced by evaluating a FormulaSpec against a record set."""

    spec: FormulaSpec
    outcome: Optional[pd.Series]
    predictors: Dict[str, pd.Series]
    kinds: Dict[str, FeatureKind] = field(default_factory=dict)
    predictor_terms: Tuple[Term, ...] = ()

    @property
    def n_records(self) -> int:
        if self.outcome is not None:
            return len(self.outcome)
        return len(next(iter(self.predictors.values()))) if self.predictors else 0
