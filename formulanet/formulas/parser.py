"""
Formula compiler for formulanet.

Parses ``outcome ~ predictor + predictor`` formulas and evaluates their
expressions against a record set.
"""

import inspect
from typing import Callable, Iterable, List, Mapping, Optional, Union

import pandas as pd

from .evaluator import ExpressionEvaluator
from .functions import FunctionRegistry, HelperFunction, default_registry
from .spec import EvaluatedFormula, FormulaSpec
from .terms import Term, TermType, create_term, infer_feature_kind, parse_terms, split_top_level
from ..core.exceptions import FormulaParseError
from ..data.records import Records, as_dataframe
from ..utils.logging import get_logger


logger = get_logger(__name__)

FunctionTable = Union[FunctionRegistry, Mapping[str, Callable], Iterable[HelperFunction]]


def _arity(func: Callable) -> tuple:
    """Positional argument range of a plain callable."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return 0, None
    min_args, max_args = 0, 0
    for parameter in signature.parameters.values():
        if parameter.kind == parameter.VAR_POSITIONAL:
            max_args = None
        elif parameter.kind in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            if max_args is not None:
                max_args += 1
            if parameter.default is parameter.empty:
                min_args += 1
    return min_args, max_args


def build_registry(functions: Optional[FunctionTable] = None) -> FunctionRegistry:
    """
    Build a helper registry: the built-ins plus caller-supplied helpers.

    Args:
        functions: A FunctionRegistry (used as-is, copied), a mapping of
            name -> callable (arity read from the signature) or an iterable
            of HelperFunction entries
    """
    if isinstance(functions, FunctionRegistry):
        return functions.copy()

    registry = default_registry()
    if functions is None:
        return registry

    if isinstance(functions, Mapping):
        for name, func in functions.items():
            if not callable(func):
                registry.register(name, func)  # raises ConfigurationError
            min_args, max_args = _arity(func)
            registry.register(name, func, min_args, max_args)
    else:
        for helper in functions:
            registry.register(helper.name, helper.func, helper.min_args, helper.max_args,
                              helper.description)
    return registry


class FormulaCompiler:
    """
    Parser and evaluator for model formulas.

    Supports:
    - Fields: retweet_count ~ followers + source
    - Helpers: y ~ n(hashtags) + contains(text, "http") + hour(created_at)
    - Protected arithmetic: y ~ I(x1 * x2) + log(x3)
    - Discretised outcomes: cut(y, c(-1, 0, 1, 10)) ~ x1 + x2
    - All remaining fields: y ~ .
    """

    def __init__(self, functions: Optional[FunctionTable] = None):
        self.registry = build_registry(functions)
        self.evaluator = ExpressionEvaluator(self.registry)
        self.logger = get_logger(self.__class__.__name__)

    def parse(self, formula_string: str) -> FormulaSpec:
        """
        Parse a formula string into a FormulaSpec.

        Args:
            formula_string: Formula of the form 'outcome ~ p1 + p2 + ...'

        Returns:
            FormulaSpec with one outcome term and ordered predictor terms

        Raises:
            FormulaParseError: If the formula is malformed
        """
        if not isinstance(formula_string, str):
            raise FormulaParseError(formula=repr(formula_string), reason="formula must be a string")

        original_string = formula_string.strip()
        self.logger.debug(f"Parsing formula: {original_string}")

        if not original_string:
            raise FormulaParseError(formula=original_string, reason="formula is empty")

        sides = split_top_level(original_string, "~")
        if len(sides) == 1:
            raise FormulaParseError(formula=original_string, reason="missing '~' separator")
        if len(sides) > 2:
            raise FormulaParseError(formula=original_string, reason="more than one '~' separator")

        outcome_part, predictor_part = sides[0].strip(), sides[1].strip()

        if not outcome_part:
            raise FormulaParseError(formula=original_string, reason="outcome expression is empty")
        if len(split_top_level(outcome_part, "+")) > 1 or len(split_top_level(outcome_part, ",")) > 1:
            raise FormulaParseError(
                formula=original_string,
                reason="exactly one outcome expression is allowed",
            )
        if not predictor_part:
            raise FormulaParseError(formula=original_string, reason="no predictor expressions")

        outcome = create_term(outcome_part, self.registry)
        if outcome.term_type == TermType.ALL_FIELDS:
            raise FormulaParseError(formula=original_string, reason="'.' cannot be the outcome")

        predictors = parse_terms(predictor_part, self.registry)

        spec = FormulaSpec(
            formula_string=original_string,
            outcome=outcome,
            predictors=tuple(predictors),
        )

        self.logger.debug(
            f"Parsed formula: outcome={outcome.expression}, {len(predictors)} predictors"
        )
        return spec

    def evaluate(
        self,
        spec: FormulaSpec,
        records: Records,
        include_outcome: bool = True,
    ) -> EvaluatedFormula:
        """
        Evaluate a parsed formula against a record set.

        The outcome is evaluated first, then each predictor in order; the
        first failing expression aborts the whole evaluation.

        Args:
            spec: Parsed formula
            records: Record set
            include_outcome: Skip the outcome when False (prediction on new data)

        Raises:
            ExpressionEvaluationError: If any expression fails
        """
        frame = as_dataframe(records)

        outcome = self.evaluator.evaluate(spec.outcome, frame) if include_outcome else None

        terms = self.expand_predictors(spec, frame)
        predictors = self.evaluator.evaluate_many(terms, frame)
        kinds = {
            term.expression: infer_feature_kind(predictors[term.expression], term)
            for term in terms
        }

        self.logger.info(
            f"Evaluated formula against {len(frame)} records",
            predictors=len(predictors),
        )

        return EvaluatedFormula(
            spec=spec,
            outcome=outcome,
            predictors=predictors,
            kinds=kinds,
            predictor_terms=tuple(terms),
        )

    def expand_predictors(self, spec: FormulaSpec, frame: pd.DataFrame) -> List[Term]:
        """Replace '.' with every field not used by the outcome or listed explicitly."""
        explicit = {t.expression for t in spec.predictors if t.term_type != TermType.ALL_FIELDS}
        excluded = spec.outcome.get_variable_names() | explicit

        terms: List[Term] = []
        for term in spec.predictors:
            if term.term_type != TermType.ALL_FIELDS:
                terms.append(term)
                continue
            for column in frame.columns:
                column = str(column)
                if column in excluded:
                    continue
                text = column if column.isidentifier() else f"`{column}`"
                expanded = create_term(text, self.registry)
                if expanded.expression not in explicit:
                    terms.append(expanded)
                    explicit.add(expanded.expression)
        return terms

    def compile(self, formula_string: str, records: Records) -> EvaluatedFormula:
        """Parse and evaluate in one step."""
        return self.evaluate(self.parse(formula_string), records)


def parse_formula(formula_string: str, functions: Optional[FunctionTable] = None) -> FormulaSpec:
    """
    Parse a single formula string.

    Args:
        formula_string: Formula string
        functions: Optional extra helper functions

    Returns:
        FormulaSpec object
    """
    return FormulaCompiler(functions).parse(formula_string)
