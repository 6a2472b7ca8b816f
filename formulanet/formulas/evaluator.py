"""
Vectorised evaluation of parsed formula terms against a record set.

Each term is evaluated column-wise over a pandas DataFrame; the result is a
Series aligned with the records. Any failure is reported as an
ExpressionEvaluationError naming the offending expression.
"""

import ast
import operator
from typing import Any, Dict

import numpy as np
import pandas as pd

from .functions import FunctionRegistry
from .terms import Term, TermType, CONSTANT_NAMES, dotted_name
from ..core.exceptions import ExpressionEvaluationError
from ..utils.logging import get_logger


logger = get_logger(__name__)

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_COMPARISONS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}


def _logical(value: Any) -> Any:
    if isinstance(value, pd.Series):
        if pd.api.types.is_bool_dtype(value.dtype):
            return value
        return value.fillna(False).astype(bool)
    return bool(value)


class ExpressionEvaluator:
    """Evaluates Terms against a DataFrame using a helper registry."""

    def __init__(self, registry: FunctionRegistry):
        self.registry = registry
        self.logger = get_logger(self.__class__.__name__)

    def evaluate(self, term: Term, frame: pd.DataFrame) -> pd.Series:
        """
        Evaluate a term against every record.

        Args:
            term: Parsed term
            frame: Record set

        Returns:
            Series of length ``len(frame)`` on the frame's index

        Raises:
            ExpressionEvaluationError: If evaluation fails for any reason
        """
        if term.term_type == TermType.ALL_FIELDS or term.tree is None:
            raise ExpressionEvaluationError(
                term.expression, reason="'.' must be expanded before evaluation"
            )

        try:
            with np.errstate(all="ignore"):
                value = self._eval(term.tree.body, term, frame)
        except ExpressionEvaluationError:
            raise
        except Exception as e:
            raise ExpressionEvaluationError(
                term.expression, cause=e, available_fields=[str(c) for c in frame.columns]
            ) from e

        if isinstance(value, tuple):
            raise ExpressionEvaluationError(
                term.expression, reason="expression evaluates to a literal vector, not a column"
            )
        if not isinstance(value, pd.Series):
            value = pd.Series([value] * len(frame), index=frame.index)
        elif len(value) != len(frame):
            raise ExpressionEvaluationError(
                term.expression,
                reason=f"produced {len(value)} values for {len(frame)} records",
            )
        else:
            value = value.set_axis(frame.index)

        return value.rename(term.expression)

    def _eval(self, node: ast.AST, term: Term, frame: pd.DataFrame) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        name = dotted_name(node)
        if name is not None:
            return self._lookup(name, term, frame)

        if isinstance(node, (ast.Tuple, ast.List)):
            return tuple(self._eval(elt, term, frame) for elt in node.elts)

        if isinstance(node, ast.Call):
            helper = self.registry.get(node.func.id)
            args = [self._eval(arg, term, frame) for arg in node.args]
            kwargs = {kw.arg: self._eval(kw.value, term, frame) for kw in node.keywords}
            return helper.func(*args, **kwargs)

        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, term, frame)
            right = self._eval(node.right, term, frame)
            return _BINARY_OPERATORS[type(node.op)](left, right)

        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, term, frame)
            if isinstance(node.op, (ast.Not, ast.Invert)):
                operand = _logical(operand)
                return ~operand if isinstance(operand, pd.Series) else not operand
            if isinstance(node.op, ast.USub):
                return -operand
            return +operand

        if isinstance(node, ast.Compare):
            result = None
            left = self._eval(node.left, term, frame)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, term, frame)
                outcome = _COMPARISONS[type(op)](left, right)
                result = outcome if result is None else (_logical(result) & _logical(outcome))
                left = right
            return result

        if isinstance(node, ast.BoolOp):
            values = [_logical(self._eval(v, term, frame)) for v in node.values]
            result = values[0]
            for value in values[1:]:
                result = (result & value) if isinstance(node.op, ast.And) else (result | value)
            return result

        raise ExpressionEvaluationError(
            term.expression, reason=f"unsupported syntax '{type(node).__name__}'"
        )

    def _lookup(self, name: str, term: Term, frame: pd.DataFrame) -> Any:
        field_name = term.aliases.get(name, name)
        if field_name in frame.columns:
            return frame[field_name]
        if name in CONSTANT_NAMES:
            return CONSTANT_NAMES[name]
        raise ExpressionEvaluationError(
            term.expression,
            reason=f"unknown field '{field_name}'",
            available_fields=[str(c) for c in frame.columns],
        )

    def evaluate_many(self, terms, frame: pd.DataFrame) -> Dict[str, pd.Series]:
        """Evaluate terms in order, stopping at the first failure."""
        columns = {}
        for term in terms:
            columns[term.expression] = self.evaluate(term, frame)
            self.logger.debug(
                f"Evaluated '{term.expression}'", dtype=str(columns[term.expression].dtype)
            )
        return columns
