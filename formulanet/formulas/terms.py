"""
Formula term representations for formulanet.

A term is one expression on either side of a formula. Its source text is
translated into Python syntax, parsed with ``ast`` and checked against the
helper registry, so malformed expressions fail at parse time.
"""

import ast
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from .functions import FunctionRegistry
from ..core.exceptions import FormulaParseError


class TermType(str, Enum):
    """Types of formula terms."""

    FIELD = "field"
    FUNCTION = "function"
    EXPRESSION = "expression"
    ALL_FIELDS = "all_fields"


class FeatureKind(str, Enum):
    """Declared or inferred type of an evaluated term."""

    CONTINUOUS = "continuous"
    CATEGORICAL = "categorical"
    DERIVED_COUNT = "derived_count"
    DERIVED_BOOLEAN = "derived_boolean"
    TIMESTAMP = "timestamp"
    LIST = "list"


# R spellings of logical constants
CONSTANT_NAMES = {"TRUE": True, "T": True, "FALSE": False, "F": False, "NA": None, "NULL": None}

_COUNT_HELPERS = {"n", "nchar", "count"}
_BOOLEAN_HELPERS = {"contains"}
_CATEGORICAL_HELPERS = {"factor", "cut", "weekday"}
_INTERCEPT_REMOVAL = re.compile(r"\s*-\s*1\s*$")

_ALLOWED_NODES = (
    ast.Expression, ast.Name, ast.Load, ast.Constant, ast.Call, ast.keyword,
    ast.BinOp, ast.UnaryOp, ast.Compare, ast.BoolOp, ast.Attribute,
    ast.Tuple, ast.List,
    ast.Add, ast.Sub, ast.Mult, ast.Div, ast.FloorDiv, ast.Mod, ast.Pow,
    ast.USub, ast.UAdd, ast.Not, ast.Invert,
    ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.And, ast.Or,
)


def to_python_source(expression: str) -> Tuple[str, Dict[str, str]]:
    """
    Translate R-flavoured expression text into Python source.

    ``^`` becomes ``**`` and backtick-quoted field names are replaced by
    placeholder identifiers. R's logical operators become ``and``, ``or``
    and ``not``, whose Python precedence matches R: comparisons bind
    tighter than ``!``, which binds tighter than ``&``, then ``|``.

    Returns:
        Tuple of (python source, placeholder -> field name)
    """
    out = []
    aliases: Dict[str, str] = {}
    quote: Optional[str] = None
    i = 0
    while i < len(expression):
        ch = expression[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < len(expression):
                out.append(expression[i + 1])
                i += 1
            elif ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "`":
            end = expression.find("`", i + 1)
            if end == -1:
                raise FormulaParseError(formula=expression, reason="unterminated backtick")
            placeholder = f"__field_{len(aliases)}__"
            aliases[placeholder] = expression[i + 1:end]
            out.append(placeholder)
            i = end
        elif ch == "^":
            out.append("**")
        elif ch == "!" and expression[i + 1:i + 2] != "=":
            out.append(" not ")
        elif ch in ("&", "|"):
            out.append(" and " if ch == "&" else " or ")
            if expression[i + 1:i + 2] == ch:
                i += 1
        else:
            out.append(ch)
        i += 1

    if quote:
        raise FormulaParseError(formula=expression, reason="unterminated string literal")

    return "".join(out).strip(), aliases


def split_top_level(text: str, separator: str) -> List[str]:
    """Split on a single-character separator outside parentheses and quotes."""
    parts = []
    depth = 0
    quote: Optional[str] = None
    current = []
    for ch in text:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth < 0:
                raise FormulaParseError(formula=text, reason="unbalanced parentheses")
        elif ch == separator and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)

    if depth != 0:
        raise FormulaParseError(formula=text, reason="unbalanced parentheses")
    if quote:
        raise FormulaParseError(formula=text, reason="unterminated string literal")

    parts.append("".join(current))
    return parts


def dotted_name(node: ast.AST) -> Optional[str]:
    """Return 'a.b.c' for a Name/Attribute chain, else None."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = dotted_name(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


@dataclass
class Term:
    """One expression of a formula, parsed and validated."""

    expression: str
    tree: Optional[ast.Expression] = field(default=None, repr=False, compare=False)
    aliases: Dict[str, str] = field(default_factory=dict, repr=False, compare=False)
    term_type: TermType = TermType.EXPRESSION
    declared_kind: Optional[FeatureKind] = None

    def get_variable_names(self) -> Set[str]:
        """Field names referenced by this term."""
        if self.tree is None:
            return set()
        names: Set[str] = set()
        self._collect_names(self.tree.body, names)
        return names

    def _collect_names(self, node: ast.AST, names: Set[str]) -> None:
        if isinstance(node, ast.Call):
            for child in list(node.args) + [kw.value for kw in node.keywords]:
                self._collect_names(child, names)
            return
        name = dotted_name(node)
        if name is not None:
            name = self.aliases.get(name, name)
            if name not in CONSTANT_NAMES:
                names.add(name)
            return
        for child in ast.iter_child_nodes(node):
            self._collect_names(child, names)

    def get_function_names(self) -> Set[str]:
        if self.tree is None:
            return set()
        return {
            node.func.id for node in ast.walk(self.tree)
            if isinstance(node, ast.Call) and isinstance(node.func, ast.Name)
        }

    def to_string(self) -> str:
        return self.expression


def _validate_tree(tree: ast.Expression, expression: str, registry: FunctionRegistry) -> None:
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise FormulaParseError(
                formula=expression,
                reason=f"unsupported syntax '{type(node).__name__}'",
            )
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise FormulaParseError(formula=expression, reason="only named helpers can be called")
            helper = registry.get(node.func.id)
            if helper is None:
                raise FormulaParseError(
                    formula=expression,
                    reason=f"unknown function '{node.func.id}'",
                    suggestions=[
                        f"Registered helpers: {', '.join(registry.names())}",
                        "Register extra helpers with FunctionRegistry.register()",
                    ],
                )
            n_args = len(node.args) + len(node.keywords)
            if not helper.accepts(n_args):
                raise FormulaParseError(
                    formula=expression,
                    reason=(
                        f"{helper.name}() takes {helper.arity_text()} argument(s), "
                        f"{n_args} given"
                    ),
                )


def _declared_kind(tree: ast.Expression) -> Optional[FeatureKind]:
    body = tree.body
    if isinstance(body, ast.Call) and isinstance(body.func, ast.Name):
        name = body.func.id
        if name in _CATEGORICAL_HELPERS:
            return FeatureKind.CATEGORICAL
        if name in _COUNT_HELPERS:
            return FeatureKind.DERIVED_COUNT
        if name in _BOOLEAN_HELPERS:
            return FeatureKind.DERIVED_BOOLEAN
    if isinstance(body, (ast.Compare, ast.BoolOp)):
        return FeatureKind.DERIVED_BOOLEAN
    if isinstance(body, ast.UnaryOp) and isinstance(body.op, ast.Not):
        return FeatureKind.DERIVED_BOOLEAN
    return None


def create_term(expression: str, registry: FunctionRegistry) -> Term:
    """
    Create a validated Term from expression text.

    Examples:
        "age" -> Term(term_type=FIELD)
        "n(hashtags)" -> Term(term_type=FUNCTION, declared_kind=DERIVED_COUNT)
        "." -> Term(term_type=ALL_FIELDS)
    """
    expression = expression.strip()
    if not expression:
        raise FormulaParseError(formula=expression, reason="empty expression")

    if expression == ".":
        return Term(expression=".", term_type=TermType.ALL_FIELDS)

    source, aliases = to_python_source(expression)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise FormulaParseError(formula=expression, reason=f"syntax error: {e.msg}") from e

    _validate_tree(tree, expression, registry)

    if dotted_name(tree.body) is not None:
        term_type = TermType.FIELD
    elif isinstance(tree.body, ast.Call):
        term_type = TermType.FUNCTION
    else:
        term_type = TermType.EXPRESSION

    return Term(
        expression=expression,
        tree=tree,
        aliases=aliases,
        term_type=term_type,
        declared_kind=_declared_kind(tree),
    )


def parse_terms(predictor_string: str, registry: FunctionRegistry) -> List[Term]:
    """
    Parse the right-hand side of a formula into predictor terms.

    Intercept markers (``1``, ``0``, ``-1``) are dropped; the network layers
    carry their own bias.

    Examples:
        "x1 + x2" -> [Term("x1"), Term("x2")]
        "n(hashtags) + contains(text, 'http')" -> two function terms
    """
    terms: List[Term] = []
    seen: Set[str] = set()
    for raw in split_top_level(predictor_string, "+"):
        text = raw.strip()
        if text in ("1", "0", "-1"):
            continue
        # "x - 1" removes the intercept in R
        text = _INTERCEPT_REMOVAL.sub("", text) or text
        term = create_term(text, registry)
        if term.expression in seen:
            continue
        seen.add(term.expression)
        terms.append(term)
    return terms


def infer_feature_kind(values: pd.Series, term: Optional[Term] = None) -> FeatureKind:
    """Infer the feature kind of an evaluated column."""
    if term is not None and term.declared_kind is not None:
        if term.declared_kind != FeatureKind.CONTINUOUS:
            return term.declared_kind

    dtype = values.dtype
    if isinstance(dtype, pd.CategoricalDtype):
        return FeatureKind.CATEGORICAL
    if pd.api.types.is_bool_dtype(dtype):
        return FeatureKind.DERIVED_BOOLEAN
    if pd.api.types.is_datetime64_any_dtype(dtype):
        return FeatureKind.TIMESTAMP
    if pd.api.types.is_numeric_dtype(dtype):
        return FeatureKind.CONTINUOUS

    non_missing = values.dropna()
    if len(non_missing) and non_missing.map(
        lambda v: isinstance(v, (list, tuple, set, np.ndarray))
    ).any():
        return FeatureKind.LIST
    if len(non_missing) and non_missing.map(lambda v: isinstance(v, bool)).all():
        return FeatureKind.DERIVED_BOOLEAN
    return FeatureKind.CATEGORICAL
