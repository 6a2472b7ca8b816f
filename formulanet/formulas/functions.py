"""
Registered helper functions available inside formula expressions.

Every helper has a fixed arity range that is checked when a formula is
parsed, so an unknown helper or a wrong argument count is reported before
any record is touched.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from ..core.exceptions import ConfigurationError


@dataclass(frozen=True)
class HelperFunction:
    """A named helper callable with a fixed argument-count range."""

    name: str
    func: Callable[..., Any]
    min_args: int
    max_args: Optional[int]
    description: str = ""

    def accepts(self, n_args: int) -> bool:
        if n_args < self.min_args:
            return False
        return self.max_args is None or n_args <= self.max_args

    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.max_args == self.min_args:
            return str(self.min_args)
        return f"{self.min_args}-{self.max_args}"


class FunctionRegistry:
    """
    Table of helper functions callable from formula expressions.

    Registries are copied rather than shared, so helpers registered for one
    compiler never leak into another.
    """

    def __init__(self, functions: Optional[Iterable[HelperFunction]] = None):
        self._functions: Dict[str, HelperFunction] = {}
        for helper in functions or ():
            self._add(helper)

    def _add(self, helper: HelperFunction) -> None:
        if not helper.name or not helper.name.isidentifier():
            raise ConfigurationError(
                config_key="functions", reason=f"'{helper.name}' is not a valid helper name"
            )
        if not callable(helper.func):
            raise ConfigurationError(
                config_key="functions", reason=f"helper '{helper.name}' is not callable"
            )
        if helper.min_args < 0 or (helper.max_args is not None and helper.max_args < helper.min_args):
            raise ConfigurationError(
                config_key="functions",
                reason=f"helper '{helper.name}' has an invalid arity range",
            )
        self._functions[helper.name] = helper

    def register(
        self,
        name: str,
        func: Callable[..., Any],
        min_args: int = 1,
        max_args: Optional[int] = 1,
        description: str = "",
    ) -> "FunctionRegistry":
        """Register (or replace) a helper and return the registry."""
        self._add(HelperFunction(name, func, min_args, max_args, description))
        return self

    def get(self, name: str) -> Optional[HelperFunction]:
        return self._functions.get(name)

    def names(self) -> List[str]:
        return sorted(self._functions)

    def copy(self) -> "FunctionRegistry":
        return FunctionRegistry(self._functions.values())

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)


# Built-in helpers. Arguments arrive as pandas Series aligned to the record
# index, or as scalars / tuples for literals.


def _as_series(value: Any, name: str) -> pd.Series:
    if isinstance(value, pd.Series):
        return value
    raise TypeError(f"{name}() expects a record field or expression, got {type(value).__name__}")


def _combine(*values):
    """R-style c(): collect literal values into a tuple."""
    flattened = []
    for value in values:
        if isinstance(value, (tuple, list)):
            flattened.extend(value)
        elif isinstance(value, pd.Series):
            raise TypeError("c() only combines literal values")
        else:
            flattened.append(value)
    return tuple(flattened)


def _cut(x, breaks, right=True):
    series = pd.to_numeric(_as_series(x, "cut"), errors="coerce")
    if isinstance(breaks, (int, float)) and not isinstance(breaks, bool):
        if int(breaks) < 1:
            raise ValueError("cut() needs at least one bucket")
        return pd.cut(series, bins=int(breaks), right=bool(right))
    breaks = [float(b) for b in breaks]
    if len(breaks) < 2:
        raise ValueError("cut() needs at least two breakpoints")
    if any(b >= a for a, b in zip(breaks[1:], breaks)):
        raise ValueError("cut() breakpoints must be strictly increasing")
    return pd.cut(series, bins=breaks, right=bool(right))


def _factor(x):
    series = _as_series(x, "factor")
    if isinstance(series.dtype, pd.CategoricalDtype):
        return series
    return series.astype("category")


def _identity(x):
    return x


def _numeric(func):
    def apply(x):
        if isinstance(x, pd.Series):
            return func(pd.to_numeric(x, errors="coerce").astype(float))
        return func(float(x))
    return apply


def _list_length(x):
    series = _as_series(x, "n")

    def length(value):
        if isinstance(value, (list, tuple, set, np.ndarray)):
            return len(value)
        if value is None or (isinstance(value, float) and np.isnan(value)):
            return 0
        if isinstance(value, str):
            return 1 if value else 0
        return 1

    return series.map(length).astype(np.int64)


def _nchar(x):
    return _as_series(x, "nchar").map(
        lambda value: len(value) if isinstance(value, str) else 0
    ).astype(np.int64)


def _contains(x, pattern):
    series = _as_series(x, "contains")
    pattern = str(pattern)

    def match(value):
        if isinstance(value, str):
            return pattern in value
        if isinstance(value, (list, tuple, set, np.ndarray)):
            return any(pattern == str(item) or (isinstance(item, str) and pattern in item) for item in value)
        return False

    return series.map(match).astype(bool)


def _count(x, pattern):
    series = _as_series(x, "count")
    regex = re.compile(re.escape(str(pattern)))

    def occurrences(value):
        if isinstance(value, str):
            return len(regex.findall(value))
        if isinstance(value, (list, tuple, set, np.ndarray)):
            return sum(len(regex.findall(str(item))) for item in value)
        return 0

    return series.map(occurrences).astype(np.int64)


def _ifelse(condition, yes, no):
    condition = _as_series(condition, "ifelse").fillna(False).astype(bool)
    result = pd.Series(np.where(condition, _broadcast(yes, condition), _broadcast(no, condition)),
                       index=condition.index)
    return result


def _broadcast(value, like: pd.Series):
    if isinstance(value, pd.Series):
        return value.to_numpy()
    return np.full(len(like), value, dtype=object if isinstance(value, str) else None)


def _date_part(part):
    def extract(x):
        series = pd.to_datetime(_as_series(x, part), errors="coerce", utc=True)
        return getattr(series.dt, part).astype(float)
    return extract


def _weekday(x):
    series = pd.to_datetime(_as_series(x, "weekday"), errors="coerce", utc=True)
    return series.dt.day_name()


BUILTIN_FUNCTIONS = (
    HelperFunction("c", _combine, 1, None, "combine literal values"),
    HelperFunction("cut", _cut, 2, 3, "discretise a numeric field at breakpoints"),
    HelperFunction("factor", _factor, 1, 1, "treat a field as categorical"),
    HelperFunction("I", _identity, 1, 1, "protect arithmetic inside a predictor"),
    HelperFunction("log", _numeric(np.log), 1, 1, "natural logarithm"),
    HelperFunction("exp", _numeric(np.exp), 1, 1, "exponential"),
    HelperFunction("sqrt", _numeric(np.sqrt), 1, 1, "square root"),
    HelperFunction("abs", _numeric(np.abs), 1, 1, "absolute value"),
    HelperFunction("n", _list_length, 1, 1, "number of elements in a list-valued field"),
    HelperFunction("nchar", _nchar, 1, 1, "string length"),
    HelperFunction("contains", _contains, 2, 2, "substring or list membership test"),
    HelperFunction("count", _count, 2, 2, "occurrences of a pattern"),
    HelperFunction("ifelse", _ifelse, 3, 3, "elementwise conditional"),
    HelperFunction("hour", _date_part("hour"), 1, 1, "hour of a timestamp"),
    HelperFunction("month", _date_part("month"), 1, 1, "month of a timestamp"),
    HelperFunction("year", _date_part("year"), 1, 1, "year of a timestamp"),
    HelperFunction("weekday", _weekday, 1, 1, "day name of a timestamp"),
)


def default_registry() -> FunctionRegistry:
    """Create a fresh registry holding the built-in helpers."""
    return FunctionRegistry(BUILTIN_FUNCTIONS)
