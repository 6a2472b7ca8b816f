"""
Design matrix construction for formulanet.

Converts evaluated predictor columns into a numeric matrix and records the
column schema needed to encode new records identically.
"""

import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd
from scipy import sparse

from .spec import EvaluatedFormula
from .terms import FeatureKind
from ..config.settings import EncodingConfig, ScalingMethod, get_default_config
from ..core.exceptions import (
    EmptyDesignMatrixError,
    ExpressionEvaluationError,
    UnseenLevelWarning,
)
from ..utils.logging import get_logger


logger = get_logger(__name__)

_SCALED_KINDS = (FeatureKind.CONTINUOUS, FeatureKind.DERIVED_COUNT, FeatureKind.TIMESTAMP)


@dataclass(frozen=True)
class ColumnSpec:
    """One design matrix column: its source expression and, for dummies, its level."""

    name: str
    source: str
    kind: FeatureKind
    level: Optional[str] = None
    center: float = 0.0
    scale: float = 1.0

    @property
    def is_dummy(self) -> bool:
        return self.level is not None


@dataclass(frozen=True)
class DesignSchema:
    """
    Reusable encoding of predictor columns.

    Holds everything required to rebuild the same columns, in the same order,
    from new records without looking at the new records' levels.
    """

    columns: Tuple[ColumnSpec, ...]
    sources: Tuple[str, ...]
    kinds: Tuple[Tuple[str, FeatureKind], ...]
    scaling: ScalingMethod = ScalingMethod.NONE
    dropped_columns: Tuple[str, ...] = ()
    dropped_levels: Tuple[Tuple[str, str], ...] = ()

    @property
    def width(self) -> int:
        return len(self.columns)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def levels_for(self, source: str) -> List[str]:
        """Levels recorded for a categorical source expression."""
        return [c.level for c in self.columns if c.source == source and c.is_dummy]

    def known_levels(self, source: str) -> List[str]:
        """Levels seen at fit time, including those whose constant dummies were dropped."""
        dropped = [level for name, level in self.dropped_levels if name == source]
        return self.levels_for(source) + dropped

    def kind_of(self, source: str) -> Optional[FeatureKind]:
        return dict(self.kinds).get(source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [
                {"name": c.name, "source": c.source, "level": c.level, "kind": c.kind.value,
                 "center": c.center, "scale": c.scale}
                for c in self.columns
            ],
            "scaling": ScalingMethod(self.scaling).value,
            "dropped_columns": list(self.dropped_columns),
            "dropped_levels": [list(pair) for pair in self.dropped_levels],
        }


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    """Numeric design matrix, one row per record in input order."""

    values: np.ndarray = field(repr=False)
    schema: DesignSchema

    def __post_init__(self):
        self.values.setflags(write=False)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    @property
    def width(self) -> int:
        return self.values.shape[1]

    @property
    def column_names(self) -> List[str]:
        return self.schema.column_names

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, columns=self.column_names)

    def to_sparse(self) -> sparse.csr_matrix:
        return sparse.csr_matrix(self.values)


def column_name(source: str, level: Optional[str] = None, separator: str = "_") -> str:
    """Readable column name, e.g. ('source', 'Twitter for iPhone') -> 'source_Twitter_for_iPhone'."""
    raw = source if level is None else f"{source}{separator}{level}"
    cleaned = re.sub(r"\W+", "_", raw).strip("_")
    return cleaned or "column"


def category_labels(values: pd.Series) -> pd.Series:
    """String labels for a categorical column; missing values stay None."""
    labels = values.astype(object)
    return labels.map(lambda v: None if _is_missing(v) else str(v))


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _ordered_levels(values: pd.Series) -> List[str]:
    """Observed levels in natural order (category order, else numeric or lexical sort)."""
    if isinstance(values.dtype, pd.CategoricalDtype):
        observed = set(values.dropna().unique())
        return [str(level) for level in values.cat.categories if level in observed]

    present = [v for v in values.dropna().unique()]
    try:
        present = sorted(present)
    except TypeError:
        present = sorted(present, key=str)
    levels = []
    for v in present:
        label = str(v)
        if label not in levels:
            levels.append(label)
    return levels


def _numeric_values(values: pd.Series, kind: FeatureKind) -> np.ndarray:
    """Float view of a non-categorical column; missing values become NaN."""
    if kind == FeatureKind.TIMESTAMP or pd.api.types.is_datetime64_any_dtype(values.dtype):
        stamps = pd.to_datetime(values, errors="coerce", utc=True)
        seconds = (stamps - pd.Timestamp(0, tz="UTC")).dt.total_seconds()
        return seconds.to_numpy(dtype=float, na_value=np.nan)
    if kind == FeatureKind.DERIVED_BOOLEAN:
        mapped = values.map(lambda v: np.nan if _is_missing(v) else float(bool(v)))
        return mapped.to_numpy(dtype=float)
    return pd.to_numeric(values, errors="coerce").to_numpy(dtype=float, na_value=np.nan)


class DesignMatrixBuilder:
    """
    Builds design matrices from evaluated predictor columns.

    - numeric and boolean columns pass through (booleans as 0/1, timestamps
      as seconds since the epoch)
    - categorical columns expand to one dummy per observed level, all levels kept
    - missing values encode as 0 (numeric) or all-zero dummies (categorical)
    """

    def __init__(self, config: Optional[EncodingConfig] = None):
        self.config = config or get_default_config().encoding
        self.logger = get_logger(self.__class__.__name__)

    def fit(self, evaluated: EvaluatedFormula) -> DesignMatrix:
        """
        Derive a schema from the evaluated predictors and encode them.

        Raises:
            ExpressionEvaluationError: If a predictor is still list-valued
            EmptyDesignMatrixError: If no usable column remains
        """
        schema = self.fit_schema(evaluated)
        return self.transform(evaluated, schema)

    def fit_schema(self, evaluated: EvaluatedFormula) -> DesignSchema:
        """Derive the column schema without encoding."""
        formula = evaluated.spec.formula_string
        if evaluated.n_records == 0:
            raise EmptyDesignMatrixError(formula=formula)

        scaling = ScalingMethod(self.config.scale_continuous)
        separator = self.config.column_separator

        columns: List[ColumnSpec] = []
        dropped: List[str] = []
        dropped_levels: List[Tuple[str, str]] = []
        kinds: List[Tuple[str, FeatureKind]] = []

        for source, values in evaluated.predictors.items():
            kind = evaluated.kinds[source]
            kinds.append((source, kind))

            if kind == FeatureKind.LIST:
                raise ExpressionEvaluationError(
                    source,
                    reason="list-valued column; reduce it with a helper such as n() or contains()",
                )

            if kind == FeatureKind.CATEGORICAL:
                labels = category_labels(values)
                for level in _ordered_levels(values):
                    name = column_name(source, level, separator)
                    indicator = (labels == level).to_numpy()
                    if self.config.drop_constant_columns and (indicator.all() or not indicator.any()):
                        dropped.append(name)
                        dropped_levels.append((source, level))
                        continue
                    columns.append(ColumnSpec(name=name, source=source, kind=kind, level=level))
                continue

            name = column_name(source, separator=separator)
            raw = _numeric_values(values, kind)
            present = raw[~np.isnan(raw)]
            filled = np.where(np.isnan(raw), 0.0, raw)

            if self.config.drop_constant_columns and (len(present) == 0 or np.ptp(filled) == 0):
                dropped.append(name)
                continue

            center, scale = 0.0, 1.0
            if kind in _SCALED_KINDS and len(present):
                if scaling == ScalingMethod.ZERO_ONE:
                    center = float(present.min())
                    scale = float(present.max() - present.min())
                elif scaling == ScalingMethod.Z:
                    center = float(present.mean())
                    scale = float(present.std())
                if not np.isfinite(scale) or scale == 0:
                    scale = 1.0

            columns.append(ColumnSpec(name=name, source=source, kind=kind, center=center, scale=scale))

        if dropped:
            self.logger.warning(f"Dropped {len(dropped)} constant columns", columns=dropped)

        if not columns:
            raise EmptyDesignMatrixError(formula=formula, dropped_columns=dropped)

        schema = DesignSchema(
            columns=tuple(self._deduplicate(columns)),
            sources=tuple(evaluated.predictors.keys()),
            kinds=tuple(kinds),
            scaling=scaling,
            dropped_columns=tuple(dropped),
            dropped_levels=tuple(dropped_levels),
        )
        self.logger.debug(f"Design schema: {schema.width} columns", names=schema.column_names)
        return schema

    def transform(self, evaluated: EvaluatedFormula, schema: DesignSchema) -> DesignMatrix:
        """
        Encode evaluated predictors with an existing schema.

        Levels absent from the schema encode as all-zero dummies and raise an
        UnseenLevelWarning; the matrix width never changes.
        """
        n_rows = evaluated.n_records
        matrix = np.zeros((n_rows, schema.width), dtype=np.float32)
        label_cache: Dict[str, pd.Series] = {}
        for source, kind in schema.kinds:
            if kind == FeatureKind.CATEGORICAL and source in evaluated.predictors:
                label_cache[source] = category_labels(evaluated.predictors[source])
                self._check_unseen(source, label_cache[source], schema)

        for j, column in enumerate(schema.columns):
            if column.source not in evaluated.predictors:
                raise ExpressionEvaluationError(
                    column.source, reason="expression missing from evaluated predictors"
                )
            values = evaluated.predictors[column.source]

            if column.is_dummy:
                matrix[:, j] = (label_cache[column.source] == column.level).to_numpy(dtype=np.float32)
                continue

            raw = _numeric_values(values, column.kind)
            scaled = (raw - column.center) / column.scale
            matrix[:, j] = np.where(np.isnan(scaled), 0.0, scaled)

        return DesignMatrix(values=matrix, schema=schema)

    def _check_unseen(self, source: str, labels: pd.Series, schema: DesignSchema) -> None:
        if schema.kind_of(source) != FeatureKind.CATEGORICAL:
            return
        known = set(schema.known_levels(source))
        unseen = sorted({label for label in labels.dropna().unique() if label not in known})
        if unseen and self.config.warn_unseen_levels:
            message = (
                f"Levels {unseen} of '{source}' were not seen when the schema was fit; "
                "encoding them as all-zero"
            )
            self.logger.warning(message)
            warnings.warn(message, UnseenLevelWarning, stacklevel=3)

    @staticmethod
    def _deduplicate(columns: List[ColumnSpec]) -> List[ColumnSpec]:
        reserved = {column.name for column in columns}
        used: Set[str] = set()
        unique = []
        for column in columns:
            name = column.name
            if name in used:
                suffix = 2
                while f"{name}_{suffix}" in used or f"{name}_{suffix}" in reserved:
                    suffix += 1
                name = f"{name}_{suffix}"
                column = ColumnSpec(
                    name=name, source=column.source, kind=column.kind,
                    level=column.level, center=column.center, scale=column.scale,
                )
            used.add(name)
            unique.append(column)
        return unique


def build_design_matrix(
    evaluated: EvaluatedFormula,
    schema: Optional[DesignSchema] = None,
    config: Optional[EncodingConfig] = None,
) -> DesignMatrix:
    """
    Convenience function to build a design matrix.

    Args:
        evaluated: Evaluated formula
        schema: Existing schema to reuse; a new one is fit when omitted
        config: Encoding configuration

    Returns:
        DesignMatrix
    """
    builder = DesignMatrixBuilder(config)
    if schema is None:
        return builder.fit(evaluated)
    return builder.transform(evaluated, schema)
