"""
Outcome encoding for formulanet.

Classifies the evaluated outcome as continuous, binary or multi-class and
maps raw values to the targets the training loss expects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..core.exceptions import ExpressionEvaluationError
from ..utils.logging import get_logger


logger = get_logger(__name__)


class OutcomeMode(str, Enum):
    """How the outcome is represented to the network."""

    CONTINUOUS = "continuous"
    BINARY = "binary"
    MULTICLASS = "multiclass"


def level_label(value: Any) -> Optional[str]:
    """Canonical string label of a raw outcome value (None when missing)."""
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, (int, float, np.integer, np.floating)):
        if np.isnan(value):
            return None
        if float(value).is_integer():
            return str(int(value))
        return str(float(value))
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


@dataclass(frozen=True)
class OutcomeEncoding:
    """
    Fitted outcome representation.

    For discrete modes ``levels`` is the ordered level set; class index ``i``
    is ``levels[i]``. Continuous outcomes carry no levels.
    """

    mode: OutcomeMode
    levels: Tuple[str, ...] = ()
    source: str = ""

    @property
    def is_discrete(self) -> bool:
        return self.mode != OutcomeMode.CONTINUOUS

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def output_units(self) -> int:
        """Width of the network output layer."""
        if self.mode == OutcomeMode.MULTICLASS:
            return self.n_levels
        return 1

    @property
    def default_loss(self) -> str:
        return {
            OutcomeMode.CONTINUOUS: "mse",
            OutcomeMode.BINARY: "binary_crossentropy",
            OutcomeMode.MULTICLASS: "categorical_crossentropy",
        }[self.mode]

    @property
    def default_output_activation(self) -> str:
        return {
            OutcomeMode.CONTINUOUS: "linear",
            OutcomeMode.BINARY: "sigmoid",
            OutcomeMode.MULTICLASS: "softmax",
        }[self.mode]

    def encode(self, values: pd.Series) -> np.ndarray:
        """
        Map raw outcome values to class indices (discrete) or floats (continuous).

        Missing and out-of-range values encode as -1 (discrete) or NaN.
        """
        if not self.is_discrete:
            return pd.to_numeric(values, errors="coerce").to_numpy(dtype=float, na_value=np.nan)

        index = {label: i for i, label in enumerate(self.levels)}
        return np.array(
            [index.get(level_label(v), -1) for v in values.astype(object)], dtype=np.int64
        )

    def valid_mask(self, encoded: np.ndarray) -> np.ndarray:
        if self.is_discrete:
            return encoded >= 0
        return ~np.isnan(encoded)

    def one_hot(self, indices: np.ndarray) -> np.ndarray:
        """One-hot rows over the level set; invalid indices give all-zero rows."""
        indices = np.asarray(indices, dtype=np.int64)
        matrix = np.zeros((len(indices), self.n_levels), dtype=np.float32)
        valid = indices >= 0
        matrix[np.flatnonzero(valid), indices[valid]] = 1.0
        return matrix

    def targets(self, encoded: np.ndarray) -> np.ndarray:
        """Training targets shaped (n, output_units)."""
        if self.mode == OutcomeMode.MULTICLASS:
            return self.one_hot(encoded)
        return np.asarray(encoded, dtype=np.float32).reshape(-1, 1)

    def decode(self, indices: np.ndarray) -> List[Optional[str]]:
        """Class indices back to level labels."""
        return [self.levels[i] if 0 <= i < self.n_levels else None for i in np.asarray(indices)]

    def predicted_indices(self, outputs: np.ndarray) -> np.ndarray:
        """Class indices from raw network outputs (discrete modes)."""
        outputs = np.asarray(outputs)
        if self.mode == OutcomeMode.BINARY:
            return (outputs.reshape(-1) >= 0.5).astype(np.int64)
        if self.mode == OutcomeMode.MULTICLASS:
            return np.argmax(outputs, axis=1).astype(np.int64)
        raise ValueError("continuous outcomes have no class indices")

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode.value, "levels": list(self.levels), "source": self.source}


class OutcomeEncoder:
    """
    Fits an OutcomeEncoding from an evaluated outcome column.

    - categorical columns (e.g. from cut()) are discrete over their full
      category set, in category order
    - strings and booleans are discrete over sorted observed values
    - numeric columns whose values are all 0 or 1 are binary
    - any other numeric column is continuous
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def fit(self, values: pd.Series, source: Optional[str] = None) -> OutcomeEncoding:
        source = source or str(values.name or "outcome")
        levels = self._discrete_levels(values)

        if levels is None:
            encoding = OutcomeEncoding(mode=OutcomeMode.CONTINUOUS, source=source)
        else:
            if len(levels) < 2:
                raise ExpressionEvaluationError(
                    source, reason=f"outcome has {len(levels)} level(s); at least 2 are required"
                )
            mode = OutcomeMode.BINARY if len(levels) == 2 else OutcomeMode.MULTICLASS
            encoding = OutcomeEncoding(mode=mode, levels=tuple(levels), source=source)

        self.logger.info(
            f"Outcome '{source}' encoded as {encoding.mode.value}",
            levels=encoding.n_levels,
        )
        return encoding

    @staticmethod
    def _discrete_levels(values: pd.Series) -> Optional[List[str]]:
        dtype = values.dtype

        if isinstance(dtype, pd.CategoricalDtype):
            return [level_label(level) for level in values.cat.categories]

        if pd.api.types.is_bool_dtype(dtype):
            return ["False", "True"]

        if pd.api.types.is_numeric_dtype(dtype):
            present = pd.to_numeric(values, errors="coerce").dropna().unique()
            if len(present) and set(np.asarray(present, dtype=float)) <= {0.0, 1.0}:
                return ["0", "1"]
            return None

        present = [v for v in values.dropna().unique()]
        if present and all(isinstance(v, (bool, np.bool_)) for v in present):
            return ["False", "True"]
        try:
            present = sorted(present)
        except TypeError:
            present = sorted(present, key=str)
        levels: List[str] = []
        for value in present:
            label = level_label(value)
            if label is not None and label not in levels:
                levels.append(label)
        return levels


def encode_outcome(values: pd.Series, source: Optional[str] = None) -> Tuple[OutcomeEncoding, np.ndarray]:
    """Fit an encoding and encode the same column."""
    encoding = OutcomeEncoder().fit(values, source)
    return encoding, encoding.encode(values)
