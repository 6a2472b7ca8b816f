"""
Held-out evaluation for formulanet.

Provides the metrics reported after training:
- Discrete outcomes: accuracy and a levels x levels confusion matrix
- Continuous outcomes: mean squared error, root mean squared error and
  mean absolute error
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from ..formulas.outcome import OutcomeEncoding, OutcomeMode
from ..utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class EvaluationReport:
    """Metrics computed on the validation partition."""

    mode: OutcomeMode
    n_observations: int
    accuracy: Optional[float] = None
    confusion: Optional[np.ndarray] = field(default=None, repr=False)
    levels: tuple = ()
    mse: Optional[float] = None
    rmse: Optional[float] = None
    mae: Optional[float] = None

    @property
    def is_discrete(self) -> bool:
        return self.mode != OutcomeMode.CONTINUOUS

    def confusion_frame(self) -> pd.DataFrame:
        """Confusion matrix labelled by level; rows are true, columns predicted."""
        if self.confusion is None:
            raise ValueError("continuous outcomes have no confusion matrix")
        return pd.DataFrame(
            self.confusion,
            index=pd.Index(self.levels, name="true"),
            columns=pd.Index(self.levels, name="predicted"),
        )

    def get_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"mode": self.mode.value, "n_observations": self.n_observations}
        if self.is_discrete:
            summary["accuracy"] = self.accuracy
        else:
            summary.update({"mse": self.mse, "rmse": self.rmse, "mae": self.mae})
        return summary

    def to_dict(self) -> Dict[str, Any]:
        summary = self.get_summary()
        if self.confusion is not None:
            summary["levels"] = list(self.levels)
            summary["confusion"] = self.confusion.tolist()
        return summary


def confusion_matrix(true_indices: np.ndarray, predicted_indices: np.ndarray, n_levels: int) -> np.ndarray:
    """Counts of (true, predicted) index pairs; indices outside [0, n_levels) are ignored."""
    true_indices = np.asarray(true_indices, dtype=np.int64)
    predicted_indices = np.asarray(predicted_indices, dtype=np.int64)
    keep = (
        (true_indices >= 0) & (true_indices < n_levels)
        & (predicted_indices >= 0) & (predicted_indices < n_levels)
    )
    matrix = np.zeros((n_levels, n_levels), dtype=np.int64)
    np.add.at(matrix, (true_indices[keep], predicted_indices[keep]), 1)
    return matrix


class EvaluationReporter:
    """Computes an EvaluationReport from held-out outputs and encoded targets."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def evaluate(
        self,
        outputs: np.ndarray,
        targets: np.ndarray,
        encoding: OutcomeEncoding,
    ) -> EvaluationReport:
        """
        Args:
            outputs: Raw network outputs for the validation rows (n, output_units)
            targets: Encoded outcome for the same rows (class indices or floats)
            encoding: Outcome encoding

        Returns:
            EvaluationReport
        """
        outputs = np.asarray(outputs, dtype=float)
        targets = np.asarray(targets)
        if outputs.ndim == 1:
            outputs = outputs.reshape(-1, 1)

        if len(outputs) != len(targets):
            raise ValueError(f"{len(outputs)} outputs for {len(targets)} targets")

        if encoding.is_discrete:
            report = self._discrete(outputs, targets, encoding)
            if report.accuracy is not None:
                self.logger.info(f"Validation accuracy: {report.accuracy:.4f}", n=report.n_observations)
        else:
            report = self._continuous(outputs, targets)
            if report.rmse is not None:
                self.logger.info(f"Validation RMSE: {report.rmse:.4f}", n=report.n_observations)

        return report

    @staticmethod
    def _discrete(outputs: np.ndarray, targets: np.ndarray, encoding: OutcomeEncoding) -> EvaluationReport:
        targets = targets.astype(np.int64)
        valid = targets >= 0
        n_levels = encoding.n_levels

        if not valid.any():
            return EvaluationReport(
                mode=encoding.mode,
                n_observations=0,
                confusion=np.zeros((n_levels, n_levels), dtype=np.int64),
                levels=encoding.levels,
            )

        predicted = encoding.predicted_indices(outputs[valid])
        truth = targets[valid]
        return EvaluationReport(
            mode=encoding.mode,
            n_observations=int(valid.sum()),
            accuracy=float(np.mean(predicted == truth)),
            confusion=confusion_matrix(truth, predicted, n_levels),
            levels=encoding.levels,
        )

    @staticmethod
    def _continuous(outputs: np.ndarray, targets: np.ndarray) -> EvaluationReport:
        targets = targets.astype(float)
        predictions = outputs[:, 0]
        valid = ~np.isnan(targets)

        if not valid.any():
            return EvaluationReport(mode=OutcomeMode.CONTINUOUS, n_observations=0)

        errors = predictions[valid] - targets[valid]
        mse = float(np.mean(errors ** 2))
        return EvaluationReport(
            mode=OutcomeMode.CONTINUOUS,
            n_observations=int(valid.sum()),
            mse=mse,
            rmse=float(np.sqrt(mse)),
            mae=float(np.mean(np.abs(errors))),
        )
