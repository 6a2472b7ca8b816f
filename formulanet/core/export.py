"""
Core export functionality for formulanet.
Provides tabular summaries of training artifacts for comparison across runs.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..models.artifact import TrainingArtifact
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ArtifactExporter:
    """
    Summarises fitted artifacts as DataFrames.

    Model weights are never written; only formulas, hyperparameters,
    shapes, metrics and histories.
    """

    def __init__(self, decimal_precision: int = 6):
        """
        Args:
            decimal_precision: Number of decimal places for numeric values
        """
        self.decimal_precision = decimal_precision

    def summary_frame(self, artifacts: Sequence[TrainingArtifact]) -> pd.DataFrame:
        """One row per artifact, in the order given."""
        logger.info(f"Summarising {len(artifacts)} artifacts")

        rows = []
        for i, artifact in enumerate(artifacts, 1):
            row = {"model_id": i}
            row.update(artifact.get_summary_stats())
            rows.append(row)

        frame = pd.DataFrame(rows)
        return self._round(frame)

    def history_frame(self, artifact: TrainingArtifact) -> pd.DataFrame:
        """Per-epoch history with a 1-based ``epoch`` column."""
        frame = pd.DataFrame(artifact.history)
        frame.insert(0, "epoch", np.arange(1, len(frame) + 1))
        return self._round(frame)

    def compare(self, artifacts: Sequence[TrainingArtifact]) -> pd.DataFrame:
        """
        Rank artifacts by held-out performance.

        Discrete outcomes are ranked by descending accuracy, continuous ones
        by ascending RMSE; artifacts without the metric are ranked last.
        """
        frame = self.summary_frame(artifacts)
        if frame.empty:
            return frame

        if "accuracy" in frame.columns and frame["accuracy"].notna().any():
            frame = frame.sort_values("accuracy", ascending=False, na_position="last")
        elif "rmse" in frame.columns:
            frame = frame.sort_values("rmse", ascending=True, na_position="last")

        frame = frame.reset_index(drop=True)
        frame.insert(0, "rank", np.arange(1, len(frame) + 1))
        return frame

    def _round(self, frame: pd.DataFrame) -> pd.DataFrame:
        numeric_columns = frame.select_dtypes(include=[np.number]).columns
        frame[numeric_columns] = frame[numeric_columns].round(self.decimal_precision)
        return frame


def export_summary(
    artifacts: Union[TrainingArtifact, Sequence[TrainingArtifact]],
    path: Union[str, Path],
    include_history: bool = False,
    timestamp: bool = False,
    exporter: Optional[ArtifactExporter] = None,
) -> Path:
    """
    Write the artifact summary table to CSV.

    Args:
        artifacts: One artifact or a sequence of artifacts
        path: Output CSV path
        include_history: Also write ``<stem>_history.csv`` with every epoch of every artifact
        timestamp: Append a ``_YYYYmmdd_HHMMSS`` suffix to the file stem
        exporter: Exporter to use (a default one when None)

    Returns:
        Path of the summary file
    """
    if isinstance(artifacts, TrainingArtifact):
        artifacts = [artifacts]
    exporter = exporter or ArtifactExporter()

    path = Path(path)
    if timestamp:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = path.with_name(f"{path.stem}_{stamp}{path.suffix or '.csv'}")
    path.parent.mkdir(parents=True, exist_ok=True)

    exporter.summary_frame(artifacts).to_csv(path, index=False)
    logger.info(f"Summary exported to: {path}")

    if include_history:
        histories: List[pd.DataFrame] = []
        for i, artifact in enumerate(artifacts, 1):
            history = exporter.history_frame(artifact)
            history.insert(0, "model_id", i)
            histories.append(history)
        history_path = path.with_name(f"{path.stem}_history.csv")
        pd.concat(histories, ignore_index=True).to_csv(history_path, index=False)
        logger.info(f"History exported to: {history_path}")

    return path
