"""
Training artifacts for formulanet.

A TrainingArtifact bundles everything one fit produced, including the
design schema and outcome encoding needed to score new records.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np

from .layers import CompiledArchitecture
from ..formulas.design_matrix import DesignSchema
from ..formulas.functions import FunctionRegistry
from ..formulas.outcome import OutcomeEncoding
from ..formulas.spec import FormulaSpec

if TYPE_CHECKING:
    from ..inference.diagnostics import EvaluationReport
    from ..optimization.orchestrator import HyperParameters


@dataclass(frozen=True, eq=False)
class TrainingArtifact:
    """Result of fitting a formula-driven network."""

    formula_spec: FormulaSpec
    design_schema: DesignSchema
    encoding: OutcomeEncoding
    architecture: Optional[CompiledArchitecture]
    model: Any
    history: Dict[str, List[float]]
    hyperparameters: "HyperParameters"
    evaluation: "EvaluationReport"
    validation_rows: np.ndarray = field(repr=False)
    validation_outputs: np.ndarray = field(repr=False)
    n_records: int = 0
    n_train: int = 0
    engine_name: str = ""
    fit_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    registry: Optional[FunctionRegistry] = field(default=None, repr=False, compare=False)
    engine: Any = field(default=None, repr=False, compare=False)

    @property
    def formula(self) -> str:
        return self.formula_spec.formula_string

    @property
    def design_width(self) -> int:
        return self.design_schema.width

    @property
    def output_units(self) -> int:
        return self.encoding.output_units

    @property
    def epochs_run(self) -> int:
        return len(self.history.get("loss", []))

    def validation_predictions(self) -> List[Any]:
        """Held-out predictions, decoded to outcome labels when discrete."""
        if self.encoding.is_discrete:
            return self.encoding.decode(self.encoding.predicted_indices(self.validation_outputs))
        return [float(v) for v in np.asarray(self.validation_outputs).reshape(-1)]

    def get_summary_stats(self) -> Dict[str, Any]:
        """Flat summary used by exports."""
        stats: Dict[str, Any] = {
            "formula": self.formula,
            "outcome_mode": self.encoding.mode.value,
            "n_records": self.n_records,
            "n_train": self.n_train,
            "n_validation": len(self.validation_rows),
            "design_width": self.design_width,
            "output_units": self.output_units,
            "epochs": self.epochs_run,
            "batch_size": self.hyperparameters.batch_size,
            "optimizer": self.hyperparameters.to_dict()["optimizer"],
        }
        stats.update(self.evaluation.get_summary())
        stats.pop("mode", None)
        for name, values in self.history.items():
            if values:
                stats[f"final_{name}"] = values[-1]
        return stats

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly summary; the engine model itself is not included."""
        return {
            "formula": self.formula_spec.to_dict(),
            "design_schema": self.design_schema.to_dict(),
            "encoding": self.encoding.to_dict(),
            "architecture": self.architecture.to_dict() if self.architecture else None,
            "hyperparameters": self.hyperparameters.to_dict(),
            "history": {name: list(values) for name, values in self.history.items()},
            "evaluation": self.evaluation.to_dict(),
            "validation_rows": [int(i) for i in self.validation_rows],
            "n_records": self.n_records,
            "engine": self.engine_name,
            "fit_time": self.fit_time,
            "metadata": dict(self.metadata),
        }
