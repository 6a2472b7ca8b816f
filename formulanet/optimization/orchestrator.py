"""
Training orchestration for formulanet.

Coordinates one training run:
- exclusion of rows without a usable outcome
- seeded train/validation split over row positions
- model construction and fitting through a TrainingEngine
- held-out predictions for evaluation

Engine failures propagate unchanged, tagged with the stage they came from.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .engine import History, JaxTrainingEngine, TrainingEngine
from ..config.settings import OptimizerName, TrainingConfig, get_default_config
from ..core.exceptions import ConfigurationError, DimensionMismatchError, ExpressionEvaluationError
from ..data.sampling import train_validation_split
from ..formulas.design_matrix import DesignMatrix
from ..formulas.outcome import OutcomeEncoding
from ..models.layers import CompiledArchitecture, Loss
from ..utils.logging import get_logger
from ..utils.validation import validate_row_alignment


logger = get_logger(__name__)

TRAINING_STAGE = "training"


class HyperParameters(BaseModel):
    """
    Training hyperparameters.

    ``Nepochs`` is accepted as an alias of ``epochs``. Invalid values raise
    ConfigurationError rather than a pydantic ValidationError.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    validation_split: float = 0.2
    epochs: int = Field(default=15, alias="Nepochs")
    batch_size: int = 32
    optimizer: OptimizerName = OptimizerName.ADAM
    learning_rate: Optional[float] = None
    loss: Optional[Loss] = None
    seed: Optional[int] = None

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            error = exc.errors()[0]
            key = ".".join(str(part) for part in error["loc"]) or None
            raise ConfigurationError(config_key=key, reason=error["msg"]) from exc

    @field_validator("validation_split")
    @classmethod
    def validate_validation_split(cls, v):
        if not 0 < v < 1:
            raise ValueError("validation_split must lie strictly between 0 and 1")
        return v

    @field_validator("epochs", "batch_size")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("learning_rate")
    @classmethod
    def validate_learning_rate(cls, v):
        if v is not None and not v > 0:
            raise ValueError("learning_rate must be positive")
        return v

    @field_validator("optimizer", mode="before")
    @classmethod
    def normalize_optimizer(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return "rms_prop" if v == "rmsprop" else v
        return v

    @classmethod
    def from_config(cls, config: Optional[TrainingConfig] = None, **overrides) -> "HyperParameters":
        """Defaults from the training configuration, then overrides."""
        config = config or get_default_config().training
        values: Dict[str, Any] = config.model_dump()
        if "Nepochs" in overrides:
            values.pop("epochs", None)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class TrainingRun:
    """Outcome of one orchestrated training run."""

    model: Any
    history: History
    train_rows: np.ndarray
    validation_rows: np.ndarray
    validation_outputs: np.ndarray
    validation_targets: np.ndarray
    excluded_rows: np.ndarray = field(default_factory=lambda: np.array([], dtype=np.int64))
    engine_name: str = ""
    fit_time: float = 0.0

    @property
    def n_train(self) -> int:
        return len(self.train_rows)

    @property
    def n_validation(self) -> int:
        return len(self.validation_rows)

    def final_metrics(self) -> Dict[str, float]:
        """Last-epoch value of every history series."""
        return {name: values[-1] for name, values in self.history.items() if values}


@contextmanager
def engine_stage(stage: str = TRAINING_STAGE):
    """Tag and log exceptions escaping an engine call, then re-raise them as-is."""
    try:
        yield
    except Exception as exc:
        if getattr(exc, "formulanet_stage", None) is None:
            try:
                exc.formulanet_stage = stage
            except AttributeError:
                logger.debug("Exception type does not accept attributes", type=type(exc).__name__)
        logger.error(f"Engine failed during {stage}: {type(exc).__name__}: {exc}")
        raise


class TrainingOrchestrator:
    """
    Runs training for a compiled architecture, or for a caller-supplied model.

    The orchestrator owns no model state between calls; everything a run
    produces is returned in its TrainingRun.
    """

    def __init__(self, engine: Optional[TrainingEngine] = None):
        self.engine = engine or JaxTrainingEngine()
        self.logger = get_logger(self.__class__.__name__)

    def train(
        self,
        design: Union[DesignMatrix, np.ndarray],
        outcome: np.ndarray,
        encoding: OutcomeEncoding,
        architecture: CompiledArchitecture,
        hyperparameters: Optional[HyperParameters] = None,
    ) -> TrainingRun:
        """
        Build a model from a compiled architecture and train it.

        Args:
            design: Design matrix (one row per record)
            outcome: Encoded outcome (class indices, or floats when continuous)
            encoding: Outcome encoding used to build targets
            architecture: Compiled layer stack
            hyperparameters: Training hyperparameters (configuration defaults when None)

        Returns:
            TrainingRun
        """
        hyperparameters = hyperparameters or HyperParameters.from_config()
        X = self._design_values(design)

        if architecture.input_width != X.shape[1]:
            raise DimensionMismatchError(expected_width=architecture.input_width, actual_width=X.shape[1])

        with engine_stage():
            model = self.engine.build(architecture, seed=hyperparameters.seed)

        return self._fit(model, X, outcome, encoding, hyperparameters)

    def train_external(
        self,
        model: Any,
        design: Union[DesignMatrix, np.ndarray],
        outcome: np.ndarray,
        encoding: OutcomeEncoding,
        hyperparameters: Optional[HyperParameters] = None,
    ) -> TrainingRun:
        """
        Train a caller-supplied model; no layer specification is compiled.

        Raises:
            DimensionMismatchError: If the model's input width differs from the design width
        """
        hyperparameters = hyperparameters or HyperParameters.from_config()
        X = self._design_values(design)

        check_model_dimensions(self.engine, model, X.shape[1], encoding)
        return self._fit(model, X, outcome, encoding, hyperparameters)

    def _fit(
        self,
        model: Any,
        X: np.ndarray,
        outcome: np.ndarray,
        encoding: OutcomeEncoding,
        hyperparameters: HyperParameters,
    ) -> TrainingRun:
        outcome = np.asarray(outcome)
        validate_row_alignment(len(X), outcome, names=("outcome",))

        valid = encoding.valid_mask(outcome)
        rows = np.flatnonzero(valid)
        excluded = np.flatnonzero(~valid)
        if len(excluded):
            self.logger.warning(
                f"Excluding {len(excluded)} records with a missing outcome from training",
                outcome=encoding.source,
            )
        if len(rows) < 2:
            raise ExpressionEvaluationError(
                encoding.source,
                reason=f"only {len(rows)} record(s) have a usable outcome; at least 2 are required",
            )

        stratify = outcome[rows] if encoding.is_discrete else None
        train_rows, val_rows = train_validation_split(
            rows,
            validation_size=hyperparameters.validation_split,
            stratify=stratify,
            random_state=hyperparameters.seed,
        )

        targets = encoding.targets(outcome)

        self.logger.info(
            f"Training with {self.engine.name} engine",
            train=len(train_rows),
            validation=len(val_rows),
            epochs=hyperparameters.epochs,
            batch_size=hyperparameters.batch_size,
            optimizer=OptimizerName(hyperparameters.optimizer).value,
        )

        start_time = time.time()
        with engine_stage():
            history = self.engine.fit(
                model,
                X[train_rows],
                targets[train_rows],
                X[val_rows],
                targets[val_rows],
                hyperparameters,
            )
            validation_outputs = np.asarray(self.engine.predict(model, X[val_rows]))
        fit_time = time.time() - start_time

        history = {name: [float(v) for v in values] for name, values in dict(history).items()}
        if "loss" in history and history["loss"]:
            self.logger.info(
                f"Training finished in {fit_time:.2f}s", final_loss=f"{history['loss'][-1]:.4f}"
            )

        return TrainingRun(
            model=model,
            history=history,
            train_rows=train_rows,
            validation_rows=val_rows,
            validation_outputs=validation_outputs,
            validation_targets=outcome[val_rows],
            excluded_rows=excluded,
            engine_name=self.engine.name,
            fit_time=fit_time,
        )

    @staticmethod
    def _design_values(design: Union[DesignMatrix, np.ndarray]) -> np.ndarray:
        values = design.values if isinstance(design, DesignMatrix) else np.asarray(design, dtype=np.float32)
        if values.ndim != 2:
            raise DimensionMismatchError(reason=f"design matrix must be 2-dimensional, got {values.ndim}")
        return values


def check_model_dimensions(
    engine: TrainingEngine, model: Any, design_width: int, encoding: Optional[OutcomeEncoding] = None
) -> None:
    """
    Check a caller-supplied model against the design matrix width.

    Raises:
        DimensionMismatchError: If the widths differ or the input width is unknown
    """
    width = engine.input_width(model)
    if width is None:
        raise DimensionMismatchError(
            reason=f"cannot determine the input width of {type(model).__name__}; "
            f"the design matrix has {design_width} columns"
        )
    if width != design_width:
        raise DimensionMismatchError(expected_width=width, actual_width=design_width)

    output_units = getattr(model, "output_units", None)
    if encoding is not None and output_units is not None and output_units != encoding.output_units:
        raise DimensionMismatchError(
            reason=(
                f"model produces {output_units} outputs but the outcome "
                f"'{encoding.source}' needs {encoding.output_units}"
            )
        )
