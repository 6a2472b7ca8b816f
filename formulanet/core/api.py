"""
Main API functions for formulanet.

High-level user interface for fitting formula-driven networks and scoring
new records with them.
"""

from typing import Any, Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd

from ..config.settings import FormulaNetConfig, get_default_config
from ..core.exceptions import ConfigurationError
from ..data.records import Records
from ..formulas import DesignMatrixBuilder, FormulaCompiler, OutcomeEncoder
from ..formulas.outcome import OutcomeMode
from ..formulas.parser import FunctionTable
from ..inference.diagnostics import EvaluationReporter
from ..models.artifact import TrainingArtifact
from ..models.layers import LayerSpec, LayerSpecCompiler
from ..optimization.engine import JaxTrainingEngine, TrainingEngine
from ..optimization.orchestrator import HyperParameters, TrainingOrchestrator, check_model_dimensions
from ..utils.logging import get_logger, log_performance

logger = get_logger(__name__)

LayerInput = Union[LayerSpec, Mapping[str, Any]]


def resolve_layers(layers: Optional[LayerInput], config: FormulaNetConfig) -> LayerSpec:
    """
    Normalise a layer argument to a LayerSpec.

    Accepts None (the configured default), a LayerSpec, or a mapping with
    ``units``, ``activation`` and optional ``dropout`` arrays.
    """
    if layers is None:
        return LayerSpec.from_config(config.architecture)
    if isinstance(layers, LayerSpec):
        return layers
    if isinstance(layers, Mapping):
        unknown = set(layers) - {"units", "activation", "dropout"}
        if unknown:
            raise ConfigurationError(
                config_key="layers", reason=f"unexpected keys {sorted(unknown)}"
            )
        if "units" not in layers or "activation" not in layers:
            raise ConfigurationError(config_key="layers", reason="'units' and 'activation' are required")
        return LayerSpec.from_arrays(layers["units"], layers["activation"], layers.get("dropout"))
    raise ConfigurationError(
        config_key="layers", reason=f"expected a LayerSpec or mapping, got {type(layers).__name__}"
    )


def resolve_hyperparameters(
    hyperparameters: Optional[Union[HyperParameters, Mapping[str, Any]]],
    config: FormulaNetConfig,
    overrides: Dict[str, Any],
) -> HyperParameters:
    """Merge explicit hyperparameters and keyword overrides over the configured defaults."""
    if hyperparameters is None:
        return HyperParameters.from_config(config.training, **overrides)

    if isinstance(hyperparameters, HyperParameters):
        values = hyperparameters.model_dump()
    elif isinstance(hyperparameters, Mapping):
        values = HyperParameters.from_config(config.training, **dict(hyperparameters)).model_dump()
    else:
        raise ConfigurationError(
            config_key="hyperparameters",
            reason=f"expected HyperParameters or a mapping, got {type(hyperparameters).__name__}",
        )

    if "Nepochs" in overrides:
        values.pop("epochs", None)
    values.update(overrides)
    return HyperParameters(**values)


@log_performance
def fit_formula(
    formula: str,
    records: Records,
    layers: Optional[LayerInput] = None,
    hyperparameters: Optional[Union[HyperParameters, Mapping[str, Any]]] = None,
    engine: Optional[TrainingEngine] = None,
    model: Any = None,
    functions: Optional[FunctionTable] = None,
    config: Optional[FormulaNetConfig] = None,
    **overrides,
) -> TrainingArtifact:
    """
    Fit a feed-forward network described by a formula.

    Args:
        formula: Formula of the form 'outcome ~ p1 + p2 + ...'
        records: DataFrame, mapping of columns or sequence of row mappings
        layers: Layer specification (configured default when None)
        hyperparameters: HyperParameters or a mapping of their values
        engine: Training engine (JaxTrainingEngine when None)
        model: Caller-built model; bypasses the layer specification
        functions: Extra helper functions usable inside the formula
        config: Configuration (the shared default when None)
        **overrides: Individual hyperparameters, e.g. Nepochs=5, batch_size=16

    Returns:
        TrainingArtifact

    Examples:
        >>> artifact = fit_formula(
        ...     "cut(retweet_count, c(-1, 0, 10, 1000)) ~ followers + source + n(hashtags)",
        ...     tweets,
        ...     Nepochs=10,
        ... )
        >>> artifact.evaluation.accuracy
    """
    config = config or get_default_config()
    engine = engine or JaxTrainingEngine()

    compiler = FormulaCompiler(functions)
    spec = compiler.parse(formula)
    hyperparameters = resolve_hyperparameters(hyperparameters, config, overrides)
    layer_spec = resolve_layers(layers, config) if model is None else None

    evaluated = compiler.evaluate(spec, records)
    design = DesignMatrixBuilder(config.encoding).fit(evaluated)
    encoding = OutcomeEncoder().fit(evaluated.outcome, spec.outcome_expression)
    encoded = encoding.encode(evaluated.outcome)

    orchestrator = TrainingOrchestrator(engine)

    if layer_spec is not None:
        architecture = LayerSpecCompiler(config.architecture).compile(
            layer_spec, design.width, encoding, loss=hyperparameters.loss
        )
        logger.info(f"Fitting '{spec.formula_string}'", width=design.width, output_units=architecture.output_units)
        run = orchestrator.train(design, encoded, encoding, architecture, hyperparameters)
    else:
        if layers is not None:
            logger.warning("Ignoring layer specification because a model was supplied")
        architecture = None
        check_model_dimensions(engine, model, design.width, encoding)
        logger.info(f"Fitting '{spec.formula_string}' with a supplied model", width=design.width)
        run = orchestrator.train_external(model, design, encoded, encoding, hyperparameters)

    report = EvaluationReporter().evaluate(run.validation_outputs, run.validation_targets, encoding)

    return TrainingArtifact(
        formula_spec=spec,
        design_schema=design.schema,
        encoding=encoding,
        architecture=architecture,
        model=run.model,
        history=run.history,
        hyperparameters=hyperparameters,
        evaluation=report,
        validation_rows=run.validation_rows,
        validation_outputs=run.validation_outputs,
        n_records=design.n_rows,
        n_train=run.n_train,
        engine_name=run.engine_name,
        fit_time=run.fit_time,
        metadata={"excluded_rows": int(len(run.excluded_rows))},
        registry=compiler.registry,
        engine=engine,
    )


@log_performance
def predict(
    artifact: TrainingArtifact,
    records: Records,
    engine: Optional[TrainingEngine] = None,
    config: Optional[FormulaNetConfig] = None,
) -> pd.DataFrame:
    """
    Score new records with a fitted artifact.

    Records are re-encoded with the artifact's stored design schema; the
    outcome expression is not evaluated, so new records need no outcome field.

    Returns:
        DataFrame with a ``prediction`` column, plus ``probability_<level>``
        columns for discrete outcomes
    """
    config = config or get_default_config()
    engine = engine or artifact.engine or JaxTrainingEngine()

    compiler = FormulaCompiler(artifact.registry)
    evaluated = compiler.evaluate(artifact.formula_spec, records, include_outcome=False)
    design = DesignMatrixBuilder(config.encoding).transform(evaluated, artifact.design_schema)

    outputs = np.asarray(engine.predict(artifact.model, design.values), dtype=float)
    if outputs.ndim == 1:
        outputs = outputs.reshape(-1, 1)

    encoding = artifact.encoding
    if not encoding.is_discrete:
        return pd.DataFrame({"prediction": outputs[:, 0]})

    if encoding.mode == OutcomeMode.BINARY:
        probabilities = np.column_stack([1.0 - outputs[:, 0], outputs[:, 0]])
    else:
        probabilities = outputs

    frame = pd.DataFrame({"prediction": encoding.decode(encoding.predicted_indices(outputs))})
    for i, level in enumerate(encoding.levels):
        frame[f"probability_{level}"] = probabilities[:, i]
    return frame
