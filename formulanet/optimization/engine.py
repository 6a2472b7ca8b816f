"""
Training engines for formulanet.

The orchestrator talks to an engine through three calls (build, fit,
predict). JaxTrainingEngine runs dense feed-forward networks with JAX and
optax; tests and callers with their own runtime can supply any other
TrainingEngine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np
import optax

from ..config.settings import OptimizerName
from ..core.exceptions import ConfigurationError
from ..models.layers import Activation, CompiledArchitecture, Loss
from ..formulas.outcome import OutcomeMode
from ..utils.logging import get_logger
from ..utils.validation import validate_array_dimensions, validate_row_alignment

if TYPE_CHECKING:
    from .orchestrator import HyperParameters


logger = get_logger(__name__)

History = Dict[str, List[float]]

_EPSILON = 1e-7

ACTIVATIONS: Dict[Activation, Callable] = {
    Activation.RELU: jax.nn.relu,
    Activation.ELU: jax.nn.elu,
    Activation.SELU: jax.nn.selu,
    Activation.LINEAR: lambda x: x,
    Activation.SIGMOID: jax.nn.sigmoid,
    Activation.SOFTMAX: partial(jax.nn.softmax, axis=-1),
    Activation.TANH: jnp.tanh,
    Activation.SOFTPLUS: jax.nn.softplus,
    Activation.GELU: jax.nn.gelu,
}

# Per-optimizer default learning rates.
DEFAULT_LEARNING_RATES: Dict[OptimizerName, float] = {
    OptimizerName.ADAM: 0.001,
    OptimizerName.RMS_PROP: 0.001,
    OptimizerName.SGD: 0.01,
    OptimizerName.ADAGRAD: 0.001,
    OptimizerName.ADAMAX: 0.001,
    OptimizerName.NADAM: 0.001,
}


def create_optimizer(name: Any, learning_rate: Optional[float] = None) -> optax.GradientTransformation:
    """Map an optimizer name onto its optax transformation."""
    try:
        name = OptimizerName(name)
    except ValueError:
        raise ConfigurationError(
            config_key="optimizer",
            reason=f"unknown optimizer '{name}'; choose from {', '.join(o.value for o in OptimizerName)}",
        )
    rate = learning_rate if learning_rate is not None else DEFAULT_LEARNING_RATES[name]

    factories = {
        OptimizerName.ADAM: optax.adam,
        OptimizerName.RMS_PROP: optax.rmsprop,
        OptimizerName.SGD: optax.sgd,
        OptimizerName.ADAGRAD: optax.adagrad,
        OptimizerName.ADAMAX: optax.adamax,
        OptimizerName.NADAM: optax.nadam,
    }
    return factories[name](learning_rate=rate)


def loss_function(loss: Loss) -> Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]:
    """Mean loss between network outputs and targets."""
    loss = Loss(loss)

    if loss == Loss.MSE:
        return lambda outputs, targets: jnp.mean((outputs - targets) ** 2)

    if loss == Loss.MAE:
        return lambda outputs, targets: jnp.mean(jnp.abs(outputs - targets))

    if loss == Loss.BINARY_CROSSENTROPY:
        def binary_crossentropy(outputs, targets):
            p = jnp.clip(outputs, _EPSILON, 1 - _EPSILON)
            return -jnp.mean(targets * jnp.log(p) + (1 - targets) * jnp.log(1 - p))
        return binary_crossentropy

    def categorical_crossentropy(outputs, targets):
        p = jnp.clip(outputs, _EPSILON, 1.0)
        return -jnp.mean(jnp.sum(targets * jnp.log(p), axis=-1))
    return categorical_crossentropy


def metric_function(mode: OutcomeMode) -> Tuple[str, Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]]:
    """Secondary metric tracked in the history: accuracy (discrete) or mae."""
    mode = OutcomeMode(mode)

    if mode == OutcomeMode.BINARY:
        return "accuracy", lambda outputs, targets: jnp.mean((outputs >= 0.5) == (targets >= 0.5))
    if mode == OutcomeMode.MULTICLASS:
        return "accuracy", lambda outputs, targets: jnp.mean(
            jnp.argmax(outputs, axis=-1) == jnp.argmax(targets, axis=-1)
        )
    return "mae", lambda outputs, targets: jnp.mean(jnp.abs(outputs - targets))


def glorot_uniform(key: jax.Array, fan_in: int, fan_out: int) -> jnp.ndarray:
    limit = np.sqrt(6.0 / (fan_in + fan_out))
    return jax.random.uniform(key, (fan_in, fan_out), minval=-limit, maxval=limit, dtype=jnp.float32)


@dataclass
class JaxModel:
    """Dense network state owned by JaxTrainingEngine."""

    architecture: CompiledArchitecture
    params: List[Tuple[jnp.ndarray, jnp.ndarray]]
    seed: int = 0
    epochs_trained: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def input_width(self) -> int:
        return self.architecture.input_width

    @property
    def output_units(self) -> int:
        return self.architecture.output_units

    @property
    def n_parameters(self) -> int:
        return int(sum(w.size + b.size for w, b in self.params))


class TrainingEngine(ABC):
    """Interface between the orchestrator and a neural-network runtime."""

    name: str = "engine"

    @abstractmethod
    def build(self, architecture: CompiledArchitecture, seed: Optional[int] = None) -> Any:
        """Instantiate an untrained model for a compiled architecture."""

    @abstractmethod
    def fit(
        self,
        model: Any,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
        hyperparameters: "HyperParameters",
    ) -> History:
        """Train in place and return the per-epoch history."""

    @abstractmethod
    def predict(self, model: Any, X: np.ndarray) -> np.ndarray:
        """Raw network outputs shaped (n_rows, output_units)."""

    def input_width(self, model: Any) -> Optional[int]:
        """Declared input width of a model, or None if it cannot be determined."""
        width = getattr(model, "input_width", None)
        if width is None:
            shape = getattr(model, "input_shape", None)
            if shape:
                width = shape[-1]
        return int(width) if width is not None else None


class JaxTrainingEngine(TrainingEngine):
    """
    Feed-forward network trainer built on JAX and optax.

    Features:
    - Glorot-uniform weights and zero biases
    - Dropout after each hidden layer that declares it (training only)
    - Seeded mini-batch shuffling, one jitted update per batch
    """

    name = "jax"

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def build(self, architecture: CompiledArchitecture, seed: Optional[int] = None) -> JaxModel:
        seed = _resolve_seed(seed)
        key = jax.random.PRNGKey(seed)

        params = []
        for layer in architecture.layers:
            key, subkey = jax.random.split(key)
            weights = glorot_uniform(subkey, layer.input_width, layer.units)
            bias = jnp.zeros((layer.units,), dtype=jnp.float32)
            params.append((weights, bias))

        model = JaxModel(architecture=architecture, params=params, seed=seed)
        self.logger.debug(
            "Built dense network", layers=len(params), parameters=model.n_parameters, seed=seed
        )
        return model

    def fit(
        self,
        model: JaxModel,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
        hyperparameters: "HyperParameters",
    ) -> History:
        architecture = model.architecture
        X = np.asarray(X, dtype=np.float32)
        validate_array_dimensions(X, (None, model.input_width), "X")
        y = np.asarray(y, dtype=np.float32).reshape(-1, model.output_units)
        X_val = np.asarray(X_val, dtype=np.float32).reshape(-1, model.input_width)
        y_val = np.asarray(y_val, dtype=np.float32).reshape(-1, model.output_units)
        validate_row_alignment(len(X), y, names=("y",))

        if len(X) == 0:
            raise ValueError("no training rows")

        forward = _forward_fn(architecture)
        loss_fn = loss_function(architecture.loss)
        metric_name, metric_fn = metric_function(architecture.outcome_mode)
        optimizer = create_optimizer(hyperparameters.optimizer, hyperparameters.learning_rate)

        def objective(params, xb, yb, key):
            outputs = forward(params, xb, key, True)
            return loss_fn(outputs, yb), outputs

        @jax.jit
        def update_step(params, opt_state, xb, yb, key):
            (loss, outputs), grads = jax.value_and_grad(objective, has_aux=True)(params, xb, yb, key)
            updates, opt_state = optimizer.update(grads, opt_state, params)
            params = optax.apply_updates(params, updates)
            return params, opt_state, loss, metric_fn(outputs, yb)

        @jax.jit
        def evaluate(params, xb, yb):
            outputs = forward(params, xb, None, False)
            return loss_fn(outputs, yb), metric_fn(outputs, yb)

        seed = _resolve_seed(hyperparameters.seed if hyperparameters.seed is not None else model.seed)
        rng = np.random.default_rng(seed)
        key = jax.random.PRNGKey(seed)

        params = model.params
        opt_state = optimizer.init(params)
        batch_size = hyperparameters.batch_size
        n_rows = len(X)

        history: History = {"loss": [], metric_name: []}
        if len(X_val):
            history["val_loss"] = []
            history[f"val_{metric_name}"] = []

        for epoch in range(hyperparameters.epochs):
            order = rng.permutation(n_rows)
            total_loss, total_metric = 0.0, 0.0

            for start in range(0, n_rows, batch_size):
                batch = order[start:start + batch_size]
                key, subkey = jax.random.split(key)
                params, opt_state, loss, metric = update_step(
                    params, opt_state, X[batch], y[batch], subkey
                )
                total_loss += float(loss) * len(batch)
                total_metric += float(metric) * len(batch)

            history["loss"].append(total_loss / n_rows)
            history[metric_name].append(total_metric / n_rows)

            if len(X_val):
                val_loss, val_metric = evaluate(params, X_val, y_val)
                history["val_loss"].append(float(val_loss))
                history[f"val_{metric_name}"].append(float(val_metric))

            if not np.isfinite(history["loss"][-1]):
                self.logger.warning("Non-finite training loss", epoch=epoch + 1)

            self.logger.debug(
                f"Epoch {epoch + 1}/{hyperparameters.epochs}",
                loss=f"{history['loss'][-1]:.4f}",
                **{metric_name: f"{history[metric_name][-1]:.4f}"},
            )

        model.params = params
        model.epochs_trained += hyperparameters.epochs
        return history

    def predict(self, model: JaxModel, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float32)
        if X.size == 0:
            return np.zeros((len(X), model.output_units), dtype=np.float32)
        validate_array_dimensions(X, (None, model.input_width), "X")
        forward = _forward_fn(model.architecture)
        return np.asarray(forward(model.params, jnp.asarray(X), None, False), dtype=np.float32)


def _forward_fn(architecture: CompiledArchitecture) -> Callable:
    """Forward pass closed over the (static) layer stack."""
    activations = [ACTIVATIONS[layer.activation] for layer in architecture.layers]
    rates = [layer.dropout or 0.0 for layer in architecture.layers]

    def forward(params, X, key, training):
        hidden = X
        for (weights, bias), activation, rate in zip(params, activations, rates):
            hidden = activation(hidden @ weights + bias)
            if training and rate > 0:
                key, subkey = jax.random.split(key)
                keep = jax.random.bernoulli(subkey, 1.0 - rate, hidden.shape)
                hidden = jnp.where(keep, hidden / (1.0 - rate), 0.0)
        return hidden

    return forward


def _resolve_seed(seed: Optional[int]) -> int:
    if seed is None:
        return int(np.random.default_rng().integers(0, 2**31 - 1))
    return int(seed)
