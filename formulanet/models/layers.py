"""
Layer specifications and their compilation into concrete architectures.

A LayerSpec is an ordered sequence of layer descriptors whose final entry
has ``units='auto'``; compiling binds the first layer to the design matrix
width and resolves the auto layer from the outcome encoding.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..config.settings import ArchitectureConfig, get_default_config
from ..core.exceptions import LayerSpecError
from ..formulas.outcome import OutcomeEncoding, OutcomeMode
from ..utils.logging import get_logger


logger = get_logger(__name__)

AUTO = "auto"


class Activation(str, Enum):
    """Supported layer activations."""

    RELU = "relu"
    ELU = "elu"
    SELU = "selu"
    LINEAR = "linear"
    SIGMOID = "sigmoid"
    SOFTMAX = "softmax"
    TANH = "tanh"
    SOFTPLUS = "softplus"
    GELU = "gelu"


class Loss(str, Enum):
    """Supported training losses."""

    MSE = "mse"
    MAE = "mae"
    BINARY_CROSSENTROPY = "binary_crossentropy"
    CATEGORICAL_CROSSENTROPY = "categorical_crossentropy"


def _parse_activation(value: Any, index: int) -> Activation:
    try:
        return Activation(str(value).strip().lower())
    except ValueError:
        raise LayerSpecError(
            reason=(
                f"unknown activation '{value}'; choose from "
                f"{', '.join(a.value for a in Activation)}"
            ),
            layer_index=index,
        )


def _parse_units(value: Any, index: int) -> Union[int, str]:
    if isinstance(value, str):
        if value.strip().lower() == AUTO:
            return AUTO
        raise LayerSpecError(reason=f"units must be a positive integer or 'auto', got '{value}'",
                             layer_index=index)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise LayerSpecError(reason=f"units must be a positive integer or 'auto', got {value!r}",
                             layer_index=index)
    if isinstance(value, float) and not value.is_integer():
        raise LayerSpecError(reason=f"units must be a whole number, got {value}", layer_index=index)
    if value <= 0:
        raise LayerSpecError(reason=f"units must be positive, got {value}", layer_index=index)
    return int(value)


def _parse_dropout(value: Any, index: int) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, str):
        if value.strip().lower() in ("none", "na", ""):
            return None
        raise LayerSpecError(reason=f"dropout must be a number or None, got '{value}'", layer_index=index)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise LayerSpecError(reason=f"dropout must be a number or None, got {value!r}", layer_index=index)
    if math.isnan(value):
        return None
    if not 0 <= value < 1:
        raise LayerSpecError(reason=f"dropout must lie in [0, 1), got {value}", layer_index=index)
    return float(value)


@dataclass(frozen=True)
class LayerDescriptor:
    """One declared layer: unit count (or 'auto'), activation and dropout."""

    units: Union[int, str]
    activation: Activation
    dropout: Optional[float] = None

    @property
    def is_auto(self) -> bool:
        return self.units == AUTO

    @classmethod
    def create(cls, units: Any, activation: Any, dropout: Any = None, index: int = 0) -> "LayerDescriptor":
        return cls(
            units=_parse_units(units, index),
            activation=_parse_activation(activation, index),
            dropout=_parse_dropout(dropout, index),
        )


@dataclass(frozen=True)
class LayerSpec:
    """
    Ordered, validated sequence of layer descriptors.

    Invariants: exactly one layer has units='auto' and it is the last one;
    the last layer has no dropout.
    """

    layers: Tuple[LayerDescriptor, ...]
    adapt_output_activation: bool = False

    def __post_init__(self):
        if not self.layers:
            raise LayerSpecError(reason="at least one layer is required")

        auto_positions = [i for i, layer in enumerate(self.layers) if layer.is_auto]
        last = len(self.layers) - 1

        if not auto_positions:
            final = self.layers[last]
            raise LayerSpecError(
                reason=(
                    f"the final layer declares a fixed size of {final.units} units; "
                    "the output layer must use units='auto' so its size follows the outcome"
                ),
                layer_index=last,
            )
        if len(auto_positions) > 1:
            raise LayerSpecError(
                reason=f"only one layer may use units='auto', found {len(auto_positions)}",
                layer_index=auto_positions[1],
            )
        if auto_positions[0] != last:
            raise LayerSpecError(
                reason="units='auto' is only allowed on the final layer",
                layer_index=auto_positions[0],
            )
        if self.layers[last].dropout is not None:
            raise LayerSpecError(reason="dropout is not allowed on the output layer", layer_index=last)

    @classmethod
    def from_arrays(
        cls,
        units: Sequence[Any],
        activation: Sequence[Any],
        dropout: Optional[Sequence[Any]] = None,
        adapt_output_activation: bool = False,
    ) -> "LayerSpec":
        """
        Build a LayerSpec from parallel arrays.

        Examples:
            LayerSpec.from_arrays([256, 128, "auto"], ["relu", "relu", "softmax"], [0.4, 0.3, None])
        """
        units = list(units)
        activation = list(activation)
        dropout = [None] * len(units) if dropout is None else list(dropout)

        if not (len(units) == len(activation) == len(dropout)):
            raise LayerSpecError(
                reason=(
                    f"units ({len(units)}), activation ({len(activation)}) and "
                    f"dropout ({len(dropout)}) must have the same length"
                )
            )

        layers = tuple(
            LayerDescriptor.create(u, a, d, index=i)
            for i, (u, a, d) in enumerate(zip(units, activation, dropout))
        )
        return cls(layers=layers, adapt_output_activation=adapt_output_activation)

    @classmethod
    def from_config(cls, config: Optional[ArchitectureConfig] = None) -> "LayerSpec":
        """Built-in default spec; its output activation follows the outcome mode."""
        config = config or get_default_config().architecture
        return cls.from_arrays(
            config.units, config.activation, config.dropout, adapt_output_activation=True
        )

    def to_arrays(self) -> Dict[str, List[Any]]:
        return {
            "units": [layer.units for layer in self.layers],
            "activation": [layer.activation.value for layer in self.layers],
            "dropout": [layer.dropout for layer in self.layers],
        }

    def __len__(self) -> int:
        return len(self.layers)


@dataclass(frozen=True)
class CompiledLayer:
    """Concrete dense layer."""

    input_width: int
    units: int
    activation: Activation
    dropout: Optional[float] = None

    @property
    def n_parameters(self) -> int:
        return self.input_width * self.units + self.units


@dataclass(frozen=True)
class CompiledArchitecture:
    """Shape-consistent layer stack; a pure description with no execution state."""

    input_width: int
    layers: Tuple[CompiledLayer, ...]
    loss: Loss
    outcome_mode: OutcomeMode

    @property
    def output_units(self) -> int:
        return self.layers[-1].units

    @property
    def output_activation(self) -> Activation:
        return self.layers[-1].activation

    @property
    def n_parameters(self) -> int:
        return sum(layer.n_parameters for layer in self.layers)

    def summary(self) -> str:
        lines = [f"Input: {self.input_width} columns"]
        for i, layer in enumerate(self.layers):
            dropout = f", dropout={layer.dropout}" if layer.dropout else ""
            lines.append(
                f"Dense {i}: {layer.input_width} -> {layer.units} "
                f"({layer.activation.value}{dropout}) params={layer.n_parameters}"
            )
        lines.append(f"Loss: {self.loss.value}; trainable params: {self.n_parameters}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_width": self.input_width,
            "layers": [
                {"units": l.units, "activation": l.activation.value, "dropout": l.dropout}
                for l in self.layers
            ],
            "loss": self.loss.value,
            "outcome_mode": self.outcome_mode.value,
            "n_parameters": self.n_parameters,
        }


class LayerSpecCompiler:
    """Validates and resolves a LayerSpec against a design width and an outcome encoding."""

    def __init__(self, config: Optional[ArchitectureConfig] = None):
        self.config = config
        self.logger = get_logger(self.__class__.__name__)

    def default_spec(self) -> LayerSpec:
        return LayerSpec.from_config(self.config)

    def compile(
        self,
        spec: Optional[LayerSpec],
        input_width: int,
        encoding: OutcomeEncoding,
        loss: Optional[Union[str, Loss]] = None,
    ) -> CompiledArchitecture:
        """
        Resolve a LayerSpec into a CompiledArchitecture.

        Args:
            spec: Layer specification (the built-in default when None)
            input_width: Design matrix column count
            encoding: Fitted outcome encoding
            loss: Optional loss override

        Raises:
            LayerSpecError: If the spec cannot be resolved
        """
        spec = spec or self.default_spec()

        if isinstance(input_width, bool) or not isinstance(input_width, int) or input_width < 1:
            raise LayerSpecError(reason=f"input width must be a positive integer, got {input_width!r}")

        output_units = encoding.output_units
        compiled: List[CompiledLayer] = []
        width = input_width
        last = len(spec.layers) - 1

        for i, layer in enumerate(spec.layers):
            units = output_units if layer.is_auto else layer.units
            activation = layer.activation
            if i == last:
                activation = self._output_activation(spec, activation, encoding)
            compiled.append(CompiledLayer(width, units, activation, layer.dropout))
            width = units

        architecture = CompiledArchitecture(
            input_width=input_width,
            layers=tuple(compiled),
            loss=self._resolve_loss(loss, encoding),
            outcome_mode=encoding.mode,
        )

        self.logger.debug(
            f"Compiled architecture with {len(compiled)} layers",
            input_width=input_width,
            output_units=output_units,
        )
        return architecture

    def _output_activation(
        self, spec: LayerSpec, declared: Activation, encoding: OutcomeEncoding
    ) -> Activation:
        if spec.adapt_output_activation:
            return Activation(encoding.default_output_activation)
        if declared == Activation.SOFTMAX and encoding.output_units == 1:
            self.logger.warning(
                "softmax over a single output unit is constant; using sigmoid",
                outcome_mode=encoding.mode.value,
            )
            return Activation.SIGMOID
        return declared

    @staticmethod
    def _resolve_loss(loss: Optional[Union[str, Loss]], encoding: OutcomeEncoding) -> Loss:
        if loss is None:
            return Loss(encoding.default_loss)
        try:
            resolved = Loss(str(loss.value if isinstance(loss, Loss) else loss).lower())
        except ValueError:
            raise LayerSpecError(
                reason=f"unknown loss '{loss}'; choose from {', '.join(l.value for l in Loss)}"
            )
        if resolved == Loss.CATEGORICAL_CROSSENTROPY and encoding.mode != OutcomeMode.MULTICLASS:
            raise LayerSpecError(reason="categorical_crossentropy needs a multi-class outcome")
        if resolved == Loss.BINARY_CROSSENTROPY and encoding.mode != OutcomeMode.BINARY:
            raise LayerSpecError(reason="binary_crossentropy needs a binary outcome")
        return resolved


def compile_layers(
    units: Sequence[Any],
    activation: Sequence[Any],
    dropout: Optional[Sequence[Any]],
    input_width: int,
    encoding: OutcomeEncoding,
    loss: Optional[str] = None,
) -> CompiledArchitecture:
    """Convenience: build a LayerSpec from parallel arrays and compile it."""
    spec = LayerSpec.from_arrays(units, activation, dropout)
    return LayerSpecCompiler().compile(spec, input_width, encoding, loss)
