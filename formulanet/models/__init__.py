"""
Network specification and artifacts for formulanet.
"""

from .layers import (
    AUTO,
    Activation,
    Loss,
    LayerDescriptor,
    LayerSpec,
    CompiledLayer,
    CompiledArchitecture,
    LayerSpecCompiler,
    compile_layers,
)
from .artifact import TrainingArtifact

__all__ = [
    "AUTO",
    "Activation",
    "Loss",
    "LayerDescriptor",
    "LayerSpec",
    "CompiledLayer",
    "CompiledArchitecture",
    "LayerSpecCompiler",
    "compile_layers",
    "TrainingArtifact",
]
