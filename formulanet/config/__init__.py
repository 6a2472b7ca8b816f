"""Configuration management for formulanet."""

from .settings import (
    FormulaNetConfig,
    EncodingConfig,
    TrainingConfig,
    ArchitectureConfig,
    LoggingConfig,
    OptimizerName,
    ScalingMethod,
    get_default_config,
    set_default_config,
)

__all__ = [
    "FormulaNetConfig",
    "EncodingConfig",
    "TrainingConfig",
    "ArchitectureConfig",
    "LoggingConfig",
    "OptimizerName",
    "ScalingMethod",
    "get_default_config",
    "set_default_config",
]
