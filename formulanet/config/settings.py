"""
Configuration management system for formulanet.

Provides a hierarchical configuration system with support for
file-based configuration, environment variables, and runtime updates.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class OptimizerName(str, Enum):
    """Optimizers understood by the training engines."""
    ADAM = "adam"
    RMS_PROP = "rms_prop"
    SGD = "sgd"
    ADAGRAD = "adagrad"
    ADAMAX = "adamax"
    NADAM = "nadam"


class ScalingMethod(str, Enum):
    """Scaling applied to continuous design matrix columns."""
    NONE = "none"
    ZERO_ONE = "zero_one"
    Z = "z"


class EncodingConfig(BaseModel):
    """Design matrix and outcome encoding configuration."""
    scale_continuous: ScalingMethod = ScalingMethod.NONE
    drop_constant_columns: bool = True
    warn_unseen_levels: bool = True
    column_separator: str = "_"


class TrainingConfig(BaseModel):
    """Default hyperparameters used when a call does not override them."""
    validation_split: float = 0.2
    epochs: int = 15
    batch_size: int = 32
    optimizer: OptimizerName = OptimizerName.ADAM
    learning_rate: Optional[float] = None
    seed: Optional[int] = None

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


class ArchitectureConfig(BaseModel):
    """Built-in layer specification (two hidden layers of decreasing width)."""
    units: List[Union[int, str]] = Field(default_factory=lambda: [256, 128, "auto"])
    activation: List[str] = Field(default_factory=lambda: ["relu", "relu", "softmax"])
    dropout: List[Optional[float]] = Field(default_factory=lambda: [0.4, 0.3, None])


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    file_logging: bool = False
    log_file: Optional[Path] = None
    console_logging: bool = True
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("log_file", mode="before")
    @classmethod
    def validate_log_file(cls, v):
        return Path(v) if v else None


class FormulaNetConfig(BaseModel):
    """Main configuration class for formulanet."""

    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    training: TrainingConfig = Field(default_factory=TrainingConfig)
    architecture: ArchitectureConfig = Field(default_factory=ArchitectureConfig)

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
            **kwargs: Override specific configuration values
        """
        config_data = {}
        if config_file:
            config_data = self._load_config_file(config_file)

        for section, values in self._load_environment_variables().items():
            config_data.setdefault(section, {}).update(values)

        config_data.update(kwargs)

        super().__init__(**config_data)

    @staticmethod
    def _load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        config_path = Path(config_file)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r") as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _load_environment_variables() -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config = {}

        env_mappings = {
            "FORMULANET_LOG_LEVEL": ("logging", "level"),
            "FORMULANET_SEED": ("training", "seed"),
            "FORMULANET_EPOCHS": ("training", "epochs"),
            "FORMULANET_BATCH_SIZE": ("training", "batch_size"),
            "FORMULANET_OPTIMIZER": ("training", "optimizer"),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if section not in config:
                    config[section] = {}

                if key in ["seed", "epochs", "batch_size"]:
                    value = int(value)
                elif key == "level":
                    value = value.upper()

                config[section][key] = value

        return config

    def save_config(self, config_file: Union[str, Path]) -> None:
        """Save current configuration to YAML file."""
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, indent=2)

    def update(self, **kwargs) -> None:
        """Update configuration values, accepting 'section.key' names."""
        for key, value in kwargs.items():
            if "." in key:
                section, subkey = key.split(".", 1)
                section_obj = getattr(self, section, None)
                if section_obj is not None and hasattr(section_obj, subkey):
                    setattr(section_obj, subkey, value)
            elif hasattr(self, key):
                setattr(self, key, value)


_default_config: Optional[FormulaNetConfig] = None


def get_default_config() -> FormulaNetConfig:
    """Get the default configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = FormulaNetConfig()
    return _default_config


def set_default_config(config: Optional[FormulaNetConfig]) -> None:
    """Replace (or with None, reset) the default configuration instance."""
    global _default_config
    _default_config = config
