"""
formulanet: formula-driven feed-forward networks for tabular records.

Compiles formulas such as ``cut(y, c(-1, 0, 1, 10)) ~ x1 + n(tags) + source``
into a design matrix, an outcome encoding and a dense network, trains it with
JAX and reports held-out metrics.
"""

__version__ = "0.3.0"
__author__ = "formulanet developers"

# Record sets
from .data.records import as_dataframe, load_records
from .data.sampling import train_validation_split

# Formula system
from .formulas import (
    FormulaCompiler,
    FormulaSpec,
    DesignMatrixBuilder,
    DesignMatrix,
    DesignSchema,
    OutcomeEncoder,
    OutcomeEncoding,
    OutcomeMode,
    FunctionRegistry,
    parse_formula,
)

# Networks
from .models import LayerSpec, LayerSpecCompiler, CompiledArchitecture, TrainingArtifact
from .optimization import (
    HyperParameters,
    TrainingEngine,
    JaxTrainingEngine,
    TrainingOrchestrator,
)
from .inference import EvaluationReporter, EvaluationReport

# High-level API
from .core.api import fit_formula, predict

# Configuration
from .config.settings import FormulaNetConfig, get_default_config, set_default_config

# Export functionality
from .core.export import ArtifactExporter, export_summary

# Import key exception classes
from .core.exceptions import (
    FormulaNetError,
    FormulaParseError,
    ExpressionEvaluationError,
    EmptyDesignMatrixError,
    LayerSpecError,
    DimensionMismatchError,
    ConfigurationError,
    UnseenLevelWarning,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",

    # High-level API
    "fit_formula",
    "predict",

    # Record sets
    "as_dataframe",
    "load_records",
    "train_validation_split",

    # Formula system
    "FormulaCompiler",
    "FormulaSpec",
    "DesignMatrixBuilder",
    "DesignMatrix",
    "DesignSchema",
    "OutcomeEncoder",
    "OutcomeEncoding",
    "OutcomeMode",
    "FunctionRegistry",
    "parse_formula",

    # Networks
    "LayerSpec",
    "LayerSpecCompiler",
    "CompiledArchitecture",
    "TrainingArtifact",
    "HyperParameters",
    "TrainingEngine",
    "JaxTrainingEngine",
    "TrainingOrchestrator",
    "EvaluationReporter",
    "EvaluationReport",

    # Configuration
    "FormulaNetConfig",
    "get_config",
    "configure",
    "set_default_config",

    # Export functionality
    "ArtifactExporter",
    "export_summary",

    # Exceptions
    "FormulaNetError",
    "FormulaParseError",
    "ExpressionEvaluationError",
    "EmptyDesignMatrixError",
    "LayerSpecError",
    "DimensionMismatchError",
    "ConfigurationError",
    "UnseenLevelWarning",
]


def get_config() -> FormulaNetConfig:
    """Get the global configuration instance."""
    return get_default_config()


def configure(**kwargs) -> None:
    """Update global configuration, e.g. configure(**{"training.epochs": 5})."""
    get_default_config().update(**kwargs)
