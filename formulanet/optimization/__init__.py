"""
Training for formulanet.

Main entry points:
- TrainingOrchestrator: split, build, fit and predict through an engine
- JaxTrainingEngine: dense networks trained with JAX and optax
- HyperParameters: validated training settings

Example usage:
    from formulanet.optimization import TrainingOrchestrator, HyperParameters

    run = TrainingOrchestrator().train(
        design, encoded, encoding, architecture, HyperParameters(Nepochs=5)
    )
    print(run.history["val_loss"][-1])
"""

from .engine import (
    TrainingEngine,
    JaxTrainingEngine,
    JaxModel,
    create_optimizer,
    loss_function,
)
from .orchestrator import (
    HyperParameters,
    TrainingRun,
    TrainingOrchestrator,
    check_model_dimensions,
    engine_stage,
)

__all__ = [
    "TrainingEngine",
    "JaxTrainingEngine",
    "JaxModel",
    "create_optimizer",
    "loss_function",
    "HyperParameters",
    "TrainingRun",
    "TrainingOrchestrator",
    "check_model_dimensions",
    "engine_stage",
]
