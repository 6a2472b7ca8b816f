"""
Held-out evaluation for formulanet.
"""

from .diagnostics import EvaluationReport, EvaluationReporter, confusion_matrix

__all__ = [
    "EvaluationReport",
    "EvaluationReporter",
    "confusion_matrix",
]
