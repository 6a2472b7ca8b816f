"""Utility functions and classes for formulanet."""

from .logging import get_logger, setup_logging
from .validation import validate_array_dimensions, validate_row_alignment

__all__ = [
    "get_logger",
    "setup_logging",
    "validate_array_dimensions",
    "validate_row_alignment",
]
