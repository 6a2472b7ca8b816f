"""
Validation utilities for formulanet.

Provides common validation functions for arrays handed between pipeline stages.
"""

import numpy as np
from typing import Tuple, Optional, Any
from ..core.exceptions import DimensionMismatchError


def validate_array_dimensions(
    array: Any,
    expected_shape: Optional[Tuple[Optional[int], ...]] = None,
    name: str = "array"
) -> None:
    """
    Validate array dimensions.

    Args:
        array: Array to validate
        expected_shape: Expected exact shape (None entries are ignored)
        name: Name for error messages

    Raises:
        DimensionMismatchError: If validation fails
    """
    if not hasattr(array, 'shape'):
        raise DimensionMismatchError(reason=f"{name} must be an array-like object with a shape")

    shape = array.shape
    if expected_shape is None:
        return

    if len(expected_shape) != len(shape):
        raise DimensionMismatchError(
            reason=f"{name} has {len(shape)} dimensions, expected {len(expected_shape)}"
        )

    for i, (actual, expected) in enumerate(zip(shape, expected_shape)):
        if expected is not None and actual != expected:
            if i == len(shape) - 1:
                raise DimensionMismatchError(expected_width=expected, actual_width=actual)
            raise DimensionMismatchError(
                reason=f"{name} dimension {i} has size {actual}, expected {expected}"
            )


def validate_row_alignment(n_rows: int, *arrays: np.ndarray, names: Tuple[str, ...] = ()) -> None:
    """Check that every array has exactly ``n_rows`` leading entries."""
    for i, array in enumerate(arrays):
        if len(array) != n_rows:
            label = names[i] if i < len(names) else f"array {i}"
            raise DimensionMismatchError(
                reason=f"{label} has {len(array)} rows, expected {n_rows}"
            )
