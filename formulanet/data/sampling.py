"""
Train/validation splitting utilities for formulanet.

Splits are made over row positions so the design matrix and the outcome
labels stay aligned; both partitions keep the original row order.
"""

import numpy as np
from typing import Optional, Sequence, Tuple

from ..utils.logging import get_logger


logger = get_logger(__name__)


def train_validation_split(
    rows: Sequence[int],
    validation_size: float = 0.2,
    stratify: Optional[np.ndarray] = None,
    random_state: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split row positions into training and validation partitions.

    Args:
        rows: Row positions eligible for the split
        validation_size: Proportion of rows held out (0.0 to 1.0, exclusive)
        stratify: Optional per-row labels (aligned with ``rows``); when given
            each label is split separately so every class keeps its share
        random_state: Random seed for reproducibility

    Returns:
        Tuple of (training_rows, validation_rows), each sorted ascending
    """
    if validation_size <= 0 or validation_size >= 1:
        raise ValueError("validation_size must be between 0 and 1")

    rows = np.asarray(rows, dtype=np.int64)
    if len(rows) < 2:
        raise ValueError(f"Need at least 2 rows to split, got {len(rows)}")

    rng = np.random.default_rng(random_state)

    if stratify is None:
        groups = [np.arange(len(rows))]
    else:
        stratify = np.asarray(stratify)
        if len(stratify) != len(rows):
            raise ValueError("stratify must have one label per row")
        groups = [np.flatnonzero(stratify == label) for label in np.unique(stratify)]

    val_positions = []
    # Singleton classes stay in training
    eligible = [group for group in groups if len(group) >= 2]
    if eligible:
        counts = _allocate_validation(
            np.array([len(group) for group in eligible]), len(rows), validation_size
        )
        for group, n_val in zip(eligible, counts):
            val_positions.append(rng.choice(group, size=n_val, replace=False))

    if val_positions:
        val_mask = np.zeros(len(rows), dtype=bool)
        val_mask[np.concatenate(val_positions)] = True
    else:
        val_mask = np.zeros(len(rows), dtype=bool)
        val_mask[rng.choice(len(rows), size=1, replace=False)] = True

    if val_mask.all():
        val_mask[np.flatnonzero(val_mask)[0]] = False

    train_rows = np.sort(rows[~val_mask])
    val_rows = np.sort(rows[val_mask])

    logger.info(f"Data split: {len(train_rows)} training, {len(val_rows)} validation")

    return train_rows, val_rows


def _allocate_validation(sizes: np.ndarray, n_rows: int, validation_size: float) -> np.ndarray:
    """
    Apportion round(n_rows * validation_size) held-out rows across groups.

    Every group keeps at least one row on each side of the split; the rows
    left after flooring each group's share go to the largest remainders.
    """
    target = max(1, int(np.floor(n_rows * validation_size + 0.5)))
    quotas = sizes * validation_size
    counts = np.clip(np.floor(quotas).astype(np.int64), 1, sizes - 1)

    order = np.argsort(-(quotas - np.floor(quotas)), kind="stable")
    remaining = target - counts.sum()
    while remaining > 0:
        open_groups = [i for i in order if counts[i] < sizes[i] - 1]
        if not open_groups:
            break
        for i in open_groups[:remaining]:
            counts[i] += 1
        remaining = target - counts.sum()
    return counts
