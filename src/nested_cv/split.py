"""Deterministic stratified k-fold partitioning.

Every partition is fully determined by ``(labels, k, seed)``. Per-fold seeds
for nested partitions are derived from the run seed with
``numpy.random.SeedSequence`` instead of the global RNG, so outer folds can be
evaluated in any order (or concurrently) and still reproduce.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from sklearn.model_selection import StratifiedKFold

from src.nested_cv.errors import InvalidPartitionError


@dataclass(frozen=True)
class Fold:
    """One train/validation pair of a k-fold partition."""

    index: int
    train_idx: np.ndarray
    valid_idx: np.ndarray


def _as_binary_labels(labels) -> np.ndarray:
    y = np.asarray(labels)
    if y.ndim != 1:
        raise InvalidPartitionError(f"labels must be one-dimensional, got shape {y.shape}")
    values = set(np.unique(y).tolist())
    if not values <= {0, 1}:
        raise InvalidPartitionError(f"labels must be binary 0/1, got values {sorted(values)}")
    return y.astype(int)


def stratified_folds(labels, k: int, seed: int) -> tuple[Fold, ...]:
    """Split ``labels`` into ``k`` stratified folds.

    The validation sets are disjoint and cover ``range(len(labels))``; each
    training set is the complement of its validation set. StratifiedKFold
    places each class proportionally, so a validation fold holds at most one
    case more or fewer of each class than its exact share. The fold's
    positive ratio therefore stays within ``2 / len(valid_idx)`` of the
    parent ratio (see ``stratification_tolerance``).

    Args:
        labels: Binary label vector (0/1)
        k: Number of folds
        seed: Seed for the shuffle preceding assignment

    Returns:
        Tuple of ``k`` Fold records ordered by fold index

    Raises:
        InvalidPartitionError: If ``k < 2``, labels are not binary, or either
            class has fewer than ``k`` cases
    """
    y = _as_binary_labels(labels)

    if k < 2:
        raise InvalidPartitionError(f"k must be at least 2, got {k}", stage="partition")

    n_pos = int(y.sum())
    n_neg = int(len(y) - n_pos)
    if k > n_pos or k > n_neg:
        raise InvalidPartitionError(
            f"Cannot build {k} stratified folds from {n_pos} positive and "
            f"{n_neg} negative cases",
            stage="partition",
        )

    splitter = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    placeholder = np.zeros((len(y), 1))

    return tuple(
        Fold(index=i, train_idx=train_idx, valid_idx=valid_idx)
        for i, (train_idx, valid_idx) in enumerate(splitter.split(placeholder, y))
    )


def stratification_tolerance(fold: Fold) -> float:
    """Maximum allowed deviation of a fold's positive ratio from its parent."""
    return 2.0 / len(fold.valid_idx)


def partition_seed(seed: int, *path: int) -> int:
    """Derive an independent 32-bit seed for a nested partition.

    ``path`` identifies the unit, e.g. ``partition_seed(seed, outer_fold)`` for
    the inner partition of one outer fold.
    """
    sequence = np.random.SeedSequence([seed, *path])
    return int(sequence.generate_state(1)[0])
