"""F1-optimal decision threshold selection over a fixed grid."""

import numpy as np
from sklearn.metrics import f1_score

from src.nested_cv.metrics import ZERO_DIVISION, check_inputs

# 0.10, 0.11, ..., 0.90 (81 points); rounded to avoid float drift in reports
THRESHOLD_GRID = np.round(np.arange(10, 91) / 100.0, 2)


def f1_curve(predictions, labels) -> tuple[np.ndarray, np.ndarray]:
    """F1 at every threshold of ``THRESHOLD_GRID``.

    Positive means ``prediction >= threshold``. Precision and recall use the
    zero-division fallback, so every entry is finite.

    Returns:
        Tuple of (thresholds, f1_scores) arrays
    """
    p, y = check_inputs(predictions, labels)
    f1_scores = np.array([
        f1_score(y, (p >= t).astype(int), zero_division=ZERO_DIVISION)
        for t in THRESHOLD_GRID
    ])
    return THRESHOLD_GRID.copy(), f1_scores


def optimal_threshold(predictions, labels) -> float:
    """Threshold in [0.10, 0.90] maximizing F1.

    Ties resolve to the lowest threshold (first occurrence in the ascending
    scan).
    """
    thresholds, f1_scores = f1_curve(predictions, labels)
    return float(thresholds[int(np.argmax(f1_scores))])
