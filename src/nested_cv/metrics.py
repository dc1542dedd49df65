"""Confusion-matrix metrics, ROC AUC and Brier score.

Degenerate denominators (no predicted positives, no actual negatives, a
single class present for AUC, ...) always resolve to ``ZERO_DIVISION``. The
same policy is used by the inner tuning loop, the threshold scan and the
final outer-fold evaluation, so metrics from the two stages are comparable.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    brier_score_loss,
    confusion_matrix,
    f1_score,
    precision_score,
    recall_score,
    roc_auc_score,
)

# Value returned for any metric whose denominator is zero
ZERO_DIVISION = 0.0

METRIC_NAMES = ("accuracy", "specificity", "recall", "precision", "f1", "auc", "brier")


class ConfusionCounts(NamedTuple):
    tp: int
    fp: int
    tn: int
    fn: int


class Metrics(NamedTuple):
    """The seven evaluation metrics, in reporting order."""

    accuracy: float
    specificity: float
    recall: float
    precision: float
    f1: float
    auc: float
    brier: float


def binary_labels(labels) -> np.ndarray:
    """Labels as a flat int array.

    Raises:
        ValueError: If any label is not 0 or 1
    """
    y = np.asarray(labels).ravel()
    values = set(np.unique(y).tolist())
    if not values <= {0, 1}:
        raise ValueError(f"labels must be binary 0/1, got values {sorted(values, key=str)}")
    return y.astype(int)


def check_inputs(predictions, labels) -> tuple[np.ndarray, np.ndarray]:
    """Flat float predictions and binary int labels of equal length."""
    p = np.asarray(predictions, dtype=float).ravel()
    y = binary_labels(labels)
    if p.shape != y.shape:
        raise ValueError(
            f"predictions and labels differ in length: {len(p)} vs {len(y)}"
        )
    return p, y


def _threshold_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> dict[str, float]:
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return {
        "accuracy": float(accuracy_score(y_true, y_pred)) if len(y_true) else ZERO_DIVISION,
        "specificity": float(tn / (tn + fp)) if tn + fp > 0 else ZERO_DIVISION,
        "recall": float(recall_score(y_true, y_pred, zero_division=ZERO_DIVISION)),
        "precision": float(precision_score(y_true, y_pred, zero_division=ZERO_DIVISION)),
        "f1": float(f1_score(y_true, y_pred, zero_division=ZERO_DIVISION)),
    }


def confusion_counts(predictions, labels, threshold: float) -> ConfusionCounts:
    """Count outcomes with ``prediction >= threshold`` classified positive."""
    p, y = check_inputs(predictions, labels)
    tn, fp, fn, tp = confusion_matrix(y, (p >= threshold).astype(int), labels=[0, 1]).ravel()
    return ConfusionCounts(tp=int(tp), fp=int(fp), tn=int(tn), fn=int(fn))


def metrics_from_counts(counts: ConfusionCounts) -> dict[str, float]:
    """Derive the threshold-dependent metrics from confusion counts.

    Returns:
        Dictionary with accuracy, specificity, recall, precision and f1
    """
    tp, fp, tn, fn = counts
    y_true = np.array([1] * tp + [0] * fp + [0] * tn + [1] * fn, dtype=int)
    y_pred = np.array([1] * tp + [1] * fp + [0] * tn + [0] * fn, dtype=int)
    return _threshold_metrics(y_true, y_pred)


def threshold_metrics(predictions, labels, threshold: float) -> dict[str, float]:
    """Accuracy, specificity, recall, precision and f1 at ``threshold``."""
    p, y = check_inputs(predictions, labels)
    return _threshold_metrics(y, (p >= threshold).astype(int))


def roc_auc(predictions, labels) -> float:
    """Area under the ROC curve; ``ZERO_DIVISION`` when one class is absent.

    Tied predictions count as one half, as in the Mann-Whitney statistic.
    """
    p, y = check_inputs(predictions, labels)
    if len(np.unique(y)) < 2:
        return ZERO_DIVISION
    return float(roc_auc_score(y, p))


def brier_score(predictions, labels) -> float:
    """Mean squared difference between predicted probability and outcome."""
    p, y = check_inputs(predictions, labels)
    if len(p) == 0:
        return ZERO_DIVISION
    return float(brier_score_loss(y, p, pos_label=1))


def score(predictions, labels, threshold: float) -> Metrics:
    """Compute all seven metrics for one set of predictions.

    Args:
        predictions: Predicted probabilities (calibrated)
        labels: Binary ground-truth labels
        threshold: Decision threshold; ``prediction >= threshold`` is positive

    Returns:
        Metrics tuple (accuracy, specificity, recall, precision, f1, auc, brier)
    """
    return Metrics(
        auc=roc_auc(predictions, labels),
        brier=brier_score(predictions, labels),
        **threshold_metrics(predictions, labels, threshold),
    )


def is_finite(metrics: Metrics) -> bool:
    return bool(np.all(np.isfinite(np.asarray(metrics, dtype=float))))


def mean_metrics(metrics_list: list[Metrics]) -> Metrics:
    """Arithmetic mean of each metric across a non-empty list."""
    if not metrics_list:
        raise ValueError("Cannot average an empty list of metrics")
    values = np.asarray(metrics_list, dtype=float)
    return Metrics(*values.mean(axis=0).tolist())


def std_metrics(metrics_list: list[Metrics]) -> Metrics:
    """Sample standard deviation (ddof=1) of each metric; zero for one fold."""
    if not metrics_list:
        raise ValueError("Cannot compute spread of an empty list of metrics")
    values = np.asarray(metrics_list, dtype=float)
    if len(values) < 2:
        return Metrics(*([0.0] * len(METRIC_NAMES)))
    return Metrics(*values.std(axis=0, ddof=1).tolist())
