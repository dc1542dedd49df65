"""Platt scaling of raw boosted-tree scores.

The raw scores are log-odds margins, so a perfectly calibrated model maps to
the identity (intercept 0, slope 1). The fit is unpenalized so the
coefficients are the maximum-likelihood estimates; when those do not exist
(complete or quasi-complete separation) or the solver stalls,
``CalibrationConvergenceError`` is raised instead of falling back to an
uncalibrated map. Convergence is read from the fitted solver's iteration
count, so fits may run concurrently without touching the process-wide
warning filters.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

import numpy as np
from scipy.special import expit
from sklearn.linear_model import LogisticRegression

from src.nested_cv.errors import CalibrationConvergenceError
from src.nested_cv.metrics import binary_labels

logger = logging.getLogger(__name__)

_PROBA_EPS = 1e-12


class CalibrationModel(NamedTuple):
    """``calibrated = sigmoid(intercept + slope * raw)``."""

    intercept: float
    slope: float


def _is_separated(raw: np.ndarray, y: np.ndarray) -> bool:
    # Classes meeting only at a shared boundary score still have no finite MLE
    pos = raw[y == 1]
    neg = raw[y == 0]
    return bool(neg.max() <= pos.min() or pos.max() <= neg.min())


def fit_calibration(raw_predictions, labels, max_iter: int = 1000) -> CalibrationModel:
    """Fit a one-dimensional logistic regression of labels on raw scores.

    Args:
        raw_predictions: Raw model scores (log-odds margins)
        labels: Binary ground-truth labels
        max_iter: Solver iteration limit

    Returns:
        Fitted CalibrationModel

    Raises:
        CalibrationConvergenceError: If only one class is present, the scores
            are constant or (quasi-)separate the classes, or the solver does
            not converge
        ValueError: If labels are not binary or lengths differ
    """
    raw = np.asarray(raw_predictions, dtype=float).ravel()
    y = binary_labels(labels)
    if raw.shape != y.shape:
        raise ValueError(f"raw predictions and labels differ in length: {len(raw)} vs {len(y)}")

    if len(np.unique(y)) < 2:
        raise CalibrationConvergenceError(
            "Calibration needs both classes present", stage="calibrate"
        )
    if not np.all(np.isfinite(raw)):
        raise CalibrationConvergenceError(
            "Raw predictions contain NaN/Inf", stage="calibrate"
        )
    if raw.min() == raw.max():
        raise CalibrationConvergenceError(
            "Raw scores are constant; Platt slope is not identifiable", stage="calibrate"
        )
    if _is_separated(raw, y):
        raise CalibrationConvergenceError(
            "Raw scores perfectly separate the classes; Platt coefficients diverge",
            stage="calibrate",
        )

    lr = LogisticRegression(C=np.inf, solver="lbfgs", max_iter=max_iter)
    lr.fit(raw.reshape(-1, 1), y)
    if int(np.max(lr.n_iter_)) >= max_iter:
        raise CalibrationConvergenceError(
            f"Platt scaling did not converge within {max_iter} iterations",
            stage="calibrate",
        )

    intercept = float(lr.intercept_[0])
    slope = float(lr.coef_[0, 0])
    if not (np.isfinite(intercept) and np.isfinite(slope)):
        raise CalibrationConvergenceError(
            "Platt scaling produced non-finite coefficients", stage="calibrate"
        )

    logger.debug("Calibration fit: intercept=%.4f slope=%.4f", intercept, slope)
    return CalibrationModel(intercept=intercept, slope=slope)


def apply_calibration(model: CalibrationModel, raw_predictions) -> np.ndarray:
    """Map raw scores to calibrated probabilities strictly inside (0, 1)."""
    raw = np.asarray(raw_predictions, dtype=float)
    logits = model.intercept + model.slope * raw
    proba = expit(logits)
    return np.clip(proba, _PROBA_EPS, 1.0 - _PROBA_EPS)
