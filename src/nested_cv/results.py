"""Immutable result records and their cross-fold aggregation.

``AggregateResult`` is derived data: it is always recomputed from the
sequence of ``FoldResult`` records and never stored on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np

from src.nested_cv.calibration import CalibrationModel
from src.nested_cv.importance import AttributionResult, ImportanceAggregate
from src.nested_cv.metrics import Metrics, mean_metrics, score, std_metrics
from src.nested_cv.model import HyperparameterConfig, TrainedModel
from src.nested_cv.preprocessing import PreprocessStats
from src.nested_cv.tuning import TuningResult


@dataclass(frozen=True)
class EvaluationResult:
    metrics: Metrics
    threshold: float
    config: HyperparameterConfig


@dataclass(frozen=True)
class FoldResult:
    """Everything one outer fold produced.

    The model and calibration map belong to this fold alone and are never
    refitted after the record is created.
    """

    fold: int
    evaluation: EvaluationResult
    model: TrainedModel
    calibration: CalibrationModel
    test_idx: np.ndarray
    raw_predictions: np.ndarray
    calibrated_predictions: np.ndarray
    labels: np.ndarray
    n_rounds: int
    tuning: TuningResult
    preprocess: PreprocessStats
    attribution: AttributionResult | None
    threshold_policy: Literal["oof", "test"] = "oof"

    @property
    def metrics(self) -> Metrics:
        return self.evaluation.metrics

    @property
    def threshold(self) -> float:
        return self.evaluation.threshold


@dataclass(frozen=True)
class SkippedUnit:
    """A unit of work left out of the aggregates, with the reason."""

    fold: int
    stage: str
    reason: str


@dataclass(frozen=True)
class AggregateResult:
    """Fold-wise mean/std and dataset-level pooled metrics.

    The two answer different questions: ``mean``/``std`` describe variation
    across folds, ``pooled`` measures discrimination over all test rows at
    once. Because AUC is not linear in its inputs, ``pooled.auc`` generally
    differs from ``mean.auc``.
    """

    mean: Metrics
    std: Metrics
    pooled: Metrics
    pooled_threshold: float
    n_folds: int


def aggregate_folds(folds: Sequence[FoldResult]) -> AggregateResult:
    """Aggregate valid fold results.

    Pooled metrics are computed once from the concatenated calibrated test
    predictions and labels, at the mean of the per-fold thresholds.

    Raises:
        ValueError: If ``folds`` is empty
    """
    if not folds:
        raise ValueError("No valid fold results to aggregate")

    fold_metrics = [f.metrics for f in folds]
    pooled_predictions = np.concatenate([f.calibrated_predictions for f in folds])
    pooled_labels = np.concatenate([f.labels for f in folds])
    pooled_threshold = float(np.mean([f.threshold for f in folds]))

    return AggregateResult(
        mean=mean_metrics(fold_metrics),
        std=std_metrics(fold_metrics),
        pooled=score(pooled_predictions, pooled_labels, pooled_threshold),
        pooled_threshold=pooled_threshold,
        n_folds=len(folds),
    )


@dataclass(frozen=True)
class NestedCVResult:
    """Return value of a nested cross-validation run."""

    folds: tuple[FoldResult, ...]
    skipped: tuple[SkippedUnit, ...]
    importance: ImportanceAggregate
    threshold_policy: Literal["oof", "test"] = "oof"

    @property
    def aggregate(self) -> AggregateResult:
        return aggregate_folds(self.folds)

    @property
    def n_skipped(self) -> int:
        return len(self.skipped)
