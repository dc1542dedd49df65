"""Inner-loop hyperparameter search.

``evaluate_config`` scores one configuration across the inner folds of an
outer-training portion; ``tune`` runs it for every configuration of a grid
and selects the one with the highest mean inner AUC. Calibration at this
stage is fitted on the same validation predictions it scores: only the
ranking of configurations matters here, not unbiased metric values.
"""

from __future__ import annotations

import itertools
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from config.settings import Settings
from src.nested_cv.calibration import apply_calibration, fit_calibration
from src.nested_cv.errors import CalibrationConvergenceError, TrainerFailure
from src.nested_cv.metrics import Metrics, binary_labels, is_finite, mean_metrics, score
from src.nested_cv.model import HyperparameterConfig, train_model
from src.nested_cv.preprocessing import prepare_split
from src.nested_cv.split import Fold, partition_seed
from src.nested_cv.threshold import optimal_threshold

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InnerResult:
    """Averages over the inner folds that produced finite metrics."""

    metrics: Metrics
    best_iteration: float
    n_valid_folds: int
    n_folds: int


@dataclass(frozen=True)
class CandidateResult:
    """Outcome of evaluating one grid configuration."""

    index: int
    config: HyperparameterConfig
    inner: InnerResult | None = None
    error: str | None = None

    @property
    def eligible(self) -> bool:
        return self.inner is not None


@dataclass(frozen=True)
class TuningResult:
    best_index: int
    best_config: HyperparameterConfig
    n_rounds: int
    candidates: tuple[CandidateResult, ...]

    @property
    def best(self) -> CandidateResult:
        return self.candidates[self.best_index]

    @property
    def n_failed(self) -> int:
        return sum(not c.eligible for c in self.candidates)


def build_grid(param_grid: Mapping[str, Sequence]) -> tuple[HyperparameterConfig, ...]:
    """Cartesian product of per-knob candidate lists in a fixed order.

    Knobs are varied in ``HyperparameterConfig`` field order (the last field
    varies fastest), candidates in the order given. Knobs missing from
    ``param_grid`` keep their default. Each configuration's position in the
    returned tuple is its enumeration index.

    Raises:
        ValueError: On unknown knob names or empty candidate lists
    """
    unknown = set(param_grid) - set(HyperparameterConfig._fields)
    if unknown:
        raise ValueError(f"Unknown hyperparameters in grid: {sorted(unknown)}")

    defaults = HyperparameterConfig()
    axes = []
    for name in HyperparameterConfig._fields:
        default = getattr(defaults, name)
        candidates = list(param_grid.get(name, [default]))
        if not candidates:
            raise ValueError(f"Empty candidate list for {name}")
        axes.append([type(default)(value) for value in candidates])

    return tuple(HyperparameterConfig(*values) for values in itertools.product(*axes))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def evaluate_config(
    X: pd.DataFrame,
    y: np.ndarray,
    config: HyperparameterConfig,
    folds: Sequence[Fold],
    settings: Settings,
    seed: int = 0,
) -> InnerResult:
    """Average metrics and best iteration of one configuration over inner folds.

    Per fold: train with early stopping on the inner train/validation split,
    predict raw scores on the validation split, fit Platt scaling on them,
    choose the F1-optimal threshold and score. Folds whose calibration does
    not converge, or whose metrics are not finite, are left out of the
    averages.

    Args:
        X: Outer-training features
        y: Outer-training labels
        config: Configuration to evaluate
        folds: Inner partition of ``X``
        settings: Run settings (rounds, patience, preprocessing)
        seed: Seed for training and oversampling

    Returns:
        InnerResult

    Raises:
        TrainerFailure: If training fails, or no fold yields finite metrics
        ValueError: If labels are not binary 0/1
    """
    y = binary_labels(y)
    fold_metrics: list[Metrics] = []
    iterations: list[int] = []

    for fold in folds:
        X_valid = X.iloc[fold.valid_idx]
        y_valid = y[fold.valid_idx]
        prepared = prepare_split(
            X.iloc[fold.train_idx],
            y[fold.train_idx],
            X_eval=[X_valid],
            impute=settings.impute,
            resample=settings.oversample,
            categorical_cols=settings.categorical_cols,
            k_neighbors=settings.smote_k_neighbors,
            target_ratio=settings.smote_target_ratio,
            seed=partition_seed(seed, fold.index),
        )
        (X_valid,) = prepared.X_eval

        model = train_model(
            prepared.X_train,
            prepared.y_train,
            config,
            max_rounds=settings.max_rounds,
            X_valid=X_valid,
            y_valid=y_valid,
            early_stopping_rounds=settings.early_stopping_rounds,
            eval_metric=settings.eval_metric,
            seed=seed,
            n_threads=settings.xgb_n_threads,
        )
        raw = model.predict(X_valid)

        try:
            calibration = fit_calibration(raw, y_valid)
        except CalibrationConvergenceError as e:
            logger.debug("Inner fold %d skipped: %s", fold.index, e)
            continue

        proba = apply_calibration(calibration, raw)
        threshold = optimal_threshold(proba, y_valid)
        metrics = score(proba, y_valid, threshold)
        if not is_finite(metrics):
            logger.debug("Inner fold %d skipped: non-finite metrics", fold.index)
            continue

        fold_metrics.append(metrics)
        iterations.append(model.best_iteration)

    if not fold_metrics:
        raise TrainerFailure(
            f"No inner fold produced finite metrics ({len(folds)} folds)", stage="tune"
        )

    return InnerResult(
        metrics=mean_metrics(fold_metrics),
        best_iteration=float(np.mean(iterations)),
        n_valid_folds=len(fold_metrics),
        n_folds=len(folds),
    )


def _evaluate_candidate(
    index: int,
    config: HyperparameterConfig,
    X: pd.DataFrame,
    y: np.ndarray,
    folds: Sequence[Fold],
    settings: Settings,
    seed: int,
    outer_fold: int | None,
) -> CandidateResult:
    try:
        inner = evaluate_config(X, y, config, folds, settings, seed=seed)
    except TrainerFailure as e:
        logger.warning(
            "Config %d ineligible (outer fold %s): %s | %s", index, outer_fold, e, config
        )
        return CandidateResult(index=index, config=config, error=str(e))

    logger.debug(
        "Config %d: inner AUC=%.4f over %d/%d folds, iterations=%.1f",
        index,
        inner.metrics.auc,
        inner.n_valid_folds,
        inner.n_folds,
        inner.best_iteration,
    )
    return CandidateResult(index=index, config=config, inner=inner)


def select_best(candidates: Sequence[CandidateResult]) -> CandidateResult:
    """Eligible candidate with maximum mean inner AUC; lowest index wins ties."""
    best = None
    for candidate in sorted(candidates, key=lambda c: c.index):
        if not candidate.eligible:
            continue
        if best is None or candidate.inner.metrics.auc > best.inner.metrics.auc:
            best = candidate
    if best is None:
        raise TrainerFailure(
            f"All {len(candidates)} grid configurations failed", stage="tune"
        )
    return best


def tune(
    X: pd.DataFrame,
    y: np.ndarray,
    grid: Sequence[HyperparameterConfig],
    folds: Sequence[Fold],
    settings: Settings,
    seed: int = 0,
    outer_fold: int | None = None,
) -> TuningResult:
    """Grid search over ``grid`` using the inner partition ``folds``.

    With ``settings.n_jobs > 1`` configurations are evaluated in a thread
    pool; selection waits for every configuration to finish, so the result
    is identical to the sequential run.

    Returns:
        TuningResult with the selected configuration and its round budget
        (mean inner best iteration, rounded half up, at least 1)

    Raises:
        TrainerFailure: If no configuration is eligible
    """
    args = (X, y, folds, settings, seed, outer_fold)

    if settings.n_jobs > 1 and len(grid) > 1:
        with ThreadPoolExecutor(max_workers=settings.n_jobs) as executor:
            futures = [
                executor.submit(_evaluate_candidate, i, config, *args)
                for i, config in enumerate(grid)
            ]
            candidates = tuple(f.result() for f in futures)
    else:
        candidates = tuple(
            _evaluate_candidate(i, config, *args) for i, config in enumerate(grid)
        )

    try:
        best = select_best(candidates)
    except TrainerFailure as e:
        e.fold = outer_fold
        raise

    n_rounds = max(1, _round_half_up(best.inner.best_iteration))
    n_failed = sum(not c.eligible for c in candidates)
    logger.info(
        "  Selected config %d/%d (inner AUC=%.4f, rounds=%d, %d ineligible)",
        best.index,
        len(grid),
        best.inner.metrics.auc,
        n_rounds,
        n_failed,
    )
    return TuningResult(
        best_index=best.index,
        best_config=best.config,
        n_rounds=n_rounds,
        candidates=candidates,
    )
