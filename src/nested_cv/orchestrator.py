"""Outer loop of nested cross-validation.

Per outer fold::

    tune -> train final -> calibrate on out-of-fold training scores
         -> predict test -> threshold -> score -> explain

Hyperparameters are chosen on inner folds of the outer-training portion
only. The calibration map is fitted on out-of-fold predictions over the
outer-training portion, never on the test portion it is later applied to.
With ``threshold_policy="oof"`` the decision threshold is also chosen on
those out-of-fold training predictions, so the outer-test labels are used
for scoring and nothing else.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from config.settings import Settings
from src.nested_cv.calibration import apply_calibration, fit_calibration
from src.nested_cv.errors import CalibrationConvergenceError, NestedCVError
from src.nested_cv.importance import AttributionResult, aggregate_importance, explain_fold
from src.nested_cv.metrics import binary_labels, score
from src.nested_cv.model import HyperparameterConfig, train_model
from src.nested_cv.preprocessing import prepare_split
from src.nested_cv.results import (
    EvaluationResult,
    FoldResult,
    NestedCVResult,
    SkippedUnit,
)
from src.nested_cv.split import Fold, partition_seed, stratified_folds
from src.nested_cv.threshold import optimal_threshold
from src.nested_cv.tuning import build_grid, tune

logger = logging.getLogger(__name__)


def _prepare(X_train, y_train, X_eval, settings: Settings, seed: int):
    return prepare_split(
        X_train,
        y_train,
        X_eval=X_eval,
        impute=settings.impute,
        resample=settings.oversample,
        categorical_cols=settings.categorical_cols,
        k_neighbors=settings.smote_k_neighbors,
        target_ratio=settings.smote_target_ratio,
        seed=seed,
    )


def out_of_fold_predictions(
    X: pd.DataFrame,
    y: np.ndarray,
    config: HyperparameterConfig,
    n_rounds: int,
    folds: Sequence[Fold],
    settings: Settings,
    seed: int = 0,
) -> np.ndarray:
    """Raw scores for every row of ``X`` from a model that never saw that row.

    Each fold trains a fixed ``n_rounds`` model on its training part and
    predicts its validation part.

    Returns:
        Array of raw scores aligned with the rows of ``X``
    """
    y = binary_labels(y)
    oof = np.full(len(y), np.nan)

    for fold in folds:
        prepared = _prepare(
            X.iloc[fold.train_idx],
            y[fold.train_idx],
            [X.iloc[fold.valid_idx]],
            settings,
            seed=partition_seed(seed, fold.index),
        )
        model = train_model(
            prepared.X_train,
            prepared.y_train,
            config,
            max_rounds=n_rounds,
            seed=seed,
            n_threads=settings.xgb_n_threads,
        )
        oof[fold.valid_idx] = model.predict(prepared.X_eval[0])

    return oof


def run_outer_fold(
    X: pd.DataFrame,
    y: np.ndarray,
    fold: Fold,
    grid: Sequence[HyperparameterConfig],
    settings: Settings,
) -> FoldResult:
    """Evaluate one outer fold end to end.

    Raises:
        CalibrationConvergenceError: If the out-of-fold calibration fit fails
        InvalidPartitionError: If the outer-training portion cannot be split
        TrainerFailure: If no configuration is eligible or the final model fails
    """
    fold_seed = partition_seed(settings.seed, fold.index)
    X_train, y_train = X.iloc[fold.train_idx], y[fold.train_idx]
    X_test, y_test = X.iloc[fold.valid_idx], y[fold.valid_idx]

    logger.info(
        "Outer fold %d: train=%d (%d positive), test=%d (%d positive)",
        fold.index,
        len(y_train),
        int(y_train.sum()),
        len(y_test),
        int(y_test.sum()),
    )

    # Tune
    inner_folds = stratified_folds(y_train, settings.inner_folds, fold_seed)
    tuning = tune(
        X_train, y_train, grid, inner_folds, settings, seed=fold_seed, outer_fold=fold.index
    )

    # Train final model on the whole outer-training portion
    prepared = _prepare(X_train, y_train, [X_test], settings, seed=fold_seed)
    try:
        model = train_model(
            prepared.X_train,
            prepared.y_train,
            tuning.best_config,
            max_rounds=tuning.n_rounds,
            seed=fold_seed,
            n_threads=settings.xgb_n_threads,
        )
    except NestedCVError as e:
        e.stage = "train_final"
        raise
    (X_test_prepared,) = prepared.X_eval

    # Calibrate on out-of-fold training predictions
    calibration_folds = stratified_folds(
        y_train, settings.calibration_folds, partition_seed(settings.seed, fold.index, 1)
    )
    oof_raw = out_of_fold_predictions(
        X_train,
        y_train,
        tuning.best_config,
        tuning.n_rounds,
        calibration_folds,
        settings,
        seed=fold_seed,
    )
    calibration = fit_calibration(oof_raw, y_train)

    # Predict and calibrate the test portion
    test_raw = model.predict(X_test_prepared)
    test_calibrated = apply_calibration(calibration, test_raw)

    # Threshold
    if settings.threshold_policy == "oof":
        threshold = optimal_threshold(apply_calibration(calibration, oof_raw), y_train)
    else:
        threshold = optimal_threshold(test_calibrated, y_test)

    # Score
    metrics = score(test_calibrated, y_test, threshold)
    logger.info(
        "  Fold %d: AUC=%.4f F1=%.4f Brier=%.4f threshold=%.2f",
        fold.index,
        metrics.auc,
        metrics.f1,
        metrics.brier,
        threshold,
    )

    # Explain
    attribution = None
    if settings.compute_shap:
        attribution = explain_fold(
            model, X_test_prepared, fold.index, max_rows=settings.shap_max_rows, seed=fold_seed
        )

    return FoldResult(
        fold=fold.index,
        evaluation=EvaluationResult(
            metrics=metrics, threshold=threshold, config=tuning.best_config
        ),
        model=model,
        calibration=calibration,
        test_idx=fold.valid_idx,
        raw_predictions=test_raw,
        calibrated_predictions=test_calibrated,
        labels=y_test,
        n_rounds=tuning.n_rounds,
        tuning=tuning,
        preprocess=prepared.stats,
        attribution=attribution,
        threshold_policy=settings.threshold_policy,
    )


def run_nested_cv(
    X: pd.DataFrame | np.ndarray,
    y,
    settings: Settings | None = None,
    grid: Sequence[HyperparameterConfig] | None = None,
) -> NestedCVResult:
    """Run nested cross-validation over the whole dataset.

    Args:
        X: Feature matrix (rows = admissions)
        y: Binary labels
        settings: Run settings; defaults to ``Settings()``
        grid: Configurations to search; defaults to ``build_grid(settings.param_grid)``

    Returns:
        NestedCVResult with one FoldResult per valid outer fold, in fold order

    Raises:
        InvalidPartitionError: If any stratified split is impossible
        TrainerFailure: If a fold has no eligible configuration or its final
            model cannot be trained
        ValueError: If labels are not binary 0/1 or X and y differ in length
    """
    settings = settings or Settings()
    grid = tuple(grid) if grid is not None else build_grid(settings.param_grid)

    if not isinstance(X, pd.DataFrame):
        X = pd.DataFrame(X, columns=[f"feature_{i}" for i in range(np.shape(X)[1])])
    y = binary_labels(y)
    if len(X) != len(y):
        raise ValueError(f"X and y differ in length: {len(X)} vs {len(y)}")

    if settings.threshold_policy == "test":
        logger.warning(
            "threshold_policy='test': thresholds are chosen on the scored test "
            "labels; threshold-dependent metrics are optimistic"
        )

    logger.info(
        "Nested CV: %d rows, %d features, %d outer x %d inner folds, %d configurations",
        len(X),
        X.shape[1],
        settings.outer_folds,
        settings.inner_folds,
        len(grid),
    )

    outer_folds = stratified_folds(y, settings.outer_folds, settings.seed)

    results: list[FoldResult] = []
    skipped: list[SkippedUnit] = []

    for fold in outer_folds:
        try:
            results.append(run_outer_fold(X, y, fold, grid, settings))
        except CalibrationConvergenceError as e:
            logger.warning("Outer fold %d skipped at calibration: %s", fold.index, e)
            skipped.append(SkippedUnit(fold=fold.index, stage="calibrate", reason=str(e)))
        except NestedCVError as e:
            if e.fold is None:
                e.fold = fold.index
            logger.error("Outer fold %d failed: %s", fold.index, e)
            raise

    attributions = [r.attribution for r in results if r.attribution is not None]
    importance = aggregate_importance(attributions)
    skipped.extend(
        SkippedUnit(fold=a.fold, stage="explain", reason=a.error) for a in importance.skipped
    )

    logger.info(
        "Nested CV complete: %d/%d folds valid, %d skipped units",
        len(results),
        len(outer_folds),
        len(skipped),
    )

    return NestedCVResult(
        folds=tuple(results),
        skipped=tuple(skipped),
        importance=importance,
        threshold_policy=settings.threshold_policy,
    )
