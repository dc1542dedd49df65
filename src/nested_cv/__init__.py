"""Nested cross-validation for hospital readmission prediction.

This module evaluates gradient-boosted tree classifiers with an unbiased
protocol: hyperparameters are selected on inner folds, probabilities are
Platt-calibrated on out-of-fold training predictions, and F1-optimal
decision thresholds are chosen without looking at the scored test labels.

Partitioning:
- Deterministic stratified k-fold splits with per-fold derived seeds

Training and tuning:
- XGBoost with early stopping and automatic scale_pos_weight
- Grid search ranked by mean inner AUC, ties to the lowest grid index

Evaluation:
- Accuracy, specificity, recall, precision, F1, ROC AUC, Brier score
- Platt scaling and F1-optimal thresholds over [0.10, 0.90]
- Fold-wise mean/std plus pooled dataset-level metrics
- SHAP importance averaged over folds, tolerant of per-fold failures
- Markdown report generation
"""

from src.nested_cv.calibration import (
    CalibrationModel,
    apply_calibration,
    fit_calibration,
)
from src.nested_cv.errors import (
    CalibrationConvergenceError,
    ExternalComputationError,
    InvalidPartitionError,
    NestedCVError,
    TrainerFailure,
)
from src.nested_cv.importance import (
    AttributionResult,
    aggregate_importance,
    explain_fold,
    summarize_attribution,
)
from src.nested_cv.metrics import (
    Metrics,
    confusion_counts,
    metrics_from_counts,
    roc_auc,
    score,
)
from src.nested_cv.model import (
    HyperparameterConfig,
    TrainedModel,
    compute_scale_pos_weight,
    train_model,
)
from src.nested_cv.orchestrator import run_nested_cv
from src.nested_cv.report import (
    generate_nested_cv_report,
    pooled_predictions_frame,
    results_frame,
)
from src.nested_cv.results import AggregateResult, FoldResult, NestedCVResult, aggregate_folds
from src.nested_cv.split import Fold, stratified_folds
from src.nested_cv.threshold import optimal_threshold
from src.nested_cv.tuning import build_grid, evaluate_config, tune

__all__ = [
    # Partitioning
    "Fold",
    "stratified_folds",
    # Metrics and thresholds
    "Metrics",
    "confusion_counts",
    "metrics_from_counts",
    "roc_auc",
    "score",
    "optimal_threshold",
    # Calibration
    "CalibrationModel",
    "fit_calibration",
    "apply_calibration",
    # Training and tuning
    "HyperparameterConfig",
    "TrainedModel",
    "compute_scale_pos_weight",
    "train_model",
    "build_grid",
    "evaluate_config",
    "tune",
    # Orchestration and results
    "run_nested_cv",
    "FoldResult",
    "AggregateResult",
    "NestedCVResult",
    "aggregate_folds",
    # Attribution
    "AttributionResult",
    "explain_fold",
    "summarize_attribution",
    "aggregate_importance",
    # Reporting
    "results_frame",
    "pooled_predictions_frame",
    "generate_nested_cv_report",
    # Errors
    "NestedCVError",
    "InvalidPartitionError",
    "CalibrationConvergenceError",
    "TrainerFailure",
    "ExternalComputationError",
]
