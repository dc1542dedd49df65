"""SHAP feature attribution per outer fold and its aggregation across folds.

Attribution is an external computation: a failure in one fold is recorded on
that fold's ``AttributionResult`` and the fold is left out of the aggregate,
it never stops the outer loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
import shap

from src.nested_cv.errors import ExternalComputationError
from src.nested_cv.model import TrainedModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributionResult:
    """Attribution outcome of one fold: a ranking on success, a reason on failure."""

    fold: int
    importance: pd.DataFrame | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.importance is not None


@dataclass(frozen=True)
class ImportanceAggregate:
    table: pd.DataFrame
    n_folds: int
    skipped: tuple[AttributionResult, ...]


def explain(model: TrainedModel, X: pd.DataFrame) -> np.ndarray:
    """Per-row, per-feature SHAP values (log-odds scale) for ``X``.

    Raises:
        ExternalComputationError: If SHAP fails for any reason
    """
    try:
        explainer = shap.TreeExplainer(model.estimator)
        values = explainer.shap_values(X)
    except Exception as e:
        raise ExternalComputationError(f"SHAP computation failed: {e}", stage="explain") from e

    values = np.asarray(values)
    # Some SHAP versions return one array per class for binary models
    if values.ndim == 3:
        values = values[..., -1] if values.shape[-1] == 2 else values[-1]
    if values.shape != (len(X), X.shape[1]):
        raise ExternalComputationError(
            f"Unexpected SHAP output shape {values.shape} for input {X.shape}",
            stage="explain",
        )
    return values


def summarize_attribution(values: np.ndarray, feature_names: Sequence[str]) -> pd.DataFrame:
    """Rank features by mean absolute attribution.

    Returns:
        DataFrame with columns [feature, importance], sorted by importance descending
    """
    importance_df = pd.DataFrame({
        "feature": list(feature_names),
        "importance": np.abs(values).mean(axis=0),
    })
    importance_df = importance_df.sort_values(
        "importance", ascending=False, kind="mergesort"
    ).reset_index(drop=True)

    return importance_df


def explain_fold(
    model: TrainedModel,
    X: pd.DataFrame,
    fold: int,
    max_rows: int = 0,
    seed: int = 42,
) -> AttributionResult:
    """Compute one fold's feature ranking, capturing failures.

    Args:
        model: The fold's final model
        X: Rows to explain (typically the outer-test portion)
        fold: Outer fold index
        max_rows: Subsample ``X`` to this many rows (0 = all)
        seed: Subsampling seed
    """
    if max_rows and len(X) > max_rows:
        X = X.sample(n=max_rows, random_state=seed)

    try:
        values = explain(model, X)
    except ExternalComputationError as e:
        e.fold = fold
        logger.warning("Attribution failed for fold %d: %s", fold, e)
        return AttributionResult(fold=fold, error=str(e))

    return AttributionResult(fold=fold, importance=summarize_attribution(values, X.columns))


def aggregate_importance(results: Sequence[AttributionResult]) -> ImportanceAggregate:
    """Average per-fold rankings, skipping folds whose attribution failed.

    A feature absent from a successful fold's ranking counts as zero there.

    Returns:
        ImportanceAggregate whose table has columns [feature, importance, std,
        n_folds], sorted by importance descending
    """
    succeeded = [r for r in results if r.ok]
    skipped = tuple(r for r in results if not r.ok)

    if skipped:
        logger.info(
            "Importance aggregated over %d folds (%d skipped: %s)",
            len(succeeded),
            len(skipped),
            [r.fold for r in skipped],
        )

    if not succeeded:
        empty = pd.DataFrame(columns=["feature", "importance", "std", "n_folds"])
        return ImportanceAggregate(table=empty, n_folds=0, skipped=skipped)

    wide = pd.concat(
        [r.importance.set_index("feature")["importance"].rename(r.fold) for r in succeeded],
        axis=1,
    ).fillna(0.0)

    table = pd.DataFrame({
        "feature": wide.index,
        "importance": wide.mean(axis=1).to_numpy(),
        "std": wide.std(axis=1, ddof=0).to_numpy(),
        "n_folds": len(succeeded),
    })
    table = table.sort_values("importance", ascending=False, kind="mergesort").reset_index(drop=True)

    return ImportanceAggregate(table=table, n_folds=len(succeeded), skipped=skipped)
