"""Training-split preprocessing: imputation and SMOTE-NC oversampling.

Imputation statistics are learned on the training partition and applied to
every partition. Synthetic oversampling only ever touches the training
partition; validation and test rows are imputed but never resampled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from imblearn.over_sampling import SMOTE, SMOTENC
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer

from src.nested_cv.metrics import binary_labels

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreprocessStats:
    """Class balance and imputation counts of one training split.

    Computed once when the split is prepared and kept with the fold result so
    reporting never has to recompute them.
    """

    n_before: int
    n_pos_before: int
    n_after: int
    n_pos_after: int
    n_imputed_cells: int

    @property
    def n_synthetic(self) -> int:
        return self.n_after - self.n_before

    @property
    def positive_rate_before(self) -> float:
        return self.n_pos_before / self.n_before if self.n_before else 0.0

    @property
    def positive_rate_after(self) -> float:
        return self.n_pos_after / self.n_after if self.n_after else 0.0


@dataclass(frozen=True)
class PreparedSplit:
    X_train: pd.DataFrame
    y_train: np.ndarray
    X_eval: tuple[pd.DataFrame, ...]
    stats: PreprocessStats


def fit_imputer(X_train: pd.DataFrame, categorical_cols: Sequence[str] = ()) -> ColumnTransformer:
    """Fit median (numeric) and most-frequent (categorical) imputation on ``X_train``."""
    categorical = [c for c in X_train.columns if c in set(categorical_cols)]
    numeric = [c for c in X_train.columns if c not in set(categorical)]

    transformers = []
    if numeric:
        transformers.append(
            ("num", SimpleImputer(strategy="median", keep_empty_features=True), numeric)
        )
    if categorical:
        transformers.append(
            ("cat", SimpleImputer(strategy="most_frequent", keep_empty_features=True), categorical)
        )

    imputer = ColumnTransformer(transformers, verbose_feature_names_out=False)
    imputer.set_output(transform="pandas")
    imputer.fit(X_train)
    return imputer


def apply_imputer(imputer: ColumnTransformer, X: pd.DataFrame) -> pd.DataFrame:
    """Impute ``X`` and restore its original column order and index."""
    completed = imputer.transform(X)
    completed = completed[list(X.columns)]
    completed.index = X.index
    return completed


def oversample(
    X: pd.DataFrame,
    y: np.ndarray,
    categorical_cols: Sequence[str] = (),
    k_neighbors: int = 5,
    target_ratio: float = 0.5,
    seed: int = 42,
) -> tuple[pd.DataFrame, np.ndarray]:
    """Synthesize minority-class rows until minority/majority reaches ``target_ratio``.

    Uses SMOTE-NC when categorical columns are present, plain SMOTE
    otherwise. Returns the inputs unchanged when the split is already at or
    above the target ratio, or has too few minority rows to interpolate.

    Raises:
        ValueError: If ``X`` still contains missing values
    """
    if X.isna().any().any():
        raise ValueError("Oversampling requires a complete frame; impute first")

    y = binary_labels(y)
    n_pos = int(y.sum())
    n_neg = len(y) - n_pos
    n_minority, n_majority = min(n_pos, n_neg), max(n_pos, n_neg)

    if n_minority < 2:
        logger.warning("Skipping oversampling: only %d minority rows", n_minority)
        return X, y
    if n_majority == 0 or n_minority / n_majority >= target_ratio:
        return X, y

    k = min(k_neighbors, n_minority - 1)
    categorical_idx = [X.columns.get_loc(c) for c in categorical_cols if c in X.columns]
    if categorical_idx:
        sampler = SMOTENC(
            categorical_features=categorical_idx,
            sampling_strategy=target_ratio,
            k_neighbors=k,
            random_state=seed,
        )
    else:
        sampler = SMOTE(sampling_strategy=target_ratio, k_neighbors=k, random_state=seed)

    X_res, y_res = sampler.fit_resample(X, y)
    return pd.DataFrame(X_res, columns=X.columns), np.asarray(y_res).astype(int)


def prepare_split(
    X_train: pd.DataFrame,
    y_train,
    X_eval: Sequence[pd.DataFrame] = (),
    impute: bool = False,
    resample: bool = False,
    categorical_cols: Sequence[str] = (),
    k_neighbors: int = 5,
    target_ratio: float = 0.5,
    seed: int = 42,
) -> PreparedSplit:
    """Prepare one training partition and the partitions evaluated against it.

    Args:
        X_train: Training features
        y_train: Training labels
        X_eval: Validation/test frames; imputed with training statistics only
        impute: Fit imputation on ``X_train`` and apply it everywhere
        resample: Oversample the training partition
        categorical_cols: Columns treated as categorical
        k_neighbors: SMOTE neighbor count
        target_ratio: Desired minority/majority ratio after oversampling
        seed: Oversampling seed

    Returns:
        PreparedSplit with the transformed frames and their statistics
    """
    y = binary_labels(y_train)
    n_before, n_pos_before = len(y), int(y.sum())
    n_imputed = 0
    eval_frames = tuple(X_eval)

    if impute:
        n_imputed = int(X_train.isna().sum().sum())
        imputer = fit_imputer(X_train, categorical_cols)
        X_train = apply_imputer(imputer, X_train)
        eval_frames = tuple(apply_imputer(imputer, X) for X in eval_frames)

    if resample:
        X_train, y = oversample(
            X_train,
            y,
            categorical_cols=categorical_cols,
            k_neighbors=k_neighbors,
            target_ratio=target_ratio,
            seed=seed,
        )

    stats = PreprocessStats(
        n_before=n_before,
        n_pos_before=n_pos_before,
        n_after=len(y),
        n_pos_after=int(y.sum()),
        n_imputed_cells=n_imputed,
    )
    return PreparedSplit(X_train=X_train, y_train=y, X_eval=eval_frames, stats=stats)
