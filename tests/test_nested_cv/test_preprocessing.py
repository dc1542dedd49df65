"""Tests for training-split imputation and oversampling."""

import numpy as np
import pandas as pd
import pytest

from src.nested_cv.preprocessing import (
    apply_imputer,
    fit_imputer,
    oversample,
    prepare_split,
)


@pytest.fixture
def mixed_frame() -> tuple[pd.DataFrame, np.ndarray]:
    """80 rows: two numeric columns, one categorical code column, 20% positive."""
    rng = np.random.default_rng(5)
    df = pd.DataFrame({
        "age": rng.normal(65, 10, 80),
        "los_days": rng.exponential(4, 80),
        "admission_type": rng.integers(0, 3, 80),
    })
    y = np.array([1] * 16 + [0] * 64)
    return df, y


class TestImputation:
    def test_uses_training_statistics_only(self):
        train = pd.DataFrame({"a": [1.0, 2.0, np.nan, 3.0]})
        test = pd.DataFrame({"a": [np.nan, 100.0]})

        imputer = fit_imputer(train)
        completed = apply_imputer(imputer, test)

        assert completed["a"].tolist() == [2.0, 100.0]

    def test_categorical_most_frequent(self):
        train = pd.DataFrame({"code": [1, 1, 2, np.nan], "x": [0.0, 1.0, 2.0, 3.0]})

        imputer = fit_imputer(train, categorical_cols=["code"])
        completed = apply_imputer(imputer, train)

        assert completed["code"].iloc[3] == 1
        assert list(completed.columns) == ["code", "x"]

    def test_preserves_index(self):
        train = pd.DataFrame({"a": [1.0, np.nan]}, index=[10, 20])
        completed = apply_imputer(fit_imputer(train), train)
        assert list(completed.index) == [10, 20]


class TestOversample:
    def test_reaches_target_ratio(self, mixed_frame):
        X, y = mixed_frame

        X_res, y_res = oversample(X, y, categorical_cols=["admission_type"], target_ratio=0.5)

        n_pos = y_res.sum()
        assert n_pos / (len(y_res) - n_pos) == pytest.approx(0.5, abs=0.02)
        assert (y_res == 0).sum() == 64

    def test_synthetic_categories_are_observed_values(self, mixed_frame):
        X, y = mixed_frame

        X_res, _ = oversample(X, y, categorical_cols=["admission_type"], target_ratio=0.5)

        assert set(X_res["admission_type"].unique()) <= set(X["admission_type"].unique())

    def test_numeric_only_uses_smote(self, mixed_frame):
        X, y = mixed_frame

        X_res, y_res = oversample(X[["age", "los_days"]], y, target_ratio=0.5)

        assert len(y_res) > len(y)

    def test_already_balanced_is_unchanged(self, mixed_frame):
        X, y = mixed_frame

        X_res, y_res = oversample(X, y, target_ratio=0.2)

        assert len(y_res) == len(y)

    def test_missing_values_rejected(self, mixed_frame):
        X, y = mixed_frame
        X = X.copy()
        X.iloc[0, 0] = np.nan
        with pytest.raises(ValueError, match="impute first"):
            oversample(X, y)


class TestPrepareSplit:
    def test_evaluation_frames_never_resampled(self, mixed_frame):
        X, y = mixed_frame
        X_valid = X.iloc[:10].copy()
        X_valid.iloc[0, 0] = np.nan

        prepared = prepare_split(
            X,
            y,
            X_eval=[X_valid],
            impute=True,
            resample=True,
            categorical_cols=["admission_type"],
        )

        (valid_out,) = prepared.X_eval
        assert len(valid_out) == 10
        assert not valid_out.isna().any().any()
        assert len(prepared.y_train) > len(y)

    def test_stats_computed_once(self, mixed_frame):
        X, y = mixed_frame
        X = X.copy()
        X.iloc[:3, 1] = np.nan

        prepared = prepare_split(X, y, impute=True, resample=True, target_ratio=0.5)

        stats = prepared.stats
        assert stats.n_before == 80
        assert stats.n_pos_before == 16
        assert stats.n_imputed_cells == 3
        assert stats.n_synthetic == stats.n_after - 80
        assert stats.n_synthetic > 0
        assert stats.positive_rate_after > stats.positive_rate_before

    def test_no_op_by_default(self, mixed_frame):
        X, y = mixed_frame

        prepared = prepare_split(X, y)

        assert prepared.X_train is X
        assert prepared.stats.n_synthetic == 0
