"""Shared fixtures for nested cross-validation tests.

Synthetic data is noisy (``flip_y``) so that no inner or outer validation
fold is perfectly separable and Platt scaling always has a finite optimum.
"""

import numpy as np
import pandas as pd
import pytest
from sklearn.datasets import make_classification

from config.settings import Settings


N_FEATURES = 8


@pytest.fixture
def readmission_frame() -> pd.DataFrame:
    """150 admissions, 8 features, ~30% readmitted, 10% label noise."""
    X, y = make_classification(
        n_samples=150,
        n_features=N_FEATURES,
        n_informative=4,
        n_redundant=2,
        class_sep=0.8,
        flip_y=0.1,
        weights=[0.7, 0.3],
        random_state=7,
    )

    feature_cols = [f"feature_{i}" for i in range(N_FEATURES)]
    df = pd.DataFrame(X, columns=feature_cols)
    df["subject_id"] = np.arange(1, 151)
    df["hadm_id"] = np.arange(1001, 1151)
    df["readmitted_30d"] = y

    return df


@pytest.fixture
def Xy(readmission_frame) -> tuple[pd.DataFrame, np.ndarray]:
    feature_cols = [c for c in readmission_frame.columns if c.startswith("feature_")]
    return readmission_frame[feature_cols], readmission_frame["readmitted_30d"].to_numpy()


@pytest.fixture
def fast_settings(tmp_path) -> Settings:
    """Small folds, two configurations and few rounds for quick runs."""
    return Settings(
        _env_file=None,
        output_dir=tmp_path / "out",
        outer_folds=3,
        inner_folds=2,
        calibration_folds=2,
        max_rounds=30,
        early_stopping_rounds=5,
        param_grid={
            "learning_rate": [0.1, 0.3],
            "num_leaves": [7],
            "min_child_samples": [1],
        },
        shap_max_rows=0,
    )
