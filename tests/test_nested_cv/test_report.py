"""Tests for tabular and markdown report generation."""

import numpy as np
import pytest

from src.nested_cv.metrics import METRIC_NAMES
from src.nested_cv.orchestrator import run_nested_cv
from src.nested_cv.report import (
    generate_nested_cv_report,
    pooled_predictions_frame,
    results_frame,
)


@pytest.fixture
def nested_result(Xy, fast_settings):
    X, y = Xy
    return run_nested_cv(X, y, fast_settings)


class TestResultsFrame:
    def test_one_row_per_fold(self, nested_result):
        df = results_frame(nested_result)

        assert len(df) == len(nested_result.folds)
        for col in [*METRIC_NAMES, "threshold", "n_rounds", "learning_rate", "scale_pos_weight"]:
            assert col in df.columns

    def test_values_match_fold_records(self, nested_result):
        df = results_frame(nested_result)

        for (_, row), f in zip(df.iterrows(), nested_result.folds):
            assert row["auc"] == pytest.approx(f.metrics.auc)
            assert row["threshold"] == pytest.approx(f.threshold)
            assert row["calibration_slope"] == pytest.approx(f.calibration.slope)


class TestPooledPredictionsFrame:
    def test_covers_every_row_once(self, nested_result, Xy):
        _, y = Xy

        df = pooled_predictions_frame(nested_result)

        assert df["row"].tolist() == list(range(len(y)))
        np.testing.assert_array_equal(df["label"].to_numpy(), y)
        assert df["calibrated"].between(0, 1).all()


class TestGenerateReport:
    def test_writes_markdown(self, nested_result, tmp_path):
        path = tmp_path / "reports" / "nested_cv.md"

        generate_nested_cv_report(nested_result, path, top_n=5)

        text = path.read_text()
        assert text.startswith("# Nested Cross-Validation Report")
        assert "## Per-Fold Metrics" in text
        assert "| Metric | Mean | Std | Pooled |" in text
        assert "out-of-fold training predictions" in text
        assert "## Skipped Units (0)" in text
        assert "## Top-5 Feature Importance (3 folds)" in text
        assert "feature_" in text

    def test_test_policy_flagged_optimistic(self, Xy, fast_settings, tmp_path):
        X, y = Xy
        settings = fast_settings.model_copy(
            update={"threshold_policy": "test", "compute_shap": False}
        )
        result = run_nested_cv(X, y, settings)
        path = tmp_path / "report.md"

        generate_nested_cv_report(result, path)

        assert "**optimistic**" in path.read_text()
