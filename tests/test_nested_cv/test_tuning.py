"""Tests for the inner evaluator and grid search."""

import warnings

import numpy as np
import pytest

from src.nested_cv import tuning
from src.nested_cv.errors import TrainerFailure
from src.nested_cv.metrics import Metrics
from src.nested_cv.model import HyperparameterConfig
from src.nested_cv.split import stratified_folds
from src.nested_cv.tuning import (
    CandidateResult,
    InnerResult,
    build_grid,
    evaluate_config,
    select_best,
    tune,
)


def _inner(auc: float, iterations: float = 10.0) -> InnerResult:
    return InnerResult(
        metrics=Metrics(0.5, 0.5, 0.5, 0.5, 0.5, auc, 0.2),
        best_iteration=iterations,
        n_valid_folds=2,
        n_folds=2,
    )


@pytest.fixture
def fake_evaluator(monkeypatch):
    """Replace evaluate_config with a lookup of AUC by learning rate."""

    def install(auc_by_lr: dict, iterations: float = 10.0, failing: tuple = ()):
        def fake(X, y, config, folds, settings, seed=0):
            if config.learning_rate in failing:
                raise TrainerFailure("non-finite training loss")
            return _inner(auc_by_lr[config.learning_rate], iterations)

        monkeypatch.setattr(tuning, "evaluate_config", fake)

    return install


class TestBuildGrid:
    def test_cartesian_product_size(self):
        grid = build_grid({"learning_rate": [0.01, 0.1], "num_leaves": [7, 15, 31]})
        assert len(grid) == 6
        assert all(isinstance(c, HyperparameterConfig) for c in grid)

    def test_fixed_enumeration_order(self):
        grid = build_grid({"learning_rate": [0.01, 0.1], "num_leaves": [7, 15]})

        assert [(c.learning_rate, c.num_leaves) for c in grid] == [
            (0.01, 7),
            (0.01, 15),
            (0.1, 7),
            (0.1, 15),
        ]

    def test_order_independent_of_dict_order(self):
        a = build_grid({"learning_rate": [0.01, 0.1], "num_leaves": [7, 15]})
        b = build_grid({"num_leaves": [7, 15], "learning_rate": [0.01, 0.1]})
        assert a == b

    def test_missing_knobs_keep_defaults(self):
        (config,) = build_grid({"learning_rate": [0.2]})
        assert config == HyperparameterConfig(learning_rate=0.2)

    def test_values_cast_to_field_types(self):
        (config,) = build_grid({"num_leaves": [15.0], "reg_lambda": [1]})
        assert isinstance(config.num_leaves, int)
        assert isinstance(config.reg_lambda, float)

    def test_unknown_knob_raises(self):
        with pytest.raises(ValueError, match="n_estimators"):
            build_grid({"n_estimators": [100]})

    def test_empty_candidates_raise(self):
        with pytest.raises(ValueError):
            build_grid({"learning_rate": []})


class TestTuneSelection:
    """The configuration with maximum mean inner AUC wins; ties go to the lower index."""

    GRID = build_grid({"learning_rate": [0.01, 0.05, 0.1, 0.2]})

    def test_selects_maximum_auc(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({0.01: 0.61, 0.05: 0.74, 0.1: 0.69, 0.2: 0.55})

        result = tune(X, y, self.GRID, folds=(), settings=fast_settings)

        assert result.best_index == 1
        assert result.best_config.learning_rate == 0.05
        observed = [c.inner.metrics.auc for c in result.candidates]
        assert result.best.inner.metrics.auc == max(observed)

    def test_exact_tie_prefers_lower_index(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({0.01: 0.61, 0.05: 0.70, 0.1: 0.70, 0.2: 0.70})

        result = tune(X, y, self.GRID, folds=(), settings=fast_settings)

        assert result.best_index == 1

    def test_failed_configs_are_ineligible(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({0.01: 0.61, 0.05: 0.99, 0.1: 0.70, 0.2: 0.55}, failing=(0.05,))

        result = tune(X, y, self.GRID, folds=(), settings=fast_settings)

        assert result.best_index == 2
        assert result.n_failed == 1
        assert result.candidates[1].error is not None

    def test_all_configs_failing_raises(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({}, failing=(0.01, 0.05, 0.1, 0.2))

        with pytest.raises(TrainerFailure, match="All 4") as excinfo:
            tune(X, y, self.GRID, folds=(), settings=fast_settings, outer_fold=3)
        assert excinfo.value.fold == 3

    def test_round_budget_rounds_half_up(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({0.01: 0.6, 0.05: 0.6, 0.1: 0.6, 0.2: 0.6}, iterations=12.5)

        result = tune(X, y, self.GRID, folds=(), settings=fast_settings)

        assert result.n_rounds == 13

    def test_round_budget_at_least_one(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({0.01: 0.6, 0.05: 0.6, 0.1: 0.6, 0.2: 0.6}, iterations=0.2)

        assert tune(X, y, self.GRID, folds=(), settings=fast_settings).n_rounds == 1

    def test_threaded_matches_sequential(self, fake_evaluator, Xy, fast_settings):
        X, y = Xy
        fake_evaluator({0.01: 0.61, 0.05: 0.70, 0.1: 0.70, 0.2: 0.55})

        sequential = tune(X, y, self.GRID, folds=(), settings=fast_settings)
        threaded = tune(
            X, y, self.GRID, folds=(), settings=fast_settings.model_copy(update={"n_jobs": 4})
        )

        assert threaded.best_index == sequential.best_index
        assert [c.index for c in threaded.candidates] == [0, 1, 2, 3]


class TestSelectBest:
    def test_ignores_candidate_order(self):
        config = HyperparameterConfig()
        candidates = [
            CandidateResult(index=2, config=config, inner=_inner(0.8)),
            CandidateResult(index=0, config=config, inner=_inner(0.8)),
        ]
        assert select_best(candidates).index == 0


class TestEvaluateConfig:
    """Runs the real trainer on small inner folds."""

    def test_averages_over_inner_folds(self, Xy, fast_settings):
        X, y = Xy
        folds = stratified_folds(y, k=2, seed=0)
        config = HyperparameterConfig(learning_rate=0.1, num_leaves=7, min_child_samples=1)

        result = evaluate_config(X, y, config, folds, fast_settings, seed=1)

        assert result.n_folds == 2
        assert 1 <= result.n_valid_folds <= 2
        assert 0.0 <= result.metrics.auc <= 1.0
        assert 1 <= result.best_iteration <= fast_settings.max_rounds
        assert all(np.isfinite(result.metrics))

    def test_malformed_config_raises(self, Xy, fast_settings):
        X, y = Xy
        folds = stratified_folds(y, k=2, seed=0)
        config = HyperparameterConfig(learning_rate=-1.0)

        with pytest.raises(TrainerFailure):
            evaluate_config(X, y, config, folds, fast_settings)

    def test_deterministic(self, Xy, fast_settings):
        X, y = Xy
        folds = stratified_folds(y, k=2, seed=0)
        config = HyperparameterConfig(learning_rate=0.1, num_leaves=7, min_child_samples=1)

        a = evaluate_config(X, y, config, folds, fast_settings, seed=1)
        b = evaluate_config(X, y, config, folds, fast_settings, seed=1)

        assert a == b

    def test_non_binary_labels_raise(self, Xy, fast_settings):
        X, y = Xy
        folds = stratified_folds(y, k=2, seed=0)
        y = y.astype(float)
        y[0] = 0.7

        with pytest.raises(ValueError, match="binary"):
            evaluate_config(X, y, HyperparameterConfig(), folds, fast_settings)


class TestThreadedTuning:
    """Thread-pool grid search with the real trainer and calibrator."""

    def test_matches_sequential_run(self, Xy, fast_settings):
        X, y = Xy
        folds = stratified_folds(y, k=2, seed=0)
        grid = build_grid(fast_settings.param_grid)
        filters_before = list(warnings.filters)

        sequential = tune(X, y, grid, folds, fast_settings, seed=3)
        threaded = tune(
            X, y, grid, folds, fast_settings.model_copy(update={"n_jobs": 2}), seed=3
        )

        assert threaded == sequential
        assert list(warnings.filters) == filters_before
