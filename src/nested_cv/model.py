"""Gradient-boosted tree training with early stopping.

Wraps ``xgboost.XGBClassifier`` behind the trainer boundary used by the
tuning and orchestration code: a hyperparameter configuration goes in, a
``TrainedModel`` with a best-iteration count and a raw-score ``predict``
comes out. Class imbalance is handled with ``scale_pos_weight`` computed from
the training split it is fitted on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple, Union

import numpy as np
import pandas as pd
from scipy.special import expit
from xgboost import XGBClassifier
from xgboost.core import XGBoostError

from src.nested_cv.errors import TrainerFailure

logger = logging.getLogger(__name__)

ArrayLike = Union[pd.DataFrame, np.ndarray]


class HyperparameterConfig(NamedTuple):
    """One point of the hyperparameter grid.

    Field names follow the leaf-wise boosting vocabulary; see
    ``_to_xgb_params`` for how each knob maps onto XGBoost.
    """

    learning_rate: float = 0.05
    max_depth: int = -1
    num_leaves: int = 31
    min_child_samples: int = 20
    colsample_bytree: float = 1.0
    subsample: float = 1.0
    subsample_freq: int = 0
    reg_alpha: float = 0.0
    reg_lambda: float = 0.0


@dataclass(frozen=True)
class TrainedModel:
    """A fitted booster and the number of rounds it uses for prediction."""

    estimator: XGBClassifier
    best_iteration: int
    scale_pos_weight: float

    def predict(self, X: ArrayLike) -> np.ndarray:
        """Raw scores (log-odds margins) using the first ``best_iteration`` rounds.

        Raises:
            TrainerFailure: If the booster produces NaN or infinite scores
        """
        scores = self.estimator.predict(
            X, output_margin=True, iteration_range=(0, self.best_iteration)
        )
        if not np.all(np.isfinite(scores)):
            raise TrainerFailure("Model produced non-finite scores", stage="predict")
        return scores

    def predict_proba(self, X: ArrayLike) -> np.ndarray:
        """Uncalibrated positive-class probabilities."""
        return expit(self.predict(X))


def compute_scale_pos_weight(y: Union[pd.Series, np.ndarray]) -> float:
    """Ratio of negative to positive cases; 1.0 when there are no positives."""
    y_array = np.asarray(y)
    n_pos = int(y_array.sum())
    n_neg = len(y_array) - n_pos
    return n_neg / n_pos if n_pos > 0 else 1.0


def _validate_config(config: HyperparameterConfig) -> None:
    if config.learning_rate <= 0:
        raise TrainerFailure(f"learning_rate must be positive, got {config.learning_rate}")
    if config.num_leaves <= 0 and config.max_depth <= 0:
        raise TrainerFailure("Either num_leaves or max_depth must bound tree size")
    if config.num_leaves == 1:
        raise TrainerFailure("num_leaves must be at least 2")
    for name in ("colsample_bytree", "subsample"):
        value = getattr(config, name)
        if not 0 < value <= 1:
            raise TrainerFailure(f"{name} must be in (0, 1], got {value}")
    for name in ("min_child_samples", "subsample_freq", "reg_alpha", "reg_lambda"):
        if getattr(config, name) < 0:
            raise TrainerFailure(f"{name} must be non-negative, got {getattr(config, name)}")


def _to_xgb_params(config: HyperparameterConfig) -> dict:
    """Translate a configuration into XGBClassifier keyword arguments.

    - ``num_leaves > 0`` selects leaf-wise growth (``grow_policy="lossguide"``)
      with ``max_leaves=num_leaves``; ``max_depth <= 0`` then means unlimited.
    - ``min_child_samples`` bounds the minimum hessian sum per leaf
      (``min_child_weight``).
    - ``subsample_freq == 0`` disables row subsampling; any positive value
      subsamples rows every round.
    """
    params = {
        "learning_rate": config.learning_rate,
        "min_child_weight": config.min_child_samples,
        "colsample_bytree": config.colsample_bytree,
        "subsample": config.subsample if config.subsample_freq > 0 else 1.0,
        "reg_alpha": config.reg_alpha,
        "reg_lambda": config.reg_lambda,
    }
    if config.num_leaves > 0:
        params["grow_policy"] = "lossguide"
        params["max_leaves"] = config.num_leaves
        params["max_depth"] = max(config.max_depth, 0)
    else:
        params["grow_policy"] = "depthwise"
        params["max_depth"] = config.max_depth
    return params


def train_model(
    X_train: ArrayLike,
    y_train: Union[pd.Series, np.ndarray],
    config: HyperparameterConfig,
    max_rounds: int,
    X_valid: ArrayLike | None = None,
    y_valid: Union[pd.Series, np.ndarray] | None = None,
    early_stopping_rounds: int | None = None,
    eval_metric: str = "logloss",
    seed: int = 42,
    n_threads: int = 1,
) -> TrainedModel:
    """Train a boosted-tree classifier for readmission prediction.

    When validation data and ``early_stopping_rounds`` are both given,
    training stops once the validation ``eval_metric`` has not improved for
    that many consecutive rounds and ``best_iteration`` is the number of
    rounds up to and including the best one. Otherwise exactly
    ``max_rounds`` rounds are trained.

    Args:
        X_train: Training features
        y_train: Training labels
        config: Hyperparameter configuration
        max_rounds: Upper bound on boosting rounds
        X_valid: Validation features for early stopping
        y_valid: Validation labels for early stopping
        early_stopping_rounds: Patience in rounds
        eval_metric: Metric monitored on the validation set
        seed: Random seed for row/column subsampling
        n_threads: Threads used by XGBoost

    Returns:
        TrainedModel

    Raises:
        TrainerFailure: If the configuration is malformed or XGBoost rejects it
    """
    if max_rounds < 1:
        raise TrainerFailure(f"max_rounds must be at least 1, got {max_rounds}")
    _validate_config(config)

    early_stop = (
        X_valid is not None and y_valid is not None and early_stopping_rounds is not None
    )
    scale_pos_weight = compute_scale_pos_weight(y_train)

    model = XGBClassifier(
        n_estimators=max_rounds,
        objective="binary:logistic",
        tree_method="hist",
        scale_pos_weight=scale_pos_weight,
        eval_metric=eval_metric,
        early_stopping_rounds=early_stopping_rounds if early_stop else None,
        random_state=seed,
        n_jobs=n_threads,
        **_to_xgb_params(config),
    )

    fit_kwargs = {"verbose": False}
    if early_stop:
        fit_kwargs["eval_set"] = [(X_valid, y_valid)]

    try:
        model.fit(X_train, y_train, **fit_kwargs)
    except (XGBoostError, ValueError) as e:
        raise TrainerFailure(f"XGBoost training failed: {e}", stage="train") from e

    best_iteration = model.best_iteration + 1 if early_stop else max_rounds
    trained = TrainedModel(
        estimator=model,
        best_iteration=int(best_iteration),
        scale_pos_weight=scale_pos_weight,
    )

    logger.debug(
        "Trained %d rounds (max %d, scale_pos_weight=%.3f)",
        trained.best_iteration,
        max_rounds,
        scale_pos_weight,
    )
    return trained
