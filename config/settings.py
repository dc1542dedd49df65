from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PARAM_GRID: dict[str, list[int | float]] = {
    "learning_rate": [0.01, 0.05],
    "max_depth": [-1],
    "num_leaves": [15, 31],
    "min_child_samples": [10, 20],
    "colsample_bytree": [0.8],
    "subsample": [0.8],
    "subsample_freq": [1],
    "reg_alpha": [0.0],
    "reg_lambda": [1.0],
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    features_path: Path = Field(default=Path("data/features/feature_matrix.parquet"))
    output_dir: Path = Field(default=Path("outputs/nested_cv"))

    # Columns
    target_col: str = Field(default="readmitted_30d")
    exclude_cols: list[str] = Field(
        default=["hadm_id", "subject_id", "readmitted_30d", "readmitted_60d"]
    )
    categorical_cols: list[str] = Field(default=[])

    # Cross-validation
    outer_folds: int = Field(default=5)
    inner_folds: int = Field(default=3)
    calibration_folds: int = Field(default=3)
    seed: int = Field(default=42)

    # Boosting
    max_rounds: int = Field(default=1000)
    early_stopping_rounds: int = Field(default=50)
    eval_metric: str = Field(default="logloss")
    xgb_n_threads: int = Field(default=1)
    param_grid: dict[str, list[int | float]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_PARAM_GRID.items()}
    )

    # "oof": threshold chosen on out-of-fold training predictions (unbiased)
    # "test": threshold chosen on the scored test fold (optimistic)
    threshold_policy: Literal["oof", "test"] = Field(default="oof")

    # Training-split preprocessing
    impute: bool = Field(default=False)
    oversample: bool = Field(default=False)
    smote_k_neighbors: int = Field(default=5)
    smote_target_ratio: float = Field(default=0.5)

    # Execution
    n_jobs: int = Field(default=1)  # concurrent grid configurations per tuning run

    # Feature attribution
    compute_shap: bool = Field(default=True)
    shap_max_rows: int = Field(default=500)  # 0 = all test rows

    @model_validator(mode="after")
    def _validate_cv_config(self) -> "Settings":
        for name in ("outer_folds", "inner_folds", "calibration_folds"):
            if getattr(self, name) < 2:
                raise ValueError(f"{name.upper()} must be at least 2")
        if self.max_rounds < 1:
            raise ValueError("MAX_ROUNDS must be at least 1")
        if self.early_stopping_rounds < 1:
            raise ValueError("EARLY_STOPPING_ROUNDS must be at least 1")
        if self.oversample and not self.impute:
            raise ValueError(
                "OVERSAMPLE requires IMPUTE=true; SMOTE cannot interpolate missing values."
            )
        if not 0 < self.smote_target_ratio <= 1:
            raise ValueError("SMOTE_TARGET_RATIO must be in (0, 1]")
        unknown = sorted(set(self.param_grid) - set(DEFAULT_PARAM_GRID))
        if unknown:
            raise ValueError(f"PARAM_GRID has unknown hyperparameters: {unknown}")
        empty = [k for k, v in self.param_grid.items() if len(v) == 0]
        if empty:
            raise ValueError(f"PARAM_GRID has empty candidate lists: {empty}")
        return self
