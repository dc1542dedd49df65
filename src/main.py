"""Main pipeline entry point for nested cross-validation of readmission models.

Stages:
1. Load: Read the feature matrix (parquet or csv) and select feature columns
2. Evaluate: Nested CV with tuning, calibration and threshold selection
3. Report: Write per-fold tables, pooled predictions, importances and a
   markdown report
"""

import argparse
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from config.settings import Settings
from src.nested_cv.errors import NestedCVError


logger = logging.getLogger(__name__)


# Artifact file names inside the output directory
ARTIFACT_NAMES = {
    "report": "nested_cv_report.md",
    "fold_results": "fold_results.csv",
    "pooled_predictions": "pooled_predictions.csv",
    "feature_importance": "feature_importance.csv",
}


def load_feature_matrix(path: Path) -> pd.DataFrame:
    """Read a feature matrix from parquet or csv."""
    path = Path(path)
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path)


def split_features(
    feature_df: pd.DataFrame,
    settings: Settings,
) -> tuple[pd.DataFrame, pd.Series]:
    """Separate feature columns from the target.

    Raises:
        ValueError: If the target column is missing or not binary
    """
    if settings.target_col not in feature_df.columns:
        raise ValueError(f"Target column {settings.target_col} not found")

    y = feature_df[settings.target_col]
    if not set(y.unique()) <= {0, 1}:
        raise ValueError(f"Target column {settings.target_col} must be binary 0/1")

    exclude = set(settings.exclude_cols) | {settings.target_col}
    feature_cols = [c for c in feature_df.columns if c not in exclude]
    return feature_df[feature_cols], y.astype(int)


def run_pipeline(
    settings: Settings,
    feature_df: pd.DataFrame | None = None,
) -> dict[str, Any]:
    """Run nested cross-validation and write its artifacts.

    Args:
        settings: Pipeline configuration settings
        feature_df: Feature matrix with labels; loaded from
            ``settings.features_path`` when omitted

    Returns:
        Dictionary containing:
            - result: NestedCVResult
            - feature_shape: (n_admissions, n_features)
            - artifact_paths: Paths to generated artifacts
    """
    from src.nested_cv.orchestrator import run_nested_cv
    from src.nested_cv.report import (
        generate_nested_cv_report,
        pooled_predictions_frame,
        results_frame,
    )

    if feature_df is None:
        logger.info(f"Loading features from {settings.features_path}")
        feature_df = load_feature_matrix(settings.features_path)

    X, y = split_features(feature_df, settings)
    logger.info(f"  Shape: {X.shape}, {int(y.sum())} positive / {int(len(y) - y.sum())} negative")

    result = run_nested_cv(X, y, settings)

    output_dir = Path(settings.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {name: output_dir / filename for name, filename in ARTIFACT_NAMES.items()}

    results_frame(result).to_csv(paths["fold_results"], index=False)
    pooled_predictions_frame(result).to_csv(paths["pooled_predictions"], index=False)
    result.importance.table.to_csv(paths["feature_importance"], index=False)
    generate_nested_cv_report(result, paths["report"])
    logger.info(f"  Report saved to {paths['report']}")

    return {
        "result": result,
        "feature_shape": X.shape,
        "artifact_paths": paths,
    }


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the pipeline."""
    parser = argparse.ArgumentParser(
        description="Nested cross-validation of readmission prediction models",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--features",
        "-f",
        type=Path,
        default=None,
        help="Path to feature matrix (parquet or csv); overrides FEATURES_PATH",
    )
    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=None,
        help="Output directory for reports; overrides OUTPUT_DIR",
    )
    parser.add_argument("--target", type=str, default=None, help="Target column")
    parser.add_argument("--outer-folds", type=int, default=0, help="Outer folds (0 = settings)")
    parser.add_argument("--inner-folds", type=int, default=0, help="Inner folds (0 = settings)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--threshold-policy",
        choices=["oof", "test"],
        default=None,
        help="Where decision thresholds are chosen",
    )
    parser.add_argument("--impute", action="store_true", help="Impute missing values")
    parser.add_argument(
        "--oversample",
        action="store_true",
        help="SMOTE-NC oversampling of training splits (implies --impute)",
    )
    parser.add_argument("--n-jobs", type=int, default=0, help="Concurrent grid configurations")
    parser.add_argument("--no-shap", action="store_true", help="Skip SHAP attribution")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Override settings from CLI args
    updates = {}
    if args.features is not None:
        updates["features_path"] = args.features
    if args.output_dir is not None:
        updates["output_dir"] = args.output_dir
    if args.target:
        updates["target_col"] = args.target
    if args.outer_folds > 0:
        updates["outer_folds"] = args.outer_folds
    if args.inner_folds > 0:
        updates["inner_folds"] = args.inner_folds
    if args.seed is not None:
        updates["seed"] = args.seed
    if args.threshold_policy:
        updates["threshold_policy"] = args.threshold_policy
    if args.impute or args.oversample:
        updates["impute"] = True
    if args.oversample:
        updates["oversample"] = True
    if args.n_jobs > 0:
        updates["n_jobs"] = args.n_jobs
    if args.no_shap:
        updates["compute_shap"] = False

    try:
        settings = Settings(**updates)
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 1

    if not settings.features_path.exists():
        logger.error(f"Feature file not found: {settings.features_path}")
        return 1

    try:
        output = run_pipeline(settings)
    except NestedCVError as e:
        logger.error(f"Nested CV aborted at stage {e.stage}, fold {e.fold}: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 1

    result = output["result"]

    # Print summary
    print("\n" + "=" * 60)
    print("Nested Cross-Validation Complete")
    print("=" * 60)
    print(f"Feature matrix: {output['feature_shape'][0]} x {output['feature_shape'][1]}")
    print(f"Valid folds: {len(result.folds)}, skipped units: {result.n_skipped}")

    if result.folds:
        agg = result.aggregate
        print(f"\n{'Metric':<12} {'Mean':>8} {'Std':>8} {'Pooled':>8}")
        for name, m, s, p in zip(agg.mean._fields, agg.mean, agg.std, agg.pooled):
            print(f"{name:<12} {m:>8.4f} {s:>8.4f} {p:>8.4f}")

    print("\nArtifacts:")
    for name, path in output["artifact_paths"].items():
        print(f"  {name}: {path}")

    return 0


if __name__ == "__main__":
    exit(main())
