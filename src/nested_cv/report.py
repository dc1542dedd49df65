"""Tabular and markdown views of a nested cross-validation result.

These read the immutable result records only; nothing here recomputes
training statistics.
"""

from pathlib import Path

import pandas as pd

from src.nested_cv.metrics import METRIC_NAMES
from src.nested_cv.results import NestedCVResult


def results_frame(result: NestedCVResult) -> pd.DataFrame:
    """One row per valid outer fold: metrics, threshold, selected config, class balance."""
    rows = []
    for f in result.folds:
        row = {"fold": f.fold}
        row.update(f.metrics._asdict())
        row["threshold"] = f.threshold
        row["n_rounds"] = f.n_rounds
        row["config_index"] = f.tuning.best_index
        row["n_ineligible_configs"] = f.tuning.n_failed
        row.update(f.evaluation.config._asdict())
        row["calibration_intercept"] = f.calibration.intercept
        row["calibration_slope"] = f.calibration.slope
        row["train_positive_rate"] = f.preprocess.positive_rate_before
        row["n_synthetic"] = f.preprocess.n_synthetic
        row["scale_pos_weight"] = f.model.scale_pos_weight
        rows.append(row)
    return pd.DataFrame(rows)


def pooled_predictions_frame(result: NestedCVResult) -> pd.DataFrame:
    """Concatenated test predictions of every valid fold, ordered by row index."""
    frames = [
        pd.DataFrame({
            "row": f.test_idx,
            "fold": f.fold,
            "raw_score": f.raw_predictions,
            "calibrated": f.calibrated_predictions,
            "label": f.labels,
        })
        for f in result.folds
    ]
    if not frames:
        return pd.DataFrame(columns=["row", "fold", "raw_score", "calibrated", "label"])
    return pd.concat(frames, ignore_index=True).sort_values("row").reset_index(drop=True)


def generate_nested_cv_report(
    result: NestedCVResult,
    output_path: Path,
    top_n: int = 20,
) -> None:
    """Write a markdown report of a nested cross-validation run.

    Contains:
    - Per-fold metrics with threshold and round budget
    - Mean ± std across folds and pooled dataset-level metrics
    - Skipped units with reasons
    - Top-N features by mean absolute SHAP value

    Args:
        result: Result of run_nested_cv()
        output_path: Path to write the markdown report
        top_n: Number of features listed
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    header = "| Fold | " + " | ".join(m.upper() if m == "auc" else m.capitalize() for m in METRIC_NAMES)
    header += " | Threshold | Rounds | Config |"
    divider = "|---" * (len(METRIC_NAMES) + 4) + "|"
    fold_rows = "\n".join(
        f"| {f.fold} | "
        + " | ".join(f"{v:.4f}" for v in f.metrics)
        + f" | {f.threshold:.2f} | {f.n_rounds} | {f.tuning.best_index} |"
        for f in result.folds
    )

    if result.folds:
        agg = result.aggregate
        summary_rows = "\n".join(
            f"| **{name}** | {m:.4f} | {s:.4f} | {p:.4f} |"
            for name, m, s, p in zip(METRIC_NAMES, agg.mean, agg.std, agg.pooled)
        )
        summary = f"""| Metric | Mean | Std | Pooled |
|---|---|---|---|
{summary_rows}

Pooled metrics use all {sum(len(f.labels) for f in result.folds)} test predictions at threshold {agg.pooled_threshold:.2f}."""
    else:
        summary = "No valid folds."

    if result.threshold_policy == "test":
        policy = (
            "Thresholds were chosen on the scored test labels; threshold-dependent "
            "metrics are **optimistic**."
        )
    else:
        policy = "Thresholds were chosen on out-of-fold training predictions."

    if result.skipped:
        skipped_rows = "\n".join(
            f"| {s.fold} | {s.stage} | {s.reason} |" for s in result.skipped
        )
        skipped = f"""| Fold | Stage | Reason |
|---|---|---|
{skipped_rows}"""
    else:
        skipped = "None."

    table = result.importance.table.head(top_n)
    feature_rows = "\n".join(
        f"| {i+1} | {row['feature']} | {row['importance']:.4f} |"
        for i, row in table.iterrows()
    )
    features_table = f"""| Rank | Feature | Mean \\|SHAP\\| |
|---|---|---|
{feature_rows}"""

    report = f"""# Nested Cross-Validation Report

## Per-Fold Metrics

{header}
{divider}
{fold_rows}

## Summary

{summary}

{policy}

## Skipped Units ({result.n_skipped})

{skipped}

## Top-{top_n} Feature Importance ({result.importance.n_folds} folds)

{features_table}
"""

    output_path.write_text(report)
