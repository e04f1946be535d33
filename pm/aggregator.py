"""
Aggregate N path results into distribution summaries.

Instead of: "final portfolio = $2.1M" (one number, no context)
The planner gets: "final portfolio: median $2.1M, 10th pctl $340k, 3% of paths at $0"

Two views:
  - per-path metrics → one row per metric with mean / percentiles
  - per-year totals  → percentile bands of the portfolio by year and age,
                       the fan chart of the projection
"""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np
import pandas as pd

from core.utils import require_columns

BAND_PERCENTILES: Tuple[float, ...] = (0.10, 0.25, 0.50, 0.75, 0.90)


def aggregate_path_results(
    path_metrics: pd.DataFrame,
    *,
    percentiles: Tuple[float, ...] = (0.05, 0.10, 0.25, 0.50, 0.75, 0.90, 0.95),
) -> Dict[str, object]:
    """
    Aggregate per-path metrics into distribution summaries.

    Parameters
    ----------
    path_metrics : pd.DataFrame
        Output of pm.metrics.compute_path_metrics() with one row per path.
    percentiles : tuple of float
        Percentile levels to report

    Returns
    -------
    Dict with:
      "summary_table":        one row per metric with mean/median/percentiles
      "final_distribution":   every path's final portfolio (for histograms)
      "depletion_ages":       depletion age of every failed path
      "success_rate", "liquidation_risk", "n_paths"
    """
    metrics_to_summarize = {
        "Final Portfolio ($)": "final_portfolio",
        "Minimum Portfolio ($)": "min_portfolio",
        "Depletion Age": "deplete_age",
    }

    rows = []
    for label, col in metrics_to_summarize.items():
        if col not in path_metrics.columns:
            continue
        values = pd.to_numeric(path_metrics[col], errors="coerce").dropna().values
        if len(values) == 0:
            continue

        row = {
            "Metric": label,
            "Mean": float(np.mean(values)),
            "Std Dev": float(np.std(values)),
            "Min": float(np.min(values)),
        }
        for p in percentiles:
            row[f"P{int(p * 100):02d}"] = float(np.percentile(values, p * 100))
        row["Max"] = float(np.max(values))
        rows.append(row)

    n = len(path_metrics)
    if n:
        survives = path_metrics["survives"].astype(bool)
        success_rate = float(survives.mean())
        liquidation_risk = float((path_metrics["forced_liquidation"].astype(bool) & ~survives).mean())
    else:
        success_rate = 0.0
        liquidation_risk = 0.0

    return {
        "summary_table": pd.DataFrame(rows),
        "final_distribution": path_metrics["final_portfolio"].values if n else np.array([]),
        "depletion_ages": path_metrics["deplete_age"].dropna().values if n else np.array([]),
        "success_rate": success_rate,
        "liquidation_risk": liquidation_risk,
        "n_paths": n,
    }


def aggregate_totals_by_year(
    path_frame: pd.DataFrame,
    *,
    value_col: str = "total",
    percentiles: Tuple[float, ...] = BAND_PERCENTILES,
) -> pd.DataFrame:
    """
    Portfolio value across paths → mean + percentile bands per year.

    Returns one row per (year, age) with columns mean, p10, p25, p50, p75, p90
    (labels follow `percentiles`) and the share of paths already depleted.
    """
    require_columns(path_frame, ["year", "age", value_col])
    labels = [f"p{int(p * 100):02d}" for p in percentiles]
    if path_frame.empty:
        return pd.DataFrame(columns=["year", "age", "mean"] + labels + ["depleted_share"])

    grouped = path_frame.groupby(["year", "age"])[value_col]
    bands = grouped.mean().rename("mean").to_frame()
    for p, label in zip(percentiles, labels):
        bands[label] = grouped.quantile(p)
    if "depleted" in path_frame.columns:
        bands["depleted_share"] = path_frame.groupby(["year", "age"])["depleted"].mean()
    else:
        bands["depleted_share"] = 0.0
    return bands.reset_index().sort_values("year").reset_index(drop=True)
