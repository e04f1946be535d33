"""
Per-path retirement metrics.

Reduces each path's year rows to the numbers the decision layer cares
about: did the money last, when did it run out, what was left, and did a
forced liquidation happen along the way.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from core.utils import require_columns


def compute_path_metrics(
    path_frame: pd.DataFrame,
    *,
    path_col: str = "path_id",
) -> pd.DataFrame:
    """
    Compute survival, depletion age, final portfolio and liquidation flags per path.

    Parameters
    ----------
    path_frame : pd.DataFrame
        Long table with one row per path and year.
        Required columns: path_id, year, age, total, depleted, forced_liquidations

    Returns
    -------
    DataFrame with one row per path:
        path_id, survives, deplete_age, final_portfolio, min_portfolio,
        forced_liquidation, forced_liquidation_count
    """
    require_columns(path_frame, [path_col, "year", "age", "total", "depleted", "forced_liquidations"])
    columns = [
        path_col, "survives", "deplete_age", "final_portfolio", "min_portfolio",
        "forced_liquidation", "forced_liquidation_count",
    ]
    if path_frame.empty:
        return pd.DataFrame(columns=columns)

    results = []
    for path_id, grp in path_frame.sort_values([path_col, "year"]).groupby(path_col, sort=True):
        depleted = grp["depleted"].astype(bool).values
        deplete_age = int(grp["age"].values[np.argmax(depleted)]) if depleted.any() else None
        liquidations = int(grp["forced_liquidations"].sum())
        results.append({
            path_col: path_id,
            "survives": not depleted.any(),
            "deplete_age": deplete_age,
            "final_portfolio": float(round(grp["total"].values[-1])),
            "min_portfolio": float(grp["total"].min()),
            "forced_liquidation": liquidations > 0,
            "forced_liquidation_count": liquidations,
        })

    metrics = pd.DataFrame(results, columns=columns)
    metrics["survives"] = metrics["survives"].astype(bool)
    metrics["forced_liquidation"] = metrics["forced_liquidation"].astype(bool)
    return metrics
