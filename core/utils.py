from __future__ import annotations

import math
from typing import Any, Iterable

import pandas as pd
from dateutil.relativedelta import relativedelta


def require_columns(df: pd.DataFrame, cols: Iterable[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a loosely-typed numeric field; missing or malformed values become `default`."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip().replace(",", "").replace("$", "")
        if not value:
            return default
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(out) or math.isinf(out):
        return default
    return out


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is not positive."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def grow(amount: float, rate_pct: float, years: float) -> float:
    """Compound `amount` at `rate_pct` percent for `years` years."""
    if years <= 0:
        return amount
    return amount * (1.0 + rate_pct / 100.0) ** years


def year_end(year: int) -> pd.Timestamp:
    """Simulated sale date for a projection year."""
    return pd.Timestamp(year=int(year), month=12, day=31)


def long_term_cutoff(sale_date: pd.Timestamp) -> pd.Timestamp:
    """Lots acquired on or before this date are long-term at `sale_date`."""
    return pd.Timestamp(pd.Timestamp(sale_date).to_pydatetime() - relativedelta(years=1))
