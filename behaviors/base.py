"""
Base classes for growth-rate models.
Just the interface and the custom-period lookup, no implementations.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from core.schema import MC_ASSET_ORDER


def custom_period_rate(
    periods: Optional[Sequence],
    year_index: int,
    fallback: Optional[float],
) -> Optional[float]:
    """
    Rate from user-entered custom periods, or `fallback` when none covers the year.

    Periods use 1-based year numbers (year 1 is the first projection year) and
    an open end when end_year is None. The first matching period wins.
    """
    if not periods:
        return fallback
    year_number = year_index + 1
    for period in periods:
        if period.covers(year_number):
            return period.rate
    return fallback


class ReturnModel:
    """Interface for annual growth rates, in percent, per asset class and projection year."""

    def rate(self, asset: str, year_index: int) -> float:
        raise NotImplementedError

    def ticker_rate(self, ticker: str, asset: str, year_index: int) -> float:
        return self.rate(asset, year_index)

    def rates(self, year_index: int) -> Dict[str, float]:
        return {asset: self.rate(asset, year_index) for asset in MC_ASSET_ORDER}
