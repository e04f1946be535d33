"""
Bitcoin growth-rate models.

  custom          flat user CAGR
  powerlaw        year-over-year growth implied by the power-law fair value
  saylor24        declining schedule keyed to calendar year
  conservative    flat 15%
  custom_periods  user periods, falling back to the power law

Power law: log10(price) = A * log10(days since genesis) + B, with bands at
+/- 0.6 in log space. All dates derive from the caller's as-of date.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd
from dateutil.relativedelta import relativedelta

from .base import custom_period_rate

BTC_GENESIS_DATE = pd.Timestamp("2009-01-03")
POWER_LAW_A = 5.85
POWER_LAW_B = -17.2
BAND_OFFSET = 0.6
CONSERVATIVE_CAGR = 15.0


def days_since_genesis(when: pd.Timestamp) -> int:
    return max(1, (pd.Timestamp(when) - BTC_GENESIS_DATE).days)


def power_law_price(when: pd.Timestamp, band: str = "middle") -> float:
    log_price = POWER_LAW_A * math.log10(days_since_genesis(when)) + POWER_LAW_B
    if band == "lower":
        log_price -= BAND_OFFSET
    elif band == "upper":
        log_price += BAND_OFFSET
    return 10.0 ** log_price


def power_law_cagr(year_index: int, as_of_date: pd.Timestamp) -> float:
    """Implied growth (percent) between year `year_index` and the year after it."""
    start = pd.Timestamp(as_of_date) + relativedelta(years=year_index)
    end = start + relativedelta(years=1)
    return (power_law_price(end) / power_law_price(start) - 1.0) * 100.0


def saylor24_rate(calendar_year: int, inflation_rate: float) -> float:
    if calendar_year <= 2037:
        return max(20.0, 50.0 - (calendar_year - 2025) * 2.5)
    if calendar_year <= 2045:
        return 20.0
    if calendar_year <= 2075:
        target = inflation_rate + 3.0
        return 20.0 - (20.0 - target) * ((calendar_year - 2045) / 30.0)
    return inflation_rate + 2.0


@dataclass(frozen=True)
class BtcGrowthModel:
    model: str
    cagr: float
    as_of_date: pd.Timestamp
    custom_periods: Optional[Sequence] = None

    def rate(self, year_index: int, inflation_rate: float) -> float:
        custom = custom_period_rate(self.custom_periods, year_index, None)
        if custom is not None:
            return custom
        if self.model in ("powerlaw", "custom_periods"):
            return power_law_cagr(year_index, self.as_of_date)
        if self.model == "saylor24":
            return saylor24_rate(pd.Timestamp(self.as_of_date).year + year_index, inflation_rate)
        if self.model == "conservative":
            return CONSERVATIVE_CAGR
        return self.cagr
