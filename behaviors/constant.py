"""
AssetClassReturnModel — deterministic growth rates from the plan settings.

Resolution order for a holding's rate in a given year:
  1. per-ticker rate from settings.ticker_returns
  2. custom period for the asset class
  3. asset-class default CAGR (BTC defers to its growth model)

Monte Carlo overrides sit above all of these; see scenario.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Sequence

import pandas as pd

from .base import ReturnModel, custom_period_rate
from .btc import BtcGrowthModel


@dataclass(frozen=True)
class AssetClassReturnModel(ReturnModel):
    cagrs: Dict[str, float]
    btc_model: BtcGrowthModel
    inflation_rate: float = 3.0
    custom_periods: Dict[str, Sequence] = field(default_factory=dict)
    ticker_rates: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings, *, as_of_date: pd.Timestamp) -> "AssetClassReturnModel":
        periods = {
            ("real_estate" if key in ("realEstate", "real_estate") else key): tuple(value)
            for key, value in (settings.custom_return_periods or {}).items()
        }
        btc_model = BtcGrowthModel(
            model=settings.btc_return_model,
            cagr=settings.btc_cagr_assumption,
            as_of_date=pd.Timestamp(as_of_date),
            custom_periods=periods.get("btc"),
        )
        ticker_rates = {
            ticker: cfg.rate
            for ticker, cfg in (settings.ticker_returns or {}).items()
            if cfg.rate is not None
        }
        return cls(
            cagrs={
                "btc": settings.btc_cagr_assumption,
                "stocks": settings.stocks_cagr,
                "bonds": settings.bonds_cagr,
                "real_estate": settings.real_estate_cagr,
                "cash": settings.cash_cagr,
                "other": settings.other_cagr,
            },
            btc_model=btc_model,
            inflation_rate=settings.inflation_rate,
            custom_periods=periods,
            ticker_rates=ticker_rates,
        )

    def rate(self, asset: str, year_index: int) -> float:
        if asset == "btc":
            return self.btc_model.rate(year_index, self.inflation_rate)
        default = self.cagrs.get(asset, 0.0)
        return custom_period_rate(self.custom_periods.get(asset), year_index, default)

    def ticker_rate(self, ticker: str, asset: str, year_index: int) -> float:
        key = (ticker or "").upper()
        if key in self.ticker_rates:
            return self.ticker_rates[key]
        return self.rate(asset, year_index)
