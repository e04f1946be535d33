"""
OverrideReturnModel — per-path returns injected by the Monte Carlo driver.

The deterministic model answers "what do we expect?"; the sampler answers
"what happened on this path?". Wrapping the first with the second lets the
same projection loop run both: wherever a sampled return exists for an asset
and year it wins, including over per-ticker rates, otherwise the wrapped
model answers.

Usage by engine/monte_carlo.py:
    for p in range(n_paths):
        model = OverrideReturnModel(base=deterministic, overrides=paths.get_path(p))
        result = run_unified_projection(inputs, cfg, return_model=model)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .base import ReturnModel


@dataclass(frozen=True)
class OverrideReturnModel(ReturnModel):
    base: ReturnModel
    overrides: Mapping[str, Sequence[float]] = field(default_factory=dict)

    def _override(self, asset: str, year_index: int):
        series = self.overrides.get(asset)
        if series is None or year_index < 0 or year_index >= len(series):
            return None
        return float(series[year_index])

    def rate(self, asset: str, year_index: int) -> float:
        value = self._override(asset, year_index)
        return self.base.rate(asset, year_index) if value is None else value

    def ticker_rate(self, ticker: str, asset: str, year_index: int) -> float:
        value = self._override(asset, year_index)
        return self.base.ticker_rate(ticker, asset, year_index) if value is None else value
