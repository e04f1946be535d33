"""
Return-path sampler — generates N paths of correlated annual returns per asset class.

Input:  expected return per asset and year (from a growth-rate model) + a seeded RNG
Output: (N × years × 6) table of percent returns, plus the shocks that produced it

Each path is one plausible market history:
  Path 1: BTC +80%, -55%, +140%, ...  stocks +9%, -18%, +21%, ...
  Path 2: BTC +12%, +35%, -70%, ...   stocks +4%, +11%, -31%, ...

Method, per path and year:
  1. Draw six independent shocks: skewed Student-t for BTC (fat tails, more
     upside than downside), standard normal for the other five
  2. Correlate them through the Cholesky factor of the asset matrix
  3. Return = expected + volatility × shock, clamped for BTC and stocks

The correlated shocks are kept so a scenario can be re-priced against the
same market history under different expected returns (regenerate_returns).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List

import numpy as np
import pandas as pd

from core.schema import MC_ASSET_ORDER

from .correlation import ASSET_CHOLESKY, correlate
from .rng import Mulberry32

BTC_SKEW_PARAM = 1.15
BTC_DEGREES_OF_FREEDOM = 5

BTC_INITIAL_VOLATILITY = 55.0
BTC_MINIMUM_VOLATILITY = 20.0
BTC_VOLATILITY_DECAY = 0.05

# Fixed annual volatility (percentage points) for the non-BTC classes.
ASSET_VOLATILITY: Dict[str, float] = {
    "stocks": 18.0,
    "bonds": 2.0,
    "real_estate": 5.0,
    "cash": 1.0,
    "other": 3.0,
}

RETURN_BOUNDS: Dict[str, tuple] = {
    "btc": (-75.0, 250.0),
    "stocks": (-40.0, 50.0),
}


def random_normal(rng: Mulberry32) -> float:
    """Box-Muller; u1 is floored so log() stays finite."""
    u1 = max(0.0001, rng.random())
    u2 = rng.random()
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def random_chi_squared(rng: Mulberry32, df: int) -> float:
    total = 0.0
    for _ in range(df):
        z = random_normal(rng)
        total += z * z
    return total


def random_student_t(rng: Mulberry32, df: int) -> float:
    z = random_normal(rng)
    chi2 = random_chi_squared(rng, df)
    return z / math.sqrt(chi2 / df)


def random_skewed_student_t(rng: Mulberry32, df: int, skew: float) -> float:
    """Fernández-Steel skewing: skew > 1 puts more mass on the upside."""
    t = random_student_t(rng, df)
    u = rng.random()
    if u < 1.0 / (1.0 + skew * skew):
        return -abs(t) / skew
    return abs(t) * skew


def btc_volatility(year: int) -> float:
    """Annual BTC volatility (percent), decaying from 55 toward 20."""
    return BTC_MINIMUM_VOLATILITY + (BTC_INITIAL_VOLATILITY - BTC_MINIMUM_VOLATILITY) * math.exp(
        -BTC_VOLATILITY_DECAY * year
    )


def expected_returns(model, n_years: int) -> np.ndarray:
    """(n_years × 6) expected percent returns from a growth-rate model, MC column order."""
    return np.array(
        [[model.rate(asset, year) for asset in MC_ASSET_ORDER] for year in range(n_years)],
        dtype=float,
    )


def _volatility_grid(n_years: int) -> np.ndarray:
    vol = np.empty((n_years, len(MC_ASSET_ORDER)))
    for j, asset in enumerate(MC_ASSET_ORDER):
        if asset == "btc":
            vol[:, j] = [btc_volatility(y) for y in range(n_years)]
        else:
            vol[:, j] = ASSET_VOLATILITY[asset]
    return vol


def apply_shocks(z_scores: np.ndarray, expected: np.ndarray) -> np.ndarray:
    """
    Turn correlated shocks into percent returns.

    Parameters
    ----------
    z_scores : np.ndarray
        (n_paths, n_years, 6) correlated shocks
    expected : np.ndarray
        (n_years, 6) expected returns in percent

    Returns
    -------
    (n_paths, n_years, 6) percent returns, BTC and stocks clamped
    """
    n_years = z_scores.shape[1]
    returns = expected[None, :n_years, :] + _volatility_grid(n_years)[None, :, :] * z_scores
    for asset, (lo, hi) in RETURN_BOUNDS.items():
        j = MC_ASSET_ORDER.index(asset)
        returns[:, :, j] = np.clip(returns[:, :, j], lo, hi)
    return returns


@dataclass
class SampledReturnPaths:
    """
    Output of sampling: N paths of annual returns for each asset class.

    This is the (N × years × 6) table the Monte Carlo driver feeds into the
    projection runner, one path at a time.
    """
    returns: np.ndarray      # (n_paths, n_years, 6) percent
    z_scores: np.ndarray     # (n_paths, n_years, 6) correlated shocks
    independent: np.ndarray  # (n_paths, n_years, 6) raw draws

    @property
    def n_paths(self) -> int:
        return self.returns.shape[0]

    @property
    def n_years(self) -> int:
        return self.returns.shape[1]

    def get_path(self, path_idx: int) -> Dict[str, List[float]]:
        """Per-asset return series for one path, keyed by asset class."""
        return {
            asset: self.returns[path_idx, :, j].tolist()
            for j, asset in enumerate(MC_ASSET_ORDER)
        }

    def to_dataframe(self) -> pd.DataFrame:
        path_id, year = np.meshgrid(np.arange(self.n_paths), np.arange(self.n_years), indexing="ij")
        data = {"path_id": path_id.ravel(), "year": year.ravel()}
        for j, asset in enumerate(MC_ASSET_ORDER):
            data[asset] = self.returns[:, :, j].ravel()
        return pd.DataFrame(data)

    def summary(self) -> pd.DataFrame:
        """Percentile summary of sampled annual returns per asset."""
        pcts = [0.01, 0.05, 0.25, 0.50, 0.75, 0.95, 0.99]
        rows = []
        for j, asset in enumerate(MC_ASSET_ORDER):
            arr = self.returns[:, :, j].ravel()
            row = {"Asset": asset, "Mean": np.mean(arr), "Std": np.std(arr)}
            for p in pcts:
                row[f"P{int(p*100):02d}"] = np.percentile(arr, p * 100)
            rows.append(row)
        return pd.DataFrame(rows)


def generate_return_paths(
    n_paths: int,
    expected: np.ndarray,
    seed: int,
) -> SampledReturnPaths:
    """
    Generate N correlated return paths from a seeded mulberry32 stream.

    Draw order is path-major, then year, then asset (BTC first), so the same
    seed always maps to the same path index regardless of how the paths are
    consumed afterwards.
    """
    rng = Mulberry32(seed)
    n_years = expected.shape[0]
    independent = np.empty((n_paths, n_years, len(MC_ASSET_ORDER)))
    for p in range(n_paths):
        for y in range(n_years):
            independent[p, y, 0] = random_skewed_student_t(rng, BTC_DEGREES_OF_FREEDOM, BTC_SKEW_PARAM)
            for j in range(1, len(MC_ASSET_ORDER)):
                independent[p, y, j] = random_normal(rng)

    z_scores = correlate(independent, ASSET_CHOLESKY)
    return SampledReturnPaths(
        returns=apply_shocks(z_scores, expected),
        z_scores=z_scores,
        independent=independent,
    )


def regenerate_returns(paths: SampledReturnPaths, expected: np.ndarray) -> SampledReturnPaths:
    """Same shocks, different expected returns: a scenario priced on the baseline's market."""
    return SampledReturnPaths(
        returns=apply_shocks(paths.z_scores, expected),
        z_scores=paths.z_scores,
        independent=paths.independent,
    )
