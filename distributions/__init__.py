"""
Distributions package — seeded, correlated market returns for Monte Carlo.

  1. rng.py          — mulberry32 generator and FNV-1a input hash for seeding
  2. correlation.py  — fixed asset correlation matrix and its Cholesky factor
  3. sampler.py      — N paths of correlated annual returns per asset class
"""

from .rng import Mulberry32, fnv1a_32, generate_monte_carlo_seed
from .correlation import ASSET_CHOLESKY, ASSET_CORRELATION_MATRIX, cholesky_factor
from .sampler import (
    SampledReturnPaths,
    btc_volatility,
    expected_returns,
    generate_return_paths,
    random_normal,
    random_skewed_student_t,
    regenerate_returns,
)

__all__ = [
    "Mulberry32",
    "fnv1a_32",
    "generate_monte_carlo_seed",
    "ASSET_CHOLESKY",
    "ASSET_CORRELATION_MATRIX",
    "cholesky_factor",
    "SampledReturnPaths",
    "btc_volatility",
    "expected_returns",
    "generate_return_paths",
    "random_normal",
    "random_skewed_student_t",
    "regenerate_returns",
]
