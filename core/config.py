"""
Projection configuration.

Household assumptions (ages, spending, CAGRs, thresholds) travel with the input
snapshot. This object only carries run controls: the as-of anchor, Monte Carlo
sizing, and the safe-spending search bounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pandas as pd


@dataclass(frozen=True)
class ProjectionConfig:
    as_of_date: pd.Timestamp
    n_paths: int = 500
    seed: Optional[int] = None  # None -> FNV-1a hash of the inputs

    # retirement success
    success_threshold: float = 0.90
    depletion_tolerance: float = 0.05

    # safe-spending binary search
    safe_spending_low: float = 10_000.0
    safe_spending_high: float = 500_000.0
    safe_spending_max_iterations: int = 15
    safe_spending_tolerance: float = 5_000.0

    # output size controls
    store_paths: bool = False  # keep every path's year-by-year rows
    max_workers: Optional[int] = None  # process fan-out for Monte Carlo paths

    @property
    def start_year(self) -> int:
        return int(pd.Timestamp(self.as_of_date).year)

    @property
    def start_month(self) -> int:
        """1-based month of the as-of date."""
        return int(pd.Timestamp(self.as_of_date).month)

    @property
    def year_zero_fraction(self) -> float:
        """Share of the first calendar year still ahead of the as-of date."""
        return (13 - self.start_month) / 12.0

    def validate(self) -> None:
        if self.n_paths <= 0:
            raise ValueError(f"n_paths must be positive, got {self.n_paths}")
        if not 0.0 < self.success_threshold <= 1.0:
            raise ValueError(f"success_threshold must be in (0, 1], got {self.success_threshold}")
        if not 0.0 <= self.depletion_tolerance < 1.0:
            raise ValueError(f"depletion_tolerance must be in [0, 1), got {self.depletion_tolerance}")
        if self.safe_spending_low >= self.safe_spending_high:
            raise ValueError(
                f"safe spending bounds inverted: low={self.safe_spending_low}, "
                f"high={self.safe_spending_high}"
            )
        if self.safe_spending_max_iterations <= 0 or self.safe_spending_tolerance <= 0:
            raise ValueError("safe spending iterations and tolerance must be positive")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}")
