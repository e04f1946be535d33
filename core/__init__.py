"""
Core package — schema constants, configuration, and shared utilities.
No business logic lives here.
"""

from .schema import ACCOUNT_BUCKETS, ASSET_CLASSES, MC_ASSET_ORDER, YEAR_ROW_COLUMNS
from .config import ProjectionConfig
from .utils import require_columns, to_float, safe_ratio, long_term_cutoff, year_end

__all__ = [
    "ACCOUNT_BUCKETS",
    "ASSET_CLASSES",
    "MC_ASSET_ORDER",
    "YEAR_ROW_COLUMNS",
    "ProjectionConfig",
    "require_columns",
    "to_float",
    "safe_ratio",
    "long_term_cutoff",
    "year_end",
]
