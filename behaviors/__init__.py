"""
Growth-rate models — turn plan assumptions into annual returns per asset class.
"""

from .base import ReturnModel, custom_period_rate
from .btc import BtcGrowthModel, power_law_cagr, power_law_price, saylor24_rate
from .constant import AssetClassReturnModel
from .scenario import OverrideReturnModel

__all__ = [
    "ReturnModel",
    "custom_period_rate",
    "BtcGrowthModel",
    "power_law_cagr",
    "power_law_price",
    "saylor24_rate",
    "AssetClassReturnModel",
    "OverrideReturnModel",
]
