"""
Lots package — running tax-lot pool and the cost-basis selector.
"""

from .selector import (
    LotConsumption,
    LotSelection,
    TaxLot,
    available_quantity,
    carve_out,
    merge_lots,
    normalize_method,
    order_lots,
    proportional_selection,
    select_lots,
    weighted_average_cost,
)

__all__ = [
    "LotConsumption",
    "LotSelection",
    "TaxLot",
    "available_quantity",
    "carve_out",
    "merge_lots",
    "normalize_method",
    "order_lots",
    "proportional_selection",
    "select_lots",
    "weighted_average_cost",
]
