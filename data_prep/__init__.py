"""
Data preparation — input snapshot models, JSON loading, builders, validation.
"""

from .models import (
    Account,
    CollateralizedLoan,
    CustomReturnPeriod,
    Goal,
    Holding,
    HypotheticalBtcLoan,
    Liability,
    LifeEvent,
    OneTimeEvent,
    PlanSettings,
    ProjectionInputs,
    ScenarioOverrides,
    TaxLot,
    TickerReturn,
)
from .loader import load_scenario, load_snapshot
from .builders import apply_scenario, asset_category, build_holdings_table, resolve_tax_treatment
from .validators import ValidationResult, validate_inputs

__all__ = [
    "Account",
    "CollateralizedLoan",
    "CustomReturnPeriod",
    "Goal",
    "Holding",
    "HypotheticalBtcLoan",
    "Liability",
    "LifeEvent",
    "OneTimeEvent",
    "PlanSettings",
    "ProjectionInputs",
    "ScenarioOverrides",
    "TaxLot",
    "TickerReturn",
    "load_scenario",
    "load_snapshot",
    "apply_scenario",
    "asset_category",
    "build_holdings_table",
    "resolve_tax_treatment",
    "ValidationResult",
    "validate_inputs",
]
