"""
Input snapshot models.

One ProjectionInputs record is the whole input to a projection call: the
household's holdings, accounts, debts, lots, goals and life events plus the
plan settings. Loosely-typed numeric fields (None, "", "$1,200", garbage)
coerce to zero instead of raising so a long simulation never dies on a stray
blank. Truly invalid configuration, such as negative blend weights or an
unknown withdrawal strategy, raises ValueError through pydantic.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.schema import (
    BTC_RETURN_MODELS,
    DEFAULT_BLEND_PERCENTAGES,
    DEFAULT_LTV_THRESHOLDS,
    DEFAULT_PRIORITY_ORDER,
    DEFAULT_SAVINGS_ALLOCATION,
    WITHDRAWAL_STRATEGIES,
)
from core.utils import to_float
from lots.selector import normalize_method


def _optional_number(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_float(value, default=None)


def _whole(value: Any) -> int:
    return int(to_float(value))


def _optional_whole(value: Any) -> Optional[int]:
    out = _optional_number(value)
    return None if out is None else int(out)


def _optional_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(ts) else ts.date()


def _identifier(value: Any) -> Any:
    return str(value) if isinstance(value, (int, float)) else value


Number = Annotated[float, BeforeValidator(to_float)]
OptionalNumber = Annotated[Optional[float], BeforeValidator(_optional_number)]
Whole = Annotated[int, BeforeValidator(_whole)]
OptionalWhole = Annotated[Optional[int], BeforeValidator(_optional_whole)]
OptionalDate = Annotated[Optional[date], BeforeValidator(_optional_date)]
Identifier = Annotated[str, BeforeValidator(_identifier)]


class SnapshotModel(BaseModel):
    """Shared config: snake_case or camelCase keys, unknown keys ignored."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)


class Account(SnapshotModel):
    id: Identifier
    name: str = ""
    account_type: str = ""
    tax_treatment: Optional[str] = None
    current_balance: Number = 0.0
    roth_contributions: Number = 0.0


class Holding(SnapshotModel):
    id: Optional[Identifier] = None
    asset_name: str = ""
    ticker: str = ""
    asset_type: str = ""
    quantity: Number = 0.0
    current_price: Number = 0.0
    cost_basis_total: Number = 0.0
    account_id: Optional[Identifier] = None
    account_type: Optional[str] = None
    tax_treatment: Optional[str] = None
    dividend_yield: Number = 0.0
    dividend_qualified: bool = True

    @property
    def value(self) -> float:
        return self.quantity * self.current_price


class TaxLot(SnapshotModel):
    id: Identifier
    ticker: str = ""
    quantity: Number = 0.0
    remaining_quantity: OptionalNumber = None
    price_per_unit: OptionalNumber = None
    cost_basis: OptionalNumber = None
    date: OptionalDate = None
    source: str = "purchase"
    account_id: Optional[Identifier] = None
    loan_id: Optional[Identifier] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_ticker(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "ticker" in data:
            return data
        for key in ("asset_ticker", "assetTicker"):
            if key in data:
                return dict(data, ticker=data[key])
        return data

    @property
    def unit_cost(self) -> float:
        if self.price_per_unit:
            return self.price_per_unit
        if self.cost_basis and self.quantity > 0:
            return self.cost_basis / self.quantity
        return 0.0

    @property
    def available(self) -> float:
        qty = self.quantity if self.remaining_quantity is None else self.remaining_quantity
        return min(max(0.0, qty), max(0.0, self.quantity))


class LoanTerms(SnapshotModel):
    """Fields shared by BTC-backed liabilities and dedicated collateralized loans."""
    id: Identifier
    name: str = ""
    lender: str = ""
    current_balance: Number = 0.0
    interest_rate: Number = 0.0
    term_months: OptionalWhole = None
    collateral_btc_amount: Number = 0.0
    liquidation_ltv: OptionalNumber = None
    top_up_trigger_ltv: OptionalNumber = None
    top_up_target_ltv: OptionalNumber = None
    release_trigger_ltv: OptionalNumber = None
    release_target_ltv: OptionalNumber = None

    @property
    def label(self) -> str:
        return self.name or self.lender or "BTC Loan"


class Liability(LoanTerms):
    type: str = ""
    monthly_payment: Number = 0.0

    @property
    def is_btc_collateralized(self) -> bool:
        return self.type == "btc_collateralized" or self.collateral_btc_amount > 0


class CollateralizedLoan(LoanTerms):
    minimum_monthly_payment: Number = 0.0


class HypotheticalBtcLoan(SnapshotModel):
    enabled: bool = True
    name: str = "Hypothetical BTC Loan"
    loan_amount: Number = 0.0
    interest_rate: Number = 12.0
    collateral_btc: Number = 0.0
    liquidation_ltv: Number = 80.0
    start_age: OptionalWhole = None
    pay_off_age: OptionalWhole = None
    use_of_proceeds: str = "cash"

    @model_validator(mode="after")
    def _defaults_for_blanks(self) -> "HypotheticalBtcLoan":
        if self.interest_rate <= 0:
            self.interest_rate = 12.0
        if self.liquidation_ltv <= 0:
            self.liquidation_ltv = 80.0
        if self.use_of_proceeds not in ("btc", "stocks", "cash"):
            self.use_of_proceeds = "cash"
        return self


class Goal(SnapshotModel):
    id: Identifier
    name: str = ""
    goal_type: str = ""
    target_amount: Number = 0.0
    target_date: OptionalDate = None
    withdraw_from_portfolio: bool = False
    linked_liability_id: Optional[Identifier] = None
    payoff_strategy: Optional[str] = None
    extra_monthly_payment: Number = 0.0
    lump_sum_date: OptionalDate = None


class LifeEvent(SnapshotModel):
    id: Optional[Identifier] = None
    name: str = ""
    event_type: str = ""
    year: Whole = 0
    amount: Number = 0.0
    is_recurring: bool = False
    recurring_years: Whole = 0
    affects: str = ""
    allocation_method: str = ""
    btc_allocation: Number = 0.0
    stocks_allocation: Number = 0.0
    real_estate_allocation: Number = 0.0
    bonds_allocation: Number = 0.0
    cash_allocation: Number = 0.0
    other_allocation: Number = 0.0
    down_payment: Number = 0.0
    monthly_expense_impact: Number = 0.0

    def is_active(self, year: int) -> bool:
        span = self.recurring_years if self.is_recurring and self.recurring_years > 0 else 1
        return self.year <= year < self.year + span


class CustomReturnPeriod(SnapshotModel):
    start_year: Whole = 1      # 1-based projection year
    end_year: OptionalWhole = None  # None: open-ended
    rate: Number = 0.0

    def covers(self, year_number: int) -> bool:
        return self.start_year <= year_number and (self.end_year is None or year_number <= self.end_year)


class TickerReturn(SnapshotModel):
    rate: OptionalNumber = None
    dividend_yield: OptionalNumber = None
    dividend_qualified: Optional[bool] = None


class OneTimeEvent(SnapshotModel):
    id: Optional[Identifier] = None
    description: str = ""
    event_type: str = "windfall"
    year: Whole = 0    # age at which it happens
    amount: Number = 0.0


class PlanSettings(SnapshotModel):
    current_age: Whole = 35
    retirement_age: Whole = 65
    life_expectancy: Whole = 90
    birth_year: OptionalWhole = None

    gross_annual_income: Number = 100000.0
    current_annual_spending: Number = 80000.0
    annual_retirement_spending: Number = 100000.0
    income_growth_rate: Number = 3.0
    inflation_rate: Number = 3.0
    filing_status: str = "single"
    state_of_residence: str = "TX"

    btc_return_model: str = "custom"
    btc_cagr_assumption: Number = 25.0
    stocks_cagr: Number = 7.0
    bonds_cagr: Number = 3.0
    real_estate_cagr: Number = 4.0
    cash_cagr: Number = 0.0
    other_cagr: Number = 7.0
    custom_return_periods: Dict[str, List[CustomReturnPeriod]] = Field(default_factory=dict)
    ticker_returns: Dict[str, TickerReturn] = Field(default_factory=dict)

    social_security_start_age: Whole = 67
    social_security_amount: Number = 0.0
    use_custom_social_security: bool = False
    other_retirement_income: Number = 0.0

    contribution_401k: Number = Field(0.0, alias="contribution401k")
    employer_match_401k: Number = Field(0.0, alias="employerMatch401k")
    contribution_traditional_ira: Number = 0.0
    contribution_roth_ira: Number = 0.0
    contribution_hsa: Number = 0.0
    hsa_family_coverage: bool = False
    savings_allocation: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SAVINGS_ALLOCATION))

    asset_withdrawal_strategy: str = "proportional"
    withdrawal_priority_order: List[str] = Field(default_factory=lambda: list(DEFAULT_PRIORITY_ORDER))
    withdrawal_blend_percentages: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_BLEND_PERCENTAGES)
    )
    cost_basis_method: str = "HIFO"
    specific_lot_ids: List[str] = Field(default_factory=list)

    auto_top_up_btc_collateral: bool = True
    btc_top_up_trigger_ltv: Number = DEFAULT_LTV_THRESHOLDS["top_up_trigger"]
    btc_top_up_target_ltv: Number = DEFAULT_LTV_THRESHOLDS["top_up_target"]
    btc_liquidation_ltv: Number = DEFAULT_LTV_THRESHOLDS["liquidation"]
    btc_release_trigger_ltv: Number = DEFAULT_LTV_THRESHOLDS["release_trigger"]
    btc_release_target_ltv: Number = DEFAULT_LTV_THRESHOLDS["release_target"]

    hypothetical_btc_loan: Optional[HypotheticalBtcLoan] = None

    @field_validator("ticker_returns", mode="before")
    @classmethod
    def _bare_rates(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        return {
            str(k).upper(): ({"rate": v} if not isinstance(v, dict) else v)
            for k, v in value.items()
        }

    @field_validator("withdrawal_blend_percentages")
    @classmethod
    def _non_negative_blend(cls, value: Dict[str, float]) -> Dict[str, float]:
        negative = {k: v for k, v in value.items() if v < 0}
        if negative:
            raise ValueError(f"withdrawal blend weights must be non-negative: {negative}")
        return value

    @field_validator("savings_allocation")
    @classmethod
    def _non_negative_allocation(cls, value: Dict[str, float]) -> Dict[str, float]:
        if any(v < 0 for v in value.values()):
            raise ValueError(f"savings allocation weights must be non-negative: {value}")
        return value

    @field_validator("asset_withdrawal_strategy")
    @classmethod
    def _known_strategy(cls, value: str) -> str:
        value = (value or "proportional").strip().lower()
        if value not in WITHDRAWAL_STRATEGIES:
            raise ValueError(f"unknown withdrawal strategy {value!r}; expected {WITHDRAWAL_STRATEGIES}")
        return value

    @field_validator("cost_basis_method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        return normalize_method(value)

    @field_validator("btc_return_model")
    @classmethod
    def _known_model(cls, value: str) -> str:
        value = (value or "custom").strip().lower()
        if value not in BTC_RETURN_MODELS:
            raise ValueError(f"unknown BTC return model {value!r}; expected {BTC_RETURN_MODELS}")
        return value

    @model_validator(mode="after")
    def _default_blank_thresholds(self) -> "PlanSettings":
        for name, default in DEFAULT_LTV_THRESHOLDS.items():
            field_name = f"btc_{name}_ltv"
            if getattr(self, field_name) <= 0:
                setattr(self, field_name, default)
        return self


class ScenarioOverrides(SnapshotModel):
    name: str = ""
    retirement_age_override: OptionalWhole = None
    life_expectancy_override: OptionalWhole = None
    annual_retirement_spending_override: OptionalNumber = None
    current_annual_spending_override: OptionalNumber = None
    state_override: Optional[str] = None
    btc_return_model_override: Optional[str] = None
    btc_cagr_override: OptionalNumber = None
    stocks_cagr_override: OptionalNumber = None
    bonds_cagr_override: OptionalNumber = None
    real_estate_cagr_override: OptionalNumber = None
    inflation_override: OptionalNumber = None
    income_growth_override: OptionalNumber = None
    social_security_start_age_override: OptionalWhole = None
    social_security_amount_override: OptionalNumber = None
    savings_allocation_override: Optional[Dict[str, float]] = None
    hypothetical_btc_loan: Optional[HypotheticalBtcLoan] = None
    one_time_events: List[OneTimeEvent] = Field(default_factory=list)


class ProjectionInputs(SnapshotModel):
    holdings: List[Holding] = Field(default_factory=list)
    accounts: List[Account] = Field(default_factory=list)
    liabilities: List[Liability] = Field(default_factory=list)
    collateralized_loans: List[CollateralizedLoan] = Field(default_factory=list)
    tax_lots: List[TaxLot] = Field(default_factory=list)
    goals: List[Goal] = Field(default_factory=list)
    life_events: List[LifeEvent] = Field(default_factory=list)
    settings: PlanSettings = Field(default_factory=PlanSettings)
    current_btc_price: Number = 0.0
