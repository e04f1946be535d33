"""
Builders that turn the raw snapshot into engine-ready pieces.

  - tax treatment of each holding (from its owning account)
  - asset category of each holding
  - a holdings table (one row per holding, valued at today's prices)
  - scenario overrides merged into a new ProjectionInputs
"""

from __future__ import annotations

from typing import Dict, Optional

import pandas as pd

from core.schema import (
    REAL_ESTATE_ACCOUNT_TYPES,
    TAX_DEFERRED_ACCOUNT_TYPES,
    TAX_FREE_ACCOUNT_TYPES,
    TAX_TREATMENTS,
)

from .models import Account, Holding, LifeEvent, ProjectionInputs, ScenarioOverrides

HOLDINGS_TABLE_COLUMNS = (
    "holding_id",
    "ticker",
    "category",
    "treatment",
    "quantity",
    "price",
    "value",
    "cost_basis",
    "dividend_yield",
    "dividend_qualified",
)


def resolve_tax_treatment(holding: Holding, accounts_by_id: Dict[str, Account]) -> str:
    """taxable / tax_deferred / tax_free / real_estate for one holding."""
    account = accounts_by_id.get(holding.account_id) if holding.account_id else None
    if account is not None:
        account_type = (account.account_type or "").lower()
        if account_type in REAL_ESTATE_ACCOUNT_TYPES or account.tax_treatment == "real_estate":
            return "real_estate"
        if account_type in TAX_DEFERRED_ACCOUNT_TYPES:
            return "tax_deferred"
        if account_type in TAX_FREE_ACCOUNT_TYPES:
            return "tax_free"
        if account.tax_treatment in TAX_TREATMENTS:
            return account.tax_treatment
    if (holding.asset_type or "").lower() == "real_estate":
        return "real_estate"
    if holding.tax_treatment in TAX_TREATMENTS:
        return holding.tax_treatment
    legacy = (holding.account_type or "").lower()
    if legacy in TAX_DEFERRED_ACCOUNT_TYPES:
        return "tax_deferred"
    if legacy in TAX_FREE_ACCOUNT_TYPES:
        return "tax_free"
    return "taxable"


def asset_category(asset_type: Optional[str], ticker: Optional[str]) -> str:
    ticker_upper = (ticker or "").upper()
    kind = (asset_type or "").lower()
    if ticker_upper == "BTC" or kind in ("btc", "crypto"):
        return "btc"
    if kind in ("stocks", "bonds", "cash"):
        return kind
    return "other"


def holding_value(holding: Holding, btc_price: float) -> float:
    if (holding.ticker or "").upper() == "BTC" and btc_price > 0:
        return holding.quantity * btc_price
    return holding.quantity * holding.current_price


def build_holdings_table(inputs: ProjectionInputs) -> pd.DataFrame:
    """One row per holding with its resolved treatment, category and value."""
    accounts_by_id = {a.id: a for a in inputs.accounts}
    rows = []
    for idx, h in enumerate(inputs.holdings):
        treatment = resolve_tax_treatment(h, accounts_by_id)
        value = holding_value(h, inputs.current_btc_price)
        rows.append({
            "holding_id": h.id or f"holding_{idx}",
            "ticker": (h.ticker or "").upper(),
            "category": asset_category(h.asset_type, h.ticker),
            "treatment": treatment,
            "quantity": h.quantity,
            "price": value / h.quantity if h.quantity else h.current_price,
            "value": value,
            "cost_basis": h.cost_basis_total,
            "dividend_yield": h.dividend_yield,
            "dividend_qualified": h.dividend_qualified,
        })
    return pd.DataFrame(rows, columns=list(HOLDINGS_TABLE_COLUMNS))


def apply_scenario(
    inputs: ProjectionInputs,
    overrides: Optional[ScenarioOverrides],
    *,
    start_year: int,
) -> ProjectionInputs:
    """
    Merge scenario overrides into a copy of `inputs`.

    One-time events are keyed by age; they become life events in calendar
    year start_year + (age - current_age). The original snapshot is untouched.
    """
    if overrides is None:
        return inputs

    s = inputs.settings
    update = {}
    mapping = {
        "retirement_age_override": "retirement_age",
        "life_expectancy_override": "life_expectancy",
        "annual_retirement_spending_override": "annual_retirement_spending",
        "current_annual_spending_override": "current_annual_spending",
        "state_override": "state_of_residence",
        "btc_return_model_override": "btc_return_model",
        "btc_cagr_override": "btc_cagr_assumption",
        "stocks_cagr_override": "stocks_cagr",
        "bonds_cagr_override": "bonds_cagr",
        "real_estate_cagr_override": "real_estate_cagr",
        "inflation_override": "inflation_rate",
        "income_growth_override": "income_growth_rate",
        "social_security_start_age_override": "social_security_start_age",
        "social_security_amount_override": "social_security_amount",
        "savings_allocation_override": "savings_allocation",
        "hypothetical_btc_loan": "hypothetical_btc_loan",
    }
    for source, target in mapping.items():
        value = getattr(overrides, source)
        if value is not None and value != "":
            update[target] = value
    if overrides.social_security_amount_override is not None:
        update["use_custom_social_security"] = True

    # Re-validate so overridden values go through the same checks as the snapshot.
    settings = type(s).model_validate({**s.model_dump(), **update})

    events = list(inputs.life_events)
    for idx, event in enumerate(overrides.one_time_events):
        events.append(LifeEvent(
            id=event.id or f"scenario_event_{idx}",
            name=event.description or event.event_type,
            event_type=event.event_type,
            year=start_year + (event.year - s.current_age),
            amount=event.amount,
            affects="assets",
        ))

    return inputs.model_copy(update={"settings": settings, "life_events": events})
