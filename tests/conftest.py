"""Shared fixtures: snapshot builders and a fixed as-of date."""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import pandas as pd
import pytest

from core.config import ProjectionConfig
from data_prep.models import ProjectionInputs

AS_OF = pd.Timestamp("2026-01-01")
BTC_PRICE = 100_000.0

# Nothing grows, nothing inflates, nobody earns or spends.
FLAT_SETTINGS: Dict = {
    "current_age": 30,
    "retirement_age": 65,
    "life_expectancy": 90,
    "gross_annual_income": 0,
    "current_annual_spending": 0,
    "annual_retirement_spending": 0,
    "income_growth_rate": 0,
    "inflation_rate": 0,
    "btc_return_model": "custom",
    "btc_cagr_assumption": 0,
    "stocks_cagr": 0,
    "bonds_cagr": 0,
    "real_estate_cagr": 0,
    "cash_cagr": 0,
    "other_cagr": 0,
    "state_of_residence": "TX",
    "filing_status": "single",
}


def btc_holding(quantity: float, cost_basis: float, treatment: str = "taxable", **extra) -> Dict:
    row = {
        "asset_name": "Bitcoin",
        "ticker": "BTC",
        "asset_type": "btc",
        "quantity": quantity,
        "current_price": BTC_PRICE,
        "cost_basis_total": cost_basis,
        "tax_treatment": treatment,
    }
    row.update(extra)
    return row


def dollar_holding(ticker: str, asset_type: str, value: float, cost_basis: Optional[float] = None,
                   treatment: str = "taxable", **extra) -> Dict:
    row = {
        "asset_name": ticker,
        "ticker": ticker,
        "asset_type": asset_type,
        "quantity": value,
        "current_price": 1.0,
        "cost_basis_total": value if cost_basis is None else cost_basis,
        "tax_treatment": treatment,
    }
    row.update(extra)
    return row


def build_inputs(
    holdings: Iterable[Dict] = (),
    settings: Optional[Dict] = None,
    current_btc_price: float = BTC_PRICE,
    **entities,
) -> ProjectionInputs:
    merged = dict(FLAT_SETTINGS)
    merged.update(settings or {})
    data = {
        "holdings": list(holdings),
        "settings": merged,
        "current_btc_price": current_btc_price,
    }
    data.update(entities)
    return ProjectionInputs.model_validate(data)


@pytest.fixture
def as_of() -> pd.Timestamp:
    return AS_OF


@pytest.fixture
def config() -> ProjectionConfig:
    return ProjectionConfig(as_of_date=AS_OF, n_paths=12, seed=42)


@pytest.fixture
def make_inputs():
    return build_inputs


@pytest.fixture
def one_btc_inputs() -> ProjectionInputs:
    """1 BTC at $100k in a taxable account, flat markets, no cash flows."""
    return build_inputs([btc_holding(1.0, 20_000.0)])


@pytest.fixture
def retiree_inputs() -> ProjectionInputs:
    """A 60-year-old retiree with a short horizon and a mixed portfolio."""
    return build_inputs(
        [
            btc_holding(2.0, 60_000.0),
            dollar_holding("VTI", "stocks", 300_000.0, 200_000.0),
            dollar_holding("CASH", "cash", 50_000.0),
            dollar_holding("VTI", "stocks", 400_000.0, treatment="tax_deferred"),
            dollar_holding("VTI", "stocks", 100_000.0, treatment="tax_free"),
        ],
        settings={
            "current_age": 60,
            "retirement_age": 60,
            "life_expectancy": 70,
            "annual_retirement_spending": 60_000,
            "btc_cagr_assumption": 20,
            "stocks_cagr": 7,
            "bonds_cagr": 3,
            "inflation_rate": 3,
        },
    )
