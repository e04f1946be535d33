from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

# Asset buckets inside every account. Real estate is a separate scalar bucket.
ASSET_CLASSES: Tuple[str, ...] = ("btc", "stocks", "bonds", "cash", "other")

ACCOUNT_BUCKETS: Tuple[str, ...] = ("taxable", "tax_deferred", "tax_free")

TAX_TREATMENTS: Tuple[str, ...] = ACCOUNT_BUCKETS + ("real_estate",)

# Column order of the correlation matrix and of every sampled return path.
MC_ASSET_ORDER: Tuple[str, ...] = ("btc", "stocks", "bonds", "real_estate", "cash", "other")

TAX_DEFERRED_ACCOUNT_TYPES: FrozenSet[str] = frozenset({
    "traditional_401k",
    "401k_traditional",
    "traditional_ira",
    "ira_traditional",
    "sep_ira",
    "403b",
    "457b",
})

TAX_FREE_ACCOUNT_TYPES: FrozenSet[str] = frozenset({
    "roth_401k",
    "401k_roth",
    "roth_ira",
    "ira_roth",
    "hsa",
    "529",
})

# Accounts whose contribution basis can be withdrawn before earnings.
ROTH_CONTRIBUTION_ACCOUNT_TYPES: FrozenSet[str] = frozenset({
    "roth_401k",
    "401k_roth",
    "roth_ira",
    "ira_roth",
    "hsa",
})

REAL_ESTATE_ACCOUNT_TYPES: FrozenSet[str] = frozenset({"taxable_real_estate"})

COST_BASIS_METHODS: Tuple[str, ...] = ("FIFO", "LIFO", "HIFO", "SPECIFIC_ID")

WITHDRAWAL_STRATEGIES: Tuple[str, ...] = ("proportional", "priority", "blended")

BTC_RETURN_MODELS: Tuple[str, ...] = (
    "custom",
    "powerlaw",
    "saylor24",
    "conservative",
    "custom_periods",
)

DEFAULT_PRIORITY_ORDER: Tuple[str, ...] = ("cash", "bonds", "stocks", "other", "btc")

DEFAULT_BLEND_PERCENTAGES: Dict[str, float] = {
    "cash": 0.0,
    "bonds": 25.0,
    "stocks": 35.0,
    "other": 10.0,
    "btc": 30.0,
}

DEFAULT_SAVINGS_ALLOCATION: Dict[str, float] = {
    "btc": 80.0,
    "stocks": 20.0,
    "bonds": 0.0,
    "cash": 0.0,
    "other": 0.0,
}

# Collateral LTV thresholds, in percent.
DEFAULT_LTV_THRESHOLDS: Dict[str, float] = {
    "top_up_trigger": 70.0,
    "top_up_target": 50.0,
    "liquidation": 80.0,
    "release_trigger": 30.0,
    "release_target": 40.0,
}

PENALTY_FREE_AGE = 59.5
EARLY_WITHDRAWAL_PENALTY_RATE = 0.10

# Dust thresholds
LOT_DUST_QUANTITY = 1e-8
GROWTH_DUST = 1.0
WITHDRAWAL_DUST = 1.0
YEAR_END_DUST = 10.0
DEPLETION_FLOOR = 100.0
PAID_OFF_TOLERANCE = 0.01

LOT_SOURCES: Tuple[str, ...] = ("purchase", "loan_proceeds", "reallocation")

# Collateral event types. Everything except top-ups and releases is a forced sale.
EVENT_TOP_UP = "top_up"
EVENT_RELEASE = "release"
EVENT_FULL_LIQUIDATION = "full_liquidation"
EVENT_PARTIAL_LIQUIDATION = "partial_liquidation"
EVENT_LOAN_ACTIVATION = "loan_activation"
EVENT_LOAN_ACTIVATION_FAILED = "loan_activation_failed"
EVENT_LOAN_PAYOFF = "loan_payoff"

NON_FORCED_EVENT_TYPES: FrozenSet[str] = frozenset({EVENT_TOP_UP, EVENT_RELEASE})

# Canonical year-by-year result columns. Every row the runner emits carries all of them.
YEAR_ROW_COLUMNS: Tuple[str, ...] = (
    "year",
    "age",
    "is_retired",
    "depleted",
    "btc_price",
    "btc_liquid",
    "btc_encumbered",
    "btc_total",
    "stocks",
    "bonds",
    "real_estate",
    "cash",
    "other",
    "taxable",
    "tax_deferred",
    "tax_free",
    "liquid",
    "total",
    "total_debt",
    "net_worth",
    "gross_income",
    "social_security_income",
    "other_income",
    "spending",
    "goal_withdrawals",
    "net_cash_flow",
    "savings",
    "withdrawal_from_taxable",
    "withdrawal_from_tax_deferred",
    "withdrawal_from_tax_free",
    "withdrawal_from_loan_equity",
    "withdrawal_from_real_estate",
    "total_withdrawal",
    "shortfall",
    "short_term_gain",
    "long_term_gain",
    "federal_tax",
    "state_tax",
    "penalty_paid",
    "taxes_paid",
    "rmd_amount",
    "rmd_reinvested",
    "contribution_401k",
    "contribution_ira",
    "contribution_roth",
    "contribution_hsa",
    "employer_match",
    "qualified_dividends",
    "non_qualified_dividends",
    "debt_payments",
    "loan_events",
    "liquidation_events",
    "loan_payoffs",
    "debt_payoffs",
    "btc_loan_details",
    "life_event_names",
    "goal_names",
)
