"""
Tax package — bracket tables plus the federal and state calculators.

  1. tables.py   — federal brackets, deductions, limits, RMD table keyed by year
  2. federal.py  — progressive income tax, stacked LTCG, penalty, Social Security
  3. state.py    — per-state brackets and capital-gains treatments
"""

from .tables import (
    contribution_limit,
    federal_brackets,
    get_year_data,
    ltcg_brackets,
    normalize_filing_status,
    rmd_factor,
    rmd_start_age,
    roth_phaseout_multiplier,
    standard_deduction,
)
from .federal import (
    FederalTaxBreakdown,
    calculate_capital_gains_tax,
    calculate_federal_ltcg_tax,
    calculate_federal_tax,
    calculate_progressive_income_tax,
    early_withdrawal_penalty,
    estimate_social_security_benefit,
    marginal_income_rate,
    marginal_ltcg_rate,
    stack_progressive,
    taxable_social_security,
)
from .state import (
    STATE_TAX_CONFIG,
    StateTaxConfig,
    calculate_state_income_tax,
    calculate_state_tax_on_retirement,
)

__all__ = [
    "contribution_limit",
    "federal_brackets",
    "get_year_data",
    "ltcg_brackets",
    "normalize_filing_status",
    "rmd_factor",
    "rmd_start_age",
    "roth_phaseout_multiplier",
    "standard_deduction",
    "FederalTaxBreakdown",
    "calculate_capital_gains_tax",
    "calculate_federal_ltcg_tax",
    "calculate_federal_tax",
    "calculate_progressive_income_tax",
    "early_withdrawal_penalty",
    "estimate_social_security_benefit",
    "marginal_income_rate",
    "marginal_ltcg_rate",
    "stack_progressive",
    "taxable_social_security",
    "STATE_TAX_CONFIG",
    "StateTaxConfig",
    "calculate_state_income_tax",
    "calculate_state_tax_on_retirement",
]
