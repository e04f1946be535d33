"""
Federal income, capital gains, and penalty calculations.

Every calculator here works on "stacked" income: a dollar of new income is
taxed at the rate of the bracket it lands in given everything already earned
that year. `stack_progressive` is the one primitive; the income tax, the
long-term gains tax, and the state calculators are all built on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from core.schema import EARLY_WITHDRAWAL_PENALTY_RATE, PENALTY_FREE_AGE

from .tables import (
    NIIT_RATE,
    NIIT_THRESHOLDS,
    SOCIAL_SECURITY,
    SOCIAL_SECURITY_TAX_THRESHOLDS,
    federal_brackets,
    get_year_data,
    ltcg_brackets,
    normalize_filing_status,
    standard_deduction,
)

Brackets = Sequence[Tuple[float, float]]


def stack_progressive(amount: float, brackets: Brackets, already_stacked: float = 0.0) -> float:
    """
    Tax on `amount` placed on top of `already_stacked` income.

    Brackets are ((upper, rate_decimal), ...) ascending. Walks the brackets,
    filling whatever room remains above the running cumulative income.
    """
    if amount <= 0:
        return 0.0
    cumulative = max(0.0, already_stacked)
    remaining = amount
    tax = 0.0
    for upper, rate in brackets:
        if remaining <= 0:
            break
        room = max(0.0, upper - cumulative)
        taxed = min(remaining, room)
        tax += taxed * rate
        cumulative += taxed
        remaining -= taxed
    return tax


def calculate_progressive_income_tax(
    taxable_income: float,
    filing_status: str = "single",
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> float:
    """Ordinary income tax on taxable income (deductions already applied)."""
    return stack_progressive(taxable_income, federal_brackets(year, filing_status, inflation_rate))


def marginal_income_rate(
    taxable_income: float,
    filing_status: str = "single",
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> float:
    for upper, rate in federal_brackets(year, filing_status, inflation_rate):
        if taxable_income < upper:
            return rate
    return federal_brackets(year, filing_status, inflation_rate)[-1][1]


def marginal_ltcg_rate(
    taxable_income: float,
    filing_status: str = "single",
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> float:
    """LTCG rate for the next dollar of gain stacked on `taxable_income`."""
    for upper, rate in ltcg_brackets(year, filing_status, inflation_rate):
        if taxable_income < upper:
            return rate
    return 0.20


@dataclass(frozen=True)
class LtcgTaxResult:
    ltcg_tax: float
    taxable_ltcg: float
    gains_at_0: float
    gains_at_15: float
    gains_at_20: float
    standard_deduction_used: float

    @property
    def effective_rate(self) -> float:
        return self.ltcg_tax / self.taxable_ltcg if self.taxable_ltcg > 0 else 0.0


def calculate_federal_ltcg_tax(
    long_term_gains: float,
    *,
    ordinary_income: float = 0.0,
    short_term_gains: float = 0.0,
    filing_status: str = "single",
    age: float = 65,
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> LtcgTaxResult:
    """
    Long-term gains tax with the gains stacked on top of ordinary income.

    The standard deduction offsets ordinary income first; whatever is left
    over offsets gains. Short-term gains count as ordinary income.
    """
    deduction = standard_deduction(year, filing_status, age, inflation_rate)
    total_ordinary = ordinary_income + short_term_gains
    taxable_ordinary = max(0.0, total_ordinary - deduction)
    leftover_deduction = max(0.0, deduction - total_ordinary)
    taxable_ltcg = max(0.0, long_term_gains - leftover_deduction)
    if taxable_ltcg <= 0:
        return LtcgTaxResult(0.0, 0.0, 0.0, 0.0, 0.0, deduction)

    (zero_max, _), (fifteen_max, _), _ = ltcg_brackets(year, filing_status, inflation_rate)
    remaining = taxable_ltcg
    at_0 = min(remaining, max(0.0, zero_max - taxable_ordinary))
    remaining -= at_0
    at_15 = min(remaining, max(0.0, fifteen_max - max(taxable_ordinary, zero_max)))
    remaining -= at_15
    at_20 = remaining
    tax = at_15 * 0.15 + at_20 * 0.20
    return LtcgTaxResult(tax, taxable_ltcg, at_0, at_15, at_20, deduction)


def calculate_capital_gains_tax(
    gain: float,
    is_long_term: bool,
    taxable_income: float,
    filing_status: str = "single",
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> float:
    """Tax on a single gain stacked on `taxable_income` (deductions already applied)."""
    if gain <= 0:
        return 0.0
    if is_long_term:
        return stack_progressive(gain, ltcg_brackets(year, filing_status, inflation_rate), taxable_income)
    return stack_progressive(gain, federal_brackets(year, filing_status, inflation_rate), taxable_income)


def early_withdrawal_penalty(amount: float, age: float) -> float:
    """10% additional tax on early retirement distributions."""
    if amount <= 0 or age >= PENALTY_FREE_AGE:
        return 0.0
    return amount * EARLY_WITHDRAWAL_PENALTY_RATE


def net_investment_income_tax(
    investment_income: float, modified_agi: float, filing_status: str = "single"
) -> float:
    status = normalize_filing_status(filing_status)
    excess = max(0.0, modified_agi - NIIT_THRESHOLDS[status])
    return min(max(0.0, investment_income), excess) * NIIT_RATE / 100.0


def taxable_social_security(benefit: float, other_income: float, filing_status: str = "single") -> float:
    """
    Portion of Social Security included in gross income (IRS provisional income test).

    Provisional income = other income + half the benefit. Up to 50% is taxable
    between the two thresholds and up to 85% above the upper one.
    """
    if benefit <= 0:
        return 0.0
    status = normalize_filing_status(filing_status)
    base, upper = SOCIAL_SECURITY_TAX_THRESHOLDS[status]
    provisional = other_income + 0.5 * benefit
    if provisional <= base:
        return 0.0
    if provisional <= upper:
        return min(0.5 * benefit, 0.5 * (provisional - base))
    tier_one = min(0.5 * benefit, 0.5 * (upper - base))
    return min(0.85 * benefit, 0.85 * (provisional - upper) + tier_one)


def estimate_social_security_benefit(
    gross_income: float,
    claim_age: float,
    year: int,
    inflation_rate: Optional[float] = None,
) -> float:
    """
    Rough annual benefit in today's dollars from current earnings.

    Uses the PIA bend points on capped monthly earnings, reduced for claiming
    before 67 and increased 8% a year for delaying up to 70.
    """
    data = get_year_data(SOCIAL_SECURITY, year, inflation_rate)
    aime = min(max(0.0, gross_income), data["wage_base"]) / 12.0
    bp1, bp2 = data["bend_point_1"], data["bend_point_2"]
    pia = 0.9 * min(aime, bp1)
    pia += 0.32 * max(0.0, min(aime, bp2) - bp1)
    pia += 0.15 * max(0.0, aime - bp2)

    months_from_fra = int(round((claim_age - 67) * 12))
    if months_from_fra < 0:
        early = -months_from_fra
        reduction = min(early, 36) * 5 / 900 + max(0, early - 36) * 5 / 1200
        pia *= 1.0 - reduction
    elif months_from_fra > 0:
        pia *= 1.0 + min(months_from_fra, 36) * 2 / 300
    return pia * 12.0


@dataclass(frozen=True)
class FederalTaxBreakdown:
    ordinary_tax: float
    ltcg_tax: float
    niit: float
    penalty: float
    taxable_ordinary_income: float
    taxable_social_security: float

    @property
    def income_tax(self) -> float:
        return self.ordinary_tax + self.ltcg_tax + self.niit

    @property
    def total(self) -> float:
        return self.income_tax + self.penalty


def calculate_federal_tax(
    *,
    ordinary_income: float = 0.0,
    social_security: float = 0.0,
    short_term_gains: float = 0.0,
    long_term_gains: float = 0.0,
    qualified_dividends: float = 0.0,
    penalized_withdrawals: float = 0.0,
    age: float = 65,
    filing_status: str = "single",
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> FederalTaxBreakdown:
    """
    Full-year federal tax.

    Ordinary income includes wages, deferred withdrawals, RMDs and
    non-qualified dividends. Qualified dividends ride with long-term gains.
    """
    preferential = max(0.0, long_term_gains) + max(0.0, qualified_dividends)
    ss_taxable = taxable_social_security(
        social_security, ordinary_income + short_term_gains + preferential, filing_status
    )
    ordinary = ordinary_income + ss_taxable + max(0.0, short_term_gains)
    deduction = standard_deduction(year, filing_status, age, inflation_rate)
    taxable_ordinary = max(0.0, ordinary - deduction)
    ordinary_tax = calculate_progressive_income_tax(taxable_ordinary, filing_status, year, inflation_rate)
    ltcg = calculate_federal_ltcg_tax(
        preferential,
        ordinary_income=ordinary,
        filing_status=filing_status,
        age=age,
        year=year,
        inflation_rate=inflation_rate,
    )
    investment_income = max(0.0, short_term_gains) + preferential
    niit = net_investment_income_tax(investment_income, ordinary + preferential, filing_status)
    penalty = early_withdrawal_penalty(penalized_withdrawals, age)
    return FederalTaxBreakdown(
        ordinary_tax=ordinary_tax,
        ltcg_tax=ltcg.ltcg_tax,
        niit=niit,
        penalty=penalty,
        taxable_ordinary_income=taxable_ordinary,
        taxable_social_security=ss_taxable,
    )
