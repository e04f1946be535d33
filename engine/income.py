"""
Earned income, retirement-account contributions and Social Security.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.utils import grow
from tax.federal import estimate_social_security_benefit
from tax.tables import contribution_limit, roth_phaseout_multiplier


@dataclass(frozen=True)
class Contributions:
    k401: float = 0.0
    ira: float = 0.0
    hsa: float = 0.0
    roth: float = 0.0
    employer_match: float = 0.0

    @property
    def pre_tax(self) -> float:
        return self.k401 + self.ira + self.hsa

    @property
    def to_tax_deferred(self) -> float:
        return self.k401 + self.ira + self.employer_match

    @property
    def to_tax_free(self) -> float:
        return self.roth + self.hsa


def plan_contributions(settings, *, year_index: int, year: int, age: int, gross_income: float) -> Contributions:
    """
    This year's contributions, each capped by its limit and by what earned
    income is left after the ones before it (401k, IRA, HSA, then Roth).

    The Roth limit shrinks through the phase-out range on AGI after the
    pre-tax contributions.
    """
    g = settings.income_growth_rate
    remaining = max(0.0, gross_income)

    k401 = min(grow(settings.contribution_401k, g, year_index), contribution_limit(year, "traditional_401k", age), remaining)
    remaining -= k401
    ira = min(
        grow(settings.contribution_traditional_ira, g, year_index),
        contribution_limit(year, "traditional_ira", age),
        remaining,
    )
    remaining -= ira
    hsa_type = "hsa_family" if settings.hsa_family_coverage else "hsa_single"
    hsa = min(grow(settings.contribution_hsa, g, year_index), contribution_limit(year, hsa_type, age), remaining)
    remaining -= hsa

    agi = gross_income - k401 - ira - hsa
    roth_limit = contribution_limit(year, "roth_ira", age) * roth_phaseout_multiplier(
        year, settings.filing_status, agi
    )
    roth = min(grow(settings.contribution_roth_ira, g, year_index), roth_limit, remaining)

    return Contributions(
        k401=max(0.0, k401),
        ira=max(0.0, ira),
        hsa=max(0.0, hsa),
        roth=max(0.0, roth),
        employer_match=max(0.0, grow(settings.employer_match_401k, g, year_index)),
    )


def social_security_base(settings, *, start_year: int) -> float:
    """Annual benefit in today's dollars: the entered amount, or an estimate from current pay."""
    if settings.use_custom_social_security or settings.social_security_amount > 0:
        return settings.social_security_amount
    return estimate_social_security_benefit(
        settings.gross_annual_income,
        settings.social_security_start_age,
        start_year,
        settings.inflation_rate / 100.0,
    )


def social_security_income(settings, *, age: int, base_benefit: float) -> float:
    """Benefit paid at `age`, inflated from today to the claim age and every year after."""
    start_age = settings.social_security_start_age
    if age < start_age or base_benefit <= 0:
        return 0.0
    infl = settings.inflation_rate
    at_claim = grow(base_benefit, infl, max(0, start_age - settings.current_age))
    return grow(at_claim, infl, age - start_age)
