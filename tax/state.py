"""
State income tax.

Each state carries its bracket schedule (a single flat bracket for most), a
standard deduction, its Social Security and retirement-income rules, and one
capital-gains treatment:

  ordinary               gains taxed like wages
  exempt                 gains not taxed
  percentage_deduction   `cg_rate`% of long-term gains deducted before tax
  exclusion_with_cap     `cg_rate`% of long-term gains excluded, at most `cg_cap` dollars
  flat_special_rate      long-term gains above `cg_cap` taxed separately at `cg_rate`%
  credit                 tax reduced by `cg_rate`% of long-term gains

Short-term gains are always ordinary income. Rates are percentages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .federal import stack_progressive
from .tables import INF, normalize_filing_status

logger = logging.getLogger(__name__)

CG_TREATMENTS: Tuple[str, ...] = (
    "ordinary",
    "exempt",
    "percentage_deduction",
    "exclusion_with_cap",
    "flat_special_rate",
    "credit",
)


@dataclass(frozen=True)
class StateTaxConfig:
    name: str
    rate: float = 0.0                   # top marginal rate
    has_income_tax: bool = True
    # Progressive schedule for single filers, ((upper, rate_pct), ...).
    # Joint filers double the bounds. None means one flat bracket at `rate`.
    brackets: Optional[Tuple[Tuple[float, float], ...]] = None
    standard_deduction: float = 0.0     # single; doubled for joint
    taxes_ss: bool = False
    ss_exempt_age: Optional[float] = None
    ss_exempt_single_agi: Optional[float] = None
    ss_exempt_joint_agi: Optional[float] = None
    ss_partial_exempt_pct: Optional[float] = None
    ss_phaseout_year: Optional[int] = None
    taxes_retirement: bool = True
    retirement_deduction: float = 0.0
    retirement_deduction_age: Optional[float] = None
    taxes_pension: bool = True
    cg_treatment: str = "ordinary"
    cg_rate: float = 0.0
    cg_cap: float = 0.0

    def schedule(self, filing_status: str) -> Tuple[Tuple[float, float], ...]:
        """Brackets as ((upper, rate_decimal), ...) for the filing status."""
        if not self.brackets:
            return ((INF, self.rate / 100.0),)
        mult = 2.0 if normalize_filing_status(filing_status) == "married_filing_jointly" else 1.0
        return tuple((upper * mult, rate / 100.0) for upper, rate in self.brackets)

    def deduction(self, filing_status: str) -> float:
        if normalize_filing_status(filing_status) == "married_filing_jointly":
            return self.standard_deduction * 2.0
        return self.standard_deduction


def _no_tax(name: str, **kw) -> StateTaxConfig:
    kw.setdefault("cg_treatment", "exempt")
    return StateTaxConfig(
        name=name, has_income_tax=False, taxes_retirement=False, taxes_pension=False, **kw
    )


STATE_TAX_CONFIG: Dict[str, StateTaxConfig] = {
    # no state income tax
    "AK": _no_tax("Alaska"),
    "FL": _no_tax("Florida"),
    "NV": _no_tax("Nevada"),
    "NH": _no_tax("New Hampshire"),
    "SD": _no_tax("South Dakota"),
    "TN": _no_tax("Tennessee"),
    "TX": _no_tax("Texas"),
    "WY": _no_tax("Wyoming"),
    # 7% excise on long-term gains above the annual exemption
    "WA": _no_tax("Washington", cg_treatment="flat_special_rate", cg_rate=7.0, cg_cap=270000),

    # income tax, retirement income exempt
    "IL": StateTaxConfig("Illinois", 4.95, taxes_retirement=False, taxes_pension=False),
    "IA": StateTaxConfig("Iowa", 3.8, taxes_retirement=False, taxes_pension=False),
    "MS": StateTaxConfig("Mississippi", 4.4, taxes_retirement=False, taxes_pension=False),
    "PA": StateTaxConfig("Pennsylvania", 3.07, taxes_retirement=False, taxes_pension=False),

    # Social Security taxed above income thresholds
    "CO": StateTaxConfig(
        "Colorado", 4.4, taxes_ss=True, ss_exempt_age=55, ss_exempt_single_agi=75000,
        ss_exempt_joint_agi=95000, retirement_deduction=24000, retirement_deduction_age=65,
    ),
    "CT": StateTaxConfig(
        "Connecticut", 6.99, taxes_ss=True, ss_exempt_single_agi=75000,
        ss_exempt_joint_agi=100000, ss_partial_exempt_pct=75,
    ),
    "MN": StateTaxConfig(
        "Minnesota", 9.85,
        brackets=((32570, 5.35), (106990, 6.8), (198630, 7.85), (INF, 9.85)),
        standard_deduction=14950,
        taxes_ss=True, ss_exempt_single_agi=84490, ss_exempt_joint_agi=108320,
    ),
    "MT": StateTaxConfig(
        "Montana", 5.9, brackets=((21100, 4.7), (INF, 5.9)), standard_deduction=15000,
        taxes_ss=True, ss_exempt_single_agi=25000, ss_exempt_joint_agi=32000,
        retirement_deduction=5500, cg_treatment="credit", cg_rate=2.0,
    ),
    "NM": StateTaxConfig(
        "New Mexico", 5.9, taxes_ss=True, ss_exempt_single_agi=100000,
        ss_exempt_joint_agi=150000, cg_treatment="exclusion_with_cap", cg_rate=40.0, cg_cap=2500,
    ),
    "RI": StateTaxConfig(
        "Rhode Island", 5.99, taxes_ss=True, ss_exempt_single_agi=107000, ss_exempt_joint_agi=133750,
    ),
    "UT": StateTaxConfig(
        "Utah", 4.65, taxes_ss=True, ss_exempt_single_agi=45000, ss_exempt_joint_agi=75000,
    ),
    "VT": StateTaxConfig(
        "Vermont", 8.75, taxes_ss=True, ss_exempt_single_agi=50000, ss_exempt_joint_agi=65000,
        cg_treatment="exclusion_with_cap", cg_rate=40.0, cg_cap=350000,
    ),
    "WV": StateTaxConfig(
        "West Virginia", 5.12, taxes_ss=True, ss_phaseout_year=2026,
        ss_exempt_single_agi=50000, ss_exempt_joint_agi=100000,
    ),

    # retirement income deductions and special gains treatment
    "AL": StateTaxConfig(
        "Alabama", 5.0, retirement_deduction=6000, retirement_deduction_age=65, taxes_pension=False,
    ),
    "AZ": StateTaxConfig("Arizona", 2.5, cg_treatment="percentage_deduction", cg_rate=25.0),
    "AR": StateTaxConfig(
        "Arkansas", 3.9, retirement_deduction=6000, cg_treatment="percentage_deduction", cg_rate=50.0,
    ),
    "CA": StateTaxConfig(
        "California", 13.3,
        brackets=(
            (10756, 1.0), (25499, 2.0), (40245, 4.0), (55866, 6.0), (70606, 8.0),
            (360659, 9.3), (432787, 10.3), (721314, 11.3), (1000000, 12.3), (INF, 13.3),
        ),
        standard_deduction=5540,
    ),
    "DE": StateTaxConfig(
        "Delaware", 6.6, retirement_deduction=12500, retirement_deduction_age=60,
    ),
    "GA": StateTaxConfig(
        "Georgia", 5.39, retirement_deduction=65000, retirement_deduction_age=65,
    ),
    "HI": StateTaxConfig(
        "Hawaii", 11.0, taxes_pension=False, cg_treatment="flat_special_rate", cg_rate=7.25,
    ),
    "ID": StateTaxConfig("Idaho", 5.8),
    "IN": StateTaxConfig("Indiana", 3.0),
    "KS": StateTaxConfig("Kansas", 5.7),
    "KY": StateTaxConfig("Kentucky", 4.0, retirement_deduction=31110),
    "LA": StateTaxConfig(
        "Louisiana", 3.0, retirement_deduction=6000, retirement_deduction_age=65,
    ),
    "ME": StateTaxConfig("Maine", 7.15, retirement_deduction=35000),
    "MD": StateTaxConfig(
        "Maryland", 5.75, retirement_deduction=34300, retirement_deduction_age=65,
    ),
    "MA": StateTaxConfig("Massachusetts", 9.0),
    "MI": StateTaxConfig(
        "Michigan", 4.25, retirement_deduction=20000, retirement_deduction_age=67,
    ),
    "MO": StateTaxConfig("Missouri", 4.8),
    "NE": StateTaxConfig("Nebraska", 5.2),
    "NJ": StateTaxConfig(
        "New Jersey", 10.75,
        brackets=(
            (20000, 1.4), (35000, 1.75), (40000, 3.5), (75000, 5.525),
            (500000, 6.37), (1000000, 8.97), (INF, 10.75),
        ),
        retirement_deduction=100000, retirement_deduction_age=62,
    ),
    "NY": StateTaxConfig(
        "New York", 10.9,
        brackets=(
            (8500, 4.0), (11700, 4.5), (13900, 5.25), (80650, 5.5), (215400, 6.0),
            (1077550, 6.85), (5000000, 9.65), (25000000, 10.3), (INF, 10.9),
        ),
        standard_deduction=8000,
        retirement_deduction=20000, retirement_deduction_age=59.5, taxes_pension=False,
    ),
    "NC": StateTaxConfig("North Carolina", 4.25),
    "ND": StateTaxConfig("North Dakota", 2.5, cg_treatment="percentage_deduction", cg_rate=40.0),
    "OH": StateTaxConfig("Ohio", 3.5, retirement_deduction=200),
    "OK": StateTaxConfig("Oklahoma", 4.75, retirement_deduction=10000),
    "OR": StateTaxConfig(
        "Oregon", 9.9,
        brackets=((4300, 4.75), (10750, 6.75), (125000, 8.75), (INF, 9.9)),
        standard_deduction=2745,
        retirement_deduction=7500,
    ),
    "SC": StateTaxConfig(
        "South Carolina", 6.2, retirement_deduction=10000, retirement_deduction_age=65,
        cg_treatment="percentage_deduction", cg_rate=44.0,
    ),
    "VA": StateTaxConfig(
        "Virginia", 5.75, retirement_deduction=12000, retirement_deduction_age=65,
    ),
    "WI": StateTaxConfig("Wisconsin", 7.65, cg_treatment="percentage_deduction", cg_rate=30.0),
    "DC": StateTaxConfig("Washington D.C.", 10.75, retirement_deduction=3000),
}


def get_state_config(state: Optional[str]) -> Optional[StateTaxConfig]:
    code = (state or "").strip().upper()
    config = STATE_TAX_CONFIG.get(code)
    if config is None and code:
        logger.warning("Unknown state code %r, no state tax applied", state)
    return config


@dataclass
class StateCapitalGains:
    """How long-term gains enter the state calculation."""
    ordinary_portion: float = 0.0
    special_tax: float = 0.0
    credit: float = 0.0


def _split_capital_gains(config: StateTaxConfig, long_term_gains: float) -> StateCapitalGains:
    gains = max(0.0, long_term_gains)
    treatment = config.cg_treatment
    if gains <= 0:
        return StateCapitalGains()
    if treatment == "exempt":
        return StateCapitalGains()
    if treatment == "percentage_deduction":
        return StateCapitalGains(ordinary_portion=gains * (1.0 - config.cg_rate / 100.0))
    if treatment == "exclusion_with_cap":
        excluded = min(gains * config.cg_rate / 100.0, config.cg_cap)
        return StateCapitalGains(ordinary_portion=gains - excluded)
    if treatment == "flat_special_rate":
        return StateCapitalGains(
            special_tax=max(0.0, gains - config.cg_cap) * config.cg_rate / 100.0
        )
    if treatment == "credit":
        return StateCapitalGains(ordinary_portion=gains, credit=gains * config.cg_rate / 100.0)
    return StateCapitalGains(ordinary_portion=gains)


def calculate_state_income_tax(
    income: float,
    filing_status: str = "single",
    state: str = "TX",
    *,
    long_term_gains: float = 0.0,
) -> float:
    """State tax on wages (and any long-term gains) in a working year."""
    config = get_state_config(state)
    if config is None:
        return 0.0
    gains = _split_capital_gains(config, long_term_gains)
    if not config.has_income_tax:
        return gains.special_tax
    base = max(0.0, income + gains.ordinary_portion - config.deduction(filing_status))
    tax = stack_progressive(base, config.schedule(filing_status))
    return max(0.0, tax - gains.credit) + gains.special_tax


def _taxable_social_security(
    config: StateTaxConfig, benefit: float, age: float, is_joint: bool, total_agi: float, year: int
) -> float:
    if not config.taxes_ss or benefit <= 0:
        return 0.0
    threshold = config.ss_exempt_joint_agi if is_joint else config.ss_exempt_single_agi
    if config.ss_phaseout_year is not None and year >= config.ss_phaseout_year:
        return 0.0
    if config.ss_exempt_age is not None and age >= config.ss_exempt_age:
        if threshold is None or total_agi <= threshold:
            return 0.0
    elif threshold is not None and total_agi <= threshold:
        return 0.0
    if config.ss_partial_exempt_pct:
        return benefit * (1.0 - config.ss_partial_exempt_pct / 100.0)
    return benefit


def calculate_state_tax_on_retirement(
    *,
    state: str,
    age: float,
    filing_status: str = "single",
    total_agi: float = 0.0,
    social_security_income: float = 0.0,
    tax_deferred_withdrawal: float = 0.0,
    short_term_gains: float = 0.0,
    long_term_gains: float = 0.0,
    pension_income: float = 0.0,
    other_ordinary_income: float = 0.0,
    year: int = 2026,
) -> float:
    """
    State tax for a year funded by retirement withdrawals.

    `tax_deferred_withdrawal` covers 401k/IRA distributions and RMDs,
    `other_ordinary_income` covers non-qualified dividends and similar.
    """
    config = get_state_config(state)
    if config is None:
        return 0.0
    gains = _split_capital_gains(config, long_term_gains)
    if not config.has_income_tax:
        return gains.special_tax

    is_joint = normalize_filing_status(filing_status) == "married_filing_jointly"
    taxable = _taxable_social_security(
        config, social_security_income, age, is_joint, total_agi, year
    )

    if config.taxes_retirement and tax_deferred_withdrawal > 0:
        retirement = tax_deferred_withdrawal
        if config.retirement_deduction:
            meets_age = config.retirement_deduction_age is None or age >= config.retirement_deduction_age
            if meets_age:
                retirement = max(0.0, retirement - config.retirement_deduction)
        taxable += retirement

    if config.taxes_pension and pension_income > 0:
        taxable += pension_income

    taxable += max(0.0, short_term_gains) + gains.ordinary_portion + max(0.0, other_ordinary_income)
    base = max(0.0, taxable - config.deduction(filing_status))
    tax = stack_progressive(base, config.schedule(filing_status))
    return max(0.0, tax - gains.credit) + gains.special_tax
