"""
Federal tax tables keyed by year.

Sources: IRS Rev. Proc. 2023-34 (2024), 2024-40 (2025), 2025-32 (2026).

Years after the latest table inflate that table at the caller's inflation
rate (FALLBACK_INFLATION when none is given), rounding every dollar figure.
Years before the earliest table use the earliest table as-is. The module-level
dicts are read-only reference data; lookups always return fresh copies.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

FALLBACK_INFLATION = 0.025

INF = math.inf

FILING_STATUSES: Tuple[str, ...] = (
    "single",
    "married_filing_jointly",
    "married_filing_separately",
    "head_of_household",
)

# (upper bound of bracket, marginal rate in percent)
FEDERAL_INCOME_BRACKETS: Dict[int, Dict[str, Tuple[Tuple[float, float], ...]]] = {
    2024: {
        "single": (
            (11600, 10), (47150, 12), (100525, 22), (191950, 24),
            (243725, 32), (609350, 35), (INF, 37),
        ),
        "married_filing_jointly": (
            (23200, 10), (94300, 12), (201050, 22), (383900, 24),
            (487450, 32), (731200, 35), (INF, 37),
        ),
        "married_filing_separately": (
            (11600, 10), (47150, 12), (100525, 22), (191950, 24),
            (243725, 32), (365600, 35), (INF, 37),
        ),
        "head_of_household": (
            (16550, 10), (63100, 12), (100500, 22), (191950, 24),
            (243700, 32), (609350, 35), (INF, 37),
        ),
    },
    2025: {
        "single": (
            (11925, 10), (48475, 12), (103350, 22), (197300, 24),
            (250525, 32), (626350, 35), (INF, 37),
        ),
        "married_filing_jointly": (
            (23850, 10), (96950, 12), (206700, 22), (394600, 24),
            (501050, 32), (751600, 35), (INF, 37),
        ),
        "married_filing_separately": (
            (11925, 10), (48475, 12), (103350, 22), (197300, 24),
            (250525, 32), (375800, 35), (INF, 37),
        ),
        "head_of_household": (
            (17000, 10), (64850, 12), (103350, 22), (197300, 24),
            (250500, 32), (626350, 35), (INF, 37),
        ),
    },
    2026: {
        "single": (
            (12400, 10), (50400, 12), (105700, 22), (201775, 24),
            (256225, 32), (640600, 35), (INF, 37),
        ),
        "married_filing_jointly": (
            (24800, 10), (100800, 12), (211400, 22), (403550, 24),
            (512450, 32), (768700, 35), (INF, 37),
        ),
        "married_filing_separately": (
            (12400, 10), (50400, 12), (105700, 22), (201775, 24),
            (256225, 32), (384350, 35), (INF, 37),
        ),
        "head_of_household": (
            (17650, 10), (67450, 12), (108150, 22), (201775, 24),
            (256225, 32), (640600, 35), (INF, 37),
        ),
    },
}

# Taxable-income ceilings of the 0% and 15% long-term capital gains brackets.
FEDERAL_LTCG_THRESHOLDS: Dict[int, Dict[str, Dict[str, float]]] = {
    2024: {
        "single": {"zero_max": 47025, "fifteen_max": 518900},
        "married_filing_jointly": {"zero_max": 94050, "fifteen_max": 583750},
        "married_filing_separately": {"zero_max": 47025, "fifteen_max": 291850},
        "head_of_household": {"zero_max": 63000, "fifteen_max": 551350},
    },
    2025: {
        "single": {"zero_max": 48350, "fifteen_max": 533400},
        "married_filing_jointly": {"zero_max": 96700, "fifteen_max": 600050},
        "married_filing_separately": {"zero_max": 48350, "fifteen_max": 300000},
        "head_of_household": {"zero_max": 64750, "fifteen_max": 566700},
    },
    2026: {
        "single": {"zero_max": 49650, "fifteen_max": 547350},
        "married_filing_jointly": {"zero_max": 99300, "fifteen_max": 615550},
        "married_filing_separately": {"zero_max": 49650, "fifteen_max": 307775},
        "head_of_household": {"zero_max": 66450, "fifteen_max": 580650},
    },
}

STANDARD_DEDUCTIONS: Dict[int, Dict[str, float]] = {
    2024: {
        "single": 14600,
        "married_filing_jointly": 29200,
        "married_filing_separately": 14600,
        "head_of_household": 21900,
        "additional_single": 1950,   # age 65+, per person
        "additional_married": 1550,
    },
    2025: {
        "single": 15000,
        "married_filing_jointly": 30000,
        "married_filing_separately": 15000,
        "head_of_household": 22500,
        "additional_single": 2000,
        "additional_married": 1600,
    },
    2026: {
        "single": 16100,
        "married_filing_jointly": 32200,
        "married_filing_separately": 16100,
        "head_of_household": 24150,
        "additional_single": 2050,
        "additional_married": 1650,
    },
}

CONTRIBUTION_LIMITS: Dict[int, Dict[str, float]] = {
    2024: {
        "traditional_401k": 23000,
        "traditional_401k_catchup": 7500,       # age 50+
        "traditional_ira": 7000,
        "traditional_ira_catchup": 1000,
        "roth_ira": 7000,
        "roth_ira_catchup": 1000,
        "hsa_single": 4150,
        "hsa_family": 8300,
        "hsa_catchup": 1000,                     # age 55+
    },
    2025: {
        "traditional_401k": 23500,
        "traditional_401k_catchup": 7500,
        "traditional_401k_super_catchup": 11250,  # ages 60-63
        "traditional_ira": 7000,
        "traditional_ira_catchup": 1000,
        "roth_ira": 7000,
        "roth_ira_catchup": 1000,
        "hsa_single": 4300,
        "hsa_family": 8550,
        "hsa_catchup": 1000,
    },
    2026: {
        "traditional_401k": 24000,
        "traditional_401k_catchup": 7500,
        "traditional_401k_super_catchup": 11250,
        "traditional_ira": 7000,
        "traditional_ira_catchup": 1000,
        "roth_ira": 7000,
        "roth_ira_catchup": 1000,
        "hsa_single": 4400,
        "hsa_family": 8750,
        "hsa_catchup": 1000,
    },
}

# Roth IRA MAGI phase-out ranges.
ROTH_INCOME_LIMITS: Dict[int, Dict[str, Dict[str, float]]] = {
    2024: {
        "single": {"phaseout_start": 146000, "phaseout_end": 161000},
        "married_filing_jointly": {"phaseout_start": 230000, "phaseout_end": 240000},
        "married_filing_separately": {"phaseout_start": 0, "phaseout_end": 10000},
    },
    2025: {
        "single": {"phaseout_start": 150000, "phaseout_end": 165000},
        "married_filing_jointly": {"phaseout_start": 236000, "phaseout_end": 246000},
        "married_filing_separately": {"phaseout_start": 0, "phaseout_end": 10000},
    },
    2026: {
        "single": {"phaseout_start": 154000, "phaseout_end": 169000},
        "married_filing_jointly": {"phaseout_start": 242000, "phaseout_end": 252000},
        "married_filing_separately": {"phaseout_start": 0, "phaseout_end": 10000},
    },
}

SOCIAL_SECURITY: Dict[int, Dict[str, float]] = {
    2024: {"wage_base": 168600, "bend_point_1": 1174, "bend_point_2": 7078},
    2025: {"wage_base": 176100, "bend_point_1": 1226, "bend_point_2": 7391},
    2026: {"wage_base": 180600, "bend_point_1": 1256, "bend_point_2": 7572},
}

# Provisional-income thresholds for taxing Social Security (not indexed).
SOCIAL_SECURITY_TAX_THRESHOLDS: Dict[str, Tuple[float, float]] = {
    "single": (25000, 34000),
    "married_filing_jointly": (32000, 44000),
    "married_filing_separately": (0, 0),
    "head_of_household": (25000, 34000),
}

# Net investment income tax, thresholds not indexed.
NIIT_RATE = 3.8
NIIT_THRESHOLDS: Dict[str, float] = {
    "single": 200000,
    "married_filing_jointly": 250000,
    "married_filing_separately": 125000,
    "head_of_household": 200000,
}

# IRS Uniform Lifetime Table: age -> distribution period.
RMD_UNIFORM_LIFETIME_TABLE: Dict[int, float] = {
    72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9, 78: 22.0, 79: 21.1,
    80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0, 86: 15.2, 87: 14.4,
    88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8, 93: 10.1, 94: 9.5, 95: 8.9,
    96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8, 100: 6.4, 101: 6.0, 102: 5.6, 103: 5.2,
    104: 4.9, 105: 4.6, 106: 4.3, 107: 4.1, 108: 3.9, 109: 3.7, 110: 3.5, 111: 3.4,
    112: 3.3, 113: 3.1, 114: 3.0, 115: 2.9, 116: 2.8, 117: 2.7, 118: 2.5, 119: 2.3,
    120: 2.0,
}


def normalize_filing_status(filing_status: Optional[str]) -> str:
    status = (filing_status or "single").strip().lower()
    if status in ("married", "joint", "mfj"):
        return "married_filing_jointly"
    if status not in FILING_STATUSES:
        return "single"
    return status


def _inflate(data: Any, years: int, rate: float) -> Any:
    if isinstance(data, dict):
        return {k: _inflate(v, years, rate) for k, v in data.items()}
    if isinstance(data, (tuple, list)):
        return type(data)(_inflate(v, years, rate) for v in data)
    if isinstance(data, (int, float)):
        if math.isinf(data):
            return data
        return float(round(data * (1.0 + rate) ** years))
    return data


def get_year_data(table: Dict[int, Any], year: int, inflation_rate: Optional[float] = None) -> Any:
    """
    Table entry for `year`.

    inflation_rate is a decimal (0.03 for 3%). Rates inside bracket tuples are
    percentages and are never inflated, so callers pass brackets through
    `federal_brackets` rather than inflating them directly.
    """
    if year in table:
        return table[year]
    years = sorted(table)
    earlier = [y for y in years if y <= year]
    base_year = earlier[-1] if earlier else years[0]
    diff = year - base_year
    if diff <= 0:
        return table[base_year]
    rate = FALLBACK_INFLATION if inflation_rate is None else inflation_rate
    return _inflate(table[base_year], diff, rate)


def federal_brackets(
    year: int, filing_status: str, inflation_rate: Optional[float] = None
) -> Tuple[Tuple[float, float], ...]:
    """Income brackets as ((upper, rate_decimal), ...)."""
    status = normalize_filing_status(filing_status)
    raw = FEDERAL_INCOME_BRACKETS.get(year)
    if raw is None:
        # Inflate only the bounds; rates stay put.
        bounds = {
            y: {s: tuple(b[0] for b in v) for s, v in d.items()}
            for y, d in FEDERAL_INCOME_BRACKETS.items()
        }
        rates = FEDERAL_INCOME_BRACKETS[max(FEDERAL_INCOME_BRACKETS)][status]
        upper = get_year_data(bounds, year, inflation_rate)[status]
        return tuple((u, r[1] / 100.0) for u, r in zip(upper, rates))
    return tuple((upper, rate / 100.0) for upper, rate in raw[status])


def ltcg_brackets(
    year: int, filing_status: str, inflation_rate: Optional[float] = None
) -> Tuple[Tuple[float, float], ...]:
    """0/15/20% long-term gains brackets as ((upper, rate_decimal), ...)."""
    status = normalize_filing_status(filing_status)
    thresholds = get_year_data(FEDERAL_LTCG_THRESHOLDS, year, inflation_rate)[status]
    return (
        (thresholds["zero_max"], 0.0),
        (thresholds["fifteen_max"], 0.15),
        (INF, 0.20),
    )


def standard_deduction(
    year: int, filing_status: str, age: float = 0, inflation_rate: Optional[float] = None
) -> float:
    status = normalize_filing_status(filing_status)
    data = get_year_data(STANDARD_DEDUCTIONS, year, inflation_rate)
    deduction = float(data[status])
    if age >= 65:
        key = "additional_married" if status == "married_filing_jointly" else "additional_single"
        deduction += float(data.get(key, 0.0))
    return deduction


def contribution_limit(year: int, limit_type: str, age: float = 0) -> float:
    """Annual limit for one contribution type including the age-based catch-up."""
    data = get_year_data(CONTRIBUTION_LIMITS, year)
    limit = float(data.get(limit_type, 0.0))
    if age < 50:
        return limit
    if limit_type == "traditional_401k":
        if 60 <= age <= 63 and "traditional_401k_super_catchup" in data:
            return limit + data["traditional_401k_super_catchup"]
        return limit + data.get("traditional_401k_catchup", 0.0)
    if limit_type in ("traditional_ira", "roth_ira"):
        return limit + data.get(f"{limit_type}_catchup", 0.0)
    if limit_type in ("hsa_single", "hsa_family") and age >= 55:
        return limit + data.get("hsa_catchup", 0.0)
    return limit


def roth_phaseout_multiplier(year: int, filing_status: str, magi: float) -> float:
    """Share of the Roth IRA limit still allowed at `magi` (1.0 below the range, 0.0 above)."""
    status = normalize_filing_status(filing_status)
    data = get_year_data(ROTH_INCOME_LIMITS, year)
    limits = data.get(status, data["single"])
    start, end = limits["phaseout_start"], limits["phaseout_end"]
    if magi <= start:
        return 1.0
    if magi >= end:
        return 0.0
    return (end - magi) / (end - start)


def rmd_start_age(birth_year: int) -> float:
    if birth_year <= 1950:
        return 72
    if birth_year <= 1959:
        return 73
    return 75


def rmd_factor(age: int) -> Optional[float]:
    if age < 72:
        return None
    if age > 120:
        return RMD_UNIFORM_LIFETIME_TABLE[120]
    return RMD_UNIFORM_LIFETIME_TABLE.get(int(age), RMD_UNIFORM_LIFETIME_TABLE[120])
