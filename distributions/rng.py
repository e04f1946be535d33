"""
Seeded random numbers for reproducible Monte Carlo runs.

Same inputs -> same seed -> same paths. The seed is an FNV-1a hash of every
input that can move an outcome; the generator is mulberry32, a 32-bit
generator whose output sequence is fully determined by that seed. Neither
touches the wall clock or process-level random state.
"""

from __future__ import annotations

import json
from typing import Any, Optional

_MASK32 = 0xFFFFFFFF
FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619


def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


class Mulberry32:
    """
    mulberry32 generator. random() returns floats in [0, 1).

    Usage:
        rng = Mulberry32(12345)
        u = rng.random()
    """

    def __init__(self, seed: int):
        self.state = int(seed) & _MASK32

    def random(self) -> float:
        self.state = (self.state + 0x6D2B79F5) & _MASK32
        a = self.state
        t = _imul(a ^ (a >> 15), 1 | a)
        t = (t + _imul(t ^ (t >> 7), 61 | t)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296.0


def fnv1a_32(text: str) -> int:
    """FNV-1a over UTF-16 code units, returned as an unsigned 32-bit int."""
    h = FNV_OFFSET_BASIS
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = _imul(h, FNV_PRIME)
    return h


def _fmt(value: Any) -> str:
    """Render a value the same way for every run (2.0 -> '2', None -> '0')."""
    if value is None or value is False:
        return "0"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value)


def _dump(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def build_seed_string(inputs, scenario=None) -> str:
    s = inputs.settings
    parts = [
        f"CA{_fmt(s.current_age)}",
        f"RA{_fmt(s.retirement_age)}",
        f"LE{_fmt(s.life_expectancy)}",
        f"CARS{_fmt(s.annual_retirement_spending)}",
        f"GNI{_fmt(s.gross_annual_income)}",
        f"FS{s.filing_status or ''}",
        f"SoR{s.state_of_residence or ''}",
        f"BCAGR{_fmt(s.btc_cagr_assumption)}",
        f"SCAGR{_fmt(s.stocks_cagr)}",
        f"ICR{_fmt(s.income_growth_rate)}",
        f"IR{_fmt(s.inflation_rate)}",
        f"BRM{s.btc_return_model or ''}",
        f"ASM{s.asset_withdrawal_strategy or ''}",
        f"CBM{s.cost_basis_method or ''}",
    ]
    if s.custom_return_periods:
        periods = {k: [p.model_dump() for p in v] for k, v in s.custom_return_periods.items()}
        parts.append(f"CRP{_dump(periods)}")
    if s.ticker_returns:
        parts.append(f"TR{_dump({k: v.model_dump() for k, v in s.ticker_returns.items()})}")

    if scenario is not None:
        loan = scenario.hypothetical_btc_loan
        events = sorted(scenario.one_time_events, key=lambda e: e.id or "")
        parts += [
            f"SN{scenario.name or ''}",
            f"RAO{_fmt(scenario.retirement_age_override)}",
            f"LEO{_fmt(scenario.life_expectancy_override)}",
            f"CARSO{_fmt(scenario.annual_retirement_spending_override)}",
            f"SoRO{scenario.state_override or ''}",
            f"BCAGRO{_fmt(scenario.btc_cagr_override)}",
            f"SCAGRO{_fmt(scenario.stocks_cagr_override)}",
            f"ICRO{_fmt(scenario.income_growth_override)}",
            f"IRO{_fmt(scenario.inflation_override)}",
            f"BRMO{scenario.btc_return_model_override or ''}",
            f"HYPL{'T' if loan is not None and loan.enabled else 'F'}",
            f"OTE{_dump([e.model_dump() for e in events])}",
        ]

    parts.append(f"HOLD{len(inputs.holdings)}")
    parts += [
        f"{h.asset_name}{_fmt(h.quantity)}{_fmt(h.current_price)}{h.asset_type}"
        for h in inputs.holdings
    ]
    parts.append(f"LIAB{len(inputs.liabilities)}")
    parts += [
        f"{l.name}{_fmt(l.current_balance)}{_fmt(l.interest_rate)}{l.type}"
        for l in inputs.liabilities
    ]
    parts.append(f"ACCT{len(inputs.accounts)}")
    parts += [f"{a.name}{_fmt(a.current_balance)}{a.account_type}" for a in inputs.accounts]
    parts.append(f"BTCP{_fmt(inputs.current_btc_price)}")
    return "".join(parts)


def generate_monte_carlo_seed(inputs, scenario=None, seed: Optional[int] = None) -> int:
    """An explicit seed wins; otherwise hash the inputs."""
    if seed is not None:
        return int(seed) & _MASK32
    return fnv1a_32(build_seed_string(inputs, scenario))
