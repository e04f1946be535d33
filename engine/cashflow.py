"""
Debt cash flows for one projection year.

Key rules:
  1. Loans with a monthly payment amortize month by month; year 0 starts at
     the as-of month.
  2. Interest = balance x annual rate / 12; principal = payment - interest,
     never negative. A payment below the interest does not grow the balance.
  3. Loans without a payment compound instead: ordinary debts annually,
     BTC-backed loans daily (365 periods), from year 1 on.
  4. A missing payment on a loan with a term is the level payment for
     the remaining term.
  5. Balances at or under $0.01 are paid off.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from core.schema import PAID_OFF_TOLERANCE

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365


def level_payment(balance: float, monthly_rate: float, n_months: int) -> float:
    """Standard fully-amortizing level payment (PMT) with near-zero rate guard."""
    if n_months <= 0:
        return float(balance)
    if abs(monthly_rate) < 1e-12:
        return float(balance) / n_months
    return float(balance) * (monthly_rate * (1 + monthly_rate) ** n_months) / (
        (1 + monthly_rate) ** n_months - 1
    )


@dataclass
class RunningLiability:
    """
    One debt as the year loop sees it.

    `key` is the liability id for ordinary liabilities and `loan_<id>` for
    dedicated collateralized loans, matching how goals link to them.
    """
    key: str
    name: str
    balance: float
    interest_rate: float  # annual percent
    monthly_payment: float = 0.0
    is_btc_loan: bool = False
    paid_off: bool = False

    @classmethod
    def from_terms(
        cls,
        key: str,
        terms,
        *,
        monthly_payment: float,
        is_btc_loan: bool,
    ) -> "RunningLiability":
        payment = monthly_payment
        if payment <= 0 and terms.term_months and not is_btc_loan and terms.current_balance > 0:
            payment = level_payment(terms.current_balance, terms.interest_rate / 1200.0, terms.term_months)
        return cls(
            key=key,
            name=terms.label,
            balance=max(0.0, terms.current_balance),
            interest_rate=terms.interest_rate,
            monthly_payment=payment,
            is_btc_loan=is_btc_loan,
            paid_off=terms.current_balance <= PAID_OFF_TOLERANCE,
        )

    def pay_down(self, amount: float) -> float:
        """Apply an extra payment; returns the amount actually used."""
        if self.paid_off or amount <= 0:
            return 0.0
        used = min(amount, self.balance)
        self.balance -= used
        if self.balance <= PAID_OFF_TOLERANCE:
            self.balance = 0.0
            self.paid_off = True
        return used


@dataclass
class AmortizationResult:
    payments: float = 0.0
    interest: float = 0.0
    paid_off_month: Optional[int] = None  # 1-based calendar month


def amortize_year(
    liability: RunningLiability,
    *,
    year_index: int,
    first_month: int = 1,
) -> AmortizationResult:
    """
    Run one calendar year of payments (or compounding) on `liability`.

    Parameters
    ----------
    liability : RunningLiability
        Mutated in place: balance and paid_off.
    year_index : int
        0 for the as-of year. Daily compounding on BTC loans starts at 1.
    first_month : int
        1-based month the year starts at; only year 0 starts late.

    Returns
    -------
    AmortizationResult with the cash paid and the payoff month if any.
    """
    result = AmortizationResult()
    if liability.paid_off or liability.balance <= 0:
        return result

    if liability.monthly_payment > 0:
        monthly_rate = liability.interest_rate / 1200.0
        for month in range(first_month, 13):
            if liability.balance <= PAID_OFF_TOLERANCE:
                break
            interest = liability.balance * monthly_rate
            principal = max(0.0, liability.monthly_payment - interest)
            payment = min(liability.balance + interest, liability.monthly_payment)
            liability.balance = max(0.0, liability.balance - principal)
            result.payments += payment
            result.interest += min(interest, payment)
            if liability.balance <= PAID_OFF_TOLERANCE:
                liability.balance = 0.0
                liability.paid_off = True
                result.paid_off_month = month
                logger.debug("%s paid off in month %d", liability.name, month)
                break
        return result

    if liability.interest_rate <= 0:
        return result
    before = liability.balance
    if liability.is_btc_loan:
        if year_index > 0:
            daily = liability.interest_rate / 100.0 / DAYS_PER_YEAR
            liability.balance *= (1.0 + daily) ** DAYS_PER_YEAR
    else:
        liability.balance *= 1.0 + liability.interest_rate / 100.0
    result.interest = liability.balance - before
    return result
