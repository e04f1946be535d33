"""
Life events and goals — the year-specific adjustments layered on the plan.

Life events
  income_change / expense_change   amount added over [year, year + span)
  home_purchase                    down payment in its year, monthly cost after
  inheritance / windfall / gift /
  asset_sale, or affects=assets    positive amount invested per allocation
  major_expense, or a negative
  affects=assets amount            withdrawn from the portfolio in its year

Goals
  withdraw_from_portfolio          target amount withdrawn in the target year
  debt_payoff (linked liability)   extra monthly payments from the target
                                   year, or a lump sum in the lump-sum year

Nothing here touches the portfolio. The runner invests windfalls and funds
withdrawals; debt goals mutate the linked liability directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from core.schema import ASSET_CLASSES

from .cashflow import RunningLiability

WINDFALL_EVENT_TYPES = ("inheritance", "windfall", "gift", "asset_sale")
EXTRA_PAYMENT_STRATEGIES = ("extra", "extra_payment", "extra_monthly")


@dataclass
class YearAdjustments:
    income: float = 0.0
    expenses: float = 0.0
    goal_withdrawals: float = 0.0
    asset_additions: Dict[str, float] = field(default_factory=dict)
    life_event_names: List[str] = field(default_factory=list)
    goal_names: List[str] = field(default_factory=list)
    debt_payoffs: List[Dict] = field(default_factory=list)

    def add_assets(self, amounts: Mapping[str, float]) -> None:
        for asset, amount in amounts.items():
            if amount > 0:
                self.asset_additions[asset] = self.asset_additions.get(asset, 0.0) + amount


def allocate(amount: float, weights: Mapping[str, float], fallback: str) -> Dict[str, float]:
    """Split `amount` by percentage weights; all-zero weights send it to `fallback`."""
    total = sum(max(0.0, w) for w in weights.values())
    if total <= 0:
        return {fallback: amount}
    return {asset: amount * max(0.0, w) / total for asset, w in weights.items() if w > 0}


def windfall_allocation(event, savings_allocation: Mapping[str, float]) -> Dict[str, float]:
    """Where a windfall lands: the event's own split when custom, else the savings mix."""
    if event.allocation_method == "custom":
        weights = {
            "btc": event.btc_allocation,
            "stocks": event.stocks_allocation,
            "real_estate": event.real_estate_allocation,
            "bonds": event.bonds_allocation,
            "cash": event.cash_allocation,
            "other": event.other_allocation,
        }
        if sum(weights.values()) > 0:
            return allocate(event.amount, weights, "cash")
    weights = {a: savings_allocation.get(a, 0.0) for a in ASSET_CLASSES}
    return allocate(event.amount, weights, "cash")


def apply_life_events(
    events: Iterable,
    year: int,
    savings_allocation: Mapping[str, float],
    adjustments: YearAdjustments,
) -> None:
    for event in events:
        kind = (event.event_type or "").lower()
        affects = (event.affects or "").lower()

        if kind in ("income_change", "expense_change"):
            if not event.is_active(year):
                continue
            if kind == "income_change":
                adjustments.income += event.amount
            else:
                adjustments.expenses += event.amount
            adjustments.life_event_names.append(event.name)
            continue

        if kind == "home_purchase":
            if year >= event.year and event.monthly_expense_impact:
                adjustments.expenses += event.monthly_expense_impact * 12.0
            if year == event.year:
                if event.down_payment > 0:
                    adjustments.goal_withdrawals += event.down_payment
                adjustments.life_event_names.append(event.name)
            continue

        if year != event.year:
            continue
        if (affects == "assets" or kind in WINDFALL_EVENT_TYPES) and event.amount > 0:
            adjustments.add_assets(windfall_allocation(event, savings_allocation))
            adjustments.life_event_names.append(event.name)
        elif kind == "major_expense" or (affects == "assets" and event.amount < 0):
            adjustments.goal_withdrawals += abs(event.amount)
            adjustments.life_event_names.append(event.name)


def _goal_year(value) -> Optional[int]:
    return value.year if value is not None else None


def apply_goals(
    goals: Iterable,
    year: int,
    liabilities: Mapping[str, RunningLiability],
    adjustments: YearAdjustments,
) -> None:
    """
    Portfolio-funded goals for `year`.

    Debt goals pay the linked liability from the portfolio: the payment is a
    goal withdrawal and reduces the balance the same year.
    """
    for goal in goals:
        goal_type = (goal.goal_type or "").lower()
        target_year = _goal_year(goal.target_date)

        if goal_type == "debt_payoff" and goal.linked_liability_id:
            liability = liabilities.get(str(goal.linked_liability_id))
            if liability is None or liability.paid_off:
                continue
            strategy = (goal.payoff_strategy or "").lower()
            paid = 0.0
            if strategy in EXTRA_PAYMENT_STRATEGIES:
                if target_year is None or year >= target_year:
                    paid = liability.pay_down(goal.extra_monthly_payment * 12.0)
            elif strategy == "lump_sum":
                lump_year = _goal_year(goal.lump_sum_date) or target_year
                if lump_year == year:
                    cleared = liability.pay_down(liability.balance)
                    paid = goal.target_amount if goal.target_amount > 0 else cleared
            if paid <= 0:
                continue
            adjustments.goal_withdrawals += paid
            adjustments.goal_names.append(goal.name)
            if liability.paid_off:
                adjustments.debt_payoffs.append({
                    "liability_name": liability.name,
                    "goal_name": goal.name,
                    "year": year,
                })
            continue

        if goal.withdraw_from_portfolio and target_year == year and goal.target_amount > 0:
            adjustments.goal_withdrawals += goal.target_amount
            adjustments.goal_names.append(goal.name)
