"""
Withdrawal sequencer — funds a year's cash deficit from the portfolio.

Escalation order, each source exhausted before the next:
  1. taxable      cash first, then the configured strategy
                  (proportional / priority list / blended weights)
  2. tax-deferred 401k / IRA, ordinary income, 10% penalty before 59.5
  3. tax-free     Roth contributions first, then earnings (penalized early)
  4. loan equity  BTC-backed loans with equity, lowest LTV first: sell
                  collateral to clear the debt, keep the freed coins
  5. real estate  sold in full; proceeds beyond the need go to taxable cash

Withdrawals create tax, and that tax has to be withdrawn too. The sequencer
grosses up: draw, recompute the year's incremental federal + state tax and
penalty, draw the difference, a few passes until it settles.

BTC sales in the taxable account consume tax lots with the plan's cost-basis
method and a Dec 31 sale date. Coins not covered by lots (legacy holdings)
fall back to the aggregate basis ratio and count as long-term.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from core.schema import (
    ASSET_CLASSES,
    DEFAULT_BLEND_PERCENTAGES,
    DEFAULT_PRIORITY_ORDER,
    LOT_DUST_QUANTITY,
    WITHDRAWAL_DUST,
)
from core.utils import safe_ratio
from lots.selector import LotSelection, proportional_selection, select_lots
from tax.federal import (
    FederalTaxBreakdown,
    calculate_federal_tax,
    marginal_ltcg_rate,
)
from tax.state import calculate_state_income_tax, calculate_state_tax_on_retirement

from .collateral import LoanPosition, release_collateral, sell_collateral
from .portfolio import BTC_TICKER, AccountBuckets, ProjectionState

logger = logging.getLogger(__name__)

GROSS_UP_PASSES = 4
CENT = 0.01


@dataclass(frozen=True)
class WithdrawalPolicy:
    strategy: str = "proportional"
    priority_order: Tuple[str, ...] = DEFAULT_PRIORITY_ORDER
    blend_percentages: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_BLEND_PERCENTAGES))
    cost_basis_method: str = "HIFO"
    specific_lot_ids: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings) -> "WithdrawalPolicy":
        return cls(
            strategy=settings.asset_withdrawal_strategy,
            priority_order=tuple(settings.withdrawal_priority_order or DEFAULT_PRIORITY_ORDER),
            blend_percentages=dict(settings.withdrawal_blend_percentages),
            cost_basis_method=settings.cost_basis_method,
            specific_lot_ids=tuple(str(i) for i in settings.specific_lot_ids),
        )


# ---------------------------------------------------------------------------
# Taxes on a year's withdrawals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaxContext:
    """
    A year's income before any portfolio withdrawal.

    Withdrawal taxes are the difference between the tax on this income plus
    the withdrawals and the tax on this income alone, so each withdrawal
    dollar lands in the bracket left over by everything earned before it.
    """
    year: int
    age: int
    filing_status: str = "single"
    state: str = "TX"
    inflation_rate: Optional[float] = None
    wages: float = 0.0               # after pre-tax contributions
    pension_income: float = 0.0
    tax_deferred_income: float = 0.0  # RMDs
    social_security: float = 0.0
    qualified_dividends: float = 0.0
    non_qualified_dividends: float = 0.0

    def federal(
        self,
        *,
        deferred: float = 0.0,
        short_term_gains: float = 0.0,
        long_term_gains: float = 0.0,
        penalized: float = 0.0,
    ) -> FederalTaxBreakdown:
        return calculate_federal_tax(
            ordinary_income=(
                self.wages
                + self.pension_income
                + self.tax_deferred_income
                + self.non_qualified_dividends
                + deferred
            ),
            social_security=self.social_security,
            short_term_gains=short_term_gains,
            long_term_gains=long_term_gains,
            qualified_dividends=self.qualified_dividends,
            penalized_withdrawals=penalized,
            age=self.age,
            filing_status=self.filing_status,
            year=self.year,
            inflation_rate=self.inflation_rate,
        )

    def state_tax(
        self,
        *,
        deferred: float = 0.0,
        short_term_gains: float = 0.0,
        long_term_gains: float = 0.0,
    ) -> float:
        dividends = self.qualified_dividends + self.non_qualified_dividends
        if self.wages > 0:
            income = self.wages + self.pension_income + self.tax_deferred_income + dividends + deferred
            return calculate_state_income_tax(
                income + max(0.0, short_term_gains),
                self.filing_status,
                self.state,
                long_term_gains=max(0.0, long_term_gains),
            )
        total_agi = (
            self.pension_income
            + self.tax_deferred_income
            + deferred
            + dividends
            + self.social_security
            + max(0.0, short_term_gains)
            + max(0.0, long_term_gains)
        )
        return calculate_state_tax_on_retirement(
            state=self.state,
            age=self.age,
            filing_status=self.filing_status,
            total_agi=total_agi,
            social_security_income=self.social_security,
            tax_deferred_withdrawal=self.tax_deferred_income + deferred,
            short_term_gains=short_term_gains,
            long_term_gains=long_term_gains,
            pension_income=self.pension_income,
            other_ordinary_income=dividends,
            year=self.year,
        )


# ---------------------------------------------------------------------------
# Pure source split (no portfolio state)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WithdrawalPlan:
    from_taxable: float = 0.0
    from_tax_deferred: float = 0.0
    from_tax_free: float = 0.0
    from_roth_contributions: float = 0.0
    from_roth_earnings: float = 0.0
    federal_tax: float = 0.0
    state_tax: float = 0.0
    penalty: float = 0.0
    shortfall: float = 0.0

    @property
    def total(self) -> float:
        return self.from_taxable + self.from_tax_deferred + self.from_tax_free

    @property
    def total_tax(self) -> float:
        return self.federal_tax + self.state_tax + self.penalty


def split_by_source(
    need: float,
    *,
    taxable_balance: float,
    tax_deferred_balance: float,
    tax_free_balance: float,
    roth_contribution_basis: float = 0.0,
) -> WithdrawalPlan:
    """Dollars per account type for `need`, in sequencer order. No taxes."""
    remaining = max(0.0, need)
    from_taxable = min(remaining, max(0.0, taxable_balance))
    remaining -= from_taxable
    from_deferred = min(remaining, max(0.0, tax_deferred_balance))
    remaining -= from_deferred
    from_free = min(remaining, max(0.0, tax_free_balance))
    remaining -= from_free
    from_contributions = min(from_free, max(0.0, roth_contribution_basis))
    return WithdrawalPlan(
        from_taxable=from_taxable,
        from_tax_deferred=from_deferred,
        from_tax_free=from_free,
        from_roth_contributions=from_contributions,
        from_roth_earnings=from_free - from_contributions,
        shortfall=remaining,
    )


def plan_withdrawal_sources(
    need: float,
    *,
    taxable_balance: float,
    tax_deferred_balance: float,
    tax_free_balance: float,
    roth_contribution_basis: float = 0.0,
    taxable_gain_ratio: float = 0.0,
    other_income: float = 0.0,
    age: int = 65,
    filing_status: str = "single",
    state: str = "TX",
    year: int = 2026,
    inflation_rate: Optional[float] = None,
) -> WithdrawalPlan:
    """
    Which accounts fund `need`, and the tax that draw creates.

    Parameters
    ----------
    need : float
        Cash required, before the tax on the withdrawal itself.
    taxable_gain_ratio : float
        Share of a taxable withdrawal that is long-term gain (0 = all basis).
    other_income : float
        Ordinary income already earned this year; withdrawals stack on top.

    Returns
    -------
    WithdrawalPlan with the split, incremental federal and state tax, and the
    early-withdrawal penalty on deferred and Roth-earnings dollars.
    """
    split = split_by_source(
        need,
        taxable_balance=taxable_balance,
        tax_deferred_balance=tax_deferred_balance,
        tax_free_balance=tax_free_balance,
        roth_contribution_basis=roth_contribution_basis,
    )
    ctx = TaxContext(
        year=year,
        age=age,
        filing_status=filing_status,
        state=state,
        inflation_rate=inflation_rate,
        pension_income=other_income,
    )
    gains = split.from_taxable * min(1.0, max(0.0, taxable_gain_ratio))
    penalized = split.from_tax_deferred + split.from_roth_earnings
    base = ctx.federal()
    full = ctx.federal(deferred=split.from_tax_deferred, long_term_gains=gains, penalized=penalized)
    state_tax = ctx.state_tax(deferred=split.from_tax_deferred, long_term_gains=gains) - ctx.state_tax()
    return WithdrawalPlan(
        from_taxable=split.from_taxable,
        from_tax_deferred=split.from_tax_deferred,
        from_tax_free=split.from_tax_free,
        from_roth_contributions=split.from_roth_contributions,
        from_roth_earnings=split.from_roth_earnings,
        federal_tax=max(0.0, full.income_tax - base.income_tax),
        state_tax=max(0.0, state_tax),
        penalty=full.penalty,
        shortfall=split.shortfall,
    )


# ---------------------------------------------------------------------------
# Taxable account
# ---------------------------------------------------------------------------

def taxable_asset_targets(account: AccountBuckets, amount: float, policy: WithdrawalPolicy) -> Dict[str, float]:
    """Dollars to sell per asset for `amount`, cash first then the strategy."""
    targets = {asset: 0.0 for asset in ASSET_CLASSES}
    amount = min(max(0.0, amount), account.total())
    if amount <= 0:
        return targets

    targets["cash"] = min(account.cash, amount)
    remaining = amount - targets["cash"]
    available = {a: account.get(a) for a in ASSET_CLASSES if a != "cash" and account.get(a) > 0}
    if remaining <= 0 or not available:
        return targets

    if policy.strategy == "priority":
        order = [a for a in policy.priority_order if a in available]
        order += [a for a in available if a not in order]
        for asset in order:
            take = min(available[asset], remaining)
            targets[asset] += take
            available[asset] -= take
            remaining -= take
            if remaining <= 0:
                break
        return targets

    if policy.strategy == "blended":
        weights = {a: max(0.0, policy.blend_percentages.get(a, 0.0)) for a in available}
        total_weight = sum(weights.values())
        if total_weight > 0:
            wanted = remaining
            for asset, weight in weights.items():
                take = min(available[asset], wanted * weight / total_weight)
                targets[asset] += take
                available[asset] -= take
                remaining -= take

    # proportional, and the remainder of a blended draw
    pool = sum(available.values())
    if remaining > 0 and pool > 0:
        share = min(1.0, remaining / pool)
        for asset, value in available.items():
            targets[asset] += value * share
    return targets


@dataclass
class TaxableWithdrawal:
    amount: float = 0.0
    cost_basis: float = 0.0
    short_term_gain: float = 0.0
    long_term_gain: float = 0.0
    by_asset: Dict[str, float] = field(default_factory=dict)
    btc_selection: Optional[LotSelection] = None

    @property
    def used_fallback(self) -> bool:
        return self.btc_selection is not None and self.btc_selection.used_fallback


def sell_btc(
    state: ProjectionState,
    quantity: float,
    policy: WithdrawalPolicy,
    *,
    sale_date: pd.Timestamp,
) -> LotSelection:
    """
    Sell liquid taxable BTC through the lot pool.

    Specific-id sales take the named lots still in the pool and cover any
    remainder highest-cost first. Coins not covered by any lot use the
    aggregate basis ratio.
    """
    covered = min(quantity, state.lot_quantity)
    selection = LotSelection(requested_quantity=quantity)
    if covered > LOT_DUST_QUANTITY:
        if policy.cost_basis_method == "SPECIFIC_ID":
            present = {lot.lot_id for lot in state.btc_lots}
            named = [i for i in policy.specific_lot_ids if i in present]
            selection = select_lots(
                state.btc_lots, BTC_TICKER, covered, "SPECIFIC_ID",
                sale_date=sale_date, specific_ids=named,
            )
            if selection.remaining_to_sell > LOT_DUST_QUANTITY:
                rest = select_lots(
                    state.btc_lots, BTC_TICKER, selection.remaining_to_sell, "HIFO", sale_date=sale_date
                )
                selection.consumed += rest.consumed
        else:
            selection = select_lots(
                state.btc_lots, BTC_TICKER, covered, policy.cost_basis_method, sale_date=sale_date
            )
        selection.requested_quantity = quantity

    uncovered = quantity - selection.total_quantity
    if uncovered > LOT_DUST_QUANTITY:
        if state.use_lots and not state.fallback_warned:
            logger.warning(
                "No tax lots cover %.8f BTC of a taxable sale; using aggregate basis (long-term)",
                uncovered,
            )
            state.fallback_warned = True
        fallback = proportional_selection(
            uncovered,
            aggregate_basis=state.basis_ratio() * state.portfolio.taxable.btc,
            aggregate_quantity=state.liquid_btc_quantity,
            sale_date=sale_date,
        )
        selection.consumed += fallback.consumed
        selection.used_fallback = True
    selection.remaining_to_sell = 0.0
    return selection


def withdraw_from_taxable(
    state: ProjectionState,
    amount: float,
    policy: WithdrawalPolicy,
    *,
    sale_date: pd.Timestamp,
) -> TaxableWithdrawal:
    """
    Sell `amount` dollars from the taxable account.

    Cash carries no gain. BTC uses lots (or the fallback). Stocks, bonds and
    other share whatever basis is left after BTC and cash, capped at their
    value, and their gains count as long-term.
    """
    account = state.portfolio.taxable
    result = TaxableWithdrawal()
    if amount <= 0 or account.total() <= 0:
        return result

    targets = taxable_asset_targets(account, amount, policy)
    price = state.btc_price

    btc_basis_pool = state.btc_basis_estimate()
    others_total = account.total() - account.btc - account.cash
    others_basis_pool = max(0.0, state.taxable_basis - btc_basis_pool - account.cash)
    others_ratio = min(1.0, safe_ratio(others_basis_pool, others_total))

    if targets["btc"] > 0 and price > 0:
        selection = sell_btc(state, targets["btc"] / price, policy, sale_date=sale_date)
        short, long = selection.realized_gains(price)
        result.btc_selection = selection
        result.cost_basis += selection.total_cost_basis
        result.short_term_gain += max(0.0, short)
        result.long_term_gain += max(0.0, long)

    others = sum(targets[a] for a in ("stocks", "bonds", "other"))
    result.cost_basis += targets["cash"] + others * others_ratio
    result.long_term_gain += others * (1.0 - others_ratio)

    for asset, value in targets.items():
        if value <= 0:
            continue
        left = account.get(asset) - value
        account.set(asset, left if left >= WITHDRAWAL_DUST else 0.0)
    state.taxable_basis = max(0.0, state.taxable_basis - result.cost_basis)
    state.reconcile_btc_lots()

    result.amount = sum(targets.values())
    result.by_asset = {a: v for a, v in targets.items() if v > 0}
    return result


# ---------------------------------------------------------------------------
# Full sequencer
# ---------------------------------------------------------------------------

@dataclass
class WithdrawalOutcome:
    need: float = 0.0
    from_taxable: float = 0.0
    from_tax_deferred: float = 0.0
    from_tax_free: float = 0.0
    from_roth_contributions: float = 0.0
    from_roth_earnings: float = 0.0
    from_loan_equity: float = 0.0
    from_real_estate: float = 0.0
    short_term_gain: float = 0.0
    long_term_gain: float = 0.0
    equity_gain: float = 0.0
    federal_tax: float = 0.0
    state_tax: float = 0.0
    penalty: float = 0.0
    equity_tax: float = 0.0
    shortfall: float = 0.0
    loan_payoffs: List[Dict] = field(default_factory=list)

    @property
    def from_accounts(self) -> float:
        return self.from_taxable + self.from_tax_deferred + self.from_tax_free

    @property
    def total_withdrawal(self) -> float:
        return self.from_accounts + self.from_loan_equity + self.from_real_estate

    @property
    def total_tax(self) -> float:
        return self.federal_tax + self.state_tax + self.penalty + self.equity_tax

    @property
    def penalized(self) -> float:
        return self.from_tax_deferred + self.from_roth_earnings

    def is_depleted(self, tolerance: float) -> bool:
        return self.need > 0 and self.shortfall > tolerance * self.need


def _draw_accounts(
    state: ProjectionState,
    gap: float,
    outcome: WithdrawalOutcome,
    policy: WithdrawalPolicy,
    *,
    sale_date: pd.Timestamp,
) -> float:
    p = state.portfolio
    split = split_by_source(
        gap,
        taxable_balance=p.taxable.total(),
        tax_deferred_balance=p.tax_deferred.total(),
        tax_free_balance=p.tax_free.total(),
        roth_contribution_basis=state.roth_contribution_basis,
    )
    drawn = 0.0
    if split.from_taxable > 0:
        taxable = withdraw_from_taxable(state, split.from_taxable, policy, sale_date=sale_date)
        outcome.from_taxable += taxable.amount
        outcome.short_term_gain += taxable.short_term_gain
        outcome.long_term_gain += taxable.long_term_gain
        drawn += taxable.amount
    if split.from_tax_deferred > 0:
        taken = p.tax_deferred.withdraw_proportional(split.from_tax_deferred)
        outcome.from_tax_deferred += taken
        drawn += taken
    if split.from_tax_free > 0:
        taken = p.tax_free.withdraw_proportional(split.from_tax_free)
        from_contributions = min(taken, state.roth_contribution_basis)
        state.roth_contribution_basis -= from_contributions
        outcome.from_tax_free += taken
        outcome.from_roth_contributions += from_contributions
        outcome.from_roth_earnings += taken - from_contributions
        drawn += taken
    return drawn


def _withdrawal_taxes(outcome: WithdrawalOutcome, ctx: TaxContext) -> Tuple[float, float, float]:
    """(federal, state, penalty) attributable to this year's withdrawals."""
    if outcome.from_accounts <= 0:
        return 0.0, 0.0, 0.0
    base = ctx.federal()
    full = ctx.federal(
        deferred=outcome.from_tax_deferred,
        short_term_gains=outcome.short_term_gain,
        long_term_gains=outcome.long_term_gain,
        penalized=outcome.penalized,
    )
    state_tax = ctx.state_tax(
        deferred=outcome.from_tax_deferred,
        short_term_gains=outcome.short_term_gain,
        long_term_gains=outcome.long_term_gain,
    ) - ctx.state_tax()
    return max(0.0, full.income_tax - base.income_tax), max(0.0, state_tax), full.penalty


def unlock_loan_equity(
    state: ProjectionState,
    positions: Sequence[LoanPosition],
    gap: float,
    outcome: WithdrawalOutcome,
    ctx: TaxContext,
) -> float:
    """
    Pay off BTC-backed loans with collateral and keep the freed coins.

    Loans go lowest LTV first. Each sale clears the debt, then sells enough
    of the freed collateral to cover the gap plus the gains tax on both
    sales; the rest of the collateral returns to the liquid pool.

    Returns the amount applied to the gap.
    """
    price = state.btc_price
    if gap <= CENT or price <= 0:
        return 0.0
    candidates = [
        p for p in positions
        if not p.liability.paid_off and p.balance > 0 and p.collateral_btc > 0 and p.equity(price) > 0
    ]
    candidates.sort(key=lambda p: (p.ltv(price), p.key))

    taxable_income = ctx.federal(deferred=outcome.from_tax_deferred).taxable_ordinary_income
    rate = marginal_ltcg_rate(taxable_income, ctx.filing_status, ctx.year, ctx.inflation_rate)

    applied_total = 0.0
    for position in candidates:
        remaining = gap - applied_total
        if remaining <= CENT:
            break
        gain_share = max(0.0, 1.0 - safe_ratio(position.collateral_basis, position.collateral_btc) / price)
        effective = rate * gain_share

        debt = position.balance
        debt_sold, _ = sell_collateral(position, debt / price)
        debt_tax = effective * debt_sold * price
        position.liability.balance = 0.0
        position.liability.paid_off = True

        freed_qty = position.collateral_btc
        freed_value = freed_qty * price
        gross = min(freed_value, (remaining + debt_tax) / (1.0 - effective))
        consumed, _ = sell_collateral(position, gross / price)
        tax_on_sale = debt_tax + effective * consumed * price
        applied = max(0.0, consumed * price - tax_on_sale)
        released = position.collateral_btc
        if released > 0:
            release_collateral(state, position, released)

        outcome.from_loan_equity += applied
        outcome.equity_tax += tax_on_sale
        outcome.equity_gain += gain_share * (debt_sold + consumed) * price
        outcome.loan_payoffs.append({
            "loan_name": position.name,
            "debt_paid": debt,
            "btc_sold": debt_sold + consumed,
            "btc_released": released,
            "equity_released": freed_value,
            "tax_on_sale": tax_on_sale,
            "net_equity": freed_value - tax_on_sale,
            "applied_to_deficit": applied,
        })
        logger.info(
            "Unlocked %s: paid off $%.0f, applied $%.0f, released %.4f BTC",
            position.name,
            debt,
            applied,
            released,
        )
        applied_total += applied
    return applied_total


def sell_real_estate(state: ProjectionState, gap: float, *, acquired: pd.Timestamp) -> float:
    """Sell all real estate; the part beyond `gap` lands in taxable cash."""
    proceeds = state.portfolio.real_estate
    if gap <= CENT or proceeds <= 0:
        return 0.0
    state.portfolio.real_estate = 0.0
    applied = min(gap, proceeds)
    if proceeds > applied:
        state.invest_taxable({"cash": proceeds - applied}, acquired=acquired, source="reallocation")
    logger.info("Sold real estate for $%.0f to cover a $%.0f gap", proceeds, gap)
    return applied


def fund_deficit(
    state: ProjectionState,
    positions: Sequence[LoanPosition],
    need: float,
    *,
    policy: WithdrawalPolicy,
    ctx: TaxContext,
    sale_date: pd.Timestamp,
) -> WithdrawalOutcome:
    """
    Raise `need` dollars after tax from the portfolio.

    Parameters
    ----------
    state : ProjectionState
        Buckets, basis, lots and Roth contribution basis are drawn down.
    positions : sequence of LoanPosition
        Candidates for the loan-equity unlock.
    need : float
        Net cash deficit, already net of the year's non-withdrawal taxes.
    ctx : TaxContext
        The year's income before withdrawals, for bracket stacking.

    Returns
    -------
    WithdrawalOutcome with per-source amounts, taxes, loan payoffs and any
    shortfall that remains after every source is exhausted.
    """
    outcome = WithdrawalOutcome(need=need)
    if need <= 0:
        return outcome

    taxes = 0.0
    for _ in range(GROSS_UP_PASSES):
        gap = need + taxes - outcome.from_accounts
        if gap <= CENT:
            break
        drawn = _draw_accounts(state, gap, outcome, policy, sale_date=sale_date)
        outcome.federal_tax, outcome.state_tax, outcome.penalty = _withdrawal_taxes(outcome, ctx)
        taxes = outcome.federal_tax + outcome.state_tax + outcome.penalty
        if drawn <= CENT:
            break

    gap = need + taxes - outcome.from_accounts
    if gap > CENT and positions:
        unlock_loan_equity(state, positions, gap, outcome, ctx)
        gap -= outcome.from_loan_equity
    if gap > CENT:
        outcome.from_real_estate = sell_real_estate(state, gap, acquired=sale_date)
        gap -= outcome.from_real_estate

    outcome.shortfall = max(0.0, gap)
    return outcome
