"""
Projection runner — walks one household through every year from today to
life expectancy and reports a row per year.

Per year, in order:
   1. market move (years after the first): BTC price and every bucket grow
   2. hypothetical BTC loan activation / scheduled payoff
   3. life events and goals (windfalls invested, goal withdrawals queued)
   4. debt amortization or compounding
   5. collateral LTV check per BTC-backed loan (top-up / liquidate / release)
   6. dividends and Social Security
   7. cash flow: working years earn, contribute and save; retired years take
      RMDs and spend. A deficit goes through the withdrawal sequencer.
   8. year-end dust sweep and depletion check

A run is deterministic: the only time anchor is config.as_of_date and the
only source of variation is the return model handed in. Monte Carlo wraps
the deterministic model with per-path returns and calls this N times.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd
from dateutil.relativedelta import relativedelta

from behaviors.base import ReturnModel
from behaviors.constant import AssetClassReturnModel
from core.config import ProjectionConfig
from core.schema import (
    ACCOUNT_BUCKETS,
    ASSET_CLASSES,
    DEPLETION_FLOOR,
    EVENT_LOAN_ACTIVATION,
    EVENT_LOAN_ACTIVATION_FAILED,
    GROWTH_DUST,
    LOT_DUST_QUANTITY,
    NON_FORCED_EVENT_TYPES,
    ROTH_CONTRIBUTION_ACCOUNT_TYPES,
    TAX_DEFERRED_ACCOUNT_TYPES,
    TAX_FREE_ACCOUNT_TYPES,
    YEAR_ROW_COLUMNS,
    YEAR_END_DUST,
)
from core.utils import grow, year_end
from data_prep.builders import build_holdings_table
from data_prep.models import ProjectionInputs
from tax.tables import rmd_factor, rmd_start_age

from .cashflow import RunningLiability, amortize_year
from .collateral import CollateralEvent, LoanPosition, LtvThresholds, pledge_collateral, process_collateral
from .events import YearAdjustments, allocate, apply_goals, apply_life_events
from .income import plan_contributions, social_security_base, social_security_income
from .portfolio import (
    Portfolio,
    ProjectionState,
    TrackedHolding,
    initial_lot_pool,
    pool_for_loan,
    weighted_rate,
)
from .withdrawals import TaxContext, WithdrawalOutcome, WithdrawalPolicy, fund_deficit

logger = logging.getLogger(__name__)

HYPOTHETICAL_LOAN_KEY = "hypothetical_btc_loan"
LIST_COLUMNS = (
    "loan_events",
    "liquidation_events",
    "loan_payoffs",
    "debt_payoffs",
    "btc_loan_details",
    "life_event_names",
    "goal_names",
)


@dataclass
class ProjectionResult:
    """Output of one deterministic run."""
    survives: bool
    final_portfolio: float
    deplete_age: Optional[int]
    year_by_year: List[Dict] = field(default_factory=list)

    @property
    def had_forced_liquidation(self) -> bool:
        return any(row["liquidation_events"] for row in self.year_by_year)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.year_by_year, columns=list(YEAR_ROW_COLUMNS))

    def summary(self) -> Dict:
        return {
            "survives": self.survives,
            "final_portfolio": self.final_portfolio,
            "deplete_age": self.deplete_age,
            "years": len(self.year_by_year),
            "forced_liquidation": self.had_forced_liquidation,
        }


# ---------------------------------------------------------------------------
# Initial state
# ---------------------------------------------------------------------------

def _taxable_lots(inputs: ProjectionInputs) -> list:
    accounts_by_id = {a.id: a for a in inputs.accounts}
    lots = []
    for lot in inputs.tax_lots:
        account = accounts_by_id.get(lot.account_id) if lot.account_id else None
        account_type = (account.account_type or "").lower() if account is not None else ""
        if account_type in TAX_DEFERRED_ACCOUNT_TYPES or account_type in TAX_FREE_ACCOUNT_TYPES:
            continue
        lots.append(lot)
    return lots


def _tracked_holdings(table: pd.DataFrame, settings) -> List[TrackedHolding]:
    tracked = []
    for row in table.itertuples(index=False):
        if row.value <= 0:
            continue
        dividend_yield = row.dividend_yield
        qualified = bool(row.dividend_qualified)
        override = settings.ticker_returns.get(row.ticker)
        if override is not None:
            if override.dividend_yield is not None:
                dividend_yield = override.dividend_yield
            if override.dividend_qualified is not None:
                qualified = override.dividend_qualified
        tracked.append(TrackedHolding(
            ticker=row.ticker,
            category=row.category,
            treatment=row.treatment,
            value=row.value,
            dividend_yield=dividend_yield,
            dividend_qualified=qualified,
        ))
    return tracked


def _open_position(
    state: ProjectionState,
    liability: RunningLiability,
    thresholds: LtvThresholds,
    collateral_btc: float,
    loan_id: Optional[str],
) -> LoanPosition:
    """
    Split a loan's collateral out of the liquid BTC.

    Lots tagged with the loan move as they are. Any collateral not covered
    by tagged lots is pledged from the liquid pool with its proportional
    basis; collateral beyond what the holdings show is valued at the
    aggregate basis ratio.
    """
    position = LoanPosition(liability=liability, thresholds=thresholds)
    price = state.btc_price
    tagged = pool_for_loan(state.btc_lots, liability.key, loan_id)
    if tagged:
        quantity = sum(lot.remaining_quantity for lot in tagged)
        basis = sum(lot.remaining_basis for lot in tagged)
        state.portfolio.taxable.btc = max(0.0, state.portfolio.taxable.btc - quantity * price)
        state.taxable_basis = max(0.0, state.taxable_basis - basis)
        position.lots = tagged
        position.collateral_btc = quantity
        position.collateral_basis = basis

    remaining = collateral_btc - position.collateral_btc
    if remaining > LOT_DUST_QUANTITY:
        from_pool = min(remaining, state.liquid_btc_quantity)
        pledge_collateral(state, position, from_pool)
        outside = remaining - from_pool
        if outside > LOT_DUST_QUANTITY:
            logger.debug("%s: %.8f BTC of collateral is not in the holdings", liability.name, outside)
            position.collateral_btc += outside
            position.collateral_basis += outside * price * state.basis_ratio()
    return position


def build_initial_state(
    inputs: ProjectionInputs,
    config: ProjectionConfig,
    *,
    use_tax_lots: bool = True,
) -> Tuple[ProjectionState, Dict[str, RunningLiability], List[LoanPosition]]:
    """
    Fresh run state from the snapshot: buckets, basis, lots, debts, loans.

    Raises ValueError when a specific-id plan names lots the snapshot does
    not contain.
    """
    s = inputs.settings
    table = build_holdings_table(inputs)
    portfolio = Portfolio.from_holdings_table(table)
    taxable_rows = table[table["treatment"] == "taxable"]
    price = inputs.current_btc_price

    if use_tax_lots and s.cost_basis_method == "SPECIFIC_ID":
        known = {str(lot.id) for lot in inputs.tax_lots}
        unknown = [i for i in s.specific_lot_ids if str(i) not in known]
        if unknown:
            raise ValueError(f"specific_lot_ids name lots not in the snapshot: {unknown}")

    lots = []
    if use_tax_lots and price > 0:
        lots = initial_lot_pool(
            _taxable_lots(inputs),
            taxable_btc_quantity=portfolio.taxable.btc / price,
            as_of_date=config.as_of_date,
        )

    state = ProjectionState(
        portfolio=portfolio,
        btc_price=price,
        taxable_basis=float(taxable_rows["cost_basis"].sum()) if len(taxable_rows) else 0.0,
        btc_lots=lots,
        use_lots=use_tax_lots,
        roth_contribution_basis=sum(
            a.roth_contributions
            for a in inputs.accounts
            if (a.account_type or "").lower() in ROTH_CONTRIBUTION_ACCOUNT_TYPES
        ),
        holdings=_tracked_holdings(table, s),
    )

    liabilities: Dict[str, RunningLiability] = {}
    positions: List[LoanPosition] = []
    for debt in inputs.liabilities:
        key = str(debt.id)
        liability = RunningLiability.from_terms(
            key, debt, monthly_payment=debt.monthly_payment, is_btc_loan=debt.is_btc_collateralized
        )
        liabilities[key] = liability
        if debt.collateral_btc_amount > 0:
            positions.append(_open_position(
                state, liability, LtvThresholds.resolve(s, debt), debt.collateral_btc_amount, key
            ))
    for loan in inputs.collateralized_loans:
        key = f"loan_{loan.id}"
        liability = RunningLiability.from_terms(
            key, loan, monthly_payment=loan.minimum_monthly_payment, is_btc_loan=True
        )
        liabilities[key] = liability
        if loan.collateral_btc_amount > 0:
            positions.append(_open_position(
                state, liability, LtvThresholds.resolve(s, loan), loan.collateral_btc_amount, str(loan.id)
            ))
    return state, liabilities, positions


# ---------------------------------------------------------------------------
# Year steps
# ---------------------------------------------------------------------------

def grow_state(state: ProjectionState, model: ReturnModel, year_index: int) -> None:
    """
    One year of market returns on every bucket and on the BTC price.

    Buckets under $1 are zeroed instead of grown. Stocks grow at the
    value-weighted rate of the tickers held in that account type.
    """
    btc_rate = model.rate("btc", year_index)
    state.btc_price *= 1.0 + btc_rate / 100.0
    rates = {asset: model.rate(asset, year_index) for asset in ASSET_CLASSES if asset != "btc"}
    rates["btc"] = btc_rate

    def holding_rate(h: TrackedHolding) -> float:
        if h.category == "btc":
            return btc_rate
        return model.ticker_rate(h.ticker, h.category, year_index)

    p = state.portfolio
    for bucket in ACCOUNT_BUCKETS:
        account = p.account(bucket)
        for asset in ASSET_CLASSES:
            value = account.get(asset)
            if value < GROWTH_DUST:
                account.set(asset, 0.0)
                continue
            rate = rates[asset]
            if asset == "stocks":
                rate = weighted_rate(state.holdings, bucket, "stocks", holding_rate, rate)
            if rate:
                account.set(asset, value * (1.0 + rate / 100.0))

    re_rate = model.rate("real_estate", year_index)
    if p.real_estate < GROWTH_DUST:
        p.real_estate = 0.0
    elif re_rate:
        p.real_estate *= 1.0 + re_rate / 100.0

    for h in state.holdings:
        rate = re_rate if h.treatment == "real_estate" else holding_rate(h)
        h.value *= 1.0 + rate / 100.0
    state.reconcile_btc_lots()


def _activate_hypothetical_loan(
    state: ProjectionState,
    terms,
    settings,
    *,
    year: int,
    age: int,
    acquired: pd.Timestamp,
) -> Tuple[Optional[LoanPosition], CollateralEvent]:
    liquid = state.liquid_btc_quantity
    if liquid + LOT_DUST_QUANTITY < terms.collateral_btc:
        logger.warning(
            "%s not activated at age %d: need %.4f BTC collateral, have %.4f",
            terms.name, age, terms.collateral_btc, liquid,
        )
        return None, CollateralEvent(
            year=year,
            age=age,
            type=EVENT_LOAN_ACTIVATION_FAILED,
            liability_name=terms.name,
            message=f"Insufficient BTC: need {terms.collateral_btc:.4f}, have {liquid:.4f}",
        )

    liability = RunningLiability(
        key=HYPOTHETICAL_LOAN_KEY,
        name=terms.name,
        balance=terms.loan_amount,
        interest_rate=terms.interest_rate,
        is_btc_loan=True,
    )
    base = LtvThresholds.resolve(settings)
    thresholds = LtvThresholds(
        top_up_trigger=base.top_up_trigger,
        top_up_target=base.top_up_target,
        liquidation=terms.liquidation_ltv,
        release_trigger=base.release_trigger,
        release_target=base.release_target,
    )
    position = LoanPosition(liability=liability, thresholds=thresholds)
    pledge_collateral(state, position, min(terms.collateral_btc, liquid))
    state.invest_taxable({terms.use_of_proceeds: terms.loan_amount}, acquired=acquired, source="loan_proceeds")
    return position, CollateralEvent(
        year=year,
        age=age,
        type=EVENT_LOAN_ACTIVATION,
        liability_name=terms.name,
        message=f"Activated: ${terms.loan_amount:,.0f} → {terms.use_of_proceeds}",
        btc_amount=position.collateral_btc,
        proceeds=terms.loan_amount,
        remaining_debt=liability.balance,
        remaining_collateral=position.collateral_btc,
        ltv_after=position.ltv(state.btc_price),
    )


def _empty_row(year: int, age: int, is_retired: bool) -> Dict:
    row: Dict = {column: 0.0 for column in YEAR_ROW_COLUMNS}
    for column in LIST_COLUMNS:
        row[column] = []
    row.update(year=year, age=age, is_retired=is_retired, depleted=False)
    return row


def _fill_balances(row: Dict, state: ProjectionState, liabilities, positions: List[LoanPosition]) -> None:
    p = state.portfolio
    price = state.btc_price
    encumbered = sum(pos.collateral_btc for pos in positions) * price
    liquid_btc = p.asset_total("btc")
    total = p.total() + encumbered
    total_debt = sum(l.balance for l in liabilities.values() if not l.paid_off)
    row.update(
        btc_price=price,
        btc_liquid=liquid_btc,
        btc_encumbered=encumbered,
        btc_total=liquid_btc + encumbered,
        stocks=p.asset_total("stocks"),
        bonds=p.asset_total("bonds"),
        real_estate=p.real_estate,
        cash=p.asset_total("cash"),
        other=p.asset_total("other"),
        taxable=p.taxable.total(),
        tax_deferred=p.tax_deferred.total(),
        tax_free=p.tax_free.total(),
        liquid=p.liquid_total(),
        total=total,
        total_debt=total_debt,
        net_worth=total - total_debt,
        btc_loan_details=[
            pos.detail(price) for pos in positions if pos.balance > 0 or pos.collateral_btc > 0
        ],
    )


def _fill_withdrawals(row: Dict, outcome: Optional[WithdrawalOutcome]) -> None:
    if outcome is None:
        return
    row.update(
        withdrawal_from_taxable=outcome.from_taxable,
        withdrawal_from_tax_deferred=outcome.from_tax_deferred,
        withdrawal_from_tax_free=outcome.from_tax_free,
        withdrawal_from_loan_equity=outcome.from_loan_equity,
        withdrawal_from_real_estate=outcome.from_real_estate,
        total_withdrawal=outcome.total_withdrawal,
        shortfall=outcome.shortfall,
        short_term_gain=outcome.short_term_gain,
        long_term_gain=outcome.long_term_gain + outcome.equity_gain,
        loan_payoffs=list(outcome.loan_payoffs),
    )


def _savings_weights(settings) -> Dict[str, float]:
    return {asset: settings.savings_allocation.get(asset, 0.0) for asset in ASSET_CLASSES}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def run_unified_projection(
    inputs: ProjectionInputs,
    config: ProjectionConfig,
    *,
    return_model: Optional[ReturnModel] = None,
    use_tax_lots: bool = True,
    retirement_spending: Optional[float] = None,
) -> ProjectionResult:
    """
    Run the year-by-year projection for one snapshot.

    Parameters
    ----------
    inputs : ProjectionInputs
        Snapshot: holdings, accounts, debts, lots, goals, events, settings.
    config : ProjectionConfig
        as_of_date anchors the first year and the year-0 pro-rating.
    return_model : ReturnModel, optional
        Annual growth rates. Defaults to the plan's deterministic model;
        Monte Carlo passes a per-path OverrideReturnModel.
    use_tax_lots : bool
        False runs on aggregate basis only (Monte Carlo paths).
    retirement_spending : float, optional
        Replaces the plan's retirement spending (safe-spending search).

    Returns
    -------
    ProjectionResult with one row per year from current age to life expectancy.
    """
    s = inputs.settings
    as_of = pd.Timestamp(config.as_of_date)
    start_year = config.start_year
    model = return_model if return_model is not None else AssetClassReturnModel.from_settings(s, as_of_date=as_of)
    policy = WithdrawalPolicy.from_settings(s)
    spending_today = s.annual_retirement_spending if retirement_spending is None else retirement_spending
    infl = s.inflation_rate
    rmd_age = rmd_start_age(s.birth_year or (start_year - s.current_age))
    ss_base = social_security_base(s, start_year=start_year)
    savings_weights = _savings_weights(s)

    state, liabilities, positions = build_initial_state(inputs, config, use_tax_lots=use_tax_lots)

    hypothetical = s.hypothetical_btc_loan
    if hypothetical is not None and not (hypothetical.enabled and hypothetical.loan_amount > 0):
        hypothetical = None
    activation_age = None
    if hypothetical is not None:
        activation_age = max(hypothetical.start_age or s.current_age, s.current_age)

    rows: List[Dict] = []
    deplete_age: Optional[int] = None
    n_years = max(0, s.life_expectancy - s.current_age) + 1

    for i in range(n_years):
        age = s.current_age + i
        year = start_year + i
        is_retired = age >= s.retirement_age
        acquired = pd.Timestamp(as_of.to_pydatetime() + relativedelta(years=i))
        sale_date = year_end(year)
        frac = config.year_zero_fraction if i == 0 else 1.0

        if i > 0:
            grow_state(state, model, i)

        row = _empty_row(year, age, is_retired)
        if deplete_age is not None:
            row.update(depleted=True, btc_price=state.btc_price)
            rows.append(row)
            continue

        # --- hypothetical loan ---
        if hypothetical is not None and age == activation_age:
            position, event = _activate_hypothetical_loan(
                state, hypothetical, s, year=year, age=age, acquired=acquired
            )
            row["loan_events"].append(event.to_dict())
            if position is not None:
                liabilities[position.key] = position.liability
                positions.append(position)

        # --- life events and goals ---
        adjustments = YearAdjustments()
        apply_life_events(inputs.life_events, year, s.savings_allocation, adjustments)
        apply_goals(inputs.goals, year, liabilities, adjustments)
        loan = liabilities.get(HYPOTHETICAL_LOAN_KEY)
        if loan is not None and hypothetical.pay_off_age == age and not loan.paid_off:
            paid = loan.pay_down(loan.balance)
            adjustments.goal_withdrawals += paid
            adjustments.debt_payoffs.append({"liability_name": loan.name, "year": year, "month": None})
        if adjustments.asset_additions:
            state.invest_taxable(adjustments.asset_additions, acquired=acquired)

        # --- debts ---
        for liability in liabilities.values():
            paid = amortize_year(liability, year_index=i, first_month=config.start_month if i == 0 else 1)
            row["debt_payments"] += paid.payments
            if paid.paid_off_month is not None:
                adjustments.debt_payoffs.append({
                    "liability_name": liability.name,
                    "year": year,
                    "month": paid.paid_off_month,
                })

        # --- collateral ---
        for position in positions:
            for event in process_collateral(
                state, position, auto_top_up=s.auto_top_up_btc_collateral, year=year, age=age
            ):
                row["loan_events"].append(event.to_dict())
                if event.type not in NON_FORCED_EVENT_TYPES:
                    row["liquidation_events"].append(event.to_dict())

        # --- income ---
        qualified, non_qualified = state.dividend_income()
        qualified *= frac
        non_qualified *= frac
        social_security = social_security_income(s, age=age, base_benefit=ss_base) * frac
        ctx_common = dict(
            year=year,
            age=age,
            filing_status=s.filing_status,
            state=s.state_of_residence,
            inflation_rate=infl / 100.0,
            social_security=social_security,
            qualified_dividends=qualified,
            non_qualified_dividends=non_qualified,
        )

        outcome: Optional[WithdrawalOutcome] = None
        p = state.portfolio
        if not is_retired:
            gross = max(0.0, grow(s.gross_annual_income, s.income_growth_rate, i) + adjustments.income)
            c = plan_contributions(s, year_index=i, year=year, age=age, gross_income=gross)
            gross *= frac
            to_deferred = c.to_tax_deferred * frac
            to_free = c.to_tax_free * frac
            pre_tax = c.pre_tax * frac
            roth = c.roth * frac
            spending = (grow(s.current_annual_spending, infl, i) + adjustments.expenses) * frac

            ctx = TaxContext(wages=max(0.0, gross - pre_tax), **ctx_common)
            federal = ctx.federal().income_tax
            state_tax = ctx.state_tax()
            net_income = gross + social_security + qualified + non_qualified - federal - state_tax - pre_tax
            savings = net_income - spending - roth - adjustments.goal_withdrawals

            p.tax_deferred.add_proportional(to_deferred)
            p.tax_free.add_proportional(to_free)
            state.roth_contribution_basis += to_free

            if savings > 0:
                state.invest_taxable(allocate(savings, savings_weights, "btc"), acquired=acquired)
            elif savings < 0:
                outcome = fund_deficit(state, positions, -savings, policy=policy, ctx=ctx, sale_date=sale_date)

            row.update(
                gross_income=gross,
                spending=spending,
                net_cash_flow=savings,
                savings=max(0.0, savings),
                contribution_401k=c.k401 * frac,
                contribution_ira=c.ira * frac,
                contribution_roth=roth,
                contribution_hsa=c.hsa * frac,
                employer_match=c.employer_match * frac,
            )
        else:
            spending = (grow(spending_today, infl, i) + adjustments.expenses) * frac
            other_income = max(0.0, grow(s.other_retirement_income, infl, i) + adjustments.income) * frac

            rmd = 0.0
            factor = rmd_factor(age) if age >= rmd_age else None
            if factor:
                rmd = p.tax_deferred.withdraw_proportional(p.tax_deferred.total() / factor)

            ctx = TaxContext(pension_income=other_income, tax_deferred_income=rmd, **ctx_common)
            federal = ctx.federal().income_tax
            state_tax = ctx.state_tax()
            cash_in = other_income + social_security + qualified + non_qualified + rmd
            net = cash_in - federal - state_tax - spending - adjustments.goal_withdrawals

            rmd_reinvested = 0.0
            if net > 0:
                rmd_reinvested = min(rmd, net)
                state.invest_taxable({"cash": rmd_reinvested}, acquired=acquired)
                state.invest_taxable(allocate(net - rmd_reinvested, savings_weights, "btc"), acquired=acquired)
            elif net < 0:
                outcome = fund_deficit(state, positions, -net, policy=policy, ctx=ctx, sale_date=sale_date)

            row.update(
                other_income=other_income,
                spending=spending,
                net_cash_flow=net,
                savings=max(0.0, net),
                rmd_amount=rmd,
                rmd_reinvested=rmd_reinvested,
            )

        # --- taxes and withdrawals ---
        if outcome is not None:
            federal += outcome.federal_tax + outcome.equity_tax
            state_tax += outcome.state_tax
        penalty = outcome.penalty if outcome is not None else 0.0
        _fill_withdrawals(row, outcome)
        row.update(
            social_security_income=social_security,
            goal_withdrawals=adjustments.goal_withdrawals,
            federal_tax=federal,
            state_tax=state_tax,
            penalty_paid=penalty,
            taxes_paid=federal + state_tax + penalty,
            qualified_dividends=qualified,
            non_qualified_dividends=non_qualified,
            debt_payoffs=adjustments.debt_payoffs,
            life_event_names=adjustments.life_event_names,
            goal_names=adjustments.goal_names,
        )

        # --- year end ---
        p.sweep(YEAR_END_DUST)
        state.reconcile_btc_lots()
        depleted = outcome is not None and outcome.is_depleted(config.depletion_tolerance)
        if depleted or p.total() < DEPLETION_FLOOR:
            deplete_age = age
            logger.debug(
                "Depleted at age %d (%d): shortfall $%.0f",
                age, year, outcome.shortfall if outcome is not None else 0.0,
            )
            state.zero_all()
            for position in positions:
                position.collateral_btc = 0.0
                position.collateral_basis = 0.0
                position.lots.clear()
            row["depleted"] = True

        _fill_balances(row, state, liabilities, positions)
        rows.append(row)

    final_portfolio = float(round(rows[-1]["total"])) if rows else 0.0
    logger.debug(
        "Projection %d-%d: survives=%s final=$%.0f deplete_age=%s",
        start_year, start_year + n_years - 1, deplete_age is None, final_portfolio, deplete_age,
    )
    return ProjectionResult(
        survives=deplete_age is None,
        final_portfolio=final_portfolio,
        deplete_age=deplete_age,
        year_by_year=rows,
    )
