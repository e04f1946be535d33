import pandas as pd
import pytest

from engine.cashflow import RunningLiability
from engine.collateral import LoanPosition, LtvThresholds
from engine.portfolio import AccountBuckets, Portfolio, ProjectionState
from engine.withdrawals import (
    TaxContext,
    WithdrawalPolicy,
    fund_deficit,
    plan_withdrawal_sources,
    split_by_source,
    taxable_asset_targets,
    withdraw_from_taxable,
)
from lots.selector import TaxLot
from tax.federal import calculate_progressive_income_tax
from tax.tables import standard_deduction

SALE = pd.Timestamp("2026-12-31")


# ---------------------------------------------------------------------------
# Source split
# ---------------------------------------------------------------------------

def test_taxable_then_deferred_at_65():
    plan = plan_withdrawal_sources(
        50_000.0,
        taxable_balance=30_000.0,
        tax_deferred_balance=40_000.0,
        tax_free_balance=0.0,
        age=65,
    )
    assert plan.from_taxable == pytest.approx(30_000.0)
    assert plan.from_tax_deferred == pytest.approx(20_000.0)
    assert plan.from_tax_free == 0.0
    assert plan.shortfall == 0.0

    deduction = standard_deduction(2026, "single", 65)
    expected = calculate_progressive_income_tax(max(0.0, 20_000.0 - deduction))
    assert plan.federal_tax == pytest.approx(expected)
    assert plan.federal_tax == pytest.approx(185.0)
    assert plan.state_tax == 0.0
    assert plan.penalty == 0.0


def test_withdrawal_stacks_on_other_income():
    alone = plan_withdrawal_sources(
        20_000.0, taxable_balance=0.0, tax_deferred_balance=100_000.0, tax_free_balance=0.0,
    )
    stacked = plan_withdrawal_sources(
        20_000.0, taxable_balance=0.0, tax_deferred_balance=100_000.0, tax_free_balance=0.0,
        other_income=80_000.0,
    )
    assert stacked.federal_tax > alone.federal_tax
    # all 20k lands in the 22% bracket
    assert stacked.federal_tax == pytest.approx(20_000.0 * 0.22, rel=0.01)


def test_early_deferred_and_roth_earnings_are_penalized():
    plan = plan_withdrawal_sources(
        60_000.0,
        taxable_balance=0.0,
        tax_deferred_balance=30_000.0,
        tax_free_balance=50_000.0,
        roth_contribution_basis=20_000.0,
        age=50,
    )
    assert plan.from_tax_deferred == pytest.approx(30_000.0)
    assert plan.from_roth_contributions == pytest.approx(20_000.0)
    assert plan.from_roth_earnings == pytest.approx(10_000.0)
    assert plan.penalty == pytest.approx(0.10 * 40_000.0)


def test_no_penalty_from_59_and_a_half():
    plan = plan_withdrawal_sources(
        10_000.0, taxable_balance=0.0, tax_deferred_balance=10_000.0, tax_free_balance=0.0, age=60,
    )
    assert plan.penalty == 0.0


def test_shortfall_when_every_account_is_empty():
    plan = split_by_source(10_000.0, taxable_balance=2_000.0, tax_deferred_balance=3_000.0, tax_free_balance=1_000.0)
    assert plan.total == pytest.approx(6_000.0)
    assert plan.shortfall == pytest.approx(4_000.0)


def test_taxable_gain_ratio_is_taxed_as_long_term():
    plan = plan_withdrawal_sources(
        100_000.0, taxable_balance=100_000.0, tax_deferred_balance=0.0, tax_free_balance=0.0,
        taxable_gain_ratio=0.5, other_income=100_000.0,
    )
    assert plan.federal_tax == pytest.approx(50_000.0 * 0.15, rel=0.05)


# ---------------------------------------------------------------------------
# Taxable strategies
# ---------------------------------------------------------------------------

def _account():
    return AccountBuckets(btc=100_000.0, stocks=60_000.0, bonds=40_000.0, cash=10_000.0)


def test_cash_goes_first():
    targets = taxable_asset_targets(_account(), 8_000.0, WithdrawalPolicy())
    assert targets["cash"] == pytest.approx(8_000.0)
    assert sum(targets.values()) == pytest.approx(8_000.0)


def test_proportional_split_after_cash():
    targets = taxable_asset_targets(_account(), 110_000.0, WithdrawalPolicy(strategy="proportional"))
    assert targets["cash"] == pytest.approx(10_000.0)
    assert targets["btc"] == pytest.approx(50_000.0)
    assert targets["stocks"] == pytest.approx(30_000.0)
    assert targets["bonds"] == pytest.approx(20_000.0)


def test_priority_order_exhausts_each_asset():
    policy = WithdrawalPolicy(strategy="priority", priority_order=("bonds", "stocks", "btc"))
    targets = taxable_asset_targets(_account(), 80_000.0, policy)
    assert targets["cash"] == pytest.approx(10_000.0)
    assert targets["bonds"] == pytest.approx(40_000.0)
    assert targets["stocks"] == pytest.approx(30_000.0)
    assert targets["btc"] == 0.0


def test_blended_weights_with_proportional_remainder():
    policy = WithdrawalPolicy(strategy="blended", blend_percentages={"btc": 50, "stocks": 50})
    targets = taxable_asset_targets(_account(), 130_000.0, policy)
    assert targets["btc"] == pytest.approx(60_000.0)
    assert targets["stocks"] == pytest.approx(60_000.0)
    assert targets["bonds"] == 0.0

    # stocks run out, the rest comes from what is left
    targets = taxable_asset_targets(_account(), 190_000.0, policy)
    assert targets["stocks"] == pytest.approx(60_000.0)
    assert sum(targets.values()) == pytest.approx(190_000.0)


def test_targets_capped_at_account_total():
    targets = taxable_asset_targets(_account(), 1_000_000.0, WithdrawalPolicy())
    assert sum(targets.values()) == pytest.approx(_account().total())


# ---------------------------------------------------------------------------
# Taxable sales
# ---------------------------------------------------------------------------

def _lot_state():
    portfolio = Portfolio(taxable=AccountBuckets(btc=100_000.0, cash=10_000.0))
    lots = [
        TaxLot("a", "BTC", 1.0, 1.0, 20_000.0, pd.Timestamp("2020-01-01")),
        TaxLot("b", "BTC", 1.0, 1.0, 60_000.0, pd.Timestamp("2020-06-01")),
    ]
    return ProjectionState(portfolio=portfolio, btc_price=50_000.0, taxable_basis=90_000.0, btc_lots=lots)


def test_btc_sale_consumes_lots():
    state = _lot_state()
    result = withdraw_from_taxable(state, 60_000.0, WithdrawalPolicy(cost_basis_method="FIFO"), sale_date=SALE)

    assert result.amount == pytest.approx(60_000.0)
    assert result.by_asset == pytest.approx({"cash": 10_000.0, "btc": 50_000.0})
    assert [c.lot_id for c in result.btc_selection.consumed] == ["a"]
    assert result.long_term_gain == pytest.approx(30_000.0)
    assert result.short_term_gain == 0.0
    assert not result.used_fallback

    assert state.portfolio.taxable.cash == 0.0
    assert state.portfolio.taxable.btc == pytest.approx(50_000.0)
    assert state.taxable_basis == pytest.approx(60_000.0)
    assert [lot.lot_id for lot in state.btc_lots] == ["b"]


def test_hifo_sale_realizes_no_gain_on_expensive_lot():
    state = _lot_state()
    result = withdraw_from_taxable(state, 60_000.0, WithdrawalPolicy(cost_basis_method="HIFO"), sale_date=SALE)
    assert [c.lot_id for c in result.btc_selection.consumed] == ["b"]
    assert result.long_term_gain == 0.0


def test_specific_id_sale_uses_named_lots():
    state = _lot_state()
    policy = WithdrawalPolicy(cost_basis_method="SPECIFIC_ID", specific_lot_ids=("a",))
    result = withdraw_from_taxable(state, 85_000.0, policy, sale_date=SALE)
    # 1.5 BTC: all of a, then the rest highest-cost first
    assert [c.lot_id for c in result.btc_selection.consumed] == ["a", "b"]
    assert result.btc_selection.total_quantity == pytest.approx(1.5)


def test_sale_without_lots_falls_back_to_aggregate_basis():
    portfolio = Portfolio(taxable=AccountBuckets(btc=100_000.0))
    state = ProjectionState(portfolio=portfolio, btc_price=100_000.0, taxable_basis=25_000.0, use_lots=False)

    result = withdraw_from_taxable(state, 50_000.0, WithdrawalPolicy(), sale_date=SALE)

    assert result.used_fallback
    assert result.cost_basis == pytest.approx(12_500.0)
    assert result.long_term_gain == pytest.approx(37_500.0)
    assert state.taxable_basis == pytest.approx(12_500.0)


def test_stocks_share_the_non_btc_basis():
    portfolio = Portfolio(taxable=AccountBuckets(stocks=100_000.0))
    state = ProjectionState(portfolio=portfolio, btc_price=100_000.0, taxable_basis=40_000.0)
    result = withdraw_from_taxable(state, 50_000.0, WithdrawalPolicy(), sale_date=SALE)
    assert result.cost_basis == pytest.approx(20_000.0)
    assert result.long_term_gain == pytest.approx(30_000.0)


# ---------------------------------------------------------------------------
# Full sequencer
# ---------------------------------------------------------------------------

def _ctx(age=65):
    return TaxContext(year=2026, age=age)


def test_deficit_grosses_up_for_deferred_tax():
    portfolio = Portfolio(
        taxable=AccountBuckets(cash=20_000.0),
        tax_deferred=AccountBuckets(stocks=100_000.0),
    )
    state = ProjectionState(portfolio=portfolio, btc_price=100_000.0, taxable_basis=20_000.0)

    outcome = fund_deficit(state, [], 50_000.0, policy=WithdrawalPolicy(), ctx=_ctx(), sale_date=SALE)

    deduction = standard_deduction(2026, "single", 65)
    assert outcome.from_taxable == pytest.approx(20_000.0)
    assert outcome.from_tax_deferred > 30_000.0
    assert outcome.federal_tax == pytest.approx(
        calculate_progressive_income_tax(outcome.from_tax_deferred - deduction), rel=1e-6
    )
    assert outcome.from_accounts - outcome.total_tax == pytest.approx(50_000.0, abs=5.0)
    assert not outcome.is_depleted(0.01)


def test_roth_contributions_before_earnings():
    portfolio = Portfolio(tax_free=AccountBuckets(stocks=50_000.0))
    state = ProjectionState(portfolio=portfolio, btc_price=100_000.0, roth_contribution_basis=15_000.0)

    outcome = fund_deficit(state, [], 20_000.0, policy=WithdrawalPolicy(), ctx=_ctx(age=50), sale_date=SALE)

    assert outcome.from_roth_contributions == pytest.approx(15_000.0)
    assert outcome.from_roth_earnings > 5_000.0
    assert outcome.penalty == pytest.approx(0.10 * outcome.from_roth_earnings)
    assert state.roth_contribution_basis == 0.0


def test_loan_equity_unlock_keeps_the_freed_coins():
    state = ProjectionState(portfolio=Portfolio(), btc_price=100_000.0, use_lots=False)
    liability = RunningLiability(key="loan_1", name="Ledn", balance=20_000.0, interest_rate=10.0, is_btc_loan=True)
    position = LoanPosition(
        liability=liability, thresholds=LtvThresholds(), collateral_btc=1.0, collateral_basis=100_000.0,
    )

    outcome = fund_deficit(state, [position], 30_000.0, policy=WithdrawalPolicy(), ctx=_ctx(), sale_date=SALE)

    assert outcome.from_loan_equity == pytest.approx(30_000.0)
    assert outcome.equity_tax == pytest.approx(0.0)
    assert outcome.shortfall == pytest.approx(0.0)
    assert liability.paid_off
    assert position.collateral_btc == 0.0
    assert state.liquid_btc_quantity == pytest.approx(0.5)
    assert outcome.loan_payoffs[0]["debt_paid"] == pytest.approx(20_000.0)


def test_real_estate_sold_last_with_surplus_to_cash():
    state = ProjectionState(portfolio=Portfolio(real_estate=300_000.0), btc_price=100_000.0)

    outcome = fund_deficit(state, [], 100_000.0, policy=WithdrawalPolicy(), ctx=_ctx(), sale_date=SALE)

    assert outcome.from_real_estate == pytest.approx(100_000.0)
    assert state.portfolio.real_estate == 0.0
    assert state.portfolio.taxable.cash == pytest.approx(200_000.0)
    assert outcome.shortfall == 0.0


def test_exhausted_portfolio_reports_shortfall():
    portfolio = Portfolio(taxable=AccountBuckets(cash=5_000.0))
    state = ProjectionState(portfolio=portfolio, btc_price=100_000.0, taxable_basis=5_000.0)

    outcome = fund_deficit(state, [], 40_000.0, policy=WithdrawalPolicy(), ctx=_ctx(), sale_date=SALE)

    assert outcome.shortfall == pytest.approx(35_000.0)
    assert outcome.is_depleted(0.01)
