import pandas as pd
import pytest

from core.schema import (
    EVENT_FULL_LIQUIDATION,
    EVENT_PARTIAL_LIQUIDATION,
    EVENT_RELEASE,
    EVENT_TOP_UP,
)
from engine.cashflow import RunningLiability, amortize_year, level_payment
from engine.collateral import (
    LoanPosition,
    LtvThresholds,
    loan_to_value,
    pledge_collateral,
    process_collateral,
    release_collateral,
)
from engine.portfolio import BTC_TICKER, Portfolio, ProjectionState
from lots.selector import TaxLot, available_quantity

PRICE = 100_000.0


def _state(liquid_btc=0.0, basis=0.0, lots=None):
    portfolio = Portfolio()
    portfolio.taxable.btc = liquid_btc * PRICE
    return ProjectionState(
        portfolio=portfolio,
        btc_price=PRICE,
        taxable_basis=basis,
        btc_lots=list(lots or []),
        use_lots=lots is not None,
    )


def _position(balance, collateral, basis=0.0):
    liability = RunningLiability(key="loan_1", name="Ledn", balance=balance, interest_rate=12.0, is_btc_loan=True)
    return LoanPosition(liability=liability, thresholds=LtvThresholds(), collateral_btc=collateral, collateral_basis=basis)


def _process(state, position, auto_top_up=True):
    return process_collateral(state, position, auto_top_up=auto_top_up, year=2026, age=50)


def test_loan_at_liquidation_threshold_without_top_up_is_liquidated():
    state = _state(liquid_btc=0.0)
    position = _position(80_000.0, 1.0, basis=30_000.0)
    assert position.ltv(PRICE) == pytest.approx(80.0)

    events = _process(state, position)

    liquidation = events[0]
    assert liquidation.type == EVENT_FULL_LIQUIDATION
    assert liquidation.btc_amount == pytest.approx(0.8)
    assert liquidation.realized_gain == pytest.approx(80_000.0 - 24_000.0)
    assert position.balance == pytest.approx(max(0.0, 80_000.0 - liquidation.proceeds))
    assert position.liability.paid_off

    # leftover collateral comes back the same year with its basis
    assert events[1].type == EVENT_RELEASE
    assert position.collateral_btc == 0.0
    assert state.liquid_btc_quantity == pytest.approx(0.2)
    assert state.taxable_basis == pytest.approx(6_000.0)


def test_underwater_loan_is_partially_liquidated():
    state = _state()
    position = _position(120_000.0, 1.0)
    events = _process(state, position)
    assert [e.type for e in events] == [EVENT_PARTIAL_LIQUIDATION]
    assert position.collateral_btc == 0.0
    assert position.balance == pytest.approx(20_000.0)
    assert not position.liability.paid_off


def test_top_up_restores_target_ltv_from_liquid_btc():
    state = _state(liquid_btc=1.0, basis=50_000.0)
    position = _position(72_000.0, 1.0, basis=40_000.0)
    events = _process(state, position)

    assert [e.type for e in events] == [EVENT_TOP_UP]
    assert position.ltv(PRICE) == pytest.approx(50.0)
    assert position.collateral_btc == pytest.approx(1.44)
    assert state.liquid_btc_quantity == pytest.approx(0.56)
    # pledged coins carry their share of the liquid basis
    assert state.taxable_basis + position.collateral_basis == pytest.approx(90_000.0)
    assert state.taxable_basis == pytest.approx(50_000.0 * 0.56)


def test_top_up_needs_enough_liquid_btc():
    state = _state(liquid_btc=0.1)
    position = _position(72_000.0, 1.0)
    assert _process(state, position) == []
    assert position.collateral_btc == 1.0
    assert state.liquid_btc_quantity == pytest.approx(0.1)


def test_top_up_disabled():
    state = _state(liquid_btc=5.0)
    position = _position(75_000.0, 1.0)
    assert _process(state, position, auto_top_up=False) == []


def test_release_brings_ltv_to_release_target():
    state = _state(basis=0.0)
    position = _position(20_000.0, 1.0, basis=30_000.0)
    events = _process(state, position)

    assert [e.type for e in events] == [EVENT_RELEASE]
    assert position.ltv(PRICE) == pytest.approx(40.0)
    assert state.liquid_btc_quantity == pytest.approx(0.5)
    assert state.taxable_basis == pytest.approx(15_000.0)
    assert position.collateral_basis == pytest.approx(15_000.0)


def test_repaid_loan_releases_everything():
    state = _state()
    position = _position(0.0, 0.75, basis=10_000.0)
    events = _process(state, position)
    assert [e.type for e in events] == [EVENT_RELEASE]
    assert position.collateral_btc == 0.0
    assert state.liquid_btc_quantity == pytest.approx(0.75)
    assert state.taxable_basis == pytest.approx(10_000.0)


def test_healthy_loan_is_left_alone():
    state = _state(liquid_btc=1.0)
    position = _position(50_000.0, 1.0)
    assert _process(state, position) == []


@pytest.mark.parametrize("balance", [10_000, 45_000, 69_999, 75_000, 80_000, 95_000, 150_000])
@pytest.mark.parametrize("liquid", [0.0, 0.2, 3.0])
def test_ltv_never_stays_at_or_above_liquidation(balance, liquid):
    state = _state(liquid_btc=liquid)
    position = _position(float(balance), 1.0)
    _process(state, position)
    ltv = position.ltv(PRICE)
    assert position.balance == 0 or ltv is None or ltv < position.thresholds.liquidation


def test_pledge_and_release_move_lot_slices():
    lots = [
        TaxLot("a", BTC_TICKER, 1.0, 1.0, 20_000.0, pd.Timestamp("2020-01-01")),
        TaxLot("b", BTC_TICKER, 1.0, 1.0, 60_000.0, pd.Timestamp("2024-01-01")),
    ]
    state = _state(liquid_btc=2.0, basis=80_000.0, lots=lots)
    position = _position(30_000.0, 0.0)

    basis = pledge_collateral(state, position, 1.0)
    assert basis == pytest.approx(40_000.0)
    assert available_quantity(state.btc_lots, BTC_TICKER) == pytest.approx(1.0)
    assert available_quantity(position.lots, BTC_TICKER) == pytest.approx(1.0)
    assert all(lot.loan_id == "loan_1" for lot in position.lots)

    restored = release_collateral(state, position, 1.0)
    assert restored == pytest.approx(40_000.0)
    assert available_quantity(state.btc_lots, BTC_TICKER) == pytest.approx(2.0)
    assert position.lots == []
    assert state.taxable_basis == pytest.approx(80_000.0)


def test_loan_to_value_guards_empty_collateral():
    assert loan_to_value(10_000, 0.0, PRICE) is None
    assert loan_to_value(50_000, 1.0, PRICE) == pytest.approx(50.0)


def test_thresholds_prefer_loan_values():
    class Settings:
        btc_top_up_trigger_ltv = 70
        btc_top_up_target_ltv = 50
        btc_liquidation_ltv = 80
        btc_release_trigger_ltv = 30
        btc_release_target_ltv = 40

    class Loan:
        liquidation_ltv = 90
        top_up_trigger_ltv = None
        top_up_target_ltv = 0
        release_trigger_ltv = None
        release_target_ltv = None

    th = LtvThresholds.resolve(Settings(), Loan())
    assert th.liquidation == 90
    assert th.top_up_target == 50
    assert th.state(95) == "liquidated"
    assert th.state(75) == "top_up_zone"
    assert th.state(20) == "release_zone"


def test_zero_plan_thresholds_fall_back_to_defaults():
    class Settings:
        btc_top_up_trigger_ltv = 0
        btc_top_up_target_ltv = 0
        btc_liquidation_ltv = 0
        btc_release_trigger_ltv = 0
        btc_release_target_ltv = 0

    assert LtvThresholds.resolve(Settings()) == LtvThresholds()
    assert LtvThresholds.resolve(Settings()).state(10) == "release_zone"


def test_amortization_pays_off_and_records_month():
    liability = RunningLiability(key="car", name="Car", balance=1_000.0, interest_rate=0.0, monthly_payment=300.0)
    result = amortize_year(liability, year_index=0)
    assert liability.paid_off
    assert result.paid_off_month == 4
    assert result.payments == pytest.approx(1_000.0)


def test_amortization_starts_at_as_of_month():
    liability = RunningLiability(key="car", name="Car", balance=10_000.0, interest_rate=0.0, monthly_payment=100.0)
    result = amortize_year(liability, year_index=0, first_month=10)
    assert result.payments == pytest.approx(300.0)
    assert liability.balance == pytest.approx(9_700.0)


def test_btc_loan_without_payment_compounds_daily_after_first_year():
    liability = RunningLiability(key="l", name="L", balance=100_000.0, interest_rate=12.0, is_btc_loan=True)
    amortize_year(liability, year_index=0)
    assert liability.balance == pytest.approx(100_000.0)
    amortize_year(liability, year_index=1)
    assert liability.balance == pytest.approx(100_000.0 * (1 + 0.12 / 365) ** 365)


def test_level_payment_matches_known_value():
    # $200k, 6%, 30 years
    assert level_payment(200_000, 0.06 / 12, 360) == pytest.approx(1199.10, abs=0.01)
