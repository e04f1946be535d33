import pandas as pd
import pytest

from core.config import ProjectionConfig
from core.schema import EVENT_LOAN_ACTIVATION, EVENT_LOAN_ACTIVATION_FAILED, YEAR_ROW_COLUMNS
from engine.runner import build_initial_state, run_unified_projection

from .conftest import btc_holding, dollar_holding


def _cash_retiree(make_inputs, cash=50_000.0, spending=20_000.0):
    return make_inputs(
        [dollar_holding("CASH", "cash", cash)],
        settings={
            "current_age": 60,
            "retirement_age": 60,
            "life_expectancy": 70,
            "annual_retirement_spending": spending,
        },
    )


def test_flat_single_btc_holding_keeps_its_value(one_btc_inputs, config):
    result = run_unified_projection(one_btc_inputs, config)

    assert result.survives
    assert result.deplete_age is None
    assert result.final_portfolio == 100_000.0
    assert len(result.year_by_year) == 61
    assert result.year_by_year[0]["year"] == 2026
    assert result.year_by_year[-1]["age"] == 90
    assert not result.had_forced_liquidation


def test_rows_carry_every_column(one_btc_inputs, config):
    frame = run_unified_projection(one_btc_inputs, config).to_dataframe()
    assert list(frame.columns) == list(YEAR_ROW_COLUMNS)
    assert (frame["net_worth"] == frame["total"] - frame["total_debt"]).all()


def test_runs_are_repeatable(retiree_inputs, config):
    first = run_unified_projection(retiree_inputs, config)
    second = run_unified_projection(retiree_inputs, config)
    assert first.year_by_year == second.year_by_year


def test_spending_drains_cash_until_depleted(make_inputs, config):
    result = run_unified_projection(_cash_retiree(make_inputs), config)

    assert not result.survives
    assert result.deplete_age == 62
    assert result.final_portfolio == 0.0

    rows = result.to_dataframe().set_index("age")
    assert rows.loc[60, "total"] == pytest.approx(30_000.0)
    assert rows.loc[61, "total"] == pytest.approx(10_000.0)
    assert rows.loc[62, "depleted"]
    assert rows.loc[62, "shortfall"] == pytest.approx(10_000.0)
    # every later year is an empty depleted row
    assert rows.loc[63:, "depleted"].all()
    assert (rows.loc[63:, "total"] == 0.0).all()


def test_partial_first_year_is_pro_rated(make_inputs):
    config = ProjectionConfig(as_of_date=pd.Timestamp("2026-07-01"))
    result = run_unified_projection(_cash_retiree(make_inputs), config)

    first, second = result.year_by_year[:2]
    assert first["spending"] == pytest.approx(10_000.0)
    assert second["spending"] == pytest.approx(20_000.0)
    assert first["total"] == pytest.approx(40_000.0)


def test_retirement_spending_override(make_inputs, config):
    inputs = _cash_retiree(make_inputs)
    result = run_unified_projection(inputs, config, retirement_spending=1_000.0)
    assert result.survives
    assert result.final_portfolio == pytest.approx(39_000.0)


def test_retiree_portfolio_funds_spending(retiree_inputs, config):
    result = run_unified_projection(retiree_inputs, config)
    frame = result.to_dataframe()

    assert result.survives
    assert len(frame) == 11
    assert frame.loc[0, "spending"] == pytest.approx(60_000.0)
    assert frame.loc[0, "total_withdrawal"] > 0
    assert frame.loc[0, "withdrawal_from_taxable"] > 0
    assert (frame["taxes_paid"] >= 0).all()
    assert (frame["total"] > 0).all()
    # BTC compounds at 20% a year in the flat model
    assert frame.loc[1, "btc_price"] == pytest.approx(120_000.0)


def test_hypothetical_loan_activation_and_payoff(make_inputs, config):
    inputs = make_inputs(
        [btc_holding(1.0, 20_000.0)],
        settings={
            "hypothetical_btc_loan": {
                "loanAmount": 20_000,
                "collateralBtc": 0.5,
                "startAge": 30,
                "payOffAge": 31,
                "useOfProceeds": "cash",
            },
        },
    )
    result = run_unified_projection(inputs, config)
    first, second = result.year_by_year[:2]

    event = first["loan_events"][0]
    assert event["type"] == EVENT_LOAN_ACTIVATION
    assert event["proceeds"] == pytest.approx(20_000.0)
    assert first["btc_liquid"] == pytest.approx(50_000.0)
    assert first["btc_encumbered"] == pytest.approx(50_000.0)
    assert first["cash"] == pytest.approx(20_000.0)
    assert first["total_debt"] == pytest.approx(20_000.0)
    assert first["net_worth"] == pytest.approx(100_000.0)

    # paid off from the portfolio the next year, collateral comes home
    assert second["goal_withdrawals"] == pytest.approx(20_000.0)
    assert [p["liability_name"] for p in second["debt_payoffs"]] == ["Hypothetical BTC Loan"]
    assert second["total_debt"] == 0.0
    assert second["btc_encumbered"] == 0.0
    assert second["btc_liquid"] == pytest.approx(100_000.0)
    assert result.final_portfolio == pytest.approx(100_000.0)


def test_hypothetical_loan_without_enough_btc_is_reported(make_inputs, config):
    inputs = make_inputs(
        [btc_holding(1.0, 20_000.0)],
        settings={"hypothetical_btc_loan": {"loan_amount": 50_000, "collateral_btc": 2.0}},
    )
    result = run_unified_projection(inputs, config)
    event = result.year_by_year[0]["loan_events"][0]

    assert event["type"] == EVENT_LOAN_ACTIVATION_FAILED
    assert "Insufficient BTC" in event["message"]
    assert result.year_by_year[0]["total_debt"] == 0.0
    assert result.final_portfolio == 100_000.0


def test_windfall_is_invested_in_its_year(make_inputs, config):
    inputs = make_inputs(
        [btc_holding(1.0, 20_000.0)],
        life_events=[{
            "name": "Inheritance",
            "event_type": "inheritance",
            "year": 2028,
            "amount": 50_000,
            "allocation_method": "custom",
            "cash_allocation": 100,
        }],
    )
    rows = run_unified_projection(inputs, config).to_dataframe().set_index("year")
    assert rows.loc[2027, "cash"] == 0.0
    assert rows.loc[2028, "cash"] == pytest.approx(50_000.0)
    assert rows.loc[2028, "life_event_names"] == ["Inheritance"]


def test_existing_btc_loan_moves_collateral_out_of_liquid(make_inputs, config):
    inputs = make_inputs(
        [btc_holding(2.0, 40_000.0)],
        collateralized_loans=[{
            "id": 7,
            "name": "Ledn",
            "current_balance": 40_000,
            "interest_rate": 10,
            "collateral_btc_amount": 1.0,
        }],
    )
    state, liabilities, positions = build_initial_state(inputs, config)

    assert list(liabilities) == ["loan_7"]
    assert positions[0].collateral_btc == pytest.approx(1.0)
    assert state.liquid_btc_quantity == pytest.approx(1.0)
    assert state.taxable_basis + positions[0].collateral_basis == pytest.approx(40_000.0)


def test_unknown_specific_lot_id_raises(make_inputs, config):
    inputs = make_inputs(
        [btc_holding(1.0, 20_000.0)],
        settings={"cost_basis_method": "SPECIFIC_ID", "specific_lot_ids": ["missing"]},
        tax_lots=[{"id": "lot-1", "ticker": "BTC", "quantity": 1.0, "price_per_unit": 20_000, "date": "2020-01-01"}],
    )
    with pytest.raises(ValueError, match="missing"):
        run_unified_projection(inputs, config)

    # aggregate-basis runs never look at lots
    assert run_unified_projection(inputs, config, use_tax_lots=False).survives


def _loan_inputs(make_inputs, balance, **settings):
    return make_inputs(
        [btc_holding(2.0, 40_000.0)],
        settings=settings,
        collateralized_loans=[{
            "id": 3,
            "name": "Unchained",
            "current_balance": balance,
            "interest_rate": 0,
            "collateral_btc_amount": 1.0,
        }],
    )


def test_blank_top_up_target_falls_back_to_default(make_inputs, config):
    inputs = _loan_inputs(make_inputs, 75_000, btc_top_up_target_ltv="")
    assert inputs.settings.btc_top_up_target_ltv == 50.0

    result = run_unified_projection(inputs, config)
    first_events = result.year_by_year[0]["loan_events"]
    assert [e["type"] for e in first_events] == ["top_up"]
    assert first_events[0]["ltv_after"] == pytest.approx(50.0)
    assert not result.had_forced_liquidation


def test_blank_liquidation_threshold_leaves_healthy_loan_alone(make_inputs, config):
    inputs = _loan_inputs(make_inputs, 10_000, btc_liquidation_ltv="", btc_release_target_ltv="abc")
    assert inputs.settings.btc_liquidation_ltv == 80.0
    assert inputs.settings.btc_release_target_ltv == 40.0

    result = run_unified_projection(inputs, config)
    assert not result.had_forced_liquidation
    release = result.year_by_year[0]["loan_events"][0]
    assert release["type"] == "release"
    assert release["ltv_after"] == pytest.approx(40.0)


def test_depleted_row_drops_pledged_collateral(make_inputs, config):
    # every coin is pledged, so nothing liquid is left from the first year
    inputs = make_inputs(
        [btc_holding(1.0, 20_000.0)],
        collateralized_loans=[{
            "id": 5,
            "name": "Ledn",
            "current_balance": 50_000,
            "interest_rate": 0,
            "collateral_btc_amount": 1.0,
        }],
    )
    result = run_unified_projection(inputs, config)

    assert result.deplete_age == 30
    first = result.year_by_year[0]
    assert first["depleted"]
    assert first["btc_encumbered"] == 0.0
    assert first["total"] == 0.0
    assert [d["collateral_btc"] for d in first["btc_loan_details"]] == [0.0]
    assert result.final_portfolio == 0.0
