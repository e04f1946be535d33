import dataclasses

import pandas as pd
import pytest

from data_prep.models import ScenarioOverrides
from distributions.rng import generate_monte_carlo_seed
from engine.monte_carlo import (
    PATH_FRAME_COLUMNS,
    calculate_safe_spending,
    projection_years,
    run_monte_carlo_simulation,
)

from .conftest import btc_holding, dollar_holding

SHORT_HORIZON = {
    "current_age": 60,
    "retirement_age": 60,
    "life_expectancy": 64,
    "annual_retirement_spending": 30_000,
    "btc_cagr_assumption": 20,
    "stocks_cagr": 7,
}


@pytest.fixture
def short_inputs(make_inputs):
    return make_inputs(
        [
            btc_holding(1.0, 30_000.0),
            dollar_holding("VTI", "stocks", 100_000.0, 60_000.0),
            dollar_holding("CASH", "cash", 20_000.0),
        ],
        settings=SHORT_HORIZON,
    )


@pytest.fixture
def cash_only(make_inputs):
    return make_inputs(
        [dollar_holding("CASH", "cash", 200_000.0)],
        settings=dict(SHORT_HORIZON, btc_cagr_assumption=0, stocks_cagr=0),
    )


def test_path_frame_shape(short_inputs, config):
    mc = run_monte_carlo_simulation(short_inputs, config)
    years = projection_years(short_inputs)

    assert years == 5
    assert mc.n_paths == config.n_paths
    assert list(mc.baseline.path_frame.columns) == list(PATH_FRAME_COLUMNS)
    assert len(mc.baseline.path_frame) == config.n_paths * years
    assert len(mc.baseline.path_metrics) == config.n_paths
    assert 0.0 <= mc.baseline.success_rate <= 1.0
    assert mc.scenario is None
    assert mc.success_rate_delta is None


def test_same_seed_same_paths(short_inputs, config):
    config = dataclasses.replace(config, store_paths=True)
    first = run_monte_carlo_simulation(short_inputs, config)
    second = run_monte_carlo_simulation(short_inputs, config)

    assert first.seed == second.seed == 42
    pd.testing.assert_frame_equal(first.baseline.path_frame, second.baseline.path_frame)
    assert len(first.baseline.results) == config.n_paths
    for a, b in zip(first.baseline.results, second.baseline.results):
        assert a.year_by_year == b.year_by_year


def test_seed_defaults_to_input_hash(short_inputs, config):
    config = dataclasses.replace(config, seed=None, n_paths=2)
    mc = run_monte_carlo_simulation(short_inputs, config)
    assert mc.seed == generate_monte_carlo_seed(short_inputs)


def test_worker_pool_matches_sequential_run(short_inputs, config):
    sequential = run_monte_carlo_simulation(short_inputs, config)
    pooled = run_monte_carlo_simulation(short_inputs, dataclasses.replace(config, max_workers=2))
    pd.testing.assert_frame_equal(sequential.baseline.path_frame, pooled.baseline.path_frame)


def test_paths_differ_from_each_other(short_inputs, config):
    mc = run_monte_carlo_simulation(short_inputs, config)
    finals = mc.baseline.path_metrics["final_portfolio"]
    assert finals.nunique() > 1


def test_scenario_runs_on_the_same_market(short_inputs, config):
    scenario = ScenarioOverrides(name="Spend more", annual_retirement_spending_override=60_000)
    mc = run_monte_carlo_simulation(short_inputs, config, scenario)

    assert mc.scenario is not None
    assert mc.scenario.label == "Spend more"
    assert mc.scenario.n_paths == config.n_paths
    # more spending on identical shocks can only hurt
    assert mc.scenario.success_rate <= mc.baseline.success_rate
    base = mc.baseline.path_metrics.set_index("path_id")["final_portfolio"]
    scen = mc.scenario.path_metrics.set_index("path_id")["final_portfolio"]
    assert (scen <= base + 1.0).all()
    assert len(mc.summary()) == 2


def test_longer_scenario_horizon_gets_more_years(short_inputs, config):
    scenario = ScenarioOverrides(name="Live longer", life_expectancy_override=67)
    mc = run_monte_carlo_simulation(short_inputs, config, scenario)
    assert mc.scenario.path_frame["age"].max() == 67
    assert mc.baseline.path_frame["age"].max() == 64


def test_percentile_bands_cover_every_year(short_inputs, config):
    bands = run_monte_carlo_simulation(short_inputs, config).baseline.percentile_bands()
    assert list(bands["age"]) == [60, 61, 62, 63, 64]
    assert (bands["p10"] <= bands["p50"]).all()
    assert (bands["p50"] <= bands["p90"]).all()


def test_safe_spending_brackets_the_threshold(cash_only, config):
    result = calculate_safe_spending(cash_only, config)

    assert 30_000.0 <= result.amount <= 45_000.0
    assert result.success_rate >= config.success_threshold
    assert result.seed == 42
    assert 0 < len(result.iterations) <= config.safe_spending_max_iterations
    # every spend above the answer failed
    for spend, rate in result.iterations:
        if spend > result.amount:
            assert rate < config.success_threshold
    assert list(result.to_dataframe().columns) == ["retirement_spending", "success_rate"]


def test_safe_spending_falls_back_to_lower_bound(make_inputs, config):
    empty = make_inputs([], settings=SHORT_HORIZON)
    result = calculate_safe_spending(empty, config)
    assert result.amount == config.safe_spending_low
    assert result.success_rate == 0.0


def test_invalid_config_is_rejected(short_inputs, config):
    with pytest.raises(ValueError):
        run_monte_carlo_simulation(short_inputs, dataclasses.replace(config, n_paths=0))
