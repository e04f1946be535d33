"""
Monte Carlo driver — N seeded market histories through the projection runner.

Flow:
  1. Seed: explicit config.seed, else the FNV-1a hash of the inputs (and scenario)
  2. Expected returns per asset and year from the deterministic growth model
  3. One set of correlated shocks for every path (distributions.sampler)
  4. Each path: OverrideReturnModel(base, path returns) → run_unified_projection
  5. Long per-path table → pm.metrics → success rate, liquidation risk, bands

A scenario is priced on the baseline's shocks (regenerate_returns) so the
difference in success rate comes from the plan change, not from new noise.

Paths run sequentially, or on a process pool when config.max_workers > 1.
Results are collected in submission order, so path p always uses the p-th
slice of the shock table whatever the worker count.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from behaviors.base import ReturnModel
from behaviors.constant import AssetClassReturnModel
from behaviors.scenario import OverrideReturnModel
from core.config import ProjectionConfig
from data_prep.builders import apply_scenario
from data_prep.models import ProjectionInputs, ScenarioOverrides
from distributions.rng import generate_monte_carlo_seed
from distributions.sampler import SampledReturnPaths, expected_returns, generate_return_paths, regenerate_returns
from pm.aggregator import aggregate_totals_by_year
from pm.metrics import compute_path_metrics

from .runner import ProjectionResult, run_unified_projection

logger = logging.getLogger(__name__)

PATH_FRAME_COLUMNS = ("path_id", "year", "age", "total", "net_worth", "depleted", "forced_liquidations")


def projection_years(inputs: ProjectionInputs) -> int:
    s = inputs.settings
    return max(0, s.life_expectancy - s.current_age) + 1


def _path_rows(path_id: int, result: ProjectionResult) -> List[Tuple]:
    return [
        (
            path_id,
            row["year"],
            row["age"],
            row["total"],
            row["net_worth"],
            row["depleted"],
            len(row["liquidation_events"]),
        )
        for row in result.year_by_year
    ]


def _run_path(task: Tuple) -> Tuple[List[Tuple], Optional[ProjectionResult]]:
    """One path. Module-level so a process pool can pickle it."""
    path_id, inputs, config, base_model, overrides, retirement_spending, keep_result = task
    result = run_unified_projection(
        inputs,
        config,
        return_model=OverrideReturnModel(base=base_model, overrides=overrides),
        use_tax_lots=False,
        retirement_spending=retirement_spending,
    )
    return _path_rows(path_id, result), (result if keep_result else None)


@dataclass
class SimulationSummary:
    """All paths of one plan (baseline or scenario)."""
    label: str
    path_frame: pd.DataFrame     # one row per path and year
    path_metrics: pd.DataFrame   # one row per path
    results: List[ProjectionResult] = field(default_factory=list)

    @property
    def n_paths(self) -> int:
        return len(self.path_metrics)

    @property
    def success_rate(self) -> float:
        if self.path_metrics.empty:
            return 0.0
        return float(self.path_metrics["survives"].mean())

    @property
    def liquidation_risk(self) -> float:
        """Share of paths that had a forced liquidation and also ran out of money."""
        if self.path_metrics.empty:
            return 0.0
        m = self.path_metrics
        return float((m["forced_liquidation"] & ~m["survives"]).mean())

    def percentile_bands(self) -> pd.DataFrame:
        return aggregate_totals_by_year(self.path_frame)

    def summary(self) -> Dict:
        finals = self.path_metrics["final_portfolio"].values if self.n_paths else np.array([0.0])
        return {
            "label": self.label,
            "n_paths": self.n_paths,
            "success_rate": self.success_rate,
            "liquidation_risk": self.liquidation_risk,
            "median_final_portfolio": float(np.median(finals)),
            "p10_final_portfolio": float(np.percentile(finals, 10)),
        }


@dataclass
class MonteCarloResult:
    seed: int
    n_paths: int
    baseline: SimulationSummary
    scenario: Optional[SimulationSummary] = None

    @property
    def success_rate_delta(self) -> Optional[float]:
        if self.scenario is None:
            return None
        return self.scenario.success_rate - self.baseline.success_rate

    def summary(self) -> pd.DataFrame:
        rows = [self.baseline.summary()]
        if self.scenario is not None:
            rows.append(self.scenario.summary())
        return pd.DataFrame(rows)


def run_paths(
    inputs: ProjectionInputs,
    config: ProjectionConfig,
    paths: SampledReturnPaths,
    base_model: ReturnModel,
    *,
    label: str = "baseline",
    retirement_spending: Optional[float] = None,
) -> SimulationSummary:
    """
    Run every sampled path through the projection and summarize.

    Parameters
    ----------
    paths : SampledReturnPaths
        Per-path returns; path p feeds projection p.
    base_model : ReturnModel
        Answers for any asset or year the sampled paths do not cover.
    retirement_spending : float, optional
        Replaces the plan's retirement spending on every path.
    """
    tasks = [
        (p, inputs, config, base_model, paths.get_path(p), retirement_spending, config.store_paths)
        for p in range(paths.n_paths)
    ]
    workers = config.max_workers or 1
    if workers <= 1 or len(tasks) < 2:
        outputs = [_run_path(task) for task in tasks]
    else:
        with ProcessPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(_run_path, task) for task in tasks]
            outputs = [f.result() for f in futures]

    rows = [row for path_rows, _ in outputs for row in path_rows]
    path_frame = pd.DataFrame(rows, columns=list(PATH_FRAME_COLUMNS))
    results = [result for _, result in outputs if result is not None]
    return SimulationSummary(
        label=label,
        path_frame=path_frame,
        path_metrics=compute_path_metrics(path_frame),
        results=results,
    )


def _sample(
    inputs: ProjectionInputs,
    config: ProjectionConfig,
    scenario: Optional[ScenarioOverrides] = None,
) -> Tuple[int, ReturnModel, SampledReturnPaths, Optional[ProjectionInputs], Optional[ReturnModel], Optional[SampledReturnPaths]]:
    as_of = pd.Timestamp(config.as_of_date)
    seed = generate_monte_carlo_seed(inputs, scenario, config.seed)
    base_model = AssetClassReturnModel.from_settings(inputs.settings, as_of_date=as_of)

    scenario_inputs = None
    scenario_model = None
    n_years = projection_years(inputs)
    if scenario is not None:
        scenario_inputs = apply_scenario(inputs, scenario, start_year=config.start_year)
        scenario_model = AssetClassReturnModel.from_settings(scenario_inputs.settings, as_of_date=as_of)
        n_years = max(n_years, projection_years(scenario_inputs))

    paths = generate_return_paths(config.n_paths, expected_returns(base_model, n_years), seed)
    scenario_paths = None
    if scenario_model is not None:
        scenario_paths = regenerate_returns(paths, expected_returns(scenario_model, n_years))
    return seed, base_model, paths, scenario_inputs, scenario_model, scenario_paths


def run_monte_carlo_simulation(
    inputs: ProjectionInputs,
    config: ProjectionConfig,
    scenario: Optional[ScenarioOverrides] = None,
) -> MonteCarloResult:
    """
    Baseline (and optional scenario) success rates over config.n_paths paths.

    Identical inputs, scenario and seed always give identical paths and
    identical per-path rows.
    """
    config.validate()
    seed, base_model, paths, scenario_inputs, scenario_model, scenario_paths = _sample(inputs, config, scenario)
    logger.info("Monte Carlo: %d paths x %d years, seed %d", paths.n_paths, paths.n_years, seed)

    baseline = run_paths(inputs, config, paths, base_model, label="baseline")
    logger.info(
        "Baseline: success %.1f%%, liquidation risk %.1f%%",
        baseline.success_rate * 100, baseline.liquidation_risk * 100,
    )

    scenario_summary = None
    if scenario_inputs is not None:
        scenario_summary = run_paths(
            scenario_inputs, config, scenario_paths, scenario_model, label=scenario.name or "scenario"
        )
        logger.info(
            "Scenario %s: success %.1f%% (%+.1f pts vs baseline)",
            scenario_summary.label,
            scenario_summary.success_rate * 100,
            (scenario_summary.success_rate - baseline.success_rate) * 100,
        )

    return MonteCarloResult(seed=seed, n_paths=paths.n_paths, baseline=baseline, scenario=scenario_summary)


@dataclass
class SafeSpendingResult:
    amount: float
    success_rate: float
    seed: int
    iterations: List[Tuple[float, float]] = field(default_factory=list)  # (spend tested, success rate)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.iterations, columns=["retirement_spending", "success_rate"])


def calculate_safe_spending(
    inputs: ProjectionInputs,
    config: ProjectionConfig,
) -> SafeSpendingResult:
    """
    Highest retirement spending that keeps success at or above the threshold.

    Paths are sampled once and reused for every test so each comparison is
    on the same market histories. Bisection on [low, high]: a passing spend
    raises the floor, a failing one lowers the ceiling, until the bracket is
    within the tolerance or the iteration cap is hit. When nothing passes
    the result is the lower bound.
    """
    config.validate()
    seed, base_model, paths, _, _, _ = _sample(inputs, config)
    low = config.safe_spending_low
    high = config.safe_spending_high
    best = low
    best_rate = 0.0
    iterations: List[Tuple[float, float]] = []

    for _ in range(config.safe_spending_max_iterations):
        test = float(round((low + high) / 2.0))
        rate = run_paths(inputs, config, paths, base_model, label="safe_spending", retirement_spending=test).success_rate
        iterations.append((test, rate))
        logger.debug("Safe spending test $%.0f: success %.1f%%", test, rate * 100)
        if rate >= config.success_threshold:
            low = test
            best = test
            best_rate = rate
        else:
            high = test
        if high - low <= config.safe_spending_tolerance:
            break

    logger.info(
        "Safe spending: $%.0f at %.0f%% threshold after %d tests",
        best, config.success_threshold * 100, len(iterations),
    )
    return SafeSpendingResult(amount=best, success_rate=best_rate, seed=seed, iterations=iterations)
