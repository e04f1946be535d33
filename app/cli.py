"""
Command-line entry point.

    btc-projection snapshot.json --as-of 2026-01-01
    btc-projection snapshot.json --as-of 2026-01-01 --monte-carlo --paths 500 --workers 4
    btc-projection snapshot.json --as-of 2026-01-01 --scenario early_retire.json --monte-carlo
    btc-projection snapshot.json --as-of 2026-01-01 --safe-spending --rows out.csv

The as-of date is required: it is the projection's only time anchor.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import pandas as pd

from core.config import ProjectionConfig
from data_prep.builders import apply_scenario
from data_prep.loader import load_scenario, load_snapshot
from data_prep.validators import validate_inputs
from engine.monte_carlo import calculate_safe_spending, run_monte_carlo_simulation
from engine.runner import run_unified_projection
from pm.decisions import generate_decision_report

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "year", "age", "btc_price", "liquid", "btc_encumbered", "total", "total_debt",
    "spending", "total_withdrawal", "taxes_paid", "depleted",
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="btc-projection",
        description="Year-by-year wealth projection with BTC-backed loans, taxes and Monte Carlo.",
    )
    parser.add_argument("snapshot", help="JSON input snapshot")
    parser.add_argument("--as-of", required=True, help="as-of date (YYYY-MM-DD)")
    parser.add_argument("--scenario", help="JSON scenario overrides")
    parser.add_argument("--monte-carlo", action="store_true", help="run Monte Carlo success rates")
    parser.add_argument("--safe-spending", action="store_true", help="search for the safe retirement spending")
    parser.add_argument("--paths", type=int, default=500, help="Monte Carlo paths (default 500)")
    parser.add_argument("--seed", type=int, default=None, help="explicit seed (default: hash of the inputs)")
    parser.add_argument("--workers", type=int, default=None, help="worker processes for Monte Carlo paths")
    parser.add_argument("--rows", help="write the year-by-year table to this CSV")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ProjectionConfig(
        as_of_date=pd.Timestamp(args.as_of),
        n_paths=args.paths,
        seed=args.seed,
        max_workers=args.workers,
    )
    config.validate()

    inputs = load_snapshot(args.snapshot)
    scenario = load_scenario(args.scenario) if args.scenario else None

    validation = validate_inputs(inputs)
    print(validation.summary())
    if not validation.is_valid:
        return 1

    plan_inputs = apply_scenario(inputs, scenario, start_year=config.start_year) if scenario else inputs
    result = run_unified_projection(plan_inputs, config)
    rows = result.to_dataframe()
    print()
    print(pd.DataFrame([result.summary()]).to_string(index=False))
    print()
    print(rows[SUMMARY_COLUMNS].to_string(index=False, float_format=lambda x: f"{x:,.0f}"))
    if args.rows:
        rows.to_csv(args.rows, index=False)
        logger.info("Wrote %d rows to %s", len(rows), args.rows)

    if not (args.monte_carlo or args.safe_spending):
        return 0

    safe = calculate_safe_spending(inputs, config) if args.safe_spending else None
    if safe is not None:
        print()
        print(safe.to_dataframe().to_string(index=False))

    if args.monte_carlo:
        mc = run_monte_carlo_simulation(inputs, config, scenario)
        print()
        print(mc.summary().to_string(index=False))
        print()
        print(mc.baseline.percentile_bands().to_string(index=False, float_format=lambda x: f"{x:,.0f}"))
        report = generate_decision_report(
            mc.baseline.path_metrics,
            plan_name=args.snapshot,
            retirement_spending=inputs.settings.annual_retirement_spending,
            success_threshold=config.success_threshold,
            safe_spending=safe.amount if safe is not None else None,
            scenario_metrics=mc.scenario.path_metrics if mc.scenario is not None else None,
            scenario_name=mc.scenario.label if mc.scenario is not None else None,
        )
        print()
        print(report.to_dataframe().to_string(index=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
