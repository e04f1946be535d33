"""
Retirement decision support — probability statements and stress flags.

Translates path distributions into answers a planner can act on:
  Q1: "Will the money last?"            → success rate vs the target threshold
  Q2: "How much can I spend?"           → safe spending at the threshold
  Q3: "What breaks the plan?"           → forced BTC liquidations that end in depletion
  Q4: "How bad is a bad outcome?"       → 10th percentile final portfolio
  Q5: "Does the scenario help?"         → success-rate delta on the same market paths
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd


@dataclass
class RetirementDecisionReport:
    """Structured decision output."""
    plan_name: str
    n_paths: int
    success_threshold: float

    # Core metrics
    success_rate: float
    liquidation_risk: float
    median_final_portfolio: float
    p10_final_portfolio: float
    median_deplete_age: Optional[float]

    # Spending
    retirement_spending: float
    safe_spending: Optional[float] = None

    # Scenario comparison
    scenario_name: Optional[str] = None
    scenario_success_rate: Optional[float] = None

    # Flags
    flags: List[str] = field(default_factory=list)

    @property
    def success_rate_delta(self) -> Optional[float]:
        if self.scenario_success_rate is None:
            return None
        return self.scenario_success_rate - self.success_rate

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to a display-friendly table."""
        rows = [
            {"Metric": "Plan", "Value": self.plan_name, "Unit": ""},
            {"Metric": "Paths", "Value": f"{self.n_paths}", "Unit": ""},
            {"Metric": "Success Rate", "Value": f"{self.success_rate:.1%}", "Unit": ""},
            {"Metric": "Target Success Rate", "Value": f"{self.success_threshold:.0%}", "Unit": ""},
            {"Metric": "Liquidation Risk", "Value": f"{self.liquidation_risk:.1%}", "Unit": ""},
            {"Metric": "Median Final Portfolio", "Value": f"{self.median_final_portfolio:,.0f}", "Unit": "$"},
            {"Metric": "10th Pctl Final Portfolio", "Value": f"{self.p10_final_portfolio:,.0f}", "Unit": "$"},
            {"Metric": "Retirement Spending", "Value": f"{self.retirement_spending:,.0f}", "Unit": "$/yr"},
        ]
        if self.median_deplete_age is not None:
            rows.append({"Metric": "Median Depletion Age", "Value": f"{self.median_deplete_age:.0f}", "Unit": "years"})
        if self.safe_spending is not None:
            rows.append({"Metric": "Safe Spending", "Value": f"{self.safe_spending:,.0f}", "Unit": "$/yr"})
        if self.scenario_success_rate is not None:
            rows.append({
                "Metric": f"Scenario Success Rate ({self.scenario_name or 'scenario'})",
                "Value": f"{self.scenario_success_rate:.1%}",
                "Unit": "",
            })
            rows.append({"Metric": "Success Rate Delta", "Value": f"{self.success_rate_delta:+.1%}", "Unit": ""})
        if self.flags:
            rows.append({"Metric": "FLAGS", "Value": " | ".join(self.flags), "Unit": ""})
        return pd.DataFrame(rows)


def generate_decision_report(
    path_metrics: pd.DataFrame,
    *,
    plan_name: str = "Plan",
    retirement_spending: float = 0.0,
    success_threshold: float = 0.90,
    safe_spending: Optional[float] = None,
    scenario_metrics: Optional[pd.DataFrame] = None,
    scenario_name: Optional[str] = None,
) -> RetirementDecisionReport:
    """
    Generate a decision report from per-path metrics.

    Parameters
    ----------
    path_metrics : pd.DataFrame
        Output of pm.metrics.compute_path_metrics().
        Required columns: survives, final_portfolio, deplete_age, forced_liquidation
    retirement_spending : float
        The plan's annual retirement spending in today's dollars.
    success_threshold : float
        Share of surviving paths the plan must reach (e.g., 0.90).
    safe_spending : float, optional
        Result of the safe-spending search, when it was run.
    scenario_metrics : pd.DataFrame, optional
        Per-path metrics of a scenario run on the same market paths.
    """
    n = len(path_metrics)
    if n == 0:
        raise ValueError("No path metrics to generate report from.")

    survives = path_metrics["survives"].astype(bool).values
    liquidated = path_metrics["forced_liquidation"].astype(bool).values
    finals = path_metrics["final_portfolio"].astype(float).values
    deplete_ages = pd.to_numeric(path_metrics["deplete_age"], errors="coerce").dropna().values

    success_rate = float(np.mean(survives))
    liquidation_risk = float(np.mean(liquidated & ~survives))
    p10_final = float(np.percentile(finals, 10))

    scenario_rate = None
    if scenario_metrics is not None and len(scenario_metrics):
        scenario_rate = float(scenario_metrics["survives"].astype(bool).mean())

    # Flags
    flags = []
    if success_rate < success_threshold:
        flags.append(f"BELOW_TARGET: success {success_rate:.0%} under the {success_threshold:.0%} target")
    if liquidation_risk > 0.05:
        flags.append(f"LIQUIDATION_RISK: {liquidation_risk:.0%} of paths liquidate collateral and deplete")
    if p10_final <= 0:
        flags.append("TAIL_DEPLETION: 10th pctl path ends with nothing")
    if safe_spending is not None and retirement_spending > safe_spending:
        flags.append(
            f"OVERSPENDING: planned ${retirement_spending:,.0f}/yr exceeds safe ${safe_spending:,.0f}/yr"
        )
    if scenario_rate is not None and scenario_rate + 0.05 < success_rate:
        flags.append(f"SCENARIO_WORSE: scenario success {scenario_rate:.0%} vs baseline {success_rate:.0%}")

    return RetirementDecisionReport(
        plan_name=plan_name,
        n_paths=n,
        success_threshold=success_threshold,
        success_rate=success_rate,
        liquidation_risk=liquidation_risk,
        median_final_portfolio=float(np.median(finals)),
        p10_final_portfolio=p10_final,
        median_deplete_age=float(np.median(deplete_ages)) if len(deplete_ages) else None,
        retirement_spending=retirement_spending,
        safe_spending=safe_spending,
        scenario_name=scenario_name,
        scenario_success_rate=scenario_rate,
        flags=flags,
    )
