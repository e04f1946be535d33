"""
Planner outputs — per-path metrics, aggregation, and decision support.
"""

from .metrics import compute_path_metrics
from .aggregator import aggregate_path_results, aggregate_totals_by_year
from .decisions import RetirementDecisionReport, generate_decision_report

__all__ = [
    "compute_path_metrics",
    "aggregate_path_results",
    "aggregate_totals_by_year",
    "RetirementDecisionReport",
    "generate_decision_report",
]
