"""
Projection engine — deterministic year-by-year household projection + Monte Carlo runner.
"""

from .runner import ProjectionResult, run_unified_projection
from .monte_carlo import (
    MonteCarloResult,
    SafeSpendingResult,
    SimulationSummary,
    calculate_safe_spending,
    run_monte_carlo_simulation,
)

__all__ = [
    "ProjectionResult",
    "run_unified_projection",
    "MonteCarloResult",
    "SafeSpendingResult",
    "SimulationSummary",
    "calculate_safe_spending",
    "run_monte_carlo_simulation",
]
