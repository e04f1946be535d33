"""
Sanity checks on an input snapshot before it enters the engine.

The engine itself never rejects a snapshot; it defaults whatever it can.
These checks surface the inputs that will produce surprising projections:
- ages out of order
- LTV thresholds that cannot form a sensible state machine
- tax lots that disagree with the taxable BTC holdings
- loans with no collateral
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from core.schema import LOT_DUST_QUANTITY

from .builders import build_holdings_table
from .models import LoanTerms, PlanSettings, ProjectionInputs


@dataclass
class ValidationResult:
    """Collects all validation warnings/errors for a snapshot."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def summary(self) -> str:
        lines = []
        if self.errors:
            lines.append(f"ERRORS ({len(self.errors)}):")
            for e in self.errors:
                lines.append(f"  ✗ {e}")
        if self.warnings:
            lines.append(f"WARNINGS ({len(self.warnings)}):")
            for w in self.warnings:
                lines.append(f"  ⚠ {w}")
        if not lines:
            lines.append("✓ All checks passed.")
        return "\n".join(lines)


def _check_thresholds(
    result: ValidationResult,
    label: str,
    release_trigger: float,
    release_target: float,
    top_up_target: float,
    top_up_trigger: float,
    liquidation: float,
) -> None:
    if not release_trigger < top_up_trigger < liquidation:
        result.errors.append(
            f"{label}: LTV thresholds must satisfy release ({release_trigger}) < "
            f"top-up trigger ({top_up_trigger}) < liquidation ({liquidation})."
        )
    if not release_trigger <= release_target < liquidation:
        result.warnings.append(
            f"{label}: release target {release_target} should sit between the release "
            f"trigger and the liquidation threshold."
        )
    if not top_up_target < top_up_trigger:
        result.warnings.append(
            f"{label}: top-up target {top_up_target} is not below the top-up trigger "
            f"{top_up_trigger}; top-ups will not move the LTV out of the top-up zone."
        )


def _loan_thresholds(loan: LoanTerms, s: PlanSettings) -> tuple:
    return (
        loan.release_trigger_ltv or s.btc_release_trigger_ltv,
        loan.release_target_ltv or s.btc_release_target_ltv,
        loan.top_up_target_ltv or s.btc_top_up_target_ltv,
        loan.top_up_trigger_ltv or s.btc_top_up_trigger_ltv,
        loan.liquidation_ltv or s.btc_liquidation_ltv,
    )


def validate_inputs(inputs: ProjectionInputs) -> ValidationResult:
    """
    Run all validation checks on a snapshot.
    Returns a ValidationResult with errors (blocking) and warnings (informational).
    """
    result = ValidationResult()
    s = inputs.settings

    # --- Ages ---
    if s.current_age <= 0:
        result.errors.append(f"current_age must be positive, got {s.current_age}.")
    if s.life_expectancy <= s.current_age:
        result.errors.append(
            f"life_expectancy ({s.life_expectancy}) must exceed current_age ({s.current_age})."
        )
    if s.retirement_age < s.current_age:
        result.warnings.append(
            f"retirement_age ({s.retirement_age}) is below current_age; projection starts retired."
        )

    # --- Plan-level LTV thresholds ---
    _check_thresholds(
        result,
        "plan",
        s.btc_release_trigger_ltv,
        s.btc_release_target_ltv,
        s.btc_top_up_target_ltv,
        s.btc_top_up_trigger_ltv,
        s.btc_liquidation_ltv,
    )

    # --- Loans ---
    btc_loans: List[LoanTerms] = list(inputs.collateralized_loans)
    btc_loans += [l for l in inputs.liabilities if l.is_btc_collateralized]
    for loan in btc_loans:
        if loan.current_balance < 0:
            result.errors.append(f"Loan {loan.label!r} has a negative balance.")
        if loan.current_balance > 0 and loan.collateral_btc_amount <= 0:
            result.warnings.append(f"Loan {loan.label!r} has a balance but no BTC collateral.")
        if any(v is not None for v in (
            loan.liquidation_ltv, loan.top_up_trigger_ltv, loan.release_trigger_ltv
        )):
            _check_thresholds(result, f"loan {loan.label!r}", *_loan_thresholds(loan, s))

    # --- Withdrawal strategy ---
    if s.asset_withdrawal_strategy == "blended":
        total = sum(s.withdrawal_blend_percentages.values())
        if abs(total - 100.0) > 0.01:
            result.warnings.append(
                f"Blend percentages sum to {total:.2f}, not 100; they will be normalized."
            )

    # --- Prices ---
    table = build_holdings_table(inputs)
    has_btc = bool((table["category"] == "btc").any()) if len(table) else False
    if has_btc and inputs.current_btc_price <= 0:
        result.errors.append("BTC holdings present but current_btc_price is not positive.")

    # --- Lots vs taxable BTC holdings ---
    btc_lots = [lot for lot in inputs.tax_lots if lot.ticker.upper() == "BTC"]
    for lot in btc_lots:
        if lot.remaining_quantity is not None and lot.remaining_quantity > lot.quantity + LOT_DUST_QUANTITY:
            result.errors.append(f"Lot {lot.id} remaining quantity exceeds its original quantity.")
        if lot.date is None:
            result.warnings.append(f"Lot {lot.id} has no acquisition date; treated as bought on the as-of date.")
    if btc_lots and len(table):
        liquid_qty = float(table.loc[
            (table["ticker"] == "BTC") & (table["treatment"] == "taxable"), "quantity"
        ].sum())
        lot_qty = sum(lot.available for lot in btc_lots)
        if abs(lot_qty - liquid_qty) > 1e-6:
            result.warnings.append(
                f"BTC lots hold {lot_qty:.8f} BTC but taxable holdings show {liquid_qty:.8f} BTC; "
                f"sales beyond the lots fall back to average-basis estimates."
            )

    return result
