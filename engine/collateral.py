"""
Collateral / LTV state machine for BTC-backed loans.

LTV = loan balance / (collateral BTC x price), in percent.

  healthy       LTV <  top-up trigger
  top_up_zone   top-up trigger <= LTV < liquidation
  liquidated    LTV >= liquidation       forced sale of collateral
  release_zone  LTV <= release trigger   excess collateral freed

Evaluated once per loan per year, after interest accrues:
  1. top-up zone with auto top-up on: pledge liquid BTC until LTV is back at
     the top-up target (only when enough liquid BTC exists)
  2. LTV at or above liquidation: sell enough collateral to clear the debt or
     exhaust the collateral; leftover collateral on a cleared loan comes back
     to the liquid pool the same year
  3. LTV at or under the release trigger: free everything on a cleared loan,
     otherwise the excess above the release-target LTV

Every BTC unit that moves between the liquid pool and a loan carries a
proportional share of basis from the pool it leaves, and lot slices move
with it, so the liquid basis and the loans' collateral basis never overlap.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from core.schema import (
    DEFAULT_LTV_THRESHOLDS,
    EVENT_FULL_LIQUIDATION,
    EVENT_PARTIAL_LIQUIDATION,
    EVENT_RELEASE,
    EVENT_TOP_UP,
    LOT_DUST_QUANTITY,
    PAID_OFF_TOLERANCE,
)
from lots.selector import TaxLot, carve_out, merge_lots

from .cashflow import RunningLiability
from .portfolio import BTC_TICKER, ProjectionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LtvThresholds:
    top_up_trigger: float = DEFAULT_LTV_THRESHOLDS["top_up_trigger"]
    top_up_target: float = DEFAULT_LTV_THRESHOLDS["top_up_target"]
    liquidation: float = DEFAULT_LTV_THRESHOLDS["liquidation"]
    release_trigger: float = DEFAULT_LTV_THRESHOLDS["release_trigger"]
    release_target: float = DEFAULT_LTV_THRESHOLDS["release_target"]

    @classmethod
    def resolve(cls, settings, loan=None) -> "LtvThresholds":
        """Per-loan thresholds, then plan-level ones, then the defaults; blanks fall through."""

        def pick(key: str) -> float:
            loan_value = getattr(loan, f"{key}_ltv", None) if loan is not None else None
            if loan_value is not None and loan_value > 0:
                return loan_value
            plan_value = getattr(settings, f"btc_{key}_ltv", None)
            if plan_value is not None and plan_value > 0:
                return plan_value
            return DEFAULT_LTV_THRESHOLDS[key]

        return cls(**{key: pick(key) for key in DEFAULT_LTV_THRESHOLDS})

    def state(self, ltv: float) -> str:
        if ltv >= self.liquidation:
            return "liquidated"
        if ltv >= self.top_up_trigger:
            return "top_up_zone"
        if ltv <= self.release_trigger:
            return "release_zone"
        return "healthy"


def loan_to_value(balance: float, collateral_btc: float, btc_price: float) -> Optional[float]:
    """LTV in percent, or None when the collateral has no value."""
    collateral_value = collateral_btc * btc_price
    if collateral_value <= 0:
        return None
    return max(0.0, balance) / collateral_value * 100.0


def ltv_status(ltv: Optional[float]) -> str:
    if ltv is None or ltv < 40:
        return "healthy"
    if ltv < 60:
        return "moderate"
    return "elevated"


@dataclass
class CollateralEvent:
    year: int
    age: int
    type: str
    liability_name: str
    message: str
    btc_amount: float = 0.0
    proceeds: float = 0.0
    remaining_debt: float = 0.0
    remaining_collateral: float = 0.0
    ltv_before: Optional[float] = None
    ltv_after: Optional[float] = None
    realized_gain: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class LoanPosition:
    """A BTC-backed loan together with the coins, basis and lots pledged to it."""
    liability: RunningLiability
    thresholds: LtvThresholds
    collateral_btc: float = 0.0
    collateral_basis: float = 0.0
    lots: List[TaxLot] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.liability.key

    @property
    def name(self) -> str:
        return self.liability.name

    @property
    def balance(self) -> float:
        return self.liability.balance

    def ltv(self, btc_price: float) -> Optional[float]:
        return loan_to_value(self.liability.balance, self.collateral_btc, btc_price)

    def equity(self, btc_price: float) -> float:
        return self.collateral_btc * btc_price - self.liability.balance

    def detail(self, btc_price: float) -> Dict:
        ltv = self.ltv(btc_price)
        return {
            "name": self.name,
            "balance": self.liability.balance,
            "collateral_btc": self.collateral_btc,
            "collateral_value": self.collateral_btc * btc_price,
            "ltv": ltv,
            "status": ltv_status(ltv),
        }

    def clear_if_dust(self) -> None:
        if self.collateral_btc < LOT_DUST_QUANTITY:
            self.collateral_btc = 0.0
            self.collateral_basis = 0.0
            self.lots.clear()


def pledge_collateral(state: ProjectionState, position: LoanPosition, btc_quantity: float) -> float:
    """
    Move liquid taxable BTC into a loan's collateral.

    Returns the basis moved. The basis is the pledged share of the liquid
    BTC pool's basis.
    """
    liquid_qty = state.liquid_btc_quantity
    quantity = min(btc_quantity, liquid_qty)
    if quantity <= 0:
        return 0.0
    basis = state.btc_basis_estimate() * quantity / liquid_qty
    slices = carve_out(state.btc_lots, BTC_TICKER, quantity)
    for piece in slices:
        piece.loan_id = position.key
    position.lots.extend(slices)

    state.portfolio.taxable.btc = max(0.0, state.portfolio.taxable.btc - quantity * state.btc_price)
    state.taxable_basis = max(0.0, state.taxable_basis - basis)
    position.collateral_btc += quantity
    position.collateral_basis += basis
    return basis


def release_collateral(state: ProjectionState, position: LoanPosition, btc_quantity: float) -> float:
    """Move collateral back to liquid taxable BTC. Returns the basis restored."""
    quantity = min(btc_quantity, position.collateral_btc)
    if quantity <= 0:
        return 0.0
    basis = position.collateral_basis * quantity / position.collateral_btc
    if position.lots:
        merge_lots(state.btc_lots, carve_out(position.lots, BTC_TICKER, quantity), source="reallocation")

    position.collateral_btc -= quantity
    position.collateral_basis = max(0.0, position.collateral_basis - basis)
    state.portfolio.taxable.btc += quantity * state.btc_price
    state.taxable_basis += basis
    position.clear_if_dust()
    return basis


def sell_collateral(position: LoanPosition, btc_quantity: float) -> Tuple[float, float]:
    """Remove sold collateral from a loan. Returns (quantity sold, basis sold)."""
    quantity = min(btc_quantity, position.collateral_btc)
    if quantity <= 0:
        return 0.0, 0.0
    basis = position.collateral_basis * quantity / position.collateral_btc
    if position.lots:
        carve_out(position.lots, BTC_TICKER, quantity)
    position.collateral_btc -= quantity
    position.collateral_basis = max(0.0, position.collateral_basis - basis)
    position.clear_if_dust()
    return quantity, basis


def process_collateral(
    state: ProjectionState,
    position: LoanPosition,
    *,
    auto_top_up: bool,
    year: int,
    age: int,
) -> List[CollateralEvent]:
    """
    Evaluate one loan's LTV for the year and apply the resulting transition.

    Parameters
    ----------
    state : ProjectionState
        Liquid BTC, basis and lots are mutated by top-ups and releases.
    position : LoanPosition
        Loan balance, collateral, basis and lots are mutated.
    auto_top_up : bool
        Whether the plan pledges more BTC in the top-up zone.

    Returns
    -------
    Events in the order they happened (top-up, then liquidation or release).
    """
    price = state.btc_price
    events: List[CollateralEvent] = []
    if position.collateral_btc <= 0 or price <= 0:
        return events

    th = position.thresholds
    ltv = position.ltv(price)
    if ltv is None:
        return events

    top_up_allowed = auto_top_up and position.balance > 0 and th.top_up_target > 0
    if top_up_allowed and th.top_up_trigger <= ltv < th.liquidation:
        target_collateral = position.balance / (th.top_up_target / 100.0) / price
        needed = target_collateral - position.collateral_btc
        if needed > 0 and state.liquid_btc_quantity >= needed:
            pledge_collateral(state, position, needed)
            new_ltv = position.ltv(price)
            events.append(CollateralEvent(
                year=year,
                age=age,
                type=EVENT_TOP_UP,
                liability_name=position.name,
                message=f"Added {needed:.4f} BTC to bring LTV from {ltv:.1f}% to {new_ltv:.1f}%",
                btc_amount=needed,
                remaining_debt=position.balance,
                remaining_collateral=position.collateral_btc,
                ltv_before=ltv,
                ltv_after=new_ltv,
            ))
            ltv = new_ltv
        elif needed > 0:
            logger.debug(
                "%s: top-up needs %.4f BTC but only %.4f liquid; LTV stays at %.1f%%",
                position.name,
                needed,
                state.liquid_btc_quantity,
                ltv,
            )

    if ltv >= th.liquidation:
        events += _liquidate(state, position, ltv, year=year, age=age)
    elif ltv <= th.release_trigger:
        event = _release(state, position, ltv, year=year, age=age)
        if event is not None:
            events.append(event)
    return events


def _liquidate(
    state: ProjectionState, position: LoanPosition, ltv: float, *, year: int, age: int
) -> List[CollateralEvent]:
    price = state.btc_price
    sold, basis = sell_collateral(position, position.balance / price)
    proceeds = sold * price
    liability = position.liability
    liability.balance = max(0.0, liability.balance - proceeds)
    if liability.balance <= PAID_OFF_TOLERANCE:
        liability.balance = 0.0
        liability.paid_off = True

    kind = EVENT_FULL_LIQUIDATION if liability.paid_off else EVENT_PARTIAL_LIQUIDATION
    logger.info(
        "%s: %s of %.4f BTC at LTV %.1f%% (%d)", position.name, kind, sold, ltv, year
    )
    events = [CollateralEvent(
        year=year,
        age=age,
        type=kind,
        liability_name=position.name,
        message=(
            f"Liquidated {sold:.4f} BTC (${proceeds:,.0f}) at {ltv:.1f}% LTV; "
            f"remaining debt ${liability.balance:,.0f}"
        ),
        btc_amount=sold,
        proceeds=proceeds,
        remaining_debt=liability.balance,
        remaining_collateral=position.collateral_btc,
        ltv_before=ltv,
        ltv_after=position.ltv(price),
        realized_gain=proceeds - basis,
    )]

    if liability.paid_off and position.collateral_btc > 0:
        leftover = position.collateral_btc
        release_collateral(state, position, leftover)
        events.append(CollateralEvent(
            year=year,
            age=age,
            type=EVENT_RELEASE,
            liability_name=position.name,
            message=f"Released {leftover:.4f} BTC left over after liquidation",
            btc_amount=leftover,
            ltv_before=0.0,
        ))
    return events


def _release(
    state: ProjectionState, position: LoanPosition, ltv: float, *, year: int, age: int
) -> Optional[CollateralEvent]:
    price = state.btc_price
    th = position.thresholds
    if position.balance <= 0:
        quantity = position.collateral_btc
        message = f"Loan repaid; released all {quantity:.4f} BTC collateral"
    elif th.release_target <= 0:
        return None
    else:
        required = position.balance / (th.release_target / 100.0) / price
        quantity = position.collateral_btc - required
        message = f"Released {quantity:.4f} BTC to bring LTV from {ltv:.1f}% to {th.release_target:.1f}%"
    if quantity < LOT_DUST_QUANTITY:
        return None

    release_collateral(state, position, quantity)
    return CollateralEvent(
        year=year,
        age=age,
        type=EVENT_RELEASE,
        liability_name=position.name,
        message=message,
        btc_amount=quantity,
        remaining_debt=position.balance,
        remaining_collateral=position.collateral_btc,
        ltv_before=ltv,
        ltv_after=position.ltv(price),
    )
