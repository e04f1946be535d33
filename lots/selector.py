"""
Tax-lot selection.

A sale of Q units of a ticker is satisfied from the running lot pool in the
order the cost-basis method dictates:

  FIFO         earliest acquisition date first
  LIFO         latest acquisition date first
  HIFO         highest price per unit first (smallest realized gain)
  SPECIFIC_ID  exactly the lots named by the caller, in the order given

Ties always break on lot id so two runs over the same pool consume the same
lots. Selection mutates the pool: `remaining_quantity` is decremented and lots
that fall under LOT_DUST_QUANTITY are dropped.

Each consumed slice is classified by comparing its acquisition date with one
year before the sale date. When no lots cover a sale (legacy holdings), basis
is estimated from the running aggregate and the gain is treated as long-term.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from core.schema import COST_BASIS_METHODS, LOT_DUST_QUANTITY
from core.utils import long_term_cutoff


@dataclass
class TaxLot:
    """One purchase record inside a projection run. Only `remaining_quantity` changes."""
    lot_id: str
    ticker: str
    quantity: float
    remaining_quantity: float
    price_per_unit: float
    acquired: pd.Timestamp
    source: str = "purchase"
    loan_id: Optional[str] = None

    @property
    def remaining_basis(self) -> float:
        return self.remaining_quantity * self.price_per_unit


@dataclass(frozen=True)
class LotConsumption:
    lot_id: str
    quantity: float
    cost_basis: float
    price_per_unit: float
    acquired: pd.Timestamp
    is_long_term: bool


@dataclass
class LotSelection:
    """Result of one sale against the lot pool."""
    requested_quantity: float
    consumed: List[LotConsumption] = field(default_factory=list)
    remaining_to_sell: float = 0.0
    used_fallback: bool = False

    @property
    def total_quantity(self) -> float:
        return sum(c.quantity for c in self.consumed)

    @property
    def total_cost_basis(self) -> float:
        return sum(c.cost_basis for c in self.consumed)

    def realized_gains(self, sale_price: float) -> Tuple[float, float]:
        """(short_term_gain, long_term_gain) at `sale_price` per unit. Losses net within each term."""
        short = 0.0
        long = 0.0
        for c in self.consumed:
            gain = c.quantity * sale_price - c.cost_basis
            if c.is_long_term:
                long += gain
            else:
                short += gain
        return short, long

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([
            {
                "lot_id": c.lot_id,
                "quantity": c.quantity,
                "cost_basis": c.cost_basis,
                "price_per_unit": c.price_per_unit,
                "acquired": c.acquired,
                "term": "long" if c.is_long_term else "short",
            }
            for c in self.consumed
        ])


def normalize_method(method: Optional[str]) -> str:
    m = (method or "HIFO").strip().upper().replace("-", "_")
    if m in ("SPECIFIC", "SPECIFICID"):
        m = "SPECIFIC_ID"
    if m not in COST_BASIS_METHODS:
        raise ValueError(f"Unknown cost basis method {method!r}; expected one of {COST_BASIS_METHODS}")
    return m


def order_lots(
    lots: Sequence[TaxLot],
    method: str,
    specific_ids: Optional[Sequence[str]] = None,
) -> List[TaxLot]:
    """Candidate lots in consumption order for `method`."""
    method = normalize_method(method)
    if method == "FIFO":
        return sorted(lots, key=lambda lot: (lot.acquired, lot.lot_id))
    if method == "LIFO":
        return sorted(lots, key=lambda lot: (-lot.acquired.value, lot.lot_id))
    if method == "HIFO":
        return sorted(lots, key=lambda lot: (-lot.price_per_unit, lot.lot_id))

    by_id = {lot.lot_id: lot for lot in lots}
    missing = [i for i in (specific_ids or []) if i not in by_id]
    if missing:
        raise ValueError(f"Specific-id sale names unknown lots: {missing}")
    return [by_id[i] for i in (specific_ids or [])]


def select_lots(
    lots: List[TaxLot],
    ticker: str,
    quantity: float,
    method: str = "HIFO",
    *,
    sale_date: pd.Timestamp,
    specific_ids: Optional[Sequence[str]] = None,
) -> LotSelection:
    """
    Consume `quantity` units of `ticker` from `lots` (mutated in place).

    Parameters
    ----------
    lots : list of TaxLot
        Running pool. Lots of other tickers are left untouched.
    quantity : float
        Units to sell. The selection covers min(quantity, available).
    sale_date : pd.Timestamp
        Simulated sale date; drives the short/long-term split.

    Returns
    -------
    LotSelection with the consumed slices and any quantity left unsold.
    """
    selection = LotSelection(requested_quantity=max(0.0, quantity))
    if quantity <= 0:
        return selection

    candidates = [lot for lot in lots if lot.ticker == ticker and lot.remaining_quantity > 0]
    cutoff = long_term_cutoff(sale_date)
    remaining = quantity
    for lot in order_lots(candidates, method, specific_ids):
        if remaining <= 0:
            break
        take = min(lot.remaining_quantity, remaining)
        selection.consumed.append(LotConsumption(
            lot_id=lot.lot_id,
            quantity=take,
            cost_basis=take * lot.price_per_unit,
            price_per_unit=lot.price_per_unit,
            acquired=lot.acquired,
            is_long_term=lot.acquired <= cutoff,
        ))
        lot.remaining_quantity -= take
        remaining -= take

    _drop_dust(lots)
    selection.remaining_to_sell = max(0.0, remaining)
    return selection


def proportional_selection(
    quantity: float,
    aggregate_basis: float,
    aggregate_quantity: float,
    *,
    sale_date: pd.Timestamp,
) -> LotSelection:
    """Fallback when no lots cover a sale: average basis, long-term."""
    selection = LotSelection(requested_quantity=max(0.0, quantity), used_fallback=True)
    if quantity <= 0:
        return selection
    per_unit = aggregate_basis / aggregate_quantity if aggregate_quantity > 0 else 0.0
    selection.consumed.append(LotConsumption(
        lot_id="__aggregate__",
        quantity=quantity,
        cost_basis=quantity * per_unit,
        price_per_unit=per_unit,
        acquired=long_term_cutoff(sale_date),
        is_long_term=True,
    ))
    return selection


def available_quantity(lots: Iterable[TaxLot], ticker: str) -> float:
    return sum(lot.remaining_quantity for lot in lots if lot.ticker == ticker)


def weighted_average_cost(lots: Iterable[TaxLot], ticker: str) -> float:
    qty = 0.0
    cost = 0.0
    for lot in lots:
        if lot.ticker != ticker:
            continue
        qty += lot.remaining_quantity
        cost += lot.remaining_basis
    return cost / qty if qty > 0 else 0.0


def carve_out(lots: List[TaxLot], ticker: str, quantity: float) -> List[TaxLot]:
    """
    Remove `quantity` units pro rata from every `ticker` lot and return the slices.

    Used when BTC moves between the liquid pool and a loan's collateral: each
    slice keeps its lot id, date and price so it can be merged back later.
    """
    available = available_quantity(lots, ticker)
    if quantity <= 0 or available <= 0:
        return []
    share = min(1.0, quantity / available)
    slices: List[TaxLot] = []
    for lot in lots:
        if lot.ticker != ticker or lot.remaining_quantity <= 0:
            continue
        moved = lot.remaining_quantity * share
        lot.remaining_quantity -= moved
        slices.append(replace(lot, quantity=moved, remaining_quantity=moved))
    _drop_dust(lots)
    return [s for s in slices if s.remaining_quantity >= LOT_DUST_QUANTITY]


def merge_lots(lots: List[TaxLot], incoming: Iterable[TaxLot], source: str = "reallocation") -> None:
    """Return slices to a pool, topping up lots that share an id."""
    by_id = {lot.lot_id: lot for lot in lots}
    for piece in incoming:
        if piece.remaining_quantity < LOT_DUST_QUANTITY:
            continue
        existing = by_id.get(piece.lot_id)
        if existing is not None:
            existing.remaining_quantity += piece.remaining_quantity
            existing.quantity = max(existing.quantity, existing.remaining_quantity)
            continue
        merged = replace(piece, source=source, loan_id=None)
        lots.append(merged)
        by_id[merged.lot_id] = merged


def _drop_dust(lots: List[TaxLot]) -> None:
    lots[:] = [lot for lot in lots if lot.remaining_quantity >= LOT_DUST_QUANTITY]
