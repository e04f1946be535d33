"""
Portfolio state for one projection run.

Layout:
  taxable / tax_deferred / tax_free  x  btc / stocks / bonds / cash / other
  + one scalar real-estate bucket

Everything is in dollars. BTC is additionally tracked in units through the
liquid taxable lot pool, so `taxable.btc / btc_price` and the pool's remaining
quantity describe the same coins.

ProjectionState bundles the buckets with the running taxable cost basis, the
lot pool and the holding weights used for dividends and per-ticker growth. A
fresh state is built from the snapshot for every run and thrown away at the
end; nothing here is shared between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import pandas as pd

from core.schema import ACCOUNT_BUCKETS, ASSET_CLASSES, LOT_DUST_QUANTITY, WITHDRAWAL_DUST
from core.utils import safe_ratio
from lots.selector import TaxLot, available_quantity

logger = logging.getLogger(__name__)

BTC_TICKER = "BTC"


@dataclass
class AccountBuckets:
    """Dollar balances of one account type, split by asset class."""
    btc: float = 0.0
    stocks: float = 0.0
    bonds: float = 0.0
    cash: float = 0.0
    other: float = 0.0

    def get(self, asset: str) -> float:
        return getattr(self, asset)

    def set(self, asset: str, value: float) -> None:
        setattr(self, asset, value)

    def add(self, asset: str, amount: float) -> None:
        setattr(self, asset, getattr(self, asset) + amount)

    def total(self) -> float:
        return sum(getattr(self, a) for a in ASSET_CLASSES)

    def as_dict(self) -> Dict[str, float]:
        return {a: getattr(self, a) for a in ASSET_CLASSES}

    def withdraw_proportional(self, amount: float) -> float:
        """Take `amount` pro rata across assets. Buckets left under $1 are zeroed."""
        total = self.total()
        if amount <= 0 or total <= 0:
            return 0.0
        taken = min(amount, total)
        keep = 1.0 - taken / total
        for asset in ASSET_CLASSES:
            value = getattr(self, asset) * keep
            setattr(self, asset, value if value >= WITHDRAWAL_DUST else 0.0)
        return taken

    def add_proportional(self, amount: float) -> None:
        """Spread a deposit over the current mix; an empty account gets stocks."""
        if amount <= 0:
            return
        total = self.total()
        if total <= 0:
            self.stocks += amount
            return
        for asset in ASSET_CLASSES:
            self.add(asset, amount * getattr(self, asset) / total)

    def sweep(self, threshold: float) -> None:
        for asset in ASSET_CLASSES:
            if getattr(self, asset) < threshold:
                setattr(self, asset, 0.0)

    def zero(self) -> None:
        for asset in ASSET_CLASSES:
            setattr(self, asset, 0.0)


@dataclass
class Portfolio:
    taxable: AccountBuckets = field(default_factory=AccountBuckets)
    tax_deferred: AccountBuckets = field(default_factory=AccountBuckets)
    tax_free: AccountBuckets = field(default_factory=AccountBuckets)
    real_estate: float = 0.0

    def account(self, bucket: str) -> AccountBuckets:
        if bucket not in ACCOUNT_BUCKETS:
            raise ValueError(f"Unknown account bucket {bucket!r}; expected one of {ACCOUNT_BUCKETS}")
        return getattr(self, bucket)

    def asset_total(self, asset: str) -> float:
        return sum(self.account(b).get(asset) for b in ACCOUNT_BUCKETS)

    def liquid_total(self) -> float:
        return sum(self.account(b).total() for b in ACCOUNT_BUCKETS)

    def total(self) -> float:
        return self.liquid_total() + self.real_estate

    def sweep(self, threshold: float) -> None:
        for bucket in ACCOUNT_BUCKETS:
            self.account(bucket).sweep(threshold)
        if self.real_estate < threshold:
            self.real_estate = 0.0

    def zero_all(self) -> None:
        for bucket in ACCOUNT_BUCKETS:
            self.account(bucket).zero()
        self.real_estate = 0.0

    @classmethod
    def from_holdings_table(cls, table: pd.DataFrame) -> "Portfolio":
        """Sum a builders.build_holdings_table() frame into buckets."""
        portfolio = cls()
        for row in table.itertuples(index=False):
            if row.value <= 0:
                continue
            if row.treatment == "real_estate":
                portfolio.real_estate += row.value
            else:
                portfolio.account(row.treatment).add(row.category, row.value)
        return portfolio


@dataclass
class TrackedHolding:
    """
    One input holding, kept only as a weight.

    Its value grows at the holding's own rate every year; withdrawals do not
    touch it. The bucket balances stay authoritative, the tracked values only
    decide how a bucket splits between tickers for growth and dividends.
    """
    ticker: str
    category: str
    treatment: str
    value: float
    dividend_yield: float = 0.0
    dividend_qualified: bool = True

    @property
    def group(self) -> Tuple[str, str]:
        return self.treatment, self.category


@dataclass
class ProjectionState:
    portfolio: Portfolio
    btc_price: float
    taxable_basis: float = 0.0
    btc_lots: List[TaxLot] = field(default_factory=list)
    use_lots: bool = True
    roth_contribution_basis: float = 0.0
    holdings: List[TrackedHolding] = field(default_factory=list)
    fallback_warned: bool = False
    _lot_counter: int = 0

    @property
    def liquid_btc_quantity(self) -> float:
        return safe_ratio(self.portfolio.taxable.btc, self.btc_price)

    @property
    def lot_quantity(self) -> float:
        return available_quantity(self.btc_lots, BTC_TICKER)

    def basis_ratio(self) -> float:
        """Aggregate cost basis per taxable dollar, capped at 1."""
        return min(1.0, safe_ratio(self.taxable_basis, self.portfolio.taxable.total()))

    def btc_basis_estimate(self) -> float:
        """
        Cost basis of the liquid taxable BTC.

        Lot basis where lots cover the coins; any uncovered remainder is valued
        at the aggregate taxable basis ratio.
        """
        liquid_qty = self.liquid_btc_quantity
        lot_qty = min(self.lot_quantity, liquid_qty)
        lot_basis = sum(lot.remaining_basis for lot in self.btc_lots if lot.ticker == BTC_TICKER)
        if lot_qty > 0 and self.lot_quantity > 0:
            lot_basis *= lot_qty / self.lot_quantity
        uncovered = max(0.0, liquid_qty - lot_qty) * self.btc_price
        return min(self.taxable_basis, lot_basis + uncovered * self.basis_ratio())

    def next_lot_id(self, source: str, acquired: pd.Timestamp) -> str:
        self._lot_counter += 1
        return f"{source}-{acquired.year}-{self._lot_counter:04d}"

    def invest_taxable(
        self,
        amounts: Mapping[str, float],
        *,
        acquired: pd.Timestamp,
        source: str = "purchase",
    ) -> float:
        """
        Buy into taxable buckets at today's prices. Every dollar adds basis.

        `real_estate` in `amounts` goes to the real-estate bucket with no basis
        tracking. BTC purchases open a new lot when lots are tracked.
        """
        invested = 0.0
        for asset, amount in amounts.items():
            if amount <= 0:
                continue
            invested += amount
            if asset == "real_estate":
                self.portfolio.real_estate += amount
                continue
            self.portfolio.taxable.add(asset, amount)
            self.taxable_basis += amount
            if asset == "btc" and self.use_lots and self.btc_price > 0:
                quantity = amount / self.btc_price
                self.btc_lots.append(TaxLot(
                    lot_id=self.next_lot_id(source, acquired),
                    ticker=BTC_TICKER,
                    quantity=quantity,
                    remaining_quantity=quantity,
                    price_per_unit=self.btc_price,
                    acquired=pd.Timestamp(acquired),
                    source=source,
                ))
        return invested

    def reconcile_btc_lots(self) -> None:
        """Drop the lot pool once taxable BTC has been swept or sold to zero."""
        if self.portfolio.taxable.btc <= 0 and self.btc_lots:
            self.btc_lots.clear()

    def dividend_income(self) -> Tuple[float, float]:
        """
        (qualified, non_qualified) dividends for the year.

        Only taxable and real-estate holdings pay taxable dividends; rental
        yield on real estate is non-qualified. Each group's yield is the
        value-weighted yield of its tracked holdings applied to the live bucket.
        """
        weights: Dict[Tuple[str, str], Tuple[float, float, float]] = {}
        for h in self.holdings:
            if h.treatment not in ("taxable", "real_estate") or h.value <= 0:
                continue
            total, qualified, non_qualified = weights.get(h.group, (0.0, 0.0, 0.0))
            income = h.value * h.dividend_yield / 100.0
            is_qualified = h.dividend_qualified and h.treatment != "real_estate"
            weights[h.group] = (
                total + h.value,
                qualified + (income if is_qualified else 0.0),
                non_qualified + (0.0 if is_qualified else income),
            )

        qualified_total = 0.0
        non_qualified_total = 0.0
        for (treatment, category), (total, qualified, non_qualified) in weights.items():
            if treatment == "real_estate":
                live = self.portfolio.real_estate
            else:
                live = self.portfolio.taxable.get(category)
            scale = safe_ratio(live, total)
            qualified_total += qualified * scale
            non_qualified_total += non_qualified * scale
        return qualified_total, non_qualified_total

    def zero_all(self) -> None:
        self.portfolio.zero_all()
        self.taxable_basis = 0.0
        self.btc_lots.clear()
        self.roth_contribution_basis = 0.0


def weighted_rate(
    holdings: List[TrackedHolding],
    treatment: str,
    category: str,
    rate_for,
    fallback: float,
) -> float:
    """Value-weighted growth rate of the tracked holdings in one bucket."""
    total = 0.0
    weighted = 0.0
    for h in holdings:
        if h.treatment != treatment or h.category != category or h.value <= 0:
            continue
        total += h.value
        weighted += h.value * rate_for(h)
    if total <= 0:
        return fallback
    return weighted / total


def initial_lot_pool(lots, *, taxable_btc_quantity: float, as_of_date: pd.Timestamp) -> List[TaxLot]:
    """
    Running BTC lot pool from snapshot lots.

    Lots with no date are treated as bought on the as-of date. A pool that
    claims more coins than the taxable holdings is scaled down pro rata so
    quantities agree.
    """
    pool: List[TaxLot] = []
    for lot in lots:
        if (lot.ticker or "").upper() != BTC_TICKER or lot.available < LOT_DUST_QUANTITY:
            continue
        acquired = pd.Timestamp(lot.date) if lot.date is not None else pd.Timestamp(as_of_date)
        pool.append(TaxLot(
            lot_id=str(lot.id),
            ticker=BTC_TICKER,
            quantity=lot.quantity,
            remaining_quantity=lot.available,
            price_per_unit=lot.unit_cost,
            acquired=acquired,
            source=lot.source or "purchase",
            loan_id=str(lot.loan_id) if lot.loan_id is not None else None,
        ))

    total = available_quantity(pool, BTC_TICKER)
    if total > taxable_btc_quantity + LOT_DUST_QUANTITY and total > 0:
        logger.warning(
            "Tax lots hold %.8f BTC but taxable holdings hold %.8f; scaling lots down",
            total,
            taxable_btc_quantity,
        )
        share = taxable_btc_quantity / total
        for lot in pool:
            lot.remaining_quantity *= share
        pool = [lot for lot in pool if lot.remaining_quantity >= LOT_DUST_QUANTITY]
    return pool


def pool_for_loan(pool: List[TaxLot], loan_key: str, loan_id: Optional[str]) -> List[TaxLot]:
    """Pull the lots tagged with a loan's id out of the liquid pool."""
    if loan_id is None:
        return []
    tagged = [lot for lot in pool if lot.loan_id in (loan_id, loan_key)]
    if tagged:
        pool[:] = [lot for lot in pool if lot.loan_id not in (loan_id, loan_key)]
    return tagged
