import pandas as pd
import pytest

from lots.selector import (
    TaxLot,
    available_quantity,
    carve_out,
    merge_lots,
    normalize_method,
    proportional_selection,
    select_lots,
    weighted_average_cost,
)

SALE = pd.Timestamp("2026-12-31")


def _pool():
    return [
        TaxLot("a", "BTC", 1.0, 1.0, 10_000.0, pd.Timestamp("2020-01-15")),
        TaxLot("b", "BTC", 1.0, 1.0, 30_000.0, pd.Timestamp("2021-06-01")),
        TaxLot("c", "BTC", 1.0, 1.0, 20_000.0, pd.Timestamp("2026-03-01")),
    ]


@pytest.mark.parametrize("method, first", [("HIFO", "b"), ("FIFO", "a"), ("LIFO", "c")])
def test_method_picks_expected_first_lot(method, first):
    selection = select_lots(_pool(), "BTC", 1.0, method, sale_date=SALE)
    assert [c.lot_id for c in selection.consumed] == [first]
    assert selection.total_quantity == pytest.approx(1.0)


def test_quantity_is_conserved_over_many_sales():
    pool = _pool()
    sold = 0.0
    for qty in (0.3, 0.7, 0.05, 1.1, 0.2):
        selection = select_lots(pool, "BTC", qty, "FIFO", sale_date=SALE)
        sold += selection.total_quantity
        assert all(lot.remaining_quantity >= 0 for lot in pool)
    assert sold == pytest.approx(2.35, abs=1e-8)
    assert available_quantity(pool, "BTC") == pytest.approx(3.0 - 2.35, abs=1e-8)


def test_gains_split_by_holding_period():
    selection = select_lots(_pool(), "BTC", 3.0, "FIFO", sale_date=SALE)
    short, long = selection.realized_gains(50_000.0)
    assert short == pytest.approx(30_000.0)          # lot c, bought 2026
    assert long == pytest.approx(40_000.0 + 20_000.0)  # lots a and b


def test_oversell_leaves_remainder_and_empties_pool():
    pool = _pool()
    selection = select_lots(pool, "BTC", 5.0, "HIFO", sale_date=SALE)
    assert selection.total_quantity == pytest.approx(3.0)
    assert selection.remaining_to_sell == pytest.approx(2.0)
    assert pool == []


def test_specific_id_follows_given_order():
    pool = _pool()
    selection = select_lots(pool, "BTC", 1.5, "SPECIFIC_ID", sale_date=SALE, specific_ids=["c", "a"])
    assert [(c.lot_id, round(c.quantity, 8)) for c in selection.consumed] == [("c", 1.0), ("a", 0.5)]
    assert {lot.lot_id for lot in pool} == {"a", "b"}


def test_specific_id_rejects_unknown_lot():
    with pytest.raises(ValueError):
        select_lots(_pool(), "BTC", 1.0, "SPECIFIC_ID", sale_date=SALE, specific_ids=["zzz"])


def test_other_tickers_untouched():
    pool = _pool() + [TaxLot("e", "ETH", 5.0, 5.0, 1_000.0, pd.Timestamp("2022-01-01"))]
    select_lots(pool, "BTC", 3.0, "HIFO", sale_date=SALE)
    assert [lot.lot_id for lot in pool] == ["e"]


def test_normalize_method():
    assert normalize_method("fifo") == "FIFO"
    assert normalize_method("specific-id") == "SPECIFIC_ID"
    assert normalize_method(None) == "HIFO"
    with pytest.raises(ValueError):
        normalize_method("average")


def test_proportional_fallback_uses_average_basis():
    selection = proportional_selection(0.5, 30_000.0, 1.5, sale_date=SALE)
    assert selection.used_fallback
    assert selection.total_cost_basis == pytest.approx(10_000.0)
    short, long = selection.realized_gains(100_000.0)
    assert short == 0.0
    assert long == pytest.approx(40_000.0)


def test_carve_out_then_merge_restores_pool():
    pool = _pool()
    slices = carve_out(pool, "BTC", 1.5)
    assert available_quantity(slices, "BTC") == pytest.approx(1.5)
    assert available_quantity(pool, "BTC") == pytest.approx(1.5)
    assert weighted_average_cost(slices, "BTC") == pytest.approx(20_000.0)

    merge_lots(pool, slices)
    assert {lot.lot_id: round(lot.remaining_quantity, 8) for lot in pool} == {"a": 1.0, "b": 1.0, "c": 1.0}
