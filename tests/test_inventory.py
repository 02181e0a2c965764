"""Tests for stock reservation and release."""
import threading

import pytest

from database import PRODUCTS
from errors import InsufficientStock


def _stock(store, product_id):
    return store.find_one(PRODUCTS, {"_id": product_id}).get("stock")


def test_reserve_decrements_stock(store, ledger):
    store.run_transaction(lambda s: ledger.reserve(s, [("RING001", 2)]))
    assert _stock(store, "RING001") == 3


def test_reserve_merges_lines_for_same_product(store, ledger):
    with pytest.raises(InsufficientStock) as exc:
        store.run_transaction(lambda s: ledger.reserve(s, [("RING001", 3), ("RING001", 3)]))

    assert exc.value.available == 5
    assert exc.value.requested == 6
    assert _stock(store, "RING001") == 5


def test_failed_reservation_leaves_no_partial_decrement(store, ledger):
    with pytest.raises(InsufficientStock) as exc:
        store.run_transaction(lambda s: ledger.reserve(s, [("RING001", 2), ("CHAIN01", 2)]))

    assert exc.value.product_id == "CHAIN01"
    assert _stock(store, "RING001") == 5
    assert _stock(store, "CHAIN01") == 1


def test_untracked_stock_is_not_limited(store, ledger):
    store.run_transaction(lambda s: ledger.reserve(s, [("ART001", 50)]))
    assert _stock(store, "ART001") is None


def test_missing_product_reports_zero_available(store, ledger):
    with pytest.raises(InsufficientStock) as exc:
        store.run_transaction(lambda s: ledger.reserve(s, [("GHOST", 1)]))
    assert exc.value.available == 0


def test_non_positive_quantity_rejected(store, ledger):
    with pytest.raises(ValueError):
        store.run_transaction(lambda s: ledger.reserve(s, [("RING001", 0)]))


def test_release_restores_stock(store, ledger):
    store.run_transaction(lambda s: ledger.reserve(s, [("RING001", 3)]))
    store.run_transaction(lambda s: ledger.release(s, [("RING001", 3)]))
    assert _stock(store, "RING001") == 5


def test_release_skips_deleted_and_untracked_products(store, ledger):
    store.run_transaction(lambda s: ledger.release(s, [("GHOST", 1), ("ART001", 2)]))
    assert store.find_one(PRODUCTS, {"_id": "GHOST"}) is None
    assert _stock(store, "ART001") is None


def test_concurrent_reservations_never_oversell(store, ledger):
    barrier = threading.Barrier(8)
    results = []

    def worker():
        barrier.wait()
        try:
            store.run_transaction(lambda s: ledger.reserve(s, [("RING001", 1)]))
            results.append("ok")
        except InsufficientStock:
            results.append("short")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 5
    assert results.count("short") == 3
    assert _stock(store, "RING001") == 0
