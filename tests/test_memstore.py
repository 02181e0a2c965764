"""Tests for the in-memory document store."""
import pytest

from memstore import MemoryStore, apply_update, matches


def test_matches_operators():
    doc = {"stock": 3, "status": "pending", "payment_details": {"payment_id": None}}

    assert matches(doc, {"stock": {"$gte": 3}})
    assert not matches(doc, {"stock": {"$gt": 3}})
    assert matches(doc, {"status": {"$in": ["pending", "completed"]}})
    assert matches(doc, {"status": {"$nin": ["cancelled"]}})
    assert matches(doc, {"payment_details.payment_id": None})
    assert matches(doc, {"missing": None})
    assert matches(doc, {"missing": {"$exists": False}})
    assert not matches(doc, {"missing": {"$gte": 0}})
    assert not matches(doc, {"missing": {"$ne": None}})


def test_unsupported_operator_raises():
    with pytest.raises(ValueError):
        matches({"a": 1}, {"a": {"$regex": "x"}})


def test_apply_update_dotted_paths():
    doc = {"stock": 2, "payment_details": {"gateway_order_id": "g1"}}
    apply_update(doc, {"$inc": {"stock": -1, "views": 1}, "$set": {"payment_details.payment_id": "p1"}})

    assert doc["stock"] == 1
    assert doc["views"] == 1
    assert doc["payment_details"] == {"gateway_order_id": "g1", "payment_id": "p1"}

    apply_update(doc, {"$unset": {"stock": ""}})
    assert "stock" not in doc


def test_upsert_uses_filter_and_set_on_insert():
    store = MemoryStore()
    store.update_one("stats", {"_id": "overall"}, {"$inc": {"n": 1}, "$setOnInsert": {"first": True}}, upsert=True)
    store.update_one("stats", {"_id": "overall"}, {"$inc": {"n": 1}, "$setOnInsert": {"first": False}}, upsert=True)

    assert store.find_one("stats", {"_id": "overall"}) == {"_id": "overall", "n": 2, "first": True}


def test_find_sort_skip_limit():
    store = MemoryStore()
    for n in (3, 1, 2, 5, 4):
        store.insert_one("nums", {"n": n})

    assert [d["n"] for d in store.find("nums", {}, sort=[("n", -1)])] == [5, 4, 3, 2, 1]
    assert [d["n"] for d in store.find("nums", {}, sort=[("n", 1)], skip=1, limit=2)] == [2, 3]


def test_returned_documents_are_copies():
    store = MemoryStore()
    doc_id = store.insert_one("things", {"tags": ["a"]})
    store.find_one("things", {"_id": doc_id})["tags"].append("b")
    assert store.find_one("things", {"_id": doc_id})["tags"] == ["a"]


def test_failed_transaction_rolls_back():
    store = MemoryStore()
    store.insert_one("product", {"_id": "p1", "stock": 5})

    def txn(session):
        session.update_one("product", {"_id": "p1"}, {"$inc": {"stock": -2}})
        session.insert_one("order", {"product_id": "p1"})
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        store.run_transaction(txn)

    assert store.find_one("product", {"_id": "p1"})["stock"] == 5
    assert store.find("order", {}) == []
    assert store.collection_names() == ["product"]


def test_transaction_returns_callback_value():
    store = MemoryStore()
    assert store.run_transaction(lambda s: s.insert_one("order", {"_id": "o1"})) == "o1"
    assert store.delete_many("order", {}) == 1
