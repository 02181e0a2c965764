"""In-memory `DocumentStore` with the same transactional semantics as MongoDB."""
import copy
import logging
import threading
from typing import Any, Dict, List

from bson import ObjectId

from database import DocumentStore, Session

logger = logging.getLogger(__name__)

_MISSING = object()


def _get(doc: dict, path: str):
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set(doc: dict, path: str, value) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _unset(doc: dict, path: str) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.get(part)
        if not isinstance(doc, dict):
            return
    doc.pop(parts[-1], None)


def _present(v):
    return v is not _MISSING and v is not None


_OPERATORS = {
    "$gte": lambda v, a: _present(v) and v >= a,
    "$gt": lambda v, a: _present(v) and v > a,
    "$lte": lambda v, a: _present(v) and v <= a,
    "$lt": lambda v, a: _present(v) and v < a,
    "$ne": lambda v, a: (None if v is _MISSING else v) != a,
    "$in": lambda v, a: (None if v is _MISSING else v) in a,
    "$nin": lambda v, a: (None if v is _MISSING else v) not in a,
    "$exists": lambda v, a: (v is not _MISSING) == bool(a),
}


def _is_operator_dict(cond) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(k.startswith("$") for k in cond)


def matches(doc: dict, filter: dict) -> bool:
    for key, cond in (filter or {}).items():
        value = _get(doc, key)
        if _is_operator_dict(cond):
            for op, arg in cond.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Unsupported query operator {op}")
                if not _OPERATORS[op](value, arg):
                    return False
        elif value is _MISSING:
            if cond is not None:
                return False
        elif value != cond:
            return False
    return True


def apply_update(doc: dict, update: dict, inserting: bool = False) -> None:
    for op in update:
        if op not in ("$set", "$inc", "$unset", "$setOnInsert"):
            raise ValueError(f"Unsupported update operator {op}")
    for path, value in update.get("$set", {}).items():
        _set(doc, path, copy.deepcopy(value))
    for path, amount in update.get("$inc", {}).items():
        current = _get(doc, path)
        _set(doc, path, amount if current is _MISSING or current is None else current + amount)
    for path in update.get("$unset", {}):
        _unset(doc, path)
    if inserting:
        for path, value in update.get("$setOnInsert", {}).items():
            _set(doc, path, copy.deepcopy(value))


def _sort_key(field: str):
    def key(doc):
        v = _get(doc, field)
        present = _present(v)
        return (present, v if present else 0)
    return key


class MemorySession(Session):
    def __init__(self, store: "MemoryStore"):
        self._store = store

    def _col(self, name: str) -> Dict[str, dict]:
        return self._store._collections.setdefault(name, {})

    def find_one(self, collection, filter):
        with self._store._lock:
            for doc in self._col(collection).values():
                if matches(doc, filter):
                    return copy.deepcopy(doc)
        return None

    def find(self, collection, filter=None, sort=None, skip=0, limit=None):
        with self._store._lock:
            docs = [copy.deepcopy(d) for d in self._col(collection).values() if matches(d, filter)]
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=_sort_key(field), reverse=direction < 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return docs

    def insert_one(self, collection, doc):
        doc = copy.deepcopy(doc)
        doc_id = str(doc.get("_id") or ObjectId())
        doc["_id"] = doc_id
        with self._store._lock:
            col = self._col(collection)
            if doc_id in col:
                raise ValueError(f"Duplicate _id {doc_id} in {collection}")
            col[doc_id] = doc
        return doc_id

    def update_one(self, collection, filter, update, upsert=False):
        with self._store._lock:
            for doc in self._col(collection).values():
                if matches(doc, filter):
                    apply_update(doc, update)
                    return 1
            if not upsert:
                return 0
            new_doc = {k: copy.deepcopy(v) for k, v in filter.items() if not _is_operator_dict(v)}
            apply_update(new_doc, update, inserting=True)
            self.insert_one(collection, new_doc)
            return 1

    def delete_one(self, collection, filter):
        with self._store._lock:
            col = self._col(collection)
            for doc_id, doc in list(col.items()):
                if matches(doc, filter):
                    del col[doc_id]
                    return 1
        return 0

    def delete_many(self, collection, filter):
        with self._store._lock:
            col = self._col(collection)
            doomed = [doc_id for doc_id, doc in col.items() if matches(doc, filter)]
            for doc_id in doomed:
                del col[doc_id]
        return len(doomed)


class MemoryStore(MemorySession, DocumentStore):
    """
    Every transaction holds one re-entrant lock, so transactions are fully
    serialized. A failing transaction restores the snapshot taken on entry.
    """

    name = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.RLock()
        super().__init__(self)

    def run_transaction(self, fn):
        with self._lock:
            snapshot = copy.deepcopy(self._collections)
            try:
                return fn(MemorySession(self))
            except BaseException:
                self._collections = snapshot
                raise

    def collection_names(self) -> List[str]:
        with self._lock:
            return sorted(name for name, docs in self._collections.items() if docs)
