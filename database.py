"""
Transactional document store used by the checkout core.

The core talks to a `Session` (find / insert / conditional update / delete) and
wraps multi-document work in `DocumentStore.run_transaction`, which runs the
callback with serializable semantics and aborts everything it wrote if the
callback raises. `MongoStore` is the production backend; `memstore.MemoryStore`
has the same semantics for tests and local runs without a database.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from bson import ObjectId
from bson.codec_options import CodecOptions, TypeCodec, TypeRegistry
from bson.decimal128 import Decimal128
from pydantic import BaseModel
from pymongo import MongoClient, ReadPreference
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from errors import DatabaseUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

PRODUCTS = "product"
CART = "cart"
COUPONS = "coupon"
ORDERS = "order"
ADMIN_STATS = "admin_stats"
DAILY_STATS = "daily_stats"
FAVORITES = "favorite"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_str_id(doc: dict) -> dict:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


class Session(ABC):
    @abstractmethod
    def find_one(self, collection: str, filter: Filter) -> Optional[dict]: ...

    @abstractmethod
    def find(
        self,
        collection: str,
        filter: Optional[Filter] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[dict]: ...

    @abstractmethod
    def insert_one(self, collection: str, doc: dict) -> str: ...

    @abstractmethod
    def update_one(self, collection: str, filter: Filter, update: dict, upsert: bool = False) -> int:
        """Apply `$set` / `$inc` / `$unset` / `$setOnInsert` to the first match; returns the matched count."""

    @abstractmethod
    def delete_one(self, collection: str, filter: Filter) -> int: ...

    @abstractmethod
    def delete_many(self, collection: str, filter: Filter) -> int: ...


class DocumentStore(Session):
    name = "store"
    available = True

    @abstractmethod
    def run_transaction(self, fn: Callable[[Session], T]) -> T: ...

    @abstractmethod
    def collection_names(self) -> List[str]: ...


def create_document(session: Session, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict.setdefault("updated_at", now)
    return session.insert_one(collection_name, data_dict)


def get_documents(session: Session, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    return session.find(collection_name, filter_dict or {}, limit=limit)


# ----- MongoDB -----

class DecimalCodec(TypeCodec):
    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value):
        return Decimal128(value)

    def transform_bson(self, value):
        return value.to_decimal()


CODEC_OPTIONS = CodecOptions(type_registry=TypeRegistry([DecimalCodec()]), tz_aware=True, tzinfo=timezone.utc)


def _bson_id(value):
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _bson_filter(filter: Optional[Filter]) -> Filter:
    if not filter:
        return {}
    out = dict(filter)
    if "_id" in out:
        cond = out["_id"]
        if isinstance(cond, dict):
            out["_id"] = {
                op: [_bson_id(v) for v in arg] if isinstance(arg, (list, tuple)) else _bson_id(arg)
                for op, arg in cond.items()
            }
        else:
            out["_id"] = _bson_id(cond)
    return out


def _from_bson(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None and isinstance(doc.get("_id"), ObjectId):
        doc["_id"] = str(doc["_id"])
    return doc


class MongoSession(Session):
    def __init__(self, db, session=None):
        self.db = db
        self._session = session

    def _col(self, name: str):
        return self.db.get_collection(name, codec_options=CODEC_OPTIONS)

    def find_one(self, collection, filter):
        return _from_bson(self._col(collection).find_one(_bson_filter(filter), session=self._session))

    def find(self, collection, filter=None, sort=None, skip=0, limit=None):
        cursor = self._col(collection).find(_bson_filter(filter), session=self._session)
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [_from_bson(d) for d in cursor]

    def insert_one(self, collection, doc):
        doc = dict(doc)
        if "_id" in doc:
            doc["_id"] = _bson_id(doc["_id"])
        result = self._col(collection).insert_one(doc, session=self._session)
        return str(result.inserted_id)

    def update_one(self, collection, filter, update, upsert=False):
        result = self._col(collection).update_one(_bson_filter(filter), update, upsert=upsert, session=self._session)
        if result.upserted_id is not None:
            return 1
        return result.matched_count

    def delete_one(self, collection, filter):
        return self._col(collection).delete_one(_bson_filter(filter), session=self._session).deleted_count

    def delete_many(self, collection, filter):
        return self._col(collection).delete_many(_bson_filter(filter), session=self._session).deleted_count


class MongoStore(MongoSession, DocumentStore):
    """Multi-document transactions need a replica set or sharded cluster."""

    name = "mongodb"

    def __init__(self, client: MongoClient, database_name: str):
        super().__init__(client[database_name])
        self.client = client

    @classmethod
    def from_url(cls, url: str, database_name: str) -> "MongoStore":
        return cls(MongoClient(url, tz_aware=True), database_name)

    def run_transaction(self, fn):
        # with_transaction retries the callback on transient errors (write conflicts)
        with self.client.start_session() as s:
            return s.with_transaction(
                lambda s_: fn(MongoSession(self.db, s_)),
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                read_preference=ReadPreference.PRIMARY,
            )

    def collection_names(self):
        return self.db.list_collection_names()

    def ensure_indexes(self) -> None:
        self.db[COUPONS].create_index("code", unique=True)
        self.db[CART].create_index([("user_id", 1), ("product_id", 1), ("custom_size", 1)], unique=True)
        self.db[ORDERS].create_index([("user_id", 1), ("order_date", -1)])
        self.db[ORDERS].create_index("payment_details.gateway_order_id")
        self.db[FAVORITES].create_index([("user_id", 1), ("product_id", 1)], unique=True)
        logger.info("MongoDB indexes ensured on %s", self.db.name)


# ----- No database -----

class UnavailableStore(DocumentStore):
    """Stands in when no database is configured; every call fails with a 503."""

    name = "unavailable"
    available = False

    def _fail(self, *args, **kwargs):
        raise DatabaseUnavailable()

    find_one = find = insert_one = update_one = delete_one = delete_many = _fail
    run_transaction = collection_names = _fail
