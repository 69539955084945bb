"""
MongoDB-backed catalog, pricing policy and order ledger.

The settlement engine only talks to MongoStore; it never caches what it
reads, so every checkout sees the current price and stock.
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

from bson import Decimal128, ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from database import TRANSACTION_COMMIT_TIMEOUT_MS, utcnow
from pricing import ZERO, to_decimal
from schemas import DEFAULT_CATEGORY, Order, OrderItem, Product, StoreSettings

SETTINGS_KEY = "store"
ORDER_COUNTER_KEY = "order"


# -----------------------------
# Conversions
# -----------------------------

def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def dec(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return to_decimal(value)


def encode(value):
    """Turn Decimals, enums and id strings into what MongoDB should store."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(v) for v in value]
    return value


def product_from_doc(doc: dict) -> Product:
    return Product(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        category=doc.get("category") or DEFAULT_CATEGORY,
        price=dec(doc.get("price")),
        stock=int(doc.get("stock", 0)),
        description=doc.get("description"),
        image_url=doc.get("image_url"),
    )


def settings_from_doc(doc: Optional[dict]) -> StoreSettings:
    if not doc:
        return StoreSettings()
    fields = {k: doc[k] for k in StoreSettings.model_fields if doc.get(k) is not None}
    if "tax_rate" in fields:
        fields["tax_rate"] = dec(fields["tax_rate"])
    return StoreSettings(**fields)


class MongoStore:

    def __init__(self, database, commit_timeout_ms: int = TRANSACTION_COMMIT_TIMEOUT_MS):
        self.db = database
        self.commit_timeout_ms = commit_timeout_ms

    def ensure_indexes(self):
        self.db["order"].create_index("order_number", unique=True)
        self.db["order"].create_index([("cashier", ASCENDING), ("created_at", DESCENDING)])
        self.db["product"].create_index("category")

    @contextmanager
    def transaction(self):
        """Run the block as one MongoDB multi-document transaction.

        Commits when the block exits normally and aborts when it raises.
        """
        with self.db.client.start_session() as session:
            with session.start_transaction(
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                max_commit_time_ms=self.commit_timeout_ms,
            ):
                yield session

    # -----------------------------
    # Catalog
    # -----------------------------
    def get_product(self, product_id: str, session=None) -> Optional[Product]:
        _id = to_object_id(product_id)
        if _id is None:
            return None
        doc = self.db["product"].find_one({"_id": _id}, session=session)
        return product_from_doc(doc) if doc else None

    def decrement_stock(self, product_id: str, quantity: int, session=None) -> bool:
        """Take ``quantity`` units off the shelf only if that many remain."""
        result = self.db["product"].update_one(
            {"_id": ObjectId(product_id), "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            session=session,
        )
        return result.matched_count == 1

    # -----------------------------
    # Pricing policy
    # -----------------------------
    def get_settings(self) -> StoreSettings:
        return settings_from_doc(self.db["settings"].find_one({"_id": SETTINGS_KEY}))

    def get_active_tax_rate(self) -> Decimal:
        return self.get_settings().tax_rate

    def save_settings(self, settings: StoreSettings) -> StoreSettings:
        data = encode(settings.model_dump())
        data["updated_at"] = utcnow()
        self.db["settings"].update_one({"_id": SETTINGS_KEY}, {"$set": data}, upsert=True)
        return self.get_settings()

    # -----------------------------
    # Order ledger
    # -----------------------------
    def next_order_number(self, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        counter = self.db["counters"].find_one_and_update(
            {"_id": ORDER_COUNTER_KEY},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return f"ORD-{now:%Y%m%d}-{counter['seq']:05d}"

    def create_order(self, fields: dict, items: List[dict], session=None) -> str:
        doc = encode({**fields, "items": items})
        for item in doc["items"]:
            item["product_id"] = ObjectId(item["product_id"])
        result = self.db["order"].insert_one(doc, session=session)
        return str(result.inserted_id)

    def get_order(self, order_id: str) -> Optional[Order]:
        _id = to_object_id(order_id)
        if _id is None:
            return None
        doc = self.db["order"].find_one({"_id": _id})
        return self.orders_from_docs([doc])[0] if doc else None

    def get_order_by_number(self, order_number: str) -> Optional[Order]:
        doc = self.db["order"].find_one({"order_number": order_number})
        return self.orders_from_docs([doc])[0] if doc else None

    def list_orders(self, cashier: Optional[str] = None, start: Optional[datetime] = None,
                    end: Optional[datetime] = None, limit: int = 50) -> List[Order]:
        filt = {}
        if cashier:
            filt["cashier"] = cashier
        if start or end:
            dr = {}
            if start:
                dr["$gte"] = start
            if end:
                dr["$lte"] = end
            filt["created_at"] = dr
        docs = list(self.db["order"].find(filt).sort("created_at", -1).limit(limit))
        return self.orders_from_docs(docs)

    def orders_from_docs(self, docs: Iterable[dict]) -> List[Order]:
        docs = list(docs)
        # Current names win; the snapshot covers products deleted since
        ids = {it["product_id"] for d in docs for it in d.get("items", [])}
        names = {}
        if ids:
            names = {p["_id"]: p.get("name") for p in self.db["product"].find({"_id": {"$in": list(ids)}}, {"name": 1})}

        orders = []
        for d in docs:
            items = [
                OrderItem(
                    product_id=str(it["product_id"]),
                    name=names.get(it["product_id"]) or it.get("name"),
                    price=dec(it["price"]),
                    quantity=it["quantity"],
                    line_total=dec(it.get("line_total")),
                )
                for it in d.get("items", [])
            ]
            orders.append(Order(
                id=str(d["_id"]),
                order_number=d["order_number"],
                items=items,
                subtotal=dec(d.get("subtotal")),
                discount=dec(d.get("discount")),
                tax_rate=dec(d.get("tax_rate")),
                tax=dec(d.get("tax")),
                total_amount=dec(d.get("total_amount")),
                payment_method=d["payment_method"],
                amount_paid=dec(d.get("amount_paid")),
                change=dec(d.get("change")),
                cashier=d["cashier"],
                created_at=d["created_at"],
            ))
        return orders
