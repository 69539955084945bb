"""
Test doubles and data helpers.
"""

import threading
from contextlib import contextmanager
from decimal import Decimal

from bson import Decimal128, ObjectId

from store import MongoStore

TRANSACTIONAL_COLLECTIONS = ("product", "order")


class InMemoryStore(MongoStore):
    """MongoStore over mongomock, which has no sessions.

    A transaction holds one lock and restores a snapshot of the touched
    collections if the block raises, which gives serializable all-or-nothing
    behaviour. Reads take the same lock so they never see a half-restored
    collection.
    """

    def __init__(self, database, **kwargs):
        super().__init__(database, **kwargs)
        self.lock = threading.RLock()

    @contextmanager
    def transaction(self):
        with self.lock:
            snapshot = {name: list(self.db[name].find()) for name in TRANSACTIONAL_COLLECTIONS}
            try:
                yield None
            except BaseException:
                for name, docs in snapshot.items():
                    self.db[name].delete_many({})
                    if docs:
                        self.db[name].insert_many(docs)
                raise

    def get_product(self, product_id, session=None):
        with self.lock:
            return super().get_product(product_id, session=session)

    def next_order_number(self, now=None):
        with self.lock:
            return super().next_order_number(now)

    def get_order(self, order_id):
        with self.lock:
            return super().get_order(order_id)


def add_product(database, name="Widget", price="10.00", stock=5, category="General") -> str:
    result = database["product"].insert_one({
        "name": name,
        "price": Decimal128(Decimal(price)),
        "stock": stock,
        "category": category,
    })
    return str(result.inserted_id)


def stock_of(database, product_id: str) -> int:
    return database["product"].find_one({"_id": ObjectId(product_id)})["stock"]
