from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from bson import ObjectId

from helpers import add_product
from schemas import StoreSettings
from store import MongoStore


def test_transaction_runs_in_snapshot_session():
    database = MagicMock()
    store = MongoStore(database, commit_timeout_ms=1234)

    with store.transaction() as session:
        pass

    session_cm = database.client.start_session.return_value
    assert session is session_cm.__enter__.return_value
    session.start_transaction.assert_called_once()
    kwargs = session.start_transaction.call_args.kwargs
    assert kwargs["read_concern"].level == "snapshot"
    assert kwargs["write_concern"].document == {"w": "majority"}
    assert kwargs["max_commit_time_ms"] == 1234


def test_decrement_is_conditional_on_remaining_stock():
    database = MagicMock()
    database.__getitem__.return_value.update_one.return_value.matched_count = 0
    store = MongoStore(database)
    pid = str(ObjectId())
    session = object()

    assert store.decrement_stock(pid, 3, session=session) is False

    filt, update = database.__getitem__.return_value.update_one.call_args.args
    assert filt == {"_id": ObjectId(pid), "stock": {"$gte": 3}}
    assert update["$inc"] == {"stock": -3}
    assert database.__getitem__.return_value.update_one.call_args.kwargs["session"] is session


def test_decrement_against_mongomock(database):
    store = MongoStore(database)
    pid = add_product(database, stock=2)
    assert store.decrement_stock(pid, 2)
    assert not store.decrement_stock(pid, 1)
    assert store.get_product(pid).stock == 0


def test_get_product_converts_price(database):
    store = MongoStore(database)
    pid = add_product(database, "Tea", price="6.99")
    product = store.get_product(pid)
    assert product.price == Decimal("6.99")
    assert product.name == "Tea"
    assert store.get_product(str(ObjectId())) is None
    assert store.get_product("nope") is None


def test_missing_category_defaults(database):
    store = MongoStore(database)
    _id = database["product"].insert_one({"name": "Loose", "price": 1, "stock": 1}).inserted_id
    assert store.get_product(str(_id)).category == "Uncategorized"


def test_settings_default_then_upsert_single_document(database):
    store = MongoStore(database)
    assert store.get_active_tax_rate() == 0
    assert store.get_settings().store_name == "Smart POS"

    store.save_settings(StoreSettings(store_name="Corner Shop", tax_rate=Decimal("7.5")))
    store.save_settings(StoreSettings(store_name="Corner Shop", tax_rate=Decimal("8")))

    assert database["settings"].count_documents({}) == 1
    assert store.get_active_tax_rate() == Decimal("8")
    assert store.get_settings().store_name == "Corner Shop"


def test_order_numbers_follow_a_sequence(database):
    store = MongoStore(database)
    day = datetime(2026, 3, 7, tzinfo=timezone.utc)
    assert store.next_order_number(day) == "ORD-20260307-00001"
    assert store.next_order_number(day) == "ORD-20260307-00002"


def _order_fields(number, cashier="officer1"):
    return {
        "order_number": number,
        "subtotal": Decimal("4.00"),
        "discount": Decimal("0"),
        "tax_rate": Decimal("0"),
        "tax": Decimal("0"),
        "total_amount": Decimal("4.00"),
        "payment_method": "CARD",
        "amount_paid": Decimal("4.00"),
        "change": Decimal("0"),
        "cashier": cashier,
        "created_at": datetime.now(timezone.utc),
    }


def test_order_items_resolve_current_or_snapshot_names(database):
    store = MongoStore(database)
    kept = add_product(database, "Pencil")
    gone = add_product(database, "Eraser")
    items = [
        {"product_id": kept, "name": "Pencil", "price": Decimal("2.00"), "quantity": 1, "line_total": Decimal("2.00")},
        {"product_id": gone, "name": "Eraser", "price": Decimal("2.00"), "quantity": 1, "line_total": Decimal("2.00")},
    ]
    order_id = store.create_order(_order_fields("ORD-1"), items)

    database["product"].update_one({"_id": ObjectId(kept)}, {"$set": {"name": "HB Pencil"}})
    database["product"].delete_one({"_id": ObjectId(gone)})

    order = store.get_order(order_id)
    assert [it.name for it in order.items] == ["HB Pencil", "Eraser"]
    assert store.get_order_by_number("ORD-1").id == order_id


def test_list_orders_filters_by_cashier(database):
    store = MongoStore(database)
    pid = add_product(database)
    item = {"product_id": pid, "name": "Widget", "price": Decimal("4.00"), "quantity": 1, "line_total": Decimal("4.00")}
    store.create_order(_order_fields("ORD-A", "alice"), [item])
    store.create_order(_order_fields("ORD-B", "bob"), [item])

    orders = store.list_orders(cashier="alice")
    assert [o.order_number for o in orders] == ["ORD-A"]
    assert len(store.list_orders()) == 2
