import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from bson import Decimal128, ObjectId
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import create_document, db, utcnow
from errors import SettlementError
from pricing import ZERO, money
from schemas import DEFAULT_CATEGORY, CheckoutIn, Order, ProductIn, ProductUpdate, StoreSettings
from settlement import SettlementEngine
from store import MongoStore, dec, encode, product_from_doc

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        MongoStore(db).ensure_indexes()
    yield


app = FastAPI(title="Store POS API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# Helpers
# -----------------------------

def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def serialize(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return float(value.to_decimal())
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value


def parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field} date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def get_store(database=Depends(get_db)) -> MongoStore:
    return MongoStore(database)


def get_cashier(x_cashier: Optional[str] = Header(None)) -> str:
    # Authentication happens upstream; the cashier id is trusted as given
    if not x_cashier:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_cashier


@app.exception_handler(SettlementError)
async def settlement_error_handler(request, exc: SettlementError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# -----------------------------
# Root & health
# -----------------------------
@app.get("/")
def read_root():
    return {"message": "Store POS Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    return response


# -----------------------------
# Catalog Endpoints
# -----------------------------
def product_out(doc: dict) -> dict:
    return serialize(product_from_doc(doc).model_dump())


@app.get("/api/products")
def list_products(category: Optional[str] = None, database=Depends(get_db)):
    filter_q = {"category": category} if category else {}
    products = database["product"].find(filter_q).sort("name", 1)
    return [product_out(p) for p in products]


@app.get("/api/products/search")
def search_products(q: Optional[str] = None, database=Depends(get_db)):
    if not q:
        return []
    pattern = {"$regex": re.escape(q), "$options": "i"}
    products = database["product"].find({"$or": [{"name": pattern}, {"category": pattern}]}).limit(10)
    return [product_out(p) for p in products]


@app.get("/api/categories")
def list_categories(database=Depends(get_db)):
    return sorted(c for c in database["product"].distinct("category") if c)


@app.post("/api/products", status_code=201)
def create_product(payload: ProductIn, database=Depends(get_db)):
    doc = payload.model_dump()
    doc["category"] = doc.get("category") or DEFAULT_CATEGORY
    new_id = create_document("product", encode(doc), database=database)
    return product_out(database["product"].find_one({"_id": ObjectId(new_id)}))


@app.patch("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, database=Depends(get_db)):
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    updates["updated_at"] = utcnow()
    result = database["product"].update_one({"_id": oid(product_id)}, {"$set": encode(updates)})
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_out(database["product"].find_one({"_id": oid(product_id)}))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, database=Depends(get_db)):
    result = database["product"].delete_one({"_id": oid(product_id)})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


# -----------------------------
# Settings Endpoints
# -----------------------------
@app.get("/api/settings")
def get_settings(store: MongoStore = Depends(get_store)):
    return serialize(store.get_settings().model_dump())


@app.post("/api/settings")
def save_settings(payload: StoreSettings, store: MongoStore = Depends(get_store)):
    return serialize(store.save_settings(payload).model_dump())


# -----------------------------
# Order Endpoints
# -----------------------------
@app.post("/api/orders/complete", status_code=201)
def complete_order(payload: CheckoutIn, cashier: str = Depends(get_cashier), store: MongoStore = Depends(get_store)):
    order = SettlementEngine(store).settle(
        payload.cart_items,
        discount=payload.discount,
        payment_method=payload.payment_method,
        amount_tendered=payload.amount_paid,
        cashier=cashier,
    )
    return {"success": True, "order": serialize(order.model_dump())}


@app.get("/api/orders")
def list_orders(limit: int = Query(50, ge=1, le=500), start: Optional[str] = None, end: Optional[str] = None,
                cashier: str = Depends(get_cashier), store: MongoStore = Depends(get_store)):
    orders = store.list_orders(cashier=cashier, start=parse_date(start, "start"), end=parse_date(end, "end"), limit=limit)
    return [serialize(o.model_dump()) for o in orders]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, cashier: str = Depends(get_cashier), store: MongoStore = Depends(get_store)):
    order = store.get_order(order_id)
    # Another cashier's order is reported as missing
    if not order or order.cashier != cashier:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize(order.model_dump())


def build_receipt(order: Order, settings: StoreSettings) -> dict:
    cur = settings.currency

    def fmt(amount) -> str:
        return f"{cur}{money(amount)}"

    return {
        "store_name": settings.store_name,
        "address": settings.address,
        "phone": settings.phone,
        "order_number": order.order_number,
        "date": order.created_at.isoformat(),
        "cashier": order.cashier,
        "payment_method": order.payment_method.value,
        "items": [
            {"name": it.name, "quantity": it.quantity, "price": fmt(it.price), "line_total": fmt(it.line_total)}
            for it in order.items
        ],
        "subtotal": fmt(order.subtotal),
        "discount": fmt(order.discount),
        "tax_rate": f"{order.tax_rate.normalize():f}%",
        "tax": fmt(order.tax),
        "total": fmt(order.total_amount),
        "amount_paid": fmt(order.amount_paid),
        "change": fmt(order.change),
    }


@app.get("/api/receipt/{order_number}")
def get_receipt(order_number: str, cashier: str = Depends(get_cashier), store: MongoStore = Depends(get_store)):
    order = store.get_order_by_number(order_number)
    if not order or order.cashier != cashier:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return build_receipt(order, store.get_settings())


# -----------------------------
# Stats Endpoints
# -----------------------------
@app.get("/api/dashboard/stats")
def dashboard_stats(database=Depends(get_db), store: MongoStore = Depends(get_store)):
    totals = list(database["order"].aggregate([
        {"$group": {"_id": None, "revenue": {"$sum": "$total_amount"}, "count": {"$sum": 1}}},
    ]))
    total_revenue = dec(totals[0]["revenue"]) if totals else ZERO
    total_orders = totals[0]["count"] if totals else 0

    pipeline = [
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product_id",
            "quantity": {"$sum": "$items.quantity"},
            "revenue": {"$sum": "$items.line_total"},
            "name": {"$last": "$items.name"},
        }},
        {"$sort": {"quantity": -1}},
        {"$limit": 5},
    ]
    agg = list(database["order"].aggregate(pipeline))

    # Fetch current product names
    ids = [x["_id"] for x in agg]
    names = {doc["_id"]: doc.get("name") for doc in database["product"].find({"_id": {"$in": ids}})}
    top_products = [
        {
            "id": str(x["_id"]),
            "name": names.get(x["_id"]) or x.get("name") or "Unknown Product",
            "quantity": x["quantity"],
            "revenue": float(dec(x["revenue"])),
        }
        for x in agg
    ]

    recent_orders = store.list_orders(limit=5)
    return {
        "stats": {
            "total_revenue": float(total_revenue),
            "total_orders": total_orders,
            "average_order_value": float(total_revenue / total_orders) if total_orders else 0.0,
        },
        "top_products": top_products,
        "recent_orders": [serialize(o.model_dump()) for o in recent_orders],
    }


# -----------------------------
# Seed
# -----------------------------
SAMPLE_PRODUCTS = [
    {"name": "Laptop", "price": "999.99", "description": "High-performance laptop", "stock": 15, "category": "Electronics"},
    {"name": "Wireless Mouse", "price": "29.99", "description": "Ergonomic wireless mouse", "stock": 50, "category": "Electronics"},
    {"name": "Mechanical Keyboard", "price": "89.99", "description": "RGB mechanical keyboard", "stock": 30, "category": "Electronics"},
    {"name": "Notebook", "price": "4.99", "description": "Spiral notebook 100 pages", "stock": 100, "category": "Office"},
    {"name": "Pen Set", "price": "12.99", "description": "Set of 10 ballpoint pens", "stock": 75, "category": "Office"},
    {"name": "Coffee Beans", "price": "14.99", "description": "Premium arabica coffee 250g", "stock": 60, "category": "Food"},
    {"name": "Energy Drink", "price": "2.99", "description": "Sugar-free energy drink", "stock": 120, "category": "Beverages"},
    {"name": "Phone Stand", "price": "15.99", "description": "Adjustable phone stand", "stock": 55, "category": "Accessories"},
]


@app.post("/api/seed")
def seed(database=Depends(get_db), store: MongoStore = Depends(get_store)):
    inserted = 0
    if database["product"].count_documents({}) == 0:
        for p in SAMPLE_PRODUCTS:
            create_document("product", encode({**p, "price": Decimal(p["price"])}), database=database)
            inserted += 1
    if database["settings"].count_documents({}) == 0:
        store.save_settings(StoreSettings())
    logger.info("Seeded %d products", inserted)
    return {"inserted": inserted}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
