"""
Database Schemas

Store POS schemas using Pydantic models.
Each Pydantic model that is persisted corresponds to a MongoDB collection
with the collection name equal to the lowercase class name, except for
StoreSettings which lives as a single document in "settings".
Money is carried as Decimal and stored as Decimal128.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_CATEGORY = "Uncategorized"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    QR = "QR"


class Product(BaseModel):
    """
    Catalog products
    Collection: "product"
    """
    id: Optional[str] = Field(None, description="Product ObjectId as string")
    name: str = Field(..., description="Product name")
    category: str = Field(DEFAULT_CATEGORY, description="Category e.g., Electronics, Food")
    price: Decimal = Field(..., ge=0, description="Current unit price")
    stock: int = Field(0, ge=0, description="Units in stock")
    description: Optional[str] = None
    image_url: Optional[str] = None


class ProductIn(BaseModel):
    name: str
    category: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    description: Optional[str] = None
    image_url: Optional[str] = None


class ProductUpdate(BaseModel):
    price: Optional[Decimal] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)


class StoreSettings(BaseModel):
    """
    Store-wide pricing policy and receipt header
    Collection: "settings" (one document, _id "store")
    """
    store_name: str = "Smart POS"
    address: str = "123 Store St"
    phone: str = ""
    tax_rate: Decimal = Field(Decimal("0"), ge=0, description="Tax rate in percent")
    currency: str = "$"


class CartLine(BaseModel):
    # price, name and stock sent by a client are dropped on purpose
    product_id: str = Field(..., description="Product ObjectId as string")
    quantity: int = Field(..., description="Requested quantity")


class CheckoutIn(BaseModel):
    cart_items: List[CartLine] = Field(default_factory=list)
    discount: Decimal = Field(Decimal("0"), description="Flat amount off the subtotal")
    payment_method: PaymentMethod = PaymentMethod.CASH
    amount_paid: Optional[Decimal] = Field(None, description="Cash tendered; ignored for CARD/QR")


class OrderItem(BaseModel):
    product_id: str
    name: Optional[str] = None
    price: Decimal = Field(..., description="Unit price frozen at time of sale")
    quantity: int = Field(..., ge=1)
    line_total: Decimal


class Order(BaseModel):
    """
    Settled orders
    Collection: "order"
    """
    id: str
    order_number: str
    items: List[OrderItem]
    subtotal: Decimal
    discount: Decimal
    tax_rate: Decimal
    tax: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    amount_paid: Decimal
    change: Decimal
    cashier: str
    created_at: datetime
