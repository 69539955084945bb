"""
Checkout settlement

Turns a cart into a persisted, correctly priced order. Prices and stock are
always re-read from the catalog; whatever the client believes they are is
ignored. Either the order, its items and every stock decrement are
committed together, or nothing is.
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import utcnow
from errors import (
    ConflictError,
    InsufficientPaymentError,
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    SettlementError,
    ValidationError,
)
from pricing import ZERO, Number, compute_totals, is_sufficient_payment, to_decimal
from schemas import CartLine, Order, PaymentMethod, Product

logger = logging.getLogger(__name__)

PricedLine = Tuple[Product, int]


@contextmanager
def storage_errors(action: str):
    try:
        yield
    except SettlementError:
        raise
    except PyMongoError as exc:
        raise PersistenceError(f"Storage failure while {action}", cause=exc) from exc


def parse_cart(cart: Iterable) -> List[CartLine]:
    lines = []
    for raw in cart or []:
        try:
            line = raw if isinstance(raw, CartLine) else CartLine.model_validate(raw)
        except SchemaError as exc:
            raise ValidationError(f"Invalid cart line: {raw!r}") from exc
        if line.quantity < 1:
            raise ValidationError(f"Quantity must be at least 1 for product {line.product_id}")
        lines.append(line)
    if not lines:
        raise ValidationError("empty cart")
    return lines


class SettlementEngine:
    """Validates, prices and commits a checkout against a MongoStore."""

    def __init__(self, store):
        self.store = store

    def settle(self, cart, discount: Number = 0, payment_method=PaymentMethod.CASH,
               amount_tendered: Optional[Number] = None, cashier: Optional[str] = None) -> Order:
        try:
            order = self._settle(cart, discount, payment_method, amount_tendered, cashier)
        except SettlementError as exc:
            logger.warning("Settlement by %s rejected (%s): %s", cashier, exc.code, exc.message)
            raise
        logger.info("Order %s settled by %s: total=%s method=%s",
                    order.order_number, order.cashier, order.total_amount, order.payment_method.value)
        return order

    def _settle(self, cart, discount, payment_method, amount_tendered, cashier) -> Order:
        lines = parse_cart(cart)
        if not cashier:
            raise ValidationError("A cashier is required to settle an order")
        try:
            method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment method: {payment_method}") from exc
        discount = to_decimal(discount if discount is not None else 0)
        if discount < ZERO:
            raise ValidationError("Discount cannot be negative")
        if method is PaymentMethod.CASH:
            if amount_tendered is None:
                raise ValidationError("Amount tendered is required for cash payments")
            amount_tendered = to_decimal(amount_tendered)
            if amount_tendered < ZERO:
                raise ValidationError("Amount tendered cannot be negative")

        priced, subtotal = self._price_lines(lines)

        with storage_errors("reading the tax rate"):
            tax_rate = self.store.get_active_tax_rate()
        totals = compute_totals(subtotal, discount, tax_rate)

        if method is PaymentMethod.CASH:
            amount_paid = amount_tendered
            if not is_sufficient_payment(amount_paid, totals.total):
                raise InsufficientPaymentError(totals.total)
            change = max(ZERO, amount_paid - totals.total)
        else:
            amount_paid, change = totals.total, ZERO

        now = utcnow()
        with storage_errors("allocating an order number"):
            order_number = self.store.next_order_number(now)

        fields = {
            "order_number": order_number,
            "subtotal": subtotal,
            "discount": discount,
            "tax_rate": tax_rate,
            "tax": totals.tax,
            "total_amount": totals.total,
            "payment_method": method,
            "amount_paid": amount_paid,
            "change": change,
            "cashier": cashier,
            "created_at": now,
        }
        items = [
            {
                "product_id": product.id,
                "name": product.name,
                "price": product.price,
                "quantity": quantity,
                "line_total": product.price * quantity,
            }
            for product, quantity in priced
        ]
        order_id = self._commit(fields, items, priced)

        # The order is durable from here on; a failed read must not invite a blind retry
        try:
            order = self.store.get_order(order_id)
        except PyMongoError as exc:
            raise PersistenceError(f"Order {order_number} was recorded but could not be read back",
                                   outcome_unknown=True, cause=exc) from exc
        if order is None:
            raise PersistenceError(f"Order {order_number} was recorded but could not be read back",
                                   outcome_unknown=True)
        return order

    def _price_lines(self, lines: List[CartLine]) -> Tuple[List[PricedLine], Decimal]:
        """Fetch each product once and price every line at its current price.

        Repeated lines for one product stay separate, but the stock check
        covers their combined quantity.
        """
        products = {}
        requested = {}
        priced = []
        subtotal = ZERO
        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                with storage_errors("reading the catalog"):
                    product = self.store.get_product(line.product_id)
                if product is None:
                    raise NotFoundError(line.product_id)
                products[line.product_id] = product

            requested[product.id] = requested.get(product.id, 0) + line.quantity
            if requested[product.id] > product.stock:
                raise InsufficientStockError(product.name, product.stock)

            priced.append((product, line.quantity))
            subtotal += product.price * line.quantity
        return priced, subtotal

    def _commit(self, fields: dict, items: List[dict], priced: List[PricedLine]) -> str:
        try:
            with self.store.transaction() as session:
                order_id = self.store.create_order(fields, items, session=session)
                for product, quantity in priced:
                    if not self.store.decrement_stock(product.id, quantity, session=session):
                        raise ConflictError(f"Stock for {product.name} changed during checkout, please retry")
        except DuplicateKeyError as exc:
            raise ConflictError(f"Order number {fields['order_number']} is already taken, please retry") from exc
        except PyMongoError as exc:
            if exc.has_error_label("TransientTransactionError"):
                raise ConflictError("Checkout collided with another transaction, please retry") from exc
            raise PersistenceError(
                "Could not record the order",
                outcome_unknown=exc.has_error_label("UnknownTransactionCommitResult"),
                cause=exc,
            ) from exc
        return order_id
