"""
Order creation and lifecycle.

Orders are priced from the line items sent with the checkout request, not from
the stored cart. Financial fields are written once; afterwards only `status`
and `payment_status` change.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, parse_object_id, serialize, to_object_id, utcnow
from errors import (
    BusinessRuleError,
    EmptyCartError,
    InvalidQuantityError,
    InvalidStatusTransitionError,
    MissingFieldError,
    NotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from pricing import compute_order_pricing
from schemas import Order, OrderStatus, PaymentMethod, PaymentStatus, ShippingAddress

logger = logging.getLogger(__name__)

ORDER_FLOW = [OrderStatus.NEW, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED]
TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current == new:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    return ORDER_FLOW.index(new) > ORDER_FLOW.index(current)


def create_order(db: Database, user_id: Optional[str], items: Optional[List[Mapping[str, Any]]],
                 payment_method: Optional[str], coupon_code: Optional[str] = None,
                 shipping_address: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    if not items:
        raise EmptyCartError()
    if not payment_method:
        raise MissingFieldError("Payment method is required")
    for item in items:
        if not item.get("product_id"):
            raise MissingFieldError("product_id is required for every item")
        if item.get("quantity") is not None and item["quantity"] < 1:
            raise InvalidQuantityError()
    line_items = [{"product_id": item["product_id"], "quantity": item.get("quantity") or 1} for item in items]

    try:
        pricing = compute_order_pricing(db, line_items, coupon_code)
    except (BusinessRuleError, NotFoundError) as e:
        logger.warning("Order rejected for user %s: %s", user_id, e.message)
        raise

    try:
        order = Order(
            user_id=user_id,
            items=pricing["order_items"],
            subtotal=pricing["subtotal"],
            shipping_cost=pricing["shipping_cost"],
            discount=pricing["discount"],
            total=pricing["total"],
            coupon_code=pricing["applied_coupon_code"],
            shipping_address=ShippingAddress(**shipping_address) if shipping_address else None,
            payment_method=PaymentMethod(payment_method),
            # no payment gateway yet: every order is recorded as paid
            payment_status=PaymentStatus.PAID,
            status=OrderStatus.NEW,
        )
    except ValueError as e:
        raise ValidationError(str(e))

    new_id = create_document(db, "order", order)
    logger.info("Order %s created for user %s: total=%.2f coupon=%s",
                new_id, user_id, order.total, order.coupon_code)
    return serialize(db["order"].find_one({"_id": to_object_id(new_id)}))


def list_user_orders(db: Database, user_id: str) -> List[Dict[str, Any]]:
    if not user_id:
        raise MissingFieldError("user_id is required")
    cursor = db["order"].find({"user_id": user_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    return [serialize(o) for o in cursor]


def list_orders(db: Database) -> List[Dict[str, Any]]:
    cursor = db["order"].find().sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    out = []
    users = {}
    for o in cursor:
        uid = o.get("user_id")
        if uid and uid not in users:
            oid = parse_object_id(uid)
            users[uid] = db["user"].find_one(
                {"_id": oid}, {"first_name": 1, "last_name": 1, "email": 1}
            ) if oid else None
        o["user"] = users.get(uid) if uid else None
        out.append(serialize(o))
    return out


def update_order_status(db: Database, order_id: str, status: Optional[str] = None,
                        payment_status: Optional[str] = None) -> Dict[str, Any]:
    if not status and not payment_status:
        raise MissingFieldError("status or payment_status is required")
    try:
        new_status = OrderStatus(status) if status else None
        new_payment_status = PaymentStatus(payment_status) if payment_status else None
    except ValueError as e:
        raise ValidationError(str(e))

    oid = parse_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise OrderNotFoundError()

    update: Dict[str, Any] = {"updated_at": utcnow()}
    if new_status is not None:
        current = OrderStatus(order["status"])
        if not can_transition(current, new_status):
            raise InvalidStatusTransitionError(
                f"Cannot move order from {current.value} to {new_status.value}"
            )
        update["status"] = new_status.value
    if new_payment_status is not None:
        update["payment_status"] = new_payment_status.value

    # compare-and-swap on the status we validated against
    updated = db["order"].find_one_and_update(
        {"_id": oid, "status": order["status"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidStatusTransitionError("Order status changed concurrently, retry the update")
    logger.info("Order %s updated: %s", order_id, {k: v for k, v in update.items() if k != "updated_at"})
    return serialize(updated)
