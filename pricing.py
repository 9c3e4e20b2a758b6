"""
Order pricing.

`price_order` is the pure part: given line items, the catalog products they
point at and an optional coupon, it returns the priced snapshot of an order.
`compute_order_pricing` loads products and coupon from the database and
delegates to it.

Amounts are floats rounded to 2 decimals. The total is derived from the
rounded subtotal, shipping and discount so that
total == subtotal + shipping_cost - discount holds for every order.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pymongo.database import Database

import config
from database import as_utc, get_documents, parse_object_id, utcnow
from errors import (
    CouponExpiredError,
    CouponNotFoundError,
    CouponNotYetActiveError,
    EmptyCartError,
    MinimumAmountNotMetError,
    ProductNotFoundError,
)
from schemas import CouponType

logger = logging.getLogger(__name__)


def money(value: float) -> float:
    return round(float(value), 2)


def effective_price(product: Mapping[str, Any]) -> float:
    promo = product.get("promo_price")
    return float(promo if promo is not None else product.get("price", 0))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def find_active_coupon(db: Database, code: str) -> Optional[Dict[str, Any]]:
    return db["coupon"].find_one({"code": normalize_code(code), "is_active": True})


def coupon_discount(coupon: Mapping[str, Any], subtotal: float) -> float:
    """Discount granted by `coupon` on `subtotal`. FIXED coupons grant their full value."""
    ctype = coupon.get("type")
    value = float(coupon.get("value") or 0)
    if ctype == CouponType.PERCENT.value:
        discount = subtotal * value / 100
    elif ctype == CouponType.FIXED.value:
        discount = value
    else:
        discount = 0.0
    return money(discount)


def coupon_waives_shipping(coupon: Mapping[str, Any]) -> bool:
    return coupon.get("type") == CouponType.FREE_SHIPPING.value or bool(coupon.get("free_shipping"))


def check_coupon_window(coupon: Mapping[str, Any], now: datetime) -> None:
    start = as_utc(coupon.get("start_date"))
    end = as_utc(coupon.get("end_date"))
    if start is not None and start > now:
        raise CouponNotYetActiveError()
    if end is not None and end < now:
        raise CouponExpiredError()


def check_coupon_minimum(coupon: Mapping[str, Any], subtotal: float) -> None:
    minimum = coupon.get("min_amount") or 0
    if subtotal < minimum:
        raise MinimumAmountNotMetError(minimum)


def price_order(line_items: List[Mapping[str, Any]], products_by_id: Mapping[str, Mapping[str, Any]],
                coupon: Optional[Mapping[str, Any]] = None, *, base_shipping: Optional[float] = None,
                free_shipping_threshold: Optional[float] = None) -> Dict[str, Any]:
    if base_shipping is None:
        base_shipping = config.BASE_SHIPPING
    if free_shipping_threshold is None:
        free_shipping_threshold = config.FREE_SHIPPING_THRESHOLD
    if not line_items:
        raise EmptyCartError()

    order_items = []
    subtotal = 0.0
    for item in line_items:
        product_id = str(item["product_id"])
        product = products_by_id.get(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")
        quantity = int(item.get("quantity", 1))
        unit_price = effective_price(product)
        order_items.append({
            "product_id": product_id,
            "name": product.get("name"),
            "price": unit_price,
            "quantity": quantity,
        })
        subtotal += unit_price * quantity
    subtotal = money(subtotal)

    shipping_cost = 0.0 if subtotal >= free_shipping_threshold else money(base_shipping)

    discount = 0.0
    applied_code = None
    if coupon is not None:
        check_coupon_minimum(coupon, subtotal)
        discount = coupon_discount(coupon, subtotal)
        if coupon_waives_shipping(coupon):
            shipping_cost = 0.0
        applied_code = coupon["code"]

    return {
        "order_items": order_items,
        "subtotal": subtotal,
        "shipping_cost": shipping_cost,
        "discount": discount,
        "total": money(subtotal + shipping_cost - discount),
        "applied_coupon_code": applied_code,
    }


def load_products(db: Database, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Active products keyed by id string. Unknown, malformed and inactive ids are left out."""
    oids = [oid for oid in (parse_object_id(pid) for pid in product_ids) if oid is not None]
    if not oids:
        return {}
    products = get_documents(db, "product", {"_id": {"$in": oids}, "is_active": True})
    return {str(p["_id"]): p for p in products}


def compute_order_pricing(db: Database, line_items: List[Mapping[str, Any]], coupon_code: Optional[str] = None, *,
                          now: Optional[datetime] = None, base_shipping: Optional[float] = None,
                          free_shipping_threshold: Optional[float] = None) -> Dict[str, Any]:
    if not line_items:
        raise EmptyCartError()
    products_by_id = load_products(db, [item["product_id"] for item in line_items])

    coupon = None
    if coupon_code:
        coupon = find_active_coupon(db, coupon_code)
        if coupon is None:
            raise CouponNotFoundError()
        check_coupon_window(coupon, now or utcnow())

    return price_order(
        line_items,
        products_by_id,
        coupon,
        base_shipping=base_shipping,
        free_shipping_threshold=free_shipping_threshold,
    )
