import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import as_utc, create_document, serialize, to_object_id, utcnow
from errors import CouponNotFoundError, DuplicateCouponError, MissingFieldError, ValidationError
from pricing import (
    check_coupon_minimum,
    check_coupon_window,
    coupon_discount,
    coupon_waives_shipping,
    find_active_coupon,
    normalize_code,
)
from schemas import Coupon, CouponType

logger = logging.getLogger(__name__)


def create_coupon(db: Database, code: Optional[str], coupon_type: Optional[str], value: Optional[float] = None,
                  free_shipping: bool = False, min_amount: Optional[float] = None, is_active: bool = True,
                  start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
    if not code or not coupon_type:
        raise MissingFieldError("code and type are required")
    code = normalize_code(code)
    value = value if value is not None else 0
    if value < 0:
        raise ValidationError("value must be non-negative")
    try:
        ctype = CouponType(coupon_type)
    except ValueError:
        raise ValidationError(f"type must be one of: {', '.join(t.value for t in CouponType)}")
    if ctype == CouponType.PERCENT and value > 100:
        raise ValidationError("PERCENT value must be between 0 and 100")
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    if db["coupon"].find_one({"code": code}):
        raise DuplicateCouponError()

    coupon = Coupon(
        code=code,
        type=ctype,
        value=value,
        free_shipping=bool(free_shipping),
        min_amount=min_amount if min_amount is not None else 0,
        is_active=is_active,
        start_date=start_date,
        end_date=end_date,
    )
    try:
        new_id = create_document(db, "coupon", coupon)
    except DuplicateKeyError:
        raise DuplicateCouponError()
    logger.info("Coupon %s created (%s %s)", code, coupon.type.value, value)
    return serialize(db["coupon"].find_one({"_id": to_object_id(new_id)}))


def validate_coupon(db: Database, code: Optional[str], subtotal: Optional[float], *, now: Optional[datetime] = None,
                    free_shipping_threshold: Optional[float] = None) -> Dict[str, Any]:
    """Check a code against a prospective subtotal without creating an order."""
    if free_shipping_threshold is None:
        free_shipping_threshold = config.FREE_SHIPPING_THRESHOLD
    if not code or subtotal is None or isinstance(subtotal, bool) or not isinstance(subtotal, (int, float)):
        raise MissingFieldError("Coupon code and cart subtotal are required")

    coupon = find_active_coupon(db, code)
    if coupon is None:
        raise CouponNotFoundError()
    check_coupon_window(coupon, now or utcnow())
    check_coupon_minimum(coupon, subtotal)

    free_shipping = coupon_waives_shipping(coupon) or subtotal >= free_shipping_threshold
    return {
        "valid": True,
        "code": coupon["code"],
        "discount": coupon_discount(coupon, float(subtotal)),
        "free_shipping": free_shipping,
        "message": "Coupon applied",
    }
