from datetime import timedelta

import pytest

from database import utcnow
from errors import (
    CouponExpiredError,
    CouponNotFoundError,
    CouponNotYetActiveError,
    EmptyCartError,
    MinimumAmountNotMetError,
    ProductNotFoundError,
)
from pricing import compute_order_pricing, effective_price, price_order

BASE = 8.0
THRESHOLD = 8000.0


def catalog(*products):
    return {p["id"]: p for p in products}


def product(pid, price, promo_price=None, name=None):
    return {"id": pid, "name": name or pid, "price": price, "promo_price": promo_price}


def coupon(type, value=0, free_shipping=False, min_amount=0, code="SAVE"):
    return {"code": code, "type": type, "value": value, "free_shipping": free_shipping, "min_amount": min_amount}


def price(items, products, coupon=None):
    return price_order(items, products, coupon, base_shipping=BASE, free_shipping_threshold=THRESHOLD)


def test_effective_price_prefers_promo():
    assert effective_price({"price": 100, "promo_price": 80}) == 80
    assert effective_price({"price": 100, "promo_price": None}) == 100
    assert effective_price({"price": 100, "promo_price": 0}) == 0


def test_subtotal_is_sum_of_effective_prices():
    products = catalog(product("a", 19.99, name="Mouse"), product("b", 250, promo_price=199.5))
    result = price([{"product_id": "a", "quantity": 3}, {"product_id": "b", "quantity": 2}], products)

    assert result["subtotal"] == 458.97
    assert result["order_items"] == [
        {"product_id": "a", "name": "Mouse", "price": 19.99, "quantity": 3},
        {"product_id": "b", "name": "b", "price": 199.5, "quantity": 2},
    ]
    assert result["discount"] == 0
    assert result["applied_coupon_code"] is None


def test_shipping_below_and_at_threshold():
    products = catalog(product("a", 7999.99), product("b", 8000))
    below = price([{"product_id": "a", "quantity": 1}], products)
    at = price([{"product_id": "b", "quantity": 1}], products)

    assert below["shipping_cost"] == BASE
    assert below["total"] == 8007.99
    assert at["shipping_cost"] == 0
    assert at["total"] == 8000


def test_percent_coupon():
    result = price([{"product_id": "a", "quantity": 2}], catalog(product("a", 100)), coupon("PERCENT", 10))

    assert result["discount"] == 20
    assert result["shipping_cost"] == BASE
    assert result["total"] == 188
    assert result["applied_coupon_code"] == "SAVE"


def test_fixed_coupon_ignores_subtotal():
    small = price([{"product_id": "a", "quantity": 1}], catalog(product("a", 50)), coupon("FIXED", 20))
    large = price([{"product_id": "a", "quantity": 1}], catalog(product("a", 900)), coupon("FIXED", 20))

    assert small["discount"] == 20
    assert large["discount"] == 20


def test_free_shipping_coupon():
    result = price([{"product_id": "a", "quantity": 1}], catalog(product("a", 50)), coupon("FREE_SHIPPING"))

    assert result["discount"] == 0
    assert result["shipping_cost"] == 0
    assert result["total"] == 50


def test_free_shipping_flag_combines_with_percent():
    result = price([{"product_id": "a", "quantity": 1}], catalog(product("a", 200)),
                   coupon("PERCENT", 10, free_shipping=True))

    assert result["discount"] == 20
    assert result["shipping_cost"] == 0
    assert result["total"] == 180


def test_fixed_coupon_larger_than_subtotal_keeps_full_value():
    result = price([{"product_id": "a", "quantity": 1}], catalog(product("a", 10)), coupon("FIXED", 20))

    assert result["discount"] == 20
    assert result["shipping_cost"] == BASE
    assert result["total"] == -2
    assert result["total"] == result["subtotal"] + result["shipping_cost"] - result["discount"]


def test_total_identity_holds():
    products = catalog(product("a", 33.33), product("b", 0.1), product("c", 12.345))
    items = [{"product_id": "a", "quantity": 3}, {"product_id": "b", "quantity": 7}, {"product_id": "c", "quantity": 1}]
    result = price(items, products, coupon("PERCENT", 15))

    assert result["total"] == round(result["subtotal"] + result["shipping_cost"] - result["discount"], 2)


def test_minimum_amount_enforced():
    with pytest.raises(MinimumAmountNotMetError):
        price([{"product_id": "a", "quantity": 1}], catalog(product("a", 149)), coupon("FIXED", 10, min_amount=150))


def test_empty_items_rejected():
    with pytest.raises(EmptyCartError):
        price([], {})


def test_unknown_product_rejected():
    with pytest.raises(ProductNotFoundError):
        price([{"product_id": "missing", "quantity": 1}], {})


# Database-backed pricing

def add_coupon(db, code="SAVE10", type="PERCENT", value=10, **extra):
    doc = {"code": code, "type": type, "value": value, "free_shipping": False, "min_amount": 0, "is_active": True}
    doc.update(extra)
    db["coupon"].insert_one(doc)


def test_compute_pricing_reads_catalog_and_coupon(db, make_product):
    p = make_product(100, promo_price=90)
    add_coupon(db)

    result = compute_order_pricing(db, [{"product_id": str(p["_id"]), "quantity": 2}], "save10",
                                   base_shipping=BASE, free_shipping_threshold=THRESHOLD)

    assert result["subtotal"] == 180
    assert result["discount"] == 18
    assert result["total"] == 170
    assert result["applied_coupon_code"] == "SAVE10"


def test_compute_pricing_skips_inactive_products(db, make_product):
    p = make_product(100, is_active=False)

    with pytest.raises(ProductNotFoundError):
        compute_order_pricing(db, [{"product_id": str(p["_id"]), "quantity": 1}])


def test_compute_pricing_rejects_malformed_product_id(db):
    with pytest.raises(ProductNotFoundError):
        compute_order_pricing(db, [{"product_id": "not-an-id", "quantity": 1}])


def test_compute_pricing_rejects_unknown_or_inactive_coupon(db, make_product):
    p = make_product(100)
    add_coupon(db, code="OFF", is_active=False)
    items = [{"product_id": str(p["_id"]), "quantity": 1}]

    with pytest.raises(CouponNotFoundError):
        compute_order_pricing(db, items, "NOPE")
    with pytest.raises(CouponNotFoundError):
        compute_order_pricing(db, items, "OFF")


def test_compute_pricing_enforces_date_window(db, make_product):
    p = make_product(100)
    now = utcnow()
    add_coupon(db, code="LATER", start_date=now + timedelta(days=1))
    add_coupon(db, code="GONE", end_date=now - timedelta(days=1))
    items = [{"product_id": str(p["_id"]), "quantity": 1}]

    with pytest.raises(CouponNotYetActiveError):
        compute_order_pricing(db, items, "LATER")
    with pytest.raises(CouponExpiredError):
        compute_order_pricing(db, items, "GONE")
