"""
One cart per user.

Every change is a single conditional update on the cart document, so two
concurrent adds of the same product both land: the first matching line gets
`$inc`, a missing line is `$push`ed only while it is still missing, and a lost
race on either step just retries the other.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import parse_object_id, serialize, utcnow
from errors import CartItemNotFoundError, CartNotFoundError, MissingFieldError, ProductNotFoundError

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = {"name": 1, "price": 1, "promo_price": 1, "images": 1, "slug": 1}
MAX_ADD_ATTEMPTS = 5


def _populate(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    items = []
    for it in cart.get("items", []):
        oid = parse_object_id(it["product_id"])
        product = db["product"].find_one({"_id": oid}, PRODUCT_FIELDS) if oid else None
        items.append({**it, "product": serialize(product) if product else None})
    out = serialize(cart)
    out["items"] = items
    return out


def get_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return {"user_id": user_id, "items": []}
    return _populate(db, cart)


def _ensure_cart(db: Database, user_id: str) -> bool:
    now = utcnow()
    try:
        res = db["cart"].update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"items": [], "created_at": now, "updated_at": now}},
            upsert=True,
        )
    except DuplicateKeyError:
        # another request created it first
        return False
    return res.upserted_id is not None


def add_item(db: Database, user_id: Optional[str], product_id: Optional[str],
             quantity: Optional[int] = None) -> Tuple[Dict[str, Any], bool]:
    """Add `quantity` of a product to the user's cart. Returns the cart and
    whether the cart had to be created."""
    if not user_id or not product_id:
        raise MissingFieldError("user_id and product_id are required")
    qty = quantity if quantity and quantity > 0 else 1

    oid = parse_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product or not product.get("is_active", True):
        raise ProductNotFoundError()

    created = _ensure_cart(db, user_id)
    carts = db["cart"]
    for _ in range(MAX_ADD_ATTEMPTS):
        res = carts.update_one(
            {"user_id": user_id, "items.product_id": product_id},
            {"$inc": {"items.$.quantity": qty}, "$set": {"updated_at": utcnow()}},
        )
        if res.matched_count:
            break
        res = carts.update_one(
            {"user_id": user_id, "items.product_id": {"$ne": product_id}},
            {"$push": {"items": {"product_id": product_id, "quantity": qty}}, "$set": {"updated_at": utcnow()}},
        )
        if res.matched_count:
            break
    else:
        raise RuntimeError(f"Could not add product {product_id} to cart of user {user_id}")

    return get_cart(db, user_id), created


def update_item_quantity(db: Database, user_id: Optional[str], product_id: Optional[str],
                         quantity: Optional[int]) -> Dict[str, Any]:
    if not user_id or not product_id or quantity is None:
        raise MissingFieldError("user_id, product_id and quantity are required")
    if not db["cart"].find_one({"user_id": user_id}, {"_id": 1}):
        raise CartNotFoundError()

    if quantity <= 0:
        res = db["cart"].update_one(
            {"user_id": user_id, "items.product_id": product_id},
            {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": utcnow()}},
        )
    else:
        res = db["cart"].update_one(
            {"user_id": user_id, "items.product_id": product_id},
            {"$set": {"items.$.quantity": quantity, "updated_at": utcnow()}},
        )
    if not res.matched_count:
        raise CartItemNotFoundError()
    return get_cart(db, user_id)


def remove_item(db: Database, user_id: Optional[str], product_id: Optional[str]) -> Dict[str, Any]:
    if not user_id or not product_id:
        raise MissingFieldError("user_id and product_id are required")
    res = db["cart"].update_one(
        {"user_id": user_id},
        {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": utcnow()}},
    )
    if not res.matched_count:
        raise CartNotFoundError()
    return get_cart(db, user_id)


def clear_cart(db: Database, user_id: str) -> Dict[str, Any]:
    res = db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}})
    if not res.matched_count:
        return {"message": "Cart already empty"}
    logger.info("Cart of user %s cleared", user_id)
    return {"message": "Cart cleared"}
