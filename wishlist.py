from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import parse_object_id, serialize
from errors import MissingFieldError, ProductNotFoundError, UserNotFoundError

PRODUCT_FIELDS = {"name": 1, "slug": 1, "price": 1, "promo_price": 1, "images": 1, "stock": 1}


def _user(db: Database, user_id: Optional[str]) -> Dict[str, Any]:
    oid = parse_object_id(user_id)
    user = db["user"].find_one({"_id": oid}, {"wishlist": 1}) if oid else None
    if not user:
        raise UserNotFoundError()
    return user


def get_wishlist(db: Database, user_id: str) -> List[Dict[str, Any]]:
    user = _user(db, user_id)
    oids = [oid for oid in (parse_object_id(pid) for pid in user.get("wishlist", [])) if oid]
    if not oids:
        return []
    return [serialize(p) for p in db["product"].find({"_id": {"$in": oids}}, PRODUCT_FIELDS)]


def add_to_wishlist(db: Database, user_id: Optional[str], product_id: Optional[str]) -> Dict[str, Any]:
    """Returns {"wishlist": [...], "added": bool}; adding twice is a no-op."""
    if not user_id or not product_id:
        raise MissingFieldError("user_id and product_id are required")
    user = _user(db, user_id)
    product_oid = parse_object_id(product_id)
    product = db["product"].find_one({"_id": product_oid}) if product_oid else None
    if not product or not product.get("is_active", True):
        raise ProductNotFoundError("Product not found or inactive")

    res = db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": product_id}})
    wishlist = db["user"].find_one({"_id": user["_id"]}, {"wishlist": 1}).get("wishlist", [])
    return {"wishlist": wishlist, "added": res.modified_count > 0}


def remove_from_wishlist(db: Database, user_id: Optional[str], product_id: Optional[str]) -> List[str]:
    if not user_id or not product_id:
        raise MissingFieldError("user_id and product_id are required")
    user = _user(db, user_id)
    updated = db["user"].find_one_and_update(
        {"_id": user["_id"]}, {"$pull": {"wishlist": product_id}},
        projection={"wishlist": 1}, return_document=ReturnDocument.AFTER,
    )
    return updated.get("wishlist", [])


def clear_wishlist(db: Database, user_id: str) -> List[str]:
    user = _user(db, user_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"wishlist": []}})
    return []
