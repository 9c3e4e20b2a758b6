"""
Product reviews and the rating rollup kept on each product.

`recompute_rollup` rebuilds `average_rating` / `reviews_count` from the full
set of reviews every time it runs, so calling it repeatedly always converges
on the right values. It is called after every review write; the write and the
rollup are two separate operations and concurrent reviews on the same product
can briefly leave a stale rollup until the next write.
"""
import logging
from numbers import Number
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, parse_object_id, serialize, to_object_id, utcnow
from errors import (
    InvalidRatingError,
    MissingFieldError,
    ProductNotFoundError,
    ReviewNotFoundError,
    UserNotFoundError,
)
from schemas import Review

logger = logging.getLogger(__name__)


def recompute_rollup(db: Database, product_id: str) -> Dict[str, Any]:
    stats = list(db["review"].aggregate([
        {"$match": {"product_id": product_id}},
        {"$group": {"_id": "$product_id", "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    if stats:
        rollup = {"average_rating": float(stats[0]["average"]), "reviews_count": int(stats[0]["count"])}
    else:
        rollup = {"average_rating": 0, "reviews_count": 0}
    oid = parse_object_id(product_id)
    if oid is not None:
        db["product"].update_one({"_id": oid}, {"$set": rollup})
    logger.info("Rating rollup for product %s: %s", product_id, rollup)
    return rollup


def _upsert_user_review(db: Database, product_id: str, user_id: str, rating: float,
                        comment: Optional[str]) -> Dict[str, Any]:
    now = utcnow()
    filt = {"product_id": product_id, "user_id": user_id}
    update = {
        "$set": {"rating": rating, "comment": comment, "updated_at": now},
        "$setOnInsert": {"created_at": now},
    }
    try:
        return db["review"].find_one_and_update(filt, update, upsert=True, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        # a concurrent first review won the insert; ours becomes an update of it
        logger.info("Concurrent review insert for product %s by user %s, updating", product_id, user_id)
        return db["review"].find_one_and_update(filt, update, return_document=ReturnDocument.AFTER)


def upsert_review(db: Database, product_id: Optional[str], rating: Optional[float], user_id: Optional[str] = None,
                  comment: Optional[str] = None) -> Dict[str, Any]:
    """Create a review, or update the one this user already left on the product."""
    if not product_id or rating is None:
        raise MissingFieldError("product_id and rating are required")
    if isinstance(rating, bool) or not isinstance(rating, Number) or not 1 <= rating <= 5:
        raise InvalidRatingError()

    product_oid = parse_object_id(product_id)
    product = db["product"].find_one({"_id": product_oid}) if product_oid else None
    if not product or not product.get("is_active", True):
        raise ProductNotFoundError("Product not found or inactive")

    if user_id:
        user_oid = parse_object_id(user_id)
        if not user_oid or not db["user"].find_one({"_id": user_oid}):
            raise UserNotFoundError()
        review = _upsert_user_review(db, product_id, user_id, rating, comment)
    else:
        new_id = create_document(db, "review", Review(product_id=product_id, rating=rating, comment=comment))
        review = db["review"].find_one({"_id": to_object_id(new_id)})

    recompute_rollup(db, product_id)
    return serialize(review)


def list_product_reviews(db: Database, product_id: str) -> List[Dict[str, Any]]:
    cursor = db["review"].find({"product_id": product_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    out = []
    for r in cursor:
        user = None
        user_oid = parse_object_id(r.get("user_id"))
        if user_oid:
            user = db["user"].find_one({"_id": user_oid}, {"first_name": 1, "last_name": 1, "email": 1})
        r["user"] = user
        out.append(serialize(r))
    return out


def delete_review(db: Database, review_id: str) -> None:
    oid = parse_object_id(review_id)
    review = db["review"].find_one({"_id": oid}) if oid else None
    if not review:
        raise ReviewNotFoundError()
    db["review"].delete_one({"_id": oid})
    recompute_rollup(db, review["product_id"])
