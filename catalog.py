import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, parse_object_id, serialize, to_object_id
from errors import CategoryNotFoundError, ConflictError, DuplicateSlugError, MissingFieldError, ProductNotFoundError
from schemas import Category, Product

logger = logging.getLogger(__name__)


# Products

def create_product(db: Database, data: Mapping[str, Any]) -> Dict[str, Any]:
    if not data.get("name") or not data.get("slug") or data.get("price") is None or not data.get("category_id"):
        raise MissingFieldError("name, slug, price and category_id are required")
    if db["product"].find_one({"slug": data["slug"]}):
        raise DuplicateSlugError("A product already exists with this slug")

    fields = {k: v for k, v in data.items() if v is not None}
    # the rating rollup is owned by reviews
    fields.pop("average_rating", None)
    fields.pop("reviews_count", None)
    try:
        new_id = create_document(db, "product", Product(**fields))
    except DuplicateKeyError:
        raise DuplicateSlugError("A product already exists with this slug")
    logger.info("Product %s created (%s)", new_id, data["slug"])
    return serialize(db["product"].find_one({"_id": to_object_id(new_id)}))


def list_products(db: Database, category: Optional[str] = None, search: Optional[str] = None,
                  featured: Optional[bool] = None) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {"is_active": True}
    if category:
        filt["category_id"] = category
    if search:
        filt["name"] = {"$regex": re.escape(search), "$options": "i"}
    if featured:
        filt["is_featured"] = True
    cursor = db["product"].find(filt).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    return [serialize(p) for p in cursor]


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    oid = parse_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise ProductNotFoundError()
    return serialize(product)


# Categories

def create_category(db: Database, name: Optional[str], slug: Optional[str],
                    description: Optional[str] = None) -> Dict[str, Any]:
    if not name or not slug:
        raise MissingFieldError("name and slug are required")
    if db["category"].find_one({"$or": [{"name": name}, {"slug": slug}]}):
        raise ConflictError("This category already exists (name or slug)")
    try:
        new_id = create_document(db, "category", Category(name=name, slug=slug, description=description))
    except DuplicateKeyError:
        raise ConflictError("This category already exists (name or slug)")
    return serialize(db["category"].find_one({"_id": to_object_id(new_id)}))


def list_categories(db: Database) -> List[Dict[str, Any]]:
    cursor = db["category"].find({"is_active": True}).sort("name", ASCENDING)
    return [serialize(c) for c in cursor]


def get_category(db: Database, category_id: str) -> Dict[str, Any]:
    oid = parse_object_id(category_id)
    category = db["category"].find_one({"_id": oid}) if oid else None
    if not category:
        raise CategoryNotFoundError()
    return serialize(category)
