"""
Address book with a single default address per user.

Making an address the default clears the flag on its siblings first and then
sets it on the target. These are two writes; a crash in between leaves the
user with no default until the next set-default call. MongoDB only offers a
multi-document transaction on replica sets, so the sequence is best effort.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, parse_object_id, serialize, to_object_id, utcnow
from errors import AddressNotFoundError, MissingFieldError
from schemas import Address

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("first_name", "last_name", "phone", "line1", "city", "postal_code")
EDITABLE_FIELDS = ("label", "first_name", "last_name", "phone", "line1", "line2", "city", "postal_code", "country")


def _clear_default(db: Database, user_id: str, keep: Optional[ObjectId] = None) -> None:
    filt: Dict[str, Any] = {"user_id": user_id, "is_default": True}
    if keep is not None:
        filt["_id"] = {"$ne": keep}
    db["address"].update_many(filt, {"$set": {"is_default": False, "updated_at": utcnow()}})


def _get(db: Database, address_id: str) -> Dict[str, Any]:
    oid = parse_object_id(address_id)
    addr = db["address"].find_one({"_id": oid}) if oid else None
    if not addr:
        raise AddressNotFoundError()
    return addr


def create_address(db: Database, user_id: Optional[str], data: Mapping[str, Any]) -> Dict[str, Any]:
    if not user_id or any(not data.get(f) for f in REQUIRED_FIELDS):
        raise MissingFieldError("Required address fields are missing")
    fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None}
    is_default = bool(data.get("is_default"))

    if is_default:
        _clear_default(db, user_id)
    new_id = create_document(db, "address", Address(user_id=user_id, is_default=is_default, **fields))
    return serialize(db["address"].find_one({"_id": to_object_id(new_id)}))


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["address"].find({"user_id": user_id}).sort(
        [("is_default", DESCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]
    )
    return [serialize(a) for a in cursor]


def update_address(db: Database, address_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    addr = _get(db, address_id)
    update = {k: v for k, v in data.items()
              if k in EDITABLE_FIELDS and (v is not None or k not in REQUIRED_FIELDS)}
    if "is_default" in data and data["is_default"] is not None:
        if data["is_default"]:
            _clear_default(db, addr["user_id"], keep=addr["_id"])
        update["is_default"] = bool(data["is_default"])
    update["updated_at"] = utcnow()
    updated = db["address"].find_one_and_update(
        {"_id": addr["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    return serialize(updated)


def set_default_address(db: Database, address_id: str) -> Dict[str, Any]:
    return update_address(db, address_id, {"is_default": True})


def delete_address(db: Database, address_id: str) -> None:
    addr = _get(db, address_id)
    db["address"].delete_one({"_id": addr["_id"]})
    if not addr.get("is_default"):
        return
    promoted = db["address"].find_one_and_update(
        {"user_id": addr["user_id"]},
        {"$set": {"is_default": True, "updated_at": utcnow()}},
        sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
        return_document=ReturnDocument.AFTER,
    )
    if promoted:
        logger.info("Address %s promoted to default for user %s", promoted["_id"], addr["user_id"])
