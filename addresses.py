import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, serialize, to_object_id, utcnow
from errors import AuthorizationError, NotFoundError
from schemas import Address
from validation import build

logger = logging.getLogger(__name__)

PROTECTED_FIELDS = {"_id", "id", "user_id", "userId", "created_at", "updated_at"}


class AddressBook:
    """Addresses are owned by a user through `address.user_id`."""

    def __init__(self, db: Database):
        self.db = db

    @property
    def addresses(self):
        return self.db["address"]

    def _load(self, address_id, requester_id: Optional[str] = None) -> dict:
        oid = to_object_id(address_id)
        doc = self.addresses.find_one({"_id": oid}) if oid is not None else None
        if not doc:
            raise NotFoundError("Address not found")
        if requester_id is not None and doc["user_id"] != requester_id:
            logger.warning("User %s does not own address %s", requester_id, address_id)
            raise AuthorizationError("Only the owner can modify this address")
        return doc

    def _clear_default(self, user_id: str, keep=None):
        query = {"user_id": user_id, "is_default": True}
        if keep is not None:
            query["_id"] = {"$ne": keep}
        self.addresses.update_many(query, {"$set": {"is_default": False}})

    def create_address(self, user_id: str, data: dict) -> dict:
        oid = to_object_id(user_id)
        if oid is None or not self.db["user"].find_one({"_id": oid}):
            raise NotFoundError("User not found")

        fields = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}
        address = build(Address, {**fields, "user_id": user_id})
        if self.addresses.count_documents({"user_id": user_id}) == 0:
            address.is_default = True
        elif address.is_default:
            self._clear_default(user_id)

        address_id = create_document(self.db, "address", address)
        logger.info("Address %s created for user %s", address_id, user_id)
        return serialize(self.addresses.find_one({"_id": to_object_id(address_id)}))

    def get_address(self, address_id: str) -> dict:
        return serialize(self._load(address_id))

    def list_addresses(self, user_id: str) -> List[dict]:
        return get_documents(self.db, "address", {"user_id": user_id}, sort=[("_id", 1)])

    def update_address(self, address_id: str, patch: dict, requester_id: Optional[str] = None) -> dict:
        doc = self._load(address_id, requester_id)
        update = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS and v is not None}
        if not update:
            return serialize(doc)

        merged = {k: v for k, v in doc.items() if k in Address.model_fields}
        merged.update(update)
        build(Address, merged)

        if update.get("is_default"):
            self._clear_default(doc["user_id"], keep=doc["_id"])
        update["updated_at"] = utcnow()
        updated = self.addresses.find_one_and_update(
            {"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return serialize(updated)

    def delete_address(self, address_id: str, requester_id: Optional[str] = None):
        doc = self._load(address_id, requester_id)
        self.addresses.delete_one({"_id": doc["_id"]})
        logger.info("Address %s of user %s deleted", address_id, doc["user_id"])
