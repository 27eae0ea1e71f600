import logging
from typing import Optional

from pymongo.database import Database

from database import serialize, to_object_id, utcnow
from errors import AuthorizationError, NotFoundError, ValidationError
from schemas import User
from security import hash_password
from validation import build, check_email, check_password_length

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "username", "email")


def public_user(db: Database, doc: dict) -> dict:
    """
    The user as returned to clients: no password hash, and the address and
    order lists derived from the child collections.
    """
    user = serialize(doc)
    user.pop("password_hash", None)
    user_id = user["id"]
    user["addresses"] = [str(a["_id"]) for a in db["address"].find({"user_id": user_id}, {"_id": 1}).sort("_id", 1)]
    user["orders"] = [str(o["_id"]) for o in db["order"].find({"buyer_id": user_id}, {"_id": 1}).sort("_id", 1)]
    return user


class UserService:
    def __init__(self, db: Database):
        self.db = db

    def find(self, user_id) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.db["user"].find_one({"_id": oid})

    def get_user(self, user_id: str) -> dict:
        doc = self.find(user_id)
        if not doc:
            raise NotFoundError("User not found")
        return public_user(self.db, doc)

    def update_user(self, user_id: str, requester_id: str, patch: dict) -> dict:
        doc = self.find(user_id)
        if not doc:
            raise NotFoundError("User not found")
        if str(doc["_id"]) != requester_id:
            logger.warning("User %s refused update of user %s", requester_id, user_id)
            raise AuthorizationError("Only the account owner can update it")

        update = {k: v for k, v in patch.items() if k in EDITABLE_FIELDS and v is not None}
        if "name" in update and not update["name"].strip():
            raise ValidationError("Name is required")
        if "username" in update and not update["username"].strip():
            raise ValidationError("Username is required")
        if "email" in update:
            check_email(update["email"])
            # same schema as registration, so the stored form matches what login looks up
            build(User, {**{k: v for k, v in doc.items() if k in User.model_fields}, **update})
        for field in ("email", "username"):
            if field in update and self.db["user"].find_one({field: update[field], "_id": {"$ne": doc["_id"]}}):
                raise ValidationError(f"User with this {field} already exists")

        if patch.get("password") is not None:
            check_password_length(patch["password"])
            update["password_hash"] = hash_password(patch["password"])

        if update:
            update["updated_at"] = utcnow()
            self.db["user"].update_one({"_id": doc["_id"]}, {"$set": update})
            logger.info("User %s updated fields %s", user_id, sorted(k for k in update if k != "password_hash"))
        return self.get_user(user_id)

    def delete_user(self, user_id: str, requester_id: str):
        doc = self.find(user_id)
        if not doc:
            raise NotFoundError("User not found")
        if str(doc["_id"]) != requester_id:
            logger.warning("User %s refused deletion of user %s", requester_id, user_id)
            raise AuthorizationError("Only the account owner can delete it")
        # orders and addresses keep their references; nothing cascades
        self.db["user"].delete_one({"_id": doc["_id"]})
        logger.info("User %s deleted", user_id)
