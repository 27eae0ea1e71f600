import logging
import re
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, serialize, to_object_id, utcnow
from errors import (
    AuthorizationError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from schemas import Product, Review
from validation import build

logger = logging.getLogger(__name__)

# fields a patch may never touch
PROTECTED_FIELDS = {"_id", "id", "user_id", "userId", "reviews", "rating", "created_at", "updated_at"}


class CatalogService:
    def __init__(self, db: Database):
        self.db = db

    @property
    def products(self):
        return self.db["product"]

    def _find(self, product_id) -> Optional[dict]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return self.products.find_one({"_id": oid})

    def _owned(self, product_id: str, owner_id: str) -> dict:
        doc = self._find(product_id)
        if not doc:
            raise NotFoundError("Product not found")
        if doc.get("user_id") != owner_id:
            logger.warning("User %s is not the owner of product %s", owner_id, product_id)
            raise AuthorizationError("Unauthorized: Only the product owner can modify it")
        return doc

    def create_product(self, owner_id: str, data: dict) -> dict:
        if not data.get("name"):
            raise ValidationError("Product name is required")
        price = data.get("price")
        if price is None or price <= 0:
            raise ValidationError("Product price must be greater than zero")
        if not owner_id:
            raise ValidationError("User ID is required")

        fields = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS and v is not None}
        product = build(Product, {**fields, "user_id": owner_id})
        product_id = create_document(self.db, "product", product)
        logger.info("User %s created product %s", owner_id, product_id)
        return self.get_product(product_id)

    def get_product(self, product_id: str) -> dict:
        doc = self._find(product_id)
        if not doc:
            raise NotFoundError("Product not found")
        return serialize(doc)

    def list_products(self, search: Optional[str] = None, category: Optional[str] = None,
                      owner_id: Optional[str] = None) -> List[dict]:
        query = {}
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"brand": {"$regex": pattern, "$options": "i"}},
                {"category": {"$regex": pattern, "$options": "i"}},
            ]
        if category:
            query["category"] = category
        if owner_id:
            query["user_id"] = owner_id
        return get_documents(self.db, "product", query, sort=[("_id", 1)])

    def list_user_products(self, user_id: str) -> List[dict]:
        return self.list_products(owner_id=user_id)

    def update_product(self, product_id: str, owner_id: str, patch: dict) -> dict:
        doc = self._owned(product_id, owner_id)
        update = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS and v is not None}
        if not update:
            return serialize(doc)

        # validate the merged document so a patch cannot break the schema
        merged = {k: v for k, v in doc.items() if k in Product.model_fields}
        merged.update(update)
        build(Product, merged)

        update["updated_at"] = utcnow()
        updated = self.products.find_one_and_update(
            {"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        logger.info("User %s updated product %s", owner_id, product_id)
        return serialize(updated)

    def delete_product(self, product_id: str, owner_id: str):
        doc = self._owned(product_id, owner_id)
        self.products.delete_one({"_id": doc["_id"]})
        logger.info("User %s deleted product %s", owner_id, product_id)

    def decrement_stock(self, product_id: str, amount: int) -> dict:
        """
        Reduce stock by `amount` only if at least that many units are left.
        The check and the decrement are one conditional update.
        """
        if amount is None or amount < 1:
            raise ValidationError("Quantity must be at least 1")
        oid = to_object_id(product_id)
        updated = None
        if oid is not None:
            updated = self.products.find_one_and_update(
                {"_id": oid, "stock": {"$gte": amount}},
                {"$inc": {"stock": -amount}, "$set": {"updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is not None:
            return serialize(updated)

        doc = self._find(product_id)
        if not doc:
            raise NotFoundError(f"product {product_id} not found")
        logger.warning("Insufficient stock for product %s: requested %s, available %s",
                       product_id, amount, doc.get("stock", 0))
        raise InsufficientStockError(str(doc["_id"]), doc.get("name"), amount, doc.get("stock", 0))

    def restore_stock(self, product_id: str, amount: int):
        oid = to_object_id(product_id)
        self.products.update_one({"_id": oid}, {"$inc": {"stock": amount}, "$set": {"updated_at": utcnow()}})
        logger.warning("Restored %s units of stock to product %s", amount, product_id)

    def add_review(self, product_id: str, reviewer_id: str, comment: Optional[str], rating: int) -> dict:
        doc = self._find(product_id)
        if not doc:
            raise NotFoundError("Product not found")
        if doc.get("user_id") == reviewer_id:
            raise AuthorizationError("Owners cannot review their own products")
        review = build(Review, {"user_id": reviewer_id, "comment": comment, "rating": rating})

        ratings = [r["rating"] for r in doc.get("reviews", [])] + [review.rating]
        average = round(sum(ratings) / len(ratings), 2)
        updated = self.products.find_one_and_update(
            {"_id": doc["_id"]},
            {"$push": {"reviews": review.model_dump()}, "$set": {"rating": average, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("User %s reviewed product %s", reviewer_id, product_id)
        return serialize(updated)
