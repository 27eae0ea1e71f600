"""
Order workflow: placing orders against product stock and moving them
through their status and payment lifecycle.

Status transitions:

    IN_PROGRESS --(paid)--> COMPLETED --> RETURNED
         |
         +--> CANCELED

RETURNED and CANCELED are terminal. The seller may also overwrite the
status directly with `update_order_status`, which skips these rules.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import CatalogService
from database import create_document, get_documents, serialize, to_object_id, utcnow
from errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from schemas import Order, OrderStatus, PaymentStatus
from validation import build, require

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    # floats go through str() so 19.99 stays 19.99
    return Decimal(str(value))


class OrderService:
    def __init__(self, db: Database, catalog: CatalogService):
        self.db = db
        self.catalog = catalog

    @property
    def orders(self):
        return self.db["order"]

    def _load(self, order_id) -> dict:
        oid = to_object_id(order_id)
        doc = self.orders.find_one({"_id": oid}) if oid is not None else None
        if not doc:
            raise NotFoundError("Order not found")
        return doc

    def _set(self, doc: dict, changes: dict) -> dict:
        changes["updated_at"] = utcnow()
        updated = self.orders.find_one_and_update(
            {"_id": doc["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        return serialize(updated)

    def create_order(self, buyer_id: str, seller_id: str, items: list, shipping_address_id: str) -> dict:
        require(buyer_id=buyer_id, seller_id=seller_id, items=items, shipping_address_id=shipping_address_id)
        for field, value in (("buyer_id", buyer_id), ("seller_id", seller_id)):
            if to_object_id(value) is None or not self.db["user"].find_one({"_id": to_object_id(value)}):
                raise NotFoundError(f"{field} {value} not found")
        address_oid = to_object_id(shipping_address_id)
        address = self.db["address"].find_one({"_id": address_oid}) if address_oid is not None else None
        if not address:
            raise NotFoundError(f"shipping address {shipping_address_id} not found")
        if address.get("user_id") != buyer_id:
            raise ValidationError("Shipping address does not belong to the buyer")

        lines = []
        for item in items:
            product_id = item.get("product_id")
            quantity = item.get("quantity")
            require(product_id=product_id, quantity=quantity)
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError(f"Invalid quantity for product {product_id}")
            lines.append((product_id, quantity))

        reserved = []
        total = Decimal("0")
        order_items = []
        try:
            for product_id, quantity in lines:
                # raises NotFoundError / InsufficientStockError for this item
                product = self.catalog.decrement_stock(product_id, quantity)
                reserved.append((product_id, quantity))
                # price comes from the same update that took the stock
                unit_price = product["price"]
                total += _money(unit_price) * quantity
                order_items.append({
                    "product_id": product_id,
                    "name": product.get("name"),
                    "quantity": quantity,
                    "price": unit_price,
                })

            order = build(Order, {
                "buyer_id": buyer_id,
                "seller_id": seller_id,
                "items": order_items,
                "total_amount": float(total.quantize(CENT, rounding=ROUND_HALF_UP)),
                "status": OrderStatus.IN_PROGRESS,
                "payment_status": PaymentStatus.PENDING,
                "order_date": utcnow(),
                "shipping_address_id": shipping_address_id,
            })
            data = order.model_dump(mode="json")
            data["order_date"] = order.order_date
            order_id = create_document(self.db, "order", data)
        except Exception:
            self._release(reserved)
            raise

        logger.info("Order %s placed by %s with seller %s, total %s",
                    order_id, buyer_id, seller_id, data["total_amount"])
        return serialize(self.orders.find_one({"_id": to_object_id(order_id)}))

    def _release(self, reserved):
        for product_id, quantity in reversed(reserved):
            self.catalog.restore_stock(product_id, quantity)

    def get_order(self, order_id: str, requester_id: str) -> dict:
        doc = self._load(order_id)
        if requester_id not in (doc["buyer_id"], doc["seller_id"]):
            raise AuthorizationError("Only the buyer or seller can view this order")
        return serialize(doc)

    def get_user_orders(self, user_id: str) -> List[dict]:
        return get_documents(self.db, "order", {"buyer_id": user_id}, sort=[("_id", 1)])

    def get_seller_orders(self, seller_id: str) -> List[dict]:
        return get_documents(self.db, "order", {"seller_id": seller_id}, sort=[("_id", 1)])

    def pay_order(self, order_id: str, requester_id: str) -> dict:
        # payment itself is simulated; marking PAID is the whole step
        doc = self._load(order_id)
        if requester_id != doc["buyer_id"]:
            logger.warning("User %s tried to pay order %s of buyer %s", requester_id, order_id, doc["buyer_id"])
            raise AuthorizationError("Only the buyer can pay for this order")
        if doc["payment_status"] == PaymentStatus.PAID.value:
            raise ConflictError("Order is already paid")
        if doc["status"] in (OrderStatus.CANCELED.value, OrderStatus.RETURNED.value):
            raise ConflictError(f"Cannot pay for an order that is {doc['status']}")
        order = self._set(doc, {"payment_status": PaymentStatus.PAID.value})
        logger.info("Order %s paid", order_id)
        return order

    def complete_order(self, order_id: str, requester_id: str) -> dict:
        doc = self._load(order_id)
        if requester_id not in (doc["buyer_id"], doc["seller_id"]):
            raise AuthorizationError("Only the buyer or seller can complete this order")
        if doc["status"] != OrderStatus.IN_PROGRESS.value:
            raise ConflictError(f"Only IN_PROGRESS orders can be completed, order is {doc['status']}")
        if doc["payment_status"] != PaymentStatus.PAID.value:
            raise ConflictError("Order must be paid before it is completed")
        order = self._set(doc, {"status": OrderStatus.COMPLETED.value, "delivery_date": utcnow()})
        logger.info("Order %s completed", order_id)
        return order

    def return_order(self, order_id: str, requester_id: str, reason: Optional[str]) -> dict:
        doc = self._load(order_id)
        if requester_id != doc["buyer_id"]:
            raise AuthorizationError("Only the buyer can return this order")
        if not reason or not reason.strip():
            raise ValidationError("returnReason is required")
        if doc["status"] != OrderStatus.COMPLETED.value:
            raise ConflictError(f"Only COMPLETED orders can be returned, order is {doc['status']}")
        order = self._set(doc, {"status": OrderStatus.RETURNED.value, "return_reason": reason.strip()})
        logger.info("Order %s returned", order_id)
        return order

    def cancel_order(self, order_id: str, requester_id: str) -> dict:
        doc = self._load(order_id)
        if requester_id not in (doc["buyer_id"], doc["seller_id"]):
            raise AuthorizationError("Only the buyer or seller can cancel this order")
        if doc["status"] != OrderStatus.IN_PROGRESS.value:
            raise ConflictError(f"Only IN_PROGRESS orders can be canceled, order is {doc['status']}")
        if doc["payment_status"] == PaymentStatus.PAID.value:
            raise ConflictError("Paid orders cannot be canceled")
        # the guarded update decides which caller cancels; the pre-image says whether stock went back already
        before = self.orders.find_one_and_update(
            {
                "_id": doc["_id"],
                "status": OrderStatus.IN_PROGRESS.value,
                "payment_status": {"$ne": PaymentStatus.PAID.value},
            },
            {"$set": {"status": OrderStatus.CANCELED.value, "stock_released": True, "updated_at": utcnow()}},
            return_document=ReturnDocument.BEFORE,
        )
        if before is None:
            raise ConflictError("Order changed while canceling, it can no longer be canceled")
        if before.get("stock_released"):
            logger.info("Order %s canceled again, stock was already released", order_id)
        else:
            self._release([(item["product_id"], item["quantity"]) for item in before["items"]])
        logger.info("Order %s canceled by %s", order_id, requester_id)
        return serialize(self._load(order_id))

    def update_order_status(self, order_id: str, requester_id: str, new_status: str) -> dict:
        doc = self._load(order_id)
        if requester_id != doc["seller_id"]:
            logger.warning("User %s is not the seller of order %s", requester_id, order_id)
            raise AuthorizationError("Unauthorized: Only the seller can update the order status")
        try:
            status = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(f"Invalid status value: {new_status}") from None
        order = self._set(doc, {"status": status.value})
        logger.info("Seller %s set order %s to %s", requester_id, order_id, status.value)
        return order

    def delete_order(self, order_id: str, requester_id: str):
        doc = self._load(order_id)
        if requester_id not in (doc["buyer_id"], doc["seller_id"]):
            raise AuthorizationError("Only the buyer or seller can delete this order")
        self.orders.delete_one({"_id": doc["_id"]})
        logger.info("Order %s deleted by %s", order_id, requester_id)
