"""
Order workflow: placement, stock reconciliation, status changes and removal.

Stock is reserved with a conditional decrement (only when stock >= quantity),
so concurrent orders cannot drive a product below zero. A reservation that
fails part way releases what it already took and removes the order it
inserted. Deleting an order claims it with a single find_one_and_delete, so
stock is restored by exactly one caller.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import ORDERS, PRODUCTS, USERS, to_object_id, utcnow
from errors import Forbidden, Internal, InvalidRequest, NotFound
from schemas import ORDER_STATUSES, Order, OrderItem, OrderLine
from security import Identity, Permission, can_act_on, has_permission

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(self, db: Database):
        self.orders = db[ORDERS]
        self.products = db[PRODUCTS]
        self.users = db[USERS]

    # ----- placement -----

    def create_order(self, user_id: str, items: Sequence[OrderLine]) -> dict:
        """Validate lines against live stock, persist the order, reserve stock.

        Prices are captured from the product at this moment; the stored total
        is the sum of those snapshot prices times quantities.
        """
        if not items:
            raise InvalidRequest("Order must contain at least one item")
        owner = to_object_id(user_id, "user")

        lines: List[OrderItem] = []
        for line in items:
            if line.quantity < 1:
                raise InvalidRequest("Quantity must be at least 1")
            product_id = to_object_id(line.product_id, "product")
            product = self.products.find_one({"_id": product_id})
            if product is None:
                raise NotFound(f"Product not found: {line.product_id}")
            if product.get("stock", 0) < line.quantity:
                raise InvalidRequest(f"Insufficient stock for product: {product.get('name', line.product_id)}")
            lines.append(OrderItem(product_id=product_id, quantity=line.quantity, price=product["price"]))

        now = utcnow()
        order = Order(user_id=owner, items=lines).model_dump()
        order["created_at"] = now
        order["updated_at"] = now
        order["_id"] = self.orders.insert_one(order).inserted_id

        try:
            self._reserve_stock(order["items"])
        except Exception:
            logger.warning("Stock reservation failed, removing order %s", order["_id"])
            self.orders.delete_one({"_id": order["_id"]})
            raise

        logger.info("Order %s created for user %s, total %.2f", order["_id"], owner, order["total"])
        return order

    def _reserve_stock(self, items: List[dict]) -> None:
        reserved: List[dict] = []
        try:
            for item in items:
                result = self.products.update_one(
                    {"_id": item["product_id"], "stock": {"$gte": item["quantity"]}},
                    {"$inc": {"stock": -item["quantity"]}},
                )
                if result.matched_count == 0:
                    raise InvalidRequest(f"Insufficient stock for product: {item['product_id']}")
                reserved.append(item)
        except Exception:
            if reserved:
                self._release_stock(reserved)
            raise

    def _release_stock(self, items: Iterable[dict]) -> None:
        items = list(items)
        for index, item in enumerate(items):
            try:
                result = self.products.update_one(
                    {"_id": item["product_id"]}, {"$inc": {"stock": item["quantity"]}}
                )
            except PyMongoError as exc:
                logger.error(
                    "Stock restore interrupted; not restored: %s",
                    [(str(i["product_id"]), i["quantity"]) for i in items[index:]],
                )
                raise Internal("Stock restore incomplete") from exc
            if result.matched_count == 0:
                logger.warning("Product %s no longer exists; %d units not restored",
                               item["product_id"], item["quantity"])

    # ----- transitions -----

    def update_order_status(self, order_id: str, status: str) -> dict:
        if status not in ORDER_STATUSES:
            raise InvalidRequest(f"Invalid order status: {status}")
        oid = to_object_id(order_id, "order")
        order = self.orders.find_one_and_update(
            {"_id": oid},
            {"$set": {"status": status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            raise NotFound("Order not found")
        logger.info("Order %s moved to %s", oid, status)
        return order

    def delete_order(self, order_id: str, requester: Identity) -> None:
        oid = to_object_id(order_id, "order")
        order = self.orders.find_one({"_id": oid}, {"user_id": 1})
        if order is None:
            raise NotFound("Order not found")
        if not can_act_on(requester, order.get("user_id"), Permission.MANAGE_ORDERS):
            raise Forbidden("Access denied")

        claimed = self.orders.find_one_and_delete({"_id": oid})
        if claimed is None:
            raise NotFound("Order not found")
        self._release_stock(claimed.get("items", []))
        logger.info("Order %s deleted by %s, stock restored", oid, requester.user_id)

    # ----- reads -----

    def get_order(self, order_id: str, requester: Identity) -> dict:
        oid = to_object_id(order_id, "order")
        order = self.orders.find_one({"_id": oid})
        if order is None:
            raise NotFound("Order not found")
        if not can_act_on(requester, order.get("user_id"), Permission.MANAGE_ORDERS):
            raise Forbidden("Access denied")
        return self.populate(order)

    def get_orders(self, requester: Identity, status: Optional[str] = None) -> List[dict]:
        query = {}
        if not has_permission(requester, Permission.MANAGE_ORDERS):
            query["user_id"] = to_object_id(requester.user_id, "user")
        if status is not None:
            if status not in ORDER_STATUSES:
                raise InvalidRequest(f"Invalid order status: {status}")
            query["status"] = status
        cursor = self.orders.find(query).sort([("created_at", DESCENDING)])
        return [self.populate(order) for order in cursor]

    def populate(self, order: dict) -> dict:
        """Attach user and product snapshots; dangling references become {}."""
        out = dict(order)
        user_id = order.get("user_id")
        if isinstance(user_id, ObjectId):
            out["user"] = self.users.find_one({"_id": user_id}, {"password_hash": 0}) or {}
        items = []
        for item in order.get("items", []):
            item = dict(item)
            product_id = item.get("product_id")
            if isinstance(product_id, ObjectId):
                item["product"] = self.products.find_one({"_id": product_id}) or {}
            items.append(item)
        out["items"] = items
        return out
