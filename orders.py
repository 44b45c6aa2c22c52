"""
Checkout and order records.

Placing an order is three separate writes with no transaction around them:

1. insert the order,
2. empty the buyer's cart,
3. mark every purchased phone unavailable.

If step 2 or 3 fails the order from step 1 stays in place and the error
reaches the caller; nothing is rolled back. Everything is validated before
step 1 so the common failures (empty cart, sold phone) write nothing.
Notifications and the confirmation email run afterwards and never fail the
checkout.
"""

import logging
import random
import string
import time
from collections import OrderedDict
from typing import List

from auth import Permission, authorize, has_permission
from cart import is_purchasable
from database import create_document, now, stringify, to_object_id
from errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from hooks import PostCommit
from listings import find_users
from mailer import order_confirmation
from notifications import CART_UPDATED, NEW_ORDER, ORDER_CREATED, ORDER_STATUS_UPDATED
from schemas import Order, OrderItem, OrderStatus, PlaceOrderRequest, StatusChange

logger = logging.getLogger(__name__)

ITEM_PHONE_FIELDS = {"title": 1, "brand": 1, "images": 1, "condition": 1}
BUYER_FIELDS = {"name": 1, "email": 1, "phone": 1}
TERMINAL_STATUSES = {OrderStatus.completed.value, OrderStatus.cancelled.value}


def generate_order_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


class OrderService:
    def __init__(self, db, notifier, mailer):
        self.db = db
        self.notifier = notifier
        self.mailer = mailer

    def place(self, user: dict, data: PlaceOrderRequest) -> dict:
        authorize(user, Permission.shop)
        user_id = user["_id"]
        cart = self.db["cart"].find_one({"user_id": user_id})
        if not cart or not cart.get("items"):
            raise ValidationError("Cart is empty")

        phones = {}
        items: List[OrderItem] = []
        for line in cart["items"]:
            phone = self.db["phone"].find_one({"_id": to_object_id(line["phone_id"])})
            if not is_purchasable(phone):
                title = phone["title"] if phone else line["phone_id"]
                raise ValidationError(f'"{title}" is no longer available')
            phones[line["phone_id"]] = phone
            # live price, not whatever it was when the line was added
            items.append(OrderItem(
                phone_id=line["phone_id"],
                seller_id=phone["seller_id"],
                quantity=line["quantity"],
                price=phone["price"],
            ))

        stamp = now()
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            items=items,
            total_amount=round(sum(item.price * item.quantity for item in items), 2),
            delivery_address=data.delivery_address,
            contact_number=data.contact_number,
            notes=data.notes,
            status=OrderStatus.pending,
            status_history=[StatusChange(status=OrderStatus.pending, timestamp=stamp, updated_by=user_id)],
        )
        order_id = create_document(self.db, "order", order)
        self.db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": now()}})
        self.db["phone"].update_many(
            {"_id": {"$in": [p["_id"] for p in phones.values()]}},
            {"$set": {"is_available": False, "updated_at": now()}},
        )
        placed = stringify(self.db["order"].find_one({"_id": to_object_id(order_id)}))
        logger.info("order %s placed by %s for %.2f", placed["order_number"], user_id, placed["total_amount"])

        hooks = PostCommit()
        self._notify_sellers(hooks, placed, user)
        hooks.add(ORDER_CREATED, self.notifier.to_user, user_id, ORDER_CREATED, {
            "order_id": placed["_id"],
            "order_number": placed["order_number"],
            "status": placed["status"],
        })
        hooks.add(CART_UPDATED, self.notifier.to_user, user_id, CART_UPDATED, {"user_id": user_id, "items": []})
        subject, body = order_confirmation(placed, phones)
        hooks.add("order_confirmation", self.mailer.send, placed["delivery_address"]["email"], subject, body)
        hooks.run()
        return placed

    def _notify_sellers(self, hooks: PostCommit, order: dict, buyer: dict) -> None:
        by_seller = OrderedDict()
        for item in order["items"]:
            by_seller.setdefault(item["seller_id"], []).append(item)
        address = order["delivery_address"]
        for seller_id, items in by_seller.items():
            hooks.add(NEW_ORDER, self.notifier.to_user, seller_id, NEW_ORDER, {
                "order_id": order["_id"],
                "order_number": order["order_number"],
                "phone_ids": [item["phone_id"] for item in items],
                "buyer": {
                    "id": buyer["_id"],
                    "name": f"{address['first_name']} {address['last_name']}",
                    "email": address["email"],
                    "phone": order["contact_number"],
                },
                "delivery_address": address,
                "total_amount": sum(item["price"] * item["quantity"] for item in items),
            })

    def _attach_phones(self, orders: List[dict]) -> List[dict]:
        ids = {item["phone_id"] for order in orders for item in order.get("items", [])}
        phones = {}
        for phone in self.db["phone"].find({"_id": {"$in": [to_object_id(i) for i in ids]}}, ITEM_PHONE_FIELDS):
            phones[str(phone["_id"])] = stringify(phone)
        for order in orders:
            for item in order.get("items", []):
                item["phone"] = phones.get(item["phone_id"])
        return orders

    def mine(self, user: dict) -> List[dict]:
        authorize(user, Permission.shop)
        cursor = self.db["order"].find({"user_id": user["_id"]}).sort("created_at", -1)
        return self._attach_phones([stringify(doc) for doc in cursor])

    def sales(self, seller: dict) -> List[dict]:
        """Orders containing the seller's phones, cut down to just those lines."""
        authorize(seller, Permission.view_sales)
        seller_id = seller["_id"]
        cursor = self.db["order"].find({"items.seller_id": seller_id}).sort("created_at", -1)
        sales = []
        for order in cursor:
            items = [item for item in order.get("items", []) if item.get("seller_id") == seller_id]
            if not items:
                continue
            order["items"] = items
            order["total_amount"] = sum(item["price"] * item["quantity"] for item in items)
            sales.append(stringify(order))
        buyers = find_users(self.db, (o["user_id"] for o in sales), BUYER_FIELDS)
        for order in sales:
            order["buyer"] = buyers.get(order["user_id"])
        return self._attach_phones(sales)

    def _load_visible(self, user: dict, order_id: str) -> dict:
        order = self.db["order"].find_one({"_id": to_object_id(order_id)})
        if not order:
            raise NotFoundError("Order not found")
        is_buyer = order["user_id"] == user["_id"]
        if not (is_buyer or self._sells_in(user, order) or has_permission(user, Permission.manage_all_orders)):
            raise AuthorizationError("Unauthorized access to order")
        return order

    def _sells_in(self, user: dict, order: dict) -> bool:
        return has_permission(user, Permission.view_sales) and any(
            item.get("seller_id") == user["_id"] for item in order.get("items", [])
        )

    def get(self, user: dict, order_id: str) -> dict:
        order = self._load_visible(user, order_id)
        return self._attach_phones([stringify(order)])[0]

    def update_status(self, user: dict, order_id: str, status: OrderStatus) -> dict:
        """Move an order along; completed and cancelled orders are final."""
        order = self.db["order"].find_one({"_id": to_object_id(order_id)})
        if not order:
            raise NotFoundError("Order not found")
        if not (self._sells_in(user, order) or has_permission(user, Permission.manage_all_orders)):
            raise AuthorizationError("Unauthorized to update order status")

        status = OrderStatus(status).value
        current = order.get("status")
        if current in TERMINAL_STATUSES:
            raise InvalidStateError(f"Order is already {current}")
        stamp = now()
        change = StatusChange(status=status, timestamp=stamp, updated_by=user["_id"]).model_dump()
        result = self.db["order"].update_one(
            {"_id": order["_id"], "status": current},
            {"$set": {"status": status, "updated_at": stamp}, "$push": {"status_history": change}},
        )
        if result.matched_count == 0:
            raise InvalidStateError("Order status changed, reload and try again")
        updated = stringify(self.db["order"].find_one({"_id": order["_id"]}))
        logger.info("order %s moved %s -> %s by %s", updated["order_number"], current, status, user["_id"])

        hooks = PostCommit()
        hooks.add(ORDER_STATUS_UPDATED, self.notifier.to_user, updated["user_id"], ORDER_STATUS_UPDATED, {
            "order_id": updated["_id"],
            "order_number": updated["order_number"],
            "status": status,
            "updated_at": stamp,
        })
        hooks.run()
        return updated
