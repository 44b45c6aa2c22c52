"""
Shopping carts, one document per user.

Lines are changed with single atomic updates rather than read-modify-write of
the whole ``items`` array: an existing line is bumped with ``$inc`` on the
matched element, a new line is added with ``$push`` guarded by "phone not
already in the cart". Two concurrent adds for the same phone therefore both
land and no increment is lost.
"""

import logging
from typing import Iterable, Optional

from auth import Permission, authorize
from database import now, stringify, to_object_id
from errors import NotFoundError, ValidationError
from hooks import PostCommit
from listings import SELLER_FIELDS, find_users
from notifications import CART_UPDATED
from schemas import GuestCartItem, ListingStatus

logger = logging.getLogger(__name__)

PHONE_FIELDS = {"title": 1, "brand": 1, "price": 1, "condition": 1, "images": 1, "seller_id": 1, "is_available": 1, "status": 1}


def is_purchasable(phone: Optional[dict]) -> bool:
    return bool(phone) and phone.get("is_available", False) and phone.get("status") == ListingStatus.approved.value


class CartService:
    def __init__(self, db, notifier):
        self.db = db
        self.notifier = notifier

    def _purchasable_phone(self, phone_id: str) -> dict:
        phone = self.db["phone"].find_one({"_id": to_object_id(phone_id)})
        if not phone:
            raise NotFoundError("Phone not found")
        if not is_purchasable(phone):
            raise NotFoundError("Phone not available")
        return phone

    def _ensure_cart(self, user_id: str) -> None:
        stamp = now()
        self.db["cart"].update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"items": [], "created_at": stamp}, "$set": {"updated_at": stamp}},
            upsert=True,
        )

    def _increment(self, user_id: str, phone_id: str, quantity: int) -> None:
        carts = self.db["cart"]
        self._ensure_cart(user_id)
        # a losing $push means another request added the line first, so bump it instead
        for _ in range(3):
            stamp = now()
            result = carts.update_one(
                {"user_id": user_id, "items.phone_id": phone_id},
                {"$inc": {"items.$.quantity": quantity}, "$set": {"updated_at": stamp}},
            )
            if result.matched_count:
                return
            result = carts.update_one(
                {"user_id": user_id, "items.phone_id": {"$ne": phone_id}},
                {"$push": {"items": {"phone_id": phone_id, "quantity": quantity}}, "$set": {"updated_at": stamp}},
            )
            if result.matched_count:
                return
        raise RuntimeError(f"cart line for {phone_id} kept changing under update")

    def _publish(self, user_id: str) -> dict:
        cart = self.view(user_id)
        hooks = PostCommit()
        hooks.add(CART_UPDATED, self.notifier.to_user, user_id, CART_UPDATED, cart)
        hooks.run()
        return cart

    def view(self, user_id: str) -> dict:
        """The cart with each line's phone and seller attached."""
        cart = self.db["cart"].find_one({"user_id": user_id})
        if not cart:
            return {"user_id": user_id, "items": []}
        stringify(cart)
        ids = []
        for item in cart.get("items", []):
            try:
                ids.append(to_object_id(item["phone_id"]))
            except ValidationError:
                continue
        phones = {str(p["_id"]): stringify(p) for p in self.db["phone"].find({"_id": {"$in": ids}}, PHONE_FIELDS)}
        sellers = find_users(self.db, (p.get("seller_id") for p in phones.values()), SELLER_FIELDS)
        for phone in phones.values():
            phone["seller"] = sellers.get(phone.get("seller_id"))
        for item in cart.get("items", []):
            item["phone"] = phones.get(item["phone_id"])
        return cart

    def get(self, user: dict) -> dict:
        authorize(user, Permission.shop)
        return self.view(user["_id"])

    def add(self, user: dict, phone_id: str, quantity: int = 1) -> dict:
        authorize(user, Permission.shop)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        self._purchasable_phone(phone_id)
        self._increment(user["_id"], phone_id, quantity)
        return self._publish(user["_id"])

    def update_line(self, user: dict, phone_id: str, quantity: int) -> dict:
        """Set a line's quantity; 0 removes it, an absent line is left alone."""
        authorize(user, Permission.shop)
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")
        stamp = now()
        if quantity == 0:
            self.db["cart"].update_one(
                {"user_id": user["_id"]},
                {"$pull": {"items": {"phone_id": phone_id}}, "$set": {"updated_at": stamp}},
            )
        else:
            self.db["cart"].update_one(
                {"user_id": user["_id"], "items.phone_id": phone_id},
                {"$set": {"items.$.quantity": quantity, "updated_at": stamp}},
            )
        return self._publish(user["_id"])

    def remove(self, user: dict, phone_id: str) -> dict:
        return self.update_line(user, phone_id, 0)

    def clear(self, user: dict) -> dict:
        authorize(user, Permission.shop)
        self.db["cart"].update_one({"user_id": user["_id"]}, {"$set": {"items": [], "updated_at": now()}})
        return self._publish(user["_id"])

    def merge(self, user: dict, guest_items: Iterable[GuestCartItem]) -> dict:
        """Fold a logged-out cart into the user's; phones that can't be bought are dropped."""
        authorize(user, Permission.shop)
        for item in guest_items:
            try:
                self._purchasable_phone(item.phone_id)
            except (NotFoundError, ValidationError):
                logger.info("skipping guest cart line %s for %s", item.phone_id, user["_id"])
                continue
            self._increment(user["_id"], item.phone_id, item.quantity)
        return self._publish(user["_id"])
