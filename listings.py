"""
Phone listings as sellers and shoppers see them.

Moderation lives in ``moderation.py``; this module covers creation, public
browsing, owner edits and deletes, plus the helpers both modules use to attach
seller detail and paginate.
"""

import logging
import math
import re
from typing import Iterable, List, Optional

from pymongo import ReturnDocument

from auth import Permission, authorize, ensure_owner, has_permission
from database import create_document, now, stringify, to_object_id
from errors import NotFoundError, ValidationError
from hooks import PostCommit
from notifications import NEW_PHONE_LISTING
from schemas import ListingCreate, ListingStatus, ListingUpdate, Phone

logger = logging.getLogger(__name__)

SELLER_FIELDS = {"name": 1, "email": 1, "phone": 1, "profile_picture": 1, "rating": 1, "review_count": 1, "created_at": 1}
APPROVER_FIELDS = {"name": 1, "email": 1}
SORTABLE_FIELDS = {"created_at", "updated_at", "price", "title", "brand", "views", "approved_at", "rejected_at"}
MAX_PAGE_SIZE = 100
BROWSE_LIMIT = 50


# ---------- Shared helpers ----------

def contains(text: str) -> dict:
    """Case-insensitive literal substring match."""
    return {"$regex": re.escape(text), "$options": "i"}


def sort_spec(field: Optional[str], order: Optional[str]):
    if field not in SORTABLE_FIELDS:
        field = "created_at"
    return field, 1 if order == "asc" else -1


def page_window(page, page_size, default_size: int = 10):
    try:
        page = max(1, int(page))
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = min(MAX_PAGE_SIZE, max(1, int(page_size)))
    except (TypeError, ValueError):
        page_size = default_size
    return page, page_size, (page - 1) * page_size


def pagination(page: int, page_size: int, total: int, returned: int) -> dict:
    skip = (page - 1) * page_size
    return {
        "current_page": page,
        "total_pages": math.ceil(total / page_size),
        "total_items": total,
        "has_next": skip + returned < total,
        "has_prev": page > 1,
    }


def find_users(db, ids: Iterable[str], fields: dict) -> dict:
    object_ids = []
    for user_id in set(filter(None, ids)):
        try:
            object_ids.append(to_object_id(user_id))
        except ValidationError:
            continue
    users = {}
    for doc in db["user"].find({"_id": {"$in": object_ids}}, fields):
        users[str(doc["_id"])] = stringify(doc)
    return users


def attach_people(db, phones: List[dict], approver: bool = False) -> List[dict]:
    """Stringify ids and add ``seller`` (and optionally ``approver``) detail."""
    sellers = find_users(db, (p.get("seller_id") for p in phones), SELLER_FIELDS)
    approvers = find_users(db, (p.get("approved_by") for p in phones), APPROVER_FIELDS) if approver else {}
    for phone in phones:
        stringify(phone)
        phone["seller"] = sellers.get(phone.get("seller_id"))
        if approver:
            phone["approver"] = approvers.get(phone.get("approved_by"))
    return phones


def populate(db, phone: dict, approver: bool = False) -> dict:
    return attach_people(db, [phone], approver=approver)[0]


def load_phone(db, phone_id: str) -> dict:
    phone = db["phone"].find_one({"_id": to_object_id(phone_id)})
    if not phone:
        raise NotFoundError("Phone not found")
    return phone


# ---------- Catalog ----------

class ListingCatalog:
    def __init__(self, db, notifier, media):
        self.db = db
        self.notifier = notifier
        self.media = media

    def create(self, user: dict, data: ListingCreate) -> dict:
        authorize(user, Permission.sell)
        phone = Phone(**data.model_dump(), seller_id=user["_id"], status=ListingStatus.pending)
        phone_id = create_document(self.db, "phone", phone)
        created = populate(self.db, self.db["phone"].find_one({"_id": to_object_id(phone_id)}))
        logger.info("listing %s created by %s", phone_id, user["_id"])

        hooks = PostCommit()
        hooks.add(NEW_PHONE_LISTING, self.notifier.broadcast, NEW_PHONE_LISTING, created)
        hooks.run()
        return created

    def browse(self, brand=None, condition=None, min_price=None, max_price=None, search=None, sort=None) -> List[dict]:
        f = {"status": ListingStatus.approved.value, "is_available": True}
        if brand:
            f["brand"] = contains(brand)
        if condition:
            f["condition"] = condition
        if min_price is not None or max_price is not None:
            f["price"] = {}
            if min_price is not None:
                f["price"]["$gte"] = min_price
            if max_price is not None:
                f["price"]["$lte"] = max_price
        if search:
            f["$or"] = [{"title": contains(search)}, {"brand": contains(search)}, {"description": contains(search)}]

        cursor = self.db["phone"].find(f)
        if sort == "price_asc":
            cursor = cursor.sort("price", 1)
        elif sort == "price_desc":
            cursor = cursor.sort("price", -1)
        else:
            cursor = cursor.sort("created_at", -1)
        return attach_people(self.db, list(cursor.limit(BROWSE_LIMIT)))

    def get(self, phone_id: str, viewer: Optional[dict] = None) -> dict:
        phone = load_phone(self.db, phone_id)
        if phone.get("status") != ListingStatus.approved.value:
            is_owner = viewer is not None and phone.get("seller_id") == viewer["_id"]
            if not is_owner and not (viewer and has_permission(viewer, Permission.moderate_listings)):
                raise NotFoundError("Phone not found")
        phone = self.db["phone"].find_one_and_update(
            {"_id": phone["_id"]}, {"$inc": {"views": 1}}, return_document=ReturnDocument.AFTER
        )
        return populate(self.db, phone)

    def update(self, user: dict, phone_id: str, data: ListingUpdate) -> dict:
        authorize(user, Permission.sell)
        phone = load_phone(self.db, phone_id)
        ensure_owner(user, phone["seller_id"], "You can only edit your own listings")

        update = data.model_dump(exclude_none=True)
        if not update:
            return populate(self.db, phone)
        update["updated_at"] = now()
        self.db["phone"].update_one({"_id": phone["_id"]}, {"$set": update})

        hooks = PostCommit()
        if "images" in update:
            dropped = [url for url in phone.get("images", []) if url not in update["images"]]
            if dropped:
                hooks.add("media_delete", self.media.delete, dropped)
        hooks.run()
        return populate(self.db, self.db["phone"].find_one({"_id": phone["_id"]}))

    def delete(self, user: dict, phone_id: str) -> None:
        authorize(user, Permission.sell)
        phone = load_phone(self.db, phone_id)
        ensure_owner(user, phone["seller_id"], "You can only delete your own listings")
        self.db["phone"].delete_one({"_id": phone["_id"]})
        logger.info("listing %s deleted by %s", phone_id, user["_id"])

        hooks = PostCommit()
        if phone.get("images"):
            hooks.add("media_delete", self.media.delete, phone["images"])
        hooks.run()

    def mine(self, user: dict) -> List[dict]:
        authorize(user, Permission.sell)
        cursor = self.db["phone"].find({"seller_id": user["_id"]}).sort("created_at", -1)
        return [stringify(doc) for doc in cursor]

    def suggestions(self, query: Optional[str]) -> List[str]:
        if not query or not query.strip():
            return []
        cursor = self.db["phone"].find(
            {"status": ListingStatus.approved.value, "title": contains(query.strip())}, {"title": 1}
        ).limit(5)
        return [doc["title"] for doc in cursor]
