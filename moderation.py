"""
Admin moderation of phone listings.

A listing is created ``pending`` and an admin moves it once, to ``approved``
or to ``rejected``. Every transition is a conditional update on
``status == "pending"`` so two admins acting at the same time cannot both
win: the second one gets an InvalidStateError and the document is left as
the first one wrote it.

Sellers hear about decisions through the notifier after the write; a failed
emit is logged and never undoes the decision.
"""

import logging
from typing import Iterable, List, Optional

from pymongo import ReturnDocument

from auth import Permission, authorize
from database import now, stringify, to_object_id
from errors import InvalidStateError, NotFoundError, ValidationError
from hooks import PostCommit
from listings import attach_people, contains, page_window, pagination, populate, sort_spec
from notifications import LISTING_APPROVED, LISTING_REJECTED
from schemas import ListingStatus, Role

logger = logging.getLogger(__name__)

PENDING = ListingStatus.pending.value
APPROVED = ListingStatus.approved.value
REJECTED = ListingStatus.rejected.value


def approved_message(title: str) -> str:
    return f'Your listing "{title}" has been approved!'


def rejected_message(title: str) -> str:
    return f'Your listing "{title}" has been rejected.'


class ListingModeration:
    def __init__(self, db, notifier):
        self.db = db
        self.notifier = notifier

    # ---------- Transitions ----------

    def _transition(self, phone_id, update: dict, verb: str) -> dict:
        """Apply ``update`` only while the listing is still pending."""
        oid = to_object_id(phone_id)
        phone = self.db["phone"].find_one_and_update(
            {"_id": oid, "status": PENDING},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if phone is None:
            if self.db["phone"].count_documents({"_id": oid}) == 0:
                raise NotFoundError("Phone listing not found")
            raise InvalidStateError(f"Only pending listings can be {verb}")
        return phone

    def _approved_update(self, admin: dict, notes: Optional[str]) -> dict:
        stamp = now()
        update = {"status": APPROVED, "approved_by": admin["_id"], "approved_at": stamp, "updated_at": stamp}
        if notes:
            update["admin_notes"] = notes
        return update

    def _notify_approved(self, hooks: PostCommit, phone: dict) -> None:
        hooks.add(LISTING_APPROVED, self.notifier.to_user, phone["seller_id"], LISTING_APPROVED, {
            "phone_id": phone["_id"],
            "seller_id": phone["seller_id"],
            "phone": phone,
            "message": approved_message(phone["title"]),
        })

    def approve(self, admin: dict, phone_id: str, notes: Optional[str] = None) -> dict:
        authorize(admin, Permission.moderate_listings)
        phone = self._transition(phone_id, self._approved_update(admin, notes), "approved")
        phone = populate(self.db, phone, approver=True)
        logger.info("listing %s approved by %s", phone["_id"], admin["_id"])

        hooks = PostCommit()
        self._notify_approved(hooks, phone)
        hooks.run()
        return phone

    def reject(self, admin: dict, phone_id: str, reason: Optional[str], notes: Optional[str] = None) -> dict:
        authorize(admin, Permission.moderate_listings)
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        stamp = now()
        update = {
            "status": REJECTED,
            "rejected_at": stamp,
            "admin_notes": notes or reason,
            "is_available": False,
            "updated_at": stamp,
        }
        phone = self._transition(phone_id, update, "rejected")
        phone = populate(self.db, phone, approver=True)
        logger.info("listing %s rejected by %s: %s", phone["_id"], admin["_id"], reason)

        hooks = PostCommit()
        hooks.add(LISTING_REJECTED, self.notifier.to_user, phone["seller_id"], LISTING_REJECTED, {
            "phone_id": phone["_id"],
            "seller_id": phone["seller_id"],
            "phone": phone,
            "reason": phone["admin_notes"],
            "message": rejected_message(phone["title"]),
        })
        hooks.run()
        return phone

    def batch_approve(self, admin: dict, phone_ids: Iterable[str], notes: Optional[str] = None) -> int:
        """Approve every listed id that is still pending and return how many were.

        Ids that are malformed, missing or already decided are skipped, not reported.
        """
        authorize(admin, Permission.moderate_listings)
        ids = list(dict.fromkeys(phone_ids or []))
        if not ids:
            raise ValidationError("Phone IDs array is required")

        hooks = PostCommit()
        modified = 0
        for phone_id in ids:
            try:
                oid = to_object_id(phone_id)
            except ValidationError:
                logger.info("batch approve skipping malformed id %r", phone_id)
                continue
            phone = self.db["phone"].find_one_and_update(
                {"_id": oid, "status": PENDING},
                {"$set": self._approved_update(admin, notes)},
                return_document=ReturnDocument.AFTER,
            )
            if phone is None:
                continue
            modified += 1
            self._notify_approved(hooks, populate(self.db, phone, approver=True))

        logger.info("batch approve by %s: %d of %d listings", admin["_id"], modified, len(ids))
        hooks.run()
        return modified

    # ---------- Queries ----------

    def _page(self, query: dict, page, page_size, sort_field, sort_order, approver=False, default_size=10) -> dict:
        page, page_size, skip = page_window(page, page_size, default_size)
        field, direction = sort_spec(sort_field, sort_order)
        cursor = self.db["phone"].find(query).sort(field, direction).skip(skip).limit(page_size)
        listings = attach_people(self.db, list(cursor), approver=approver)
        total = self.db["phone"].count_documents(query)
        return {"listings": listings, "pagination": pagination(page, page_size, total, len(listings))}

    def list_pending(self, admin: dict, page=1, page_size=10, sort_field="created_at", sort_order="desc") -> dict:
        authorize(admin, Permission.moderate_listings)
        return self._page({"status": PENDING}, page, page_size, sort_field, sort_order)

    def list_all(self, admin: dict, status: Optional[str] = None, search: Optional[str] = None,
                 brand: Optional[str] = None, page=1, page_size=20,
                 sort_field="created_at", sort_order="desc") -> dict:
        authorize(admin, Permission.moderate_listings)
        query = {}
        if status and status != "all":
            if status not in {s.value for s in ListingStatus}:
                raise ValidationError(f"Unknown status: {status}")
            query["status"] = status
        if search:
            query["$or"] = [{"title": contains(search)}, {"brand": contains(search)}, {"description": contains(search)}]
        if brand and brand != "all":
            query["brand"] = contains(brand)
        return self._page(query, page, page_size, sort_field, sort_order, approver=True, default_size=20)

    def dashboard_stats(self, admin: dict) -> dict:
        authorize(admin, Permission.moderate_listings)
        phones = self.db["phone"]
        users = self.db["user"]
        stats = {
            "pending_count": phones.count_documents({"status": PENDING}),
            "approved_count": phones.count_documents({"status": APPROVED}),
            "rejected_count": phones.count_documents({"status": REJECTED}),
            "total_users": users.count_documents({"role": {"$in": [Role.buyer.value, Role.seller.value]}}),
            "total_sellers": users.count_documents({"role": Role.seller.value}),
        }
        recent_pending = phones.find({"status": PENDING}).sort("created_at", -1).limit(10)
        recent_approved = phones.find({"status": APPROVED}).sort("approved_at", -1).limit(5)
        return {
            "stats": stats,
            "recent_pending_listings": attach_people(self.db, list(recent_pending)),
            "recent_approved_listings": attach_people(self.db, list(recent_approved), approver=True),
        }

    def for_review(self, admin: dict, phone_id: str) -> dict:
        authorize(admin, Permission.moderate_listings)
        oid = to_object_id(phone_id)
        phone = self.db["phone"].find_one({"_id": oid})
        if not phone:
            raise NotFoundError("Phone listing not found")
        seller_id = phone["seller_id"]
        others = self.db["phone"].find(
            {"seller_id": seller_id, "_id": {"$ne": oid}},
            {"title": 1, "status": 1, "created_at": 1, "approved_at": 1, "rejected_at": 1},
        ).sort("created_at", -1).limit(5)
        return {
            "phone": populate(self.db, phone, approver=True),
            "seller_context": {
                "other_listings": [stringify(doc) for doc in others],
                "total_listings": self.db["phone"].count_documents({"seller_id": seller_id}),
                "approved_listings": self.db["phone"].count_documents({"seller_id": seller_id, "status": APPROVED}),
                "rejected_listings": self.db["phone"].count_documents({"seller_id": seller_id, "status": REJECTED}),
            },
        }

    def activity_log(self, admin: dict, page=1, page_size=20) -> dict:
        authorize(admin, Permission.moderate_listings)
        query = {"status": {"$in": [APPROVED, REJECTED]}}
        page, page_size, skip = page_window(page, page_size, 20)
        cursor = self.db["phone"].find(query).sort("updated_at", -1).skip(skip).limit(page_size)
        activities: List[dict] = attach_people(self.db, list(cursor), approver=True)
        total = self.db["phone"].count_documents(query)
        return {"activities": activities, "pagination": pagination(page, page_size, total, len(activities))}
