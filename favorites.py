from typing import List

from auth import Permission, authorize
from database import now, to_object_id
from errors import NotFoundError, ValidationError
from listings import attach_people


class FavoritesService:
    def __init__(self, db):
        self.db = db

    def toggle(self, user: dict, phone_id: str) -> List[str]:
        """Add the phone if absent, drop it if present; returns the new list.

        Last write wins if two toggles race on the same user.
        """
        authorize(user, Permission.shop)
        to_object_id(phone_id)
        oid = to_object_id(user["_id"])
        doc = self.db["user"].find_one({"_id": oid}, {"favorites": 1})
        if not doc:
            raise NotFoundError("User not found")
        favorites = doc.get("favorites", [])
        if phone_id in favorites:
            favorites = [fav for fav in favorites if fav != phone_id]
        else:
            favorites = favorites + [phone_id]
        self.db["user"].update_one({"_id": oid}, {"$set": {"favorites": favorites, "updated_at": now()}})
        return favorites

    def list(self, user: dict) -> List[dict]:
        authorize(user, Permission.shop)
        doc = self.db["user"].find_one({"_id": to_object_id(user["_id"])}, {"favorites": 1})
        ids = []
        for phone_id in (doc or {}).get("favorites", []):
            try:
                ids.append(to_object_id(phone_id))
            except ValidationError:
                continue
        by_id = {str(p["_id"]): p for p in self.db["phone"].find({"_id": {"$in": ids}})}
        phones = [by_id[str(oid)] for oid in ids if str(oid) in by_id]
        return attach_people(self.db, phones)
