import pytest
from bson import ObjectId

from errors import AuthorizationError, ValidationError


def test_toggle_twice_restores(favorites, buyer, seller, make_phone):
    phone_id = make_phone(seller, status="approved")

    assert favorites.toggle(buyer, phone_id) == [phone_id]
    assert favorites.toggle(buyer, phone_id) == []


def test_toggle_rejects_bad_ids(favorites, buyer):
    with pytest.raises(ValidationError):
        favorites.toggle(buyer, "nope")


def test_list_skips_deleted_phones(db, favorites, buyer, seller, make_phone):
    kept = make_phone(seller, status="approved", title="Kept")
    gone = make_phone(seller, status="approved", title="Gone")
    favorites.toggle(buyer, kept)
    favorites.toggle(buyer, gone)
    db["phone"].delete_one({"_id": ObjectId(gone)})

    listed = favorites.list(buyer)

    assert [p["title"] for p in listed] == ["Kept"]
    assert listed[0]["seller"]["_id"] == seller["_id"]


def test_favorites_need_a_role(favorites, seller, make_phone):
    with pytest.raises(AuthorizationError):
        favorites.toggle({"_id": str(ObjectId()), "role": "guest"}, make_phone(seller))
