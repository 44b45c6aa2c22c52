import pytest
from bson import ObjectId

from errors import AuthorizationError, NotFoundError, ValidationError
from schemas import GuestCartItem


def cart_lines(db, user):
    cart = db["cart"].find_one({"user_id": user["_id"]})
    return {item["phone_id"]: item["quantity"] for item in cart["items"]} if cart else {}


@pytest.fixture
def listed(seller, make_phone):
    return make_phone(seller, status="approved", title="OnePlus 9", brand="OnePlus", price=60000)


def test_add_creates_cart_and_notifies_owner(db, carts, notifier, buyer, listed, seller):
    cart = carts.add(buyer, listed)

    assert cart_lines(db, buyer) == {listed: 1}
    assert cart["items"][0]["phone"]["title"] == "OnePlus 9"
    assert cart["items"][0]["phone"]["seller"]["_id"] == seller["_id"]

    (room, payload), = notifier.events("cart_updated")
    assert room == f"user_{buyer['_id']}"
    assert payload["items"][0]["phone_id"] == listed


def test_repeated_add_increments_the_same_line(db, carts, buyer, listed):
    carts.add(buyer, listed)
    carts.add(buyer, listed, quantity=2)

    cart = db["cart"].find_one({"user_id": buyer["_id"]})
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3


def test_lines_keep_insertion_order(db, carts, buyer, seller, make_phone):
    first = make_phone(seller, status="approved", title="First")
    second = make_phone(seller, status="approved", title="Second")
    carts.add(buyer, first)
    carts.add(buyer, second)
    carts.add(buyer, first)

    items = db["cart"].find_one({"user_id": buyer["_id"]})["items"]
    assert [item["phone_id"] for item in items] == [first, second]


def test_add_refuses_missing_unavailable_or_unmoderated_phones(db, carts, notifier, buyer, seller, make_phone):
    sold = make_phone(seller, status="approved", is_available=False)
    pending = make_phone(seller)
    rejected = make_phone(seller, status="rejected")

    for phone_id in (str(ObjectId()), sold, pending, rejected):
        with pytest.raises(NotFoundError):
            carts.add(buyer, phone_id)

    assert db["cart"].count_documents({}) == 0
    assert notifier.sent == []


def test_add_rejects_non_positive_quantity(carts, buyer, listed):
    with pytest.raises(ValidationError):
        carts.add(buyer, listed, quantity=0)


def test_update_to_zero_removes_the_line(db, carts, buyer, listed):
    carts.add(buyer, listed, quantity=2)

    cart = carts.update_line(buyer, listed, 0)

    assert cart["items"] == []
    assert listed not in cart_lines(db, buyer)


def test_update_sets_quantity(db, carts, buyer, listed):
    carts.add(buyer, listed)
    carts.update_line(buyer, listed, 4)
    assert cart_lines(db, buyer) == {listed: 4}


def test_update_for_phone_not_in_cart_is_a_no_op(db, carts, buyer, listed, seller, make_phone):
    other = make_phone(seller, status="approved")
    carts.add(buyer, listed)

    cart = carts.update_line(buyer, other, 3)

    assert cart_lines(db, buyer) == {listed: 1}
    assert len(cart["items"]) == 1


def test_update_without_a_cart_returns_empty_cart(carts, buyer, listed):
    assert carts.update_line(buyer, listed, 2)["items"] == []


def test_update_rejects_negative_quantity(carts, buyer, listed):
    with pytest.raises(ValidationError):
        carts.update_line(buyer, listed, -1)


def test_remove_and_clear(db, carts, notifier, buyer, listed, seller, make_phone):
    other = make_phone(seller, status="approved")
    carts.add(buyer, listed)
    carts.add(buyer, other)

    carts.remove(buyer, listed)
    assert cart_lines(db, buyer) == {other: 1}

    notifier.clear()
    cart = carts.clear(buyer)
    assert cart["items"] == []
    assert cart_lines(db, buyer) == {}
    (_, payload), = notifier.events("cart_updated")
    assert payload["items"] == []


def test_merge_folds_guest_items(db, carts, notifier, buyer, listed, seller, make_phone):
    other = make_phone(seller, status="approved")
    sold = make_phone(seller, status="approved", is_available=False)
    carts.add(buyer, listed)
    notifier.clear()

    carts.merge(buyer, [
        GuestCartItem(phone_id=listed, quantity=2),
        GuestCartItem(phone_id=other),
        GuestCartItem(phone_id=sold),
        GuestCartItem(phone_id="garbage"),
    ])

    assert cart_lines(db, buyer) == {listed: 3, other: 1}
    assert len(notifier.events("cart_updated")) == 1


def test_get_cart_when_none_exists(carts, buyer):
    assert carts.get(buyer)["items"] == []


def test_cart_shows_deleted_phone_as_missing(db, carts, buyer, listed):
    carts.add(buyer, listed)
    db["phone"].delete_one({"_id": ObjectId(listed)})

    cart = carts.get(buyer)
    assert cart["items"][0]["phone"] is None


def test_cart_requires_a_known_role(carts, listed):
    with pytest.raises(AuthorizationError):
        carts.add({"_id": str(ObjectId()), "role": None}, listed)
