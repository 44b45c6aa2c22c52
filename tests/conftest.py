import itertools

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from accounts import AccountService
from analytics import SellerAnalytics
from auth import create_access_token
from cart import CartService
from database import create_document
from favorites import FavoritesService
from listings import ListingCatalog
from mailer import RecordingMailer
from main import build_app
from media import RecordingMedia
from moderation import ListingModeration
from notifications import RecordingNotifier
from orders import OrderService
from schemas import Phone, User

ADDRESS = {
    "first_name": "Nimal",
    "last_name": "Perera",
    "email": "nimal@swapcell.lk",
    "address_line1": "12 Galle Road",
    "city": "Colombo",
    "district": "Colombo",
    "province": "Western Province",
}
CONTACT = "0771234567"


@pytest.fixture
def db():
    return mongomock.MongoClient()["swapcell_test"]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def media():
    return RecordingMedia()


@pytest.fixture
def moderation(db, notifier):
    return ListingModeration(db, notifier)


@pytest.fixture
def catalog(db, notifier, media):
    return ListingCatalog(db, notifier, media)


@pytest.fixture
def carts(db, notifier):
    return CartService(db, notifier)


@pytest.fixture
def orders(db, notifier, mailer):
    return OrderService(db, notifier, mailer)


@pytest.fixture
def favorites(db):
    return FavoritesService(db)


@pytest.fixture
def accounts(db, mailer, media):
    return AccountService(db, mailer, media)


@pytest.fixture
def analytics(db):
    return SellerAnalytics(db)


@pytest.fixture
def app(db, notifier, mailer, media):
    return build_app(db, notifier, mailer, media)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role="buyer", **fields):
        n = next(counter)
        fields.setdefault("name", f"{role.title()} {n}")
        fields.setdefault("email", f"{role}{n}@swapcell.lk")
        fields.setdefault("password_hash", "not-a-real-hash")
        user_id = create_document(db, "user", User(role=role, **fields))
        doc = db["user"].find_one({"_id": ObjectId(user_id)})
        doc["_id"] = str(doc["_id"])
        return doc

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def seller(make_user):
    return make_user("seller")


@pytest.fixture
def buyer(make_user):
    return make_user("buyer")


@pytest.fixture
def make_phone(db):
    def _make(seller, status="pending", **fields):
        fields.setdefault("title", "iPhone 13 128GB")
        fields.setdefault("brand", "Apple")
        fields.setdefault("price", 45000)
        fields.setdefault("condition", "Excellent")
        phone = Phone(seller_id=seller["_id"], status=status, **fields)
        return create_document(db, "phone", phone)

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user['_id']})}"}

    return _headers


def phone_doc(db, phone_id):
    return db["phone"].find_one({"_id": ObjectId(phone_id)})
