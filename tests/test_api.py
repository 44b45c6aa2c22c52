import re
from datetime import timedelta

from bson import ObjectId

from conftest import ADDRESS, CONTACT
from database import now


def register(client, email="kasun@swapcell.lk", password="secret123", role="buyer"):
    return client.post("/auth/register", json={
        "name": "Kasun Silva", "email": email, "password": password, "role": role,
    })


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_register_then_login(client):
    res = register(client, email="Kasun@SwapCell.lk")
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["email"] == "kasun@swapcell.lk"
    assert "password_hash" not in body["user"]

    me = client.get("/me", headers=bearer(body["token"]))
    assert me.status_code == 200
    assert me.json()["role"] == "buyer"

    login = client.post("/auth/login", json={"email": "kasun@swapcell.lk", "password": "secret123"})
    assert login.status_code == 200
    bad = client.post("/auth/login", json={"email": "kasun@swapcell.lk", "password": "wrong-one"})
    assert bad.status_code == 401
    assert bad.json() == {"detail": "Invalid credentials"}


def test_duplicate_email_and_admin_self_signup_refused(client):
    register(client)
    again = register(client)
    assert again.status_code == 400
    assert again.json() == {"detail": "Email already registered"}

    assert register(client, email="boss@swapcell.lk", role="admin").status_code == 422


def test_password_reset_with_mailed_code(client, db, mailer):
    register(client)
    assert client.post("/auth/forgot-password", json={"email": "kasun@swapcell.lk"}).status_code == 200
    (to, _, body), = mailer.outbox
    assert to == "kasun@swapcell.lk"
    code = re.search(r"\b(\d{6})\b", body).group(1)

    wrong = client.post("/auth/reset-password", json={
        "email": "kasun@swapcell.lk", "code": "000000" if code != "000000" else "111111", "new_password": "fresh-pass",
    })
    assert wrong.status_code == 400

    ok = client.post("/auth/reset-password", json={
        "email": "kasun@swapcell.lk", "code": code, "new_password": "fresh-pass",
    })
    assert ok.status_code == 200
    login = client.post("/auth/login", json={"email": "kasun@swapcell.lk", "password": "fresh-pass"})
    assert login.status_code == 200
    assert "password_reset_code" not in db["user"].find_one({"email": "kasun@swapcell.lk"})


def test_expired_reset_code(client, db, mailer):
    register(client)
    client.post("/auth/forgot-password", json={"email": "kasun@swapcell.lk"})
    user = db["user"].find_one({"email": "kasun@swapcell.lk"})
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"password_reset_expires": now() - timedelta(minutes=1)}})

    res = client.post("/auth/reset-password", json={
        "email": "kasun@swapcell.lk", "code": user["password_reset_code"], "new_password": "fresh-pass",
    })
    assert res.status_code == 400
    assert res.json() == {"detail": "Invalid or expired verification code"}


def test_unknown_email_reset(client):
    res = client.post("/auth/forgot-password", json={"email": "ghost@swapcell.lk"})
    assert res.status_code == 404


def test_listing_goes_live_only_after_approval(client, notifier, seller, admin, auth_headers):
    created = client.post("/phones", headers=auth_headers(seller), json={
        "title": "Pixel 8", "brand": "Google", "price": 120000, "condition": "Excellent",
    })
    assert created.status_code == 201
    phone_id = created.json()["_id"]
    assert client.get("/phones").json() == []
    assert client.get(f"/phones/{phone_id}").status_code == 404

    approved = client.put(f"/admin/listings/{phone_id}/approve", headers=auth_headers(admin), json={})
    assert approved.status_code == 200
    assert approved.json()["message"] == "Listing approved successfully"
    assert [p["_id"] for p in client.get("/phones").json()] == [phone_id]

    (room, payload), = notifier.events("listing_approved")
    assert room == f"user_{seller['_id']}"
    assert payload["message"] == 'Your listing "Pixel 8" has been approved!'

    again = client.put(f"/admin/listings/{phone_id}/approve", headers=auth_headers(admin), json={})
    assert again.status_code == 409


def test_reject_via_api_needs_reason(client, admin, seller, make_phone, auth_headers):
    phone_id = make_phone(seller)
    res = client.put(f"/admin/listings/{phone_id}/reject", headers=auth_headers(admin), json={"reason": " "})
    assert res.status_code == 400

    res = client.put(f"/admin/listings/{phone_id}/reject", headers=auth_headers(admin), json={"reason": "Fake"})
    assert res.json()["phone"]["status"] == "rejected"


def test_admin_routes_refuse_other_roles(client, seller, make_phone, auth_headers):
    phone_id = make_phone(seller)
    res = client.put(f"/admin/listings/{phone_id}/approve", headers=auth_headers(seller), json={})
    assert res.status_code == 403
    assert res.json() == {"detail": "Admin access required"}

    assert client.get("/admin/dashboard/stats", headers=auth_headers(seller)).status_code == 403


def test_batch_approve_endpoint(client, admin, seller, make_phone, auth_headers):
    ids = [make_phone(seller), make_phone(seller, status="approved")]
    res = client.put("/admin/listings/batch-approve", headers=auth_headers(admin), json={"phone_ids": ids})
    assert res.status_code == 200
    assert res.json()["modified_count"] == 1


def test_checkout_flow(client, seller, buyer, make_phone, auth_headers):
    headers = auth_headers(buyer)
    empty = client.post("/orders", headers=headers, json={"delivery_address": ADDRESS, "contact_number": CONTACT})
    assert empty.status_code == 400
    assert empty.json() == {"detail": "Cart is empty"}

    phone_id = make_phone(seller, status="approved", price=30000)
    cart = client.post("/cart/add", headers=headers, json={"phone_id": phone_id})
    assert cart.status_code == 200
    assert cart.json()["items"][0]["quantity"] == 1

    bad_contact = client.post("/orders", headers=headers, json={"delivery_address": ADDRESS, "contact_number": "12345"})
    assert bad_contact.status_code == 422

    placed = client.post("/orders", headers=headers, json={"delivery_address": ADDRESS, "contact_number": CONTACT})
    assert placed.status_code == 201
    order = placed.json()["order"]
    assert order["total_amount"] == 30000
    assert client.get("/cart", headers=headers).json()["items"] == []

    seen = client.get(f"/orders/{order['_id']}", headers=auth_headers(seller))
    assert seen.status_code == 200
    updated = client.patch(f"/orders/{order['_id']}/status", headers=auth_headers(seller), json={"status": "confirmed"})
    assert updated.json()["status"] == "confirmed"
    assert [o["_id"] for o in client.get("/orders/mine", headers=headers).json()] == [order["_id"]]


def test_favorites_endpoints(client, buyer, seller, make_phone, auth_headers):
    phone_id = make_phone(seller, status="approved")
    res = client.post("/favorites/toggle", headers=auth_headers(buyer), json={"phone_id": phone_id})
    assert res.json() == {"favorites": [phone_id]}
    assert [p["_id"] for p in client.get("/favorites", headers=auth_headers(buyer)).json()] == [phone_id]


def test_invalid_ids_and_missing_tokens(client, admin, auth_headers):
    res = client.put("/admin/listings/not-an-id/approve", headers=auth_headers(admin), json={})
    assert res.status_code == 400
    assert res.json() == {"detail": "Invalid id"}

    missing = client.put(f"/admin/listings/{ObjectId()}/approve", headers=auth_headers(admin), json={})
    assert missing.status_code == 404

    assert client.get("/cart").status_code in (401, 403)
    assert client.get("/cart", headers=bearer("garbage")).status_code == 401


def test_health_and_db_probe(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/test").json()["db"] == "connected"


def test_reset_with_non_ascii_code_is_refused(client, mailer):
    register(client)
    client.post("/auth/forgot-password", json={"email": "kasun@swapcell.lk"})

    res = client.post("/auth/reset-password", json={
        "email": "kasun@swapcell.lk", "code": "１２３４５６", "new_password": "fresh-pass",
    })
    assert res.status_code == 400
    assert res.json() == {"detail": "Invalid or expired verification code"}


def test_seller_dashboard_endpoint(client, seller, buyer, auth_headers):
    res = client.get("/analytics/dashboard", headers=auth_headers(seller))
    assert res.status_code == 200
    assert res.json() == {
        "total_listings": 0, "active_listings": 0, "total_views": 0, "total_sold": 0, "total_revenue": 0,
    }
    assert client.get("/analytics/dashboard", headers=auth_headers(buyer)).status_code == 403
