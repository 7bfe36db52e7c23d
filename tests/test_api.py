import os

import config
from auth import verify_token
from schemas import Role

from conftest import order_body

ALICE_SIGNUP = {"username": "alice", "email": "alice@x.com", "password": "Passw0rd!", "fullName": "Alice A"}


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    body = client.get("/health").json()
    assert body["store"] == "MemoryStore"
    assert body["collections"] == {"users": 3, "products": 3, "orders": 0}


def test_security_headers(client):
    response = client.get("/")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-XSS-Protection"] == "1; mode=block"
    assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


def test_register_then_conflict(client, store):
    store.delete("users", 2)
    response = client.post("/register", json=ALICE_SIGNUP)
    assert response.status_code == 201
    body = response.json()
    assert body["username"] == "alice"
    assert body["user"]["role"] == "customer"
    assert "passwordHash" not in body["user"]

    response = client.post("/register", json=dict(ALICE_SIGNUP, username="alice2"))
    assert response.status_code == 409
    assert response.json()["code"] == "USER_EXISTS"


def test_register_validation(client):
    response = client.post("/register", json=dict(ALICE_SIGNUP, email="carol@x.com", username="carol", password="weakpass"))
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"][0]["field"] == "password"


def test_login(client):
    response = client.post("/login", json={"email": "admin@example.com", "password": "Secret1!"})
    assert response.status_code == 200
    identity = verify_token(response.json()["token"])
    assert identity.role is Role.ADMIN

    wrong = client.post("/login", json={"email": "admin@example.com", "password": "nope"})
    unknown = client.post("/login", json={"email": "ghost@example.com", "password": "Secret1!"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"message": "Invalid email or password", "code": "INVALID_CREDENTIALS"}


def test_login_rate_limit(client, monkeypatch):
    for _ in range(5):
        assert client.post("/login", json={"email": "ghost@example.com", "password": "x"}).status_code == 401
    response = client.post("/login", json={"email": "alice@example.com", "password": "Secret1!"})
    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMITED"
    assert int(response.headers["Retry-After"]) == response.json()["retryAfter"] > 0
    assert response.headers["X-Frame-Options"] == "DENY"

    # behind a trusted proxy, a different forwarded address has its own window
    monkeypatch.setattr(config, "TRUST_PROXY_HEADERS", True)
    other = client.post("/login", json={"email": "alice@example.com", "password": "Secret1!"}, headers={"X-Forwarded-For": "10.0.0.9"})
    assert other.status_code == 200


def test_rate_limit_can_be_disabled(client, monkeypatch):
    monkeypatch.setattr(config, "RATE_LIMIT_ENABLED", False)
    for _ in range(4):
        assert client.post("/register", json=ALICE_SIGNUP).status_code == 409


def test_me_requires_valid_token(client, alice_headers):
    assert client.get("/me").json()["code"] == "NO_TOKEN"
    bad = client.get("/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "INVALID_TOKEN_FORMAT"

    response = client.get("/me", headers=alice_headers)
    assert response.status_code == 200
    assert response.json()["user"]["username"] == "alice"


def test_products_public_listing(client):
    response = client.get("/products", params={"category": "home", "sortBy": "price", "sortOrder": "desc"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert [p["name"] for p in data["products"]] == ["Gadget", "Retired Lamp"]
    assert client.get("/products/1").json()["data"]["product"]["name"] == "Widget"
    assert client.get("/products/99").json()["code"] == "PRODUCT_NOT_FOUND"
    assert client.get("/products", params={"sortBy": "stock"}).status_code == 400


def test_product_management_is_admin_only(client, alice_headers):
    body = {"name": "Desk Lamp", "description": "Adjustable desk lamp", "price": 40, "category": "Home"}
    for response in (
        client.post("/products", json=body, headers=alice_headers),
        client.put("/products/1", json={"price": 1}, headers=alice_headers),
        client.delete("/products/1", headers=alice_headers),
    ):
        assert response.status_code == 403
        assert response.json()["code"] == "ADMIN_REQUIRED"
    assert client.post("/products", json=body).status_code == 401


def test_product_crud(client, admin_headers):
    body = {"name": "Desk Lamp", "description": "Adjustable desk lamp", "price": 40, "category": "Home", "stock": 3}
    response = client.post("/products", json=body, headers=admin_headers)
    assert response.status_code == 201
    product = response.json()["data"]["product"]
    assert product["createdBy"] == 1

    assert client.post("/products", json=body, headers=admin_headers).json()["code"] == "PRODUCT_EXISTS"

    updated = client.put(f"/products/{product['id']}", json={"stock": 9}, headers=admin_headers)
    assert updated.json()["data"]["product"]["stock"] == 9
    assert client.put(f"/products/{product['id']}", json={}, headers=admin_headers).json()["code"] == "NO_CHANGES"

    deleted = client.delete(f"/products/{product['id']}", headers=admin_headers)
    assert deleted.json()["data"]["deletedProduct"] == {"id": product["id"], "name": "Desk Lamp"}


def test_product_create_multipart(client, admin_headers):
    form = {"name": "Photo Frame", "description": "Wooden frame for photos", "price": "19.5", "category": "home", "stock": "4"}
    response = client.post(
        "/products",
        data=form,
        files={"image": ("frame.png", b"\x89PNG\r\n", "image/png")},
        headers=admin_headers,
    )
    assert response.status_code == 201
    product = response.json()["data"]["product"]
    assert product["price"] == 19.5
    assert product["stock"] == 4
    assert product["image"].startswith("/uploads/") and product["image"].endswith(".png")
    assert os.path.exists(os.path.join(config.UPLOAD_DIR, os.path.basename(product["image"])))

    rejected = client.post(
        "/products",
        data=dict(form, name="Other Frame"),
        files={"image": ("frame.exe", b"MZ", "application/octet-stream")},
        headers=admin_headers,
    )
    assert rejected.status_code == 400


def test_order_flow(client, store, alice_headers, bob_headers, admin_headers):
    response = client.post("/orders", json=order_body((1, 2)), headers=alice_headers)
    assert response.status_code == 201
    summary = response.json()["data"]["order"]
    assert summary["totalAmount"] == 35
    assert store.get("products", 1)["stock"] == 3

    order_id = summary["id"]
    assert client.get(f"/orders/{order_id}", headers=alice_headers).json()["data"]["order"]["subtotal"] == 20
    assert client.get(f"/orders/{order_id}", headers=bob_headers).status_code == 404
    assert client.get("/orders", headers=bob_headers).json()["data"]["pagination"]["total"] == 0

    forbidden = client.get("/orders", params={"adminView": "true"}, headers=alice_headers)
    assert forbidden.status_code == 403
    everything = client.get("/orders", params={"adminView": "true"}, headers=admin_headers)
    assert everything.json()["data"]["pagination"]["total"] == 1

    assert client.put(f"/orders/{order_id}", json={"status": "cancelled"}, headers=alice_headers).status_code == 403
    skipped = client.put(f"/orders/{order_id}", json={"status": "shipped"}, headers=admin_headers)
    assert skipped.status_code == 400
    assert skipped.json()["code"] == "INVALID_TRANSITION"

    cancelled = client.put(f"/orders/{order_id}", json={"status": "cancelled"}, headers=admin_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["order"]["status"] == "cancelled"
    assert store.get("products", 1)["stock"] == 5


def test_order_errors_over_http(client, alice_headers):
    assert client.post("/orders", json=order_body((1, 1))).status_code == 401
    assert client.post("/orders", json=order_body((2, 5)), headers=alice_headers).json()["code"] == "INSUFFICIENT_STOCK"
    assert client.post("/orders", json=order_body((3, 1)), headers=alice_headers).json()["code"] == "PRODUCT_INACTIVE"
    missing = client.post("/orders", json=order_body((77, 1)), headers=alice_headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "PRODUCT_NOT_FOUND"
    assert client.post("/orders", json={"items": []}, headers=alice_headers).status_code == 400


def test_rate_limit_reset_requires_dev_mode(client, monkeypatch):
    response = client.post("/admin/rate-limits/reset", json={"clearAll": True})
    assert response.status_code == 403

    monkeypatch.setattr(config, "DEV_MODE", True)
    for _ in range(5):
        client.post("/login", json={"email": "ghost@example.com", "password": "x"})
    assert client.post("/login", json={"email": "ghost@example.com", "password": "x"}).status_code == 429

    response = client.post("/admin/rate-limits/reset", json={"ip": "testclient", "endpoint": "login"})
    assert response.json()["action"] == "clear_specific"
    assert client.post("/login", json={"email": "ghost@example.com", "password": "x"}).status_code == 401

    assert client.post("/admin/rate-limits/reset", json={"clearAll": True}).json()["action"] == "clear_all"
    assert client.post("/admin/rate-limits/reset", json={}).status_code == 400


def test_unexpected_errors_become_generic_500(client, store, monkeypatch):
    def broken(collection):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "list", broken)
    response = client.get("/health")
    assert response.status_code == 500
    assert response.json() == {"message": "Internal server error", "code": "INTERNAL_ERROR"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_forwarded_headers_ignored_without_trusted_proxy(client):
    for i in range(5):
        client.post("/login", json={"email": "ghost@example.com", "password": "x"}, headers={"X-Forwarded-For": f"10.0.0.{i}"})
    rotated = client.post("/login", json={"email": "ghost@example.com", "password": "x"}, headers={"client-ip": "10.9.9.9"})
    assert rotated.status_code == 429


def test_non_finite_price_is_rejected(client, admin_headers):
    for literal in ("NaN", "Infinity", "-Infinity"):
        raw = '{"name": "Odd Thing", "description": "Priced with a non number", "price": %s, "category": "Home"}' % literal
        response = client.post("/products", content=raw, headers=dict(admin_headers, **{"Content-Type": "application/json"}))
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
    listing = client.get("/products")
    assert listing.status_code == 200
    assert listing.json()["data"]["pagination"]["total"] == 3


def test_non_ascii_token_signature_is_unauthorized(client, alice_headers):
    unsigned = alice_headers["Authorization"].rsplit(".", 1)[0]
    response = client.get("/me", headers={"Authorization": f"{unsigned}.".encode() + "ééé".encode("latin-1")})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"
