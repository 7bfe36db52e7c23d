import pytest
from fastapi.testclient import TestClient

import config
from auth import create_access_token, hash_password
from database import MemoryStore, get_store
from main import app
from ratelimit import limiter

NOW = "2024-01-01T00:00:00+00:00"


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "BCRYPT_SALT_ROUNDS", 4)
    monkeypatch.setattr(config, "SEED_DEMO_DATA", False)
    monkeypatch.setattr(config, "TRUST_PROXY_HEADERS", False)
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    limiter.reset_all()
    yield
    limiter.reset_all()


def make_user(user_id, username, role="customer", password="Secret1!", active=True):
    return {
        "id": user_id,
        "username": username,
        "email": f"{username}@example.com",
        "passwordHash": hash_password(password),
        "fullName": username.title(),
        "role": role,
        "isActive": active,
        "createdAt": NOW,
        "lastLogin": None,
    }


def make_product(product_id, name, price=10, stock=5, category="Electronics", active=True):
    return {
        "id": product_id,
        "name": name,
        "description": f"{name} for testing purposes",
        "price": price,
        "category": category,
        "stock": stock,
        "image": "",
        "isActive": active,
        "featured": False,
        "createdAt": NOW,
        "updatedAt": NOW,
        "createdBy": None,
    }


@pytest.fixture
def store():
    return MemoryStore({
        "users": [
            make_user(1, "admin", role="admin"),
            make_user(2, "alice"),
            make_user(3, "bob"),
        ],
        "products": [
            make_product(1, "Widget", price=10, stock=5),
            make_product(2, "Gadget", price=30, stock=2, category="Home"),
            make_product(3, "Retired Lamp", price=25, stock=10, category="Home", active=False),
        ],
    })


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def bearer(store, user_id):
    return {"Authorization": f"Bearer {create_access_token(store.get('users', user_id))}"}


@pytest.fixture
def admin_headers(store):
    return bearer(store, 1)


@pytest.fixture
def alice_headers(store):
    return bearer(store, 2)


@pytest.fixture
def bob_headers(store):
    return bearer(store, 3)


SHIPPING = {
    "fullName": "Alice Example",
    "address": "1 Main Street",
    "city": "Springfield",
    "postalCode": "12345",
    "phone": "5551234",
}


def order_body(*lines, method="credit_card"):
    return {
        "items": [{"productId": pid, "quantity": qty} for pid, qty in lines],
        "shippingAddress": dict(SHIPPING),
        "paymentMethod": method,
    }
