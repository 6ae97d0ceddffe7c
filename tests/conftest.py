import json
from types import SimpleNamespace

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
import main
from gateway import RazorpayClient, get_gateway
from schemas import Book, User
from security import create_access_token, hash_password

RAZORPAY_SECRET = "rzp_test_secret"


@pytest.fixture
def mongo(monkeypatch):
    db = mongomock.MongoClient()["bookstore_test"]
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def client(mongo, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(mongo):
    def _make(email="reader@example.com", role="user", password="secret123", fullname="Test Reader"):
        user_id = database.create_document("user", User(
            fullname=fullname, email=email, password_hash=hash_password(password), role=role,
        ))
        user = database.get_document_by_id("user", user_id)
        return user, {"Authorization": f"Bearer {create_access_token(user)}"}
    return _make


@pytest.fixture
def user_auth(make_user):
    return make_user()


@pytest.fixture
def admin_auth(make_user):
    return make_user(email="admin@example.com", role="admin", fullname="Store Admin")


@pytest.fixture
def make_book(mongo):
    def _make(**overrides):
        data = {"name": "Atomic Habits", "title": "Tiny changes, remarkable results", "price": 499, "category": "Self-help"}
        data.update(overrides)
        book_id = database.create_document("book", Book(**data))
        return database.get_document_by_id("book", book_id)
    return _make


@pytest.fixture
def razorpay(client):
    """Route gateway calls to an in-process transport; `fail` makes the provider answer 500."""
    state = SimpleNamespace(requests=[], fail=False)

    def handler(request: httpx.Request) -> httpx.Response:
        state.requests.append(request)
        if state.fail:
            return httpx.Response(500, json={"error": {"description": "server error"}})
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "order_TEST123",
            "entity": "order",
            "amount": body["amount"],
            "currency": body["currency"],
            "receipt": body.get("receipt"),
            "status": "created",
        })

    gateway = RazorpayClient("rzp_test_key", RAZORPAY_SECRET, "https://api.razorpay.test/v1",
                             transport=httpx.MockTransport(handler))
    main.app.dependency_overrides[get_gateway] = lambda: gateway
    state.gateway = gateway
    return state
