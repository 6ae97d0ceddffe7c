import json
from datetime import datetime, timedelta, timezone

from gateway import compute_signature
from tests.conftest import RAZORPAY_SECRET


def _order(client, headers, book, qty=1):
    return client.post("/orders", json={"items": [{"book_id": book["_id"], "qty": qty}]}, headers=headers).json()["order"]


def test_demo_payment_marks_order_paid(client, user_auth, make_book):
    _, headers = user_auth
    order = _order(client, headers, make_book())

    response = client.post("/payments", json={"order_id": order["_id"], "amount": 499, "reference": "txn-1"}, headers=headers)
    assert response.status_code == 201
    payment = response.json()["payment"]
    assert payment["provider"] == "demo"
    assert payment["status"] == "success"
    assert payment["currency"] == "INR"
    assert payment["order_id"] == order["_id"]

    updated = client.get(f"/orders/{order['_id']}", headers=headers).json()
    assert updated["payment_status"] == "paid"
    assert updated["payment_id"] == payment["_id"]


def test_demo_payment_requires_amount(client, user_auth):
    _, headers = user_auth
    response = client.post("/payments", json={}, headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Amount is required"


def test_demo_payment_unknown_order(client, user_auth):
    _, headers = user_auth
    response = client.post("/payments", json={"order_id": "64b7f0c2a1b2c3d4e5f60718", "amount": 10}, headers=headers)
    assert response.status_code == 404


def test_list_payments(client, make_user, admin_auth, make_book):
    alice_user, alice = make_user(email="alice@example.com")
    _, bob = make_user(email="bob@example.com")
    order = _order(client, alice, make_book())
    client.post("/payments", json={"order_id": order["_id"], "amount": 499}, headers=alice)
    client.post("/payments", json={"amount": 20}, headers=bob)

    mine = client.get("/payments", headers=alice).json()
    assert len(mine) == 1
    assert mine[0]["order"]["_id"] == order["_id"]

    assert client.get("/payments/all", headers=alice).status_code == 403
    _, admin = admin_auth
    everything = client.get("/payments/all", headers=admin).json()
    assert len(everything) == 2
    assert {p["user"]["email"] for p in everything} == {"alice@example.com", "bob@example.com"}


def test_payment_stats(client, user_auth, admin_auth, mongo):
    user, headers = user_auth
    client.post("/payments", json={"amount": 100}, headers=headers)
    client.post("/payments", json={"amount": 50.5}, headers=headers)
    mongo["payment"].insert_one({
        "user_id": user["_id"], "amount": 1000, "status": "success", "provider": "demo",
        "created_at": datetime.now(timezone.utc) - timedelta(days=10),
    })
    mongo["payment"].insert_one({
        "user_id": user["_id"], "amount": 999, "status": "failed", "provider": "razorpay",
        "created_at": datetime.now(timezone.utc),
    })

    _, admin = admin_auth
    response = client.get("/payments/stats", headers=admin)
    assert response.status_code == 200
    stats = response.json()
    assert stats["total_revenue"] == 1150.5
    assert stats["total_payments"] == 3
    today = datetime.now(timezone.utc).date().isoformat()
    assert stats["daily"] == [{"date": today, "amount": 150.5, "count": 2}]


def test_payment_stats_admin_only(client, user_auth):
    _, headers = user_auth
    assert client.get("/payments/stats", headers=headers).status_code == 403


def test_razorpay_create_order(client, user_auth, make_book, razorpay, mongo):
    user, headers = user_auth
    book = make_book(price=249.99)
    response = client.post("/payments/razorpay/create-order",
                           json={"items": [{"book_id": book["_id"], "qty": 2}]}, headers=headers)
    assert response.status_code == 201
    body = response.json()
    assert body["razorpay_order_id"] == "order_TEST123"
    assert body["amount"] == 49998
    assert body["currency"] == "INR"
    assert body["key_id"] == "rzp_test_key"

    sent = json.loads(razorpay.requests[0].content)
    assert sent == {"amount": 49998, "currency": "INR", "receipt": body["order_id"]}
    assert razorpay.requests[0].headers["authorization"].startswith("Basic ")

    payment = client.get("/payments", headers=headers).json()[0]
    assert payment["_id"] == body["payment_id"]
    assert payment["status"] == "created"
    assert payment["provider"] == "razorpay"
    assert payment["razorpay_order_id"] == "order_TEST123"

    order = client.get(f"/orders/{body['order_id']}", headers=headers).json()
    assert order["payment_status"] == "pending"
    assert order["payment_method"] == "razorpay"


def test_razorpay_create_order_free_cart(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    book = make_book(price=0)
    response = client.post("/payments/razorpay/create-order",
                           json={"items": [{"book_id": book["_id"], "qty": 1}]}, headers=headers)
    assert response.status_code == 201
    assert response.json()["free"] is True
    assert razorpay.requests == []
    assert client.get("/payments", headers=headers).json() == []


def test_razorpay_create_order_provider_failure(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    razorpay.fail = True
    response = client.post("/payments/razorpay/create-order",
                           json={"items": [{"book_id": make_book()["_id"], "qty": 1}]}, headers=headers)
    assert response.status_code == 500
    assert response.json()["message"] == "Could not create payment order"
    assert client.get("/payments", headers=headers).json()[0]["status"] == "failed"


def _checkout(client, headers, book):
    return client.post("/payments/razorpay/create-order",
                       json={"items": [{"book_id": book["_id"], "qty": 1}]}, headers=headers).json()


def test_razorpay_verify_success(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    created = _checkout(client, headers, make_book())

    signature = compute_signature(RAZORPAY_SECRET, "order_TEST123", "pay_ABC")
    response = client.post("/payments/razorpay/verify", json={
        "razorpay_order_id": "order_TEST123",
        "razorpay_payment_id": "pay_ABC",
        "razorpay_signature": signature,
    }, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["payment"]["status"] == "success"
    assert body["payment"]["razorpay_payment_id"] == "pay_ABC"
    assert body["payment"]["razorpay_signature"] == signature
    assert body["order"]["_id"] == created["order_id"]
    assert body["order"]["payment_status"] == "paid"
    assert body["order"]["payment_id"] == "pay_ABC"


def test_razorpay_verify_rejects_tampered_payload(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    created = _checkout(client, headers, make_book())
    signature = compute_signature(RAZORPAY_SECRET, "order_TEST123", "pay_ABC")

    for tampered in (
        {"razorpay_payment_id": "pay_OTHER", "razorpay_signature": signature},
        {"razorpay_payment_id": "pay_ABC", "razorpay_signature": signature[:-1] + "0" if signature[-1] != "0" else signature[:-1] + "1"},
        {"razorpay_payment_id": "pay_ABC", "razorpay_signature": compute_signature("wrong-secret", "order_TEST123", "pay_ABC")},
    ):
        response = client.post("/payments/razorpay/verify", json={"razorpay_order_id": "order_TEST123", **tampered}, headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Payment verification failed"

    payment = client.get("/payments", headers=headers).json()[0]
    assert payment["status"] == "failed"
    order = client.get(f"/orders/{created['order_id']}", headers=headers).json()
    assert order["payment_status"] == "failed"


def test_razorpay_verify_someone_elses_payment(client, make_user, make_book, razorpay):
    _, alice = make_user(email="alice@example.com")
    _, bob = make_user(email="bob@example.com")
    _checkout(client, alice, make_book())
    signature = compute_signature(RAZORPAY_SECRET, "order_TEST123", "pay_ABC")
    response = client.post("/payments/razorpay/verify", json={
        "razorpay_order_id": "order_TEST123", "razorpay_payment_id": "pay_ABC", "razorpay_signature": signature,
    }, headers=bob)
    assert response.status_code == 404


def _verify(client, headers, payment_id="pay_ABC", signature=None):
    return client.post("/payments/razorpay/verify", json={
        "razorpay_order_id": "order_TEST123",
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or compute_signature(RAZORPAY_SECRET, "order_TEST123", payment_id),
    }, headers=headers)


def test_razorpay_verify_repeated_and_bad_callback_after_success(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    created = _checkout(client, headers, make_book())

    first = _verify(client, headers)
    second = _verify(client, headers)
    assert first.status_code == second.status_code == 200
    for key in ("status", "razorpay_payment_id", "razorpay_signature"):
        assert first.json()["payment"][key] == second.json()["payment"][key]
    for key in ("payment_status", "payment_method", "payment_id"):
        assert first.json()["order"][key] == second.json()["order"][key]

    response = _verify(client, headers, signature="deadbeef")
    assert response.status_code == 400
    assert response.json()["message"] == "Payment verification failed"

    payment = client.get("/payments", headers=headers).json()[0]
    assert payment["status"] == "success"
    assert payment["razorpay_payment_id"] == "pay_ABC"
    order = client.get(f"/orders/{created['order_id']}", headers=headers).json()
    assert order["payment_status"] == "paid"
    assert order["payment_id"] == "pay_ABC"


def test_razorpay_verify_after_failed_attempt(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    created = _checkout(client, headers, make_book())
    assert _verify(client, headers, signature="deadbeef").status_code == 400

    response = _verify(client, headers)
    assert response.status_code == 200
    assert response.json()["payment"]["status"] == "success"
    assert client.get(f"/orders/{created['order_id']}", headers=headers).json()["payment_status"] == "paid"


def test_demo_payment_rejected_for_settled_order(client, user_auth, make_book, razorpay):
    _, headers = user_auth
    created = _checkout(client, headers, make_book())
    assert _verify(client, headers).status_code == 200

    response = client.post("/payments", json={"order_id": created["order_id"], "amount": 1}, headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Order is already settled"
    order = client.get(f"/orders/{created['order_id']}", headers=headers).json()
    assert order["payment_method"] == "razorpay"
    assert order["payment_id"] == "pay_ABC"


def test_demo_payment_rejected_for_free_order(client, user_auth, make_book):
    _, headers = user_auth
    order = _order(client, headers, make_book(price=0))
    response = client.post("/payments", json={"order_id": order["_id"], "amount": 0}, headers=headers)
    assert response.status_code == 400
