import logging
import os
import re
import smtplib
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, File, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

import config
import database
from database import (
    as_utc, count_documents, create_document, ensure_indexes, get_document, get_document_by_id,
    get_documents, update_document, delete_document,
)
from errors import register_exception_handlers
from gateway import PaymentGatewayError, RazorpayClient, get_gateway, to_subunits
from invoice import render_invoice
from mailer import build_reset_password_email, send_email
from schemas import User, Book, Order, OrderItem, OrderStatus, Payment
from security import (
    create_access_token, ensure_owner_or_admin, get_current_user, hash_password, hash_reset_token,
    new_reset_token, public_user, require_admin, verify_password,
)

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("bookstore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    if database.db is not None:
        ensure_indexes()
    else:
        logger.warning("Database not configured; set DATABASE_URL and DATABASE_NAME")
    yield


app = FastAPI(title="Bookstore API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")


@app.middleware("http")
async def log_requests(request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed)
    return response


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Bookstore API running"}


@app.get("/test")
def test_database():
    report = {
        "backend": "running",
        "database_url": "set" if config.DATABASE_URL else "not set",
        "database_name": "set" if config.DATABASE_NAME else "not set",
        "connected": False,
        "collections": {},
    }
    if database.db is None:
        report["error"] = "DATABASE_URL / DATABASE_NAME not configured"
        return report
    try:
        # document count per collection doubles as a read check
        report["collections"] = {name: count_documents(name) for name in database.db.list_collection_names()}
        report["connected"] = True
    except PyMongoError as e:
        logger.warning("Database health check failed: %s", e)
        report["error"] = str(e)[:80]
    return report


# ===================== Users =====================
class SignupRequest(BaseModel):
    fullname: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    fullname: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=6)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


@app.post("/user/signup", status_code=201)
def signup(payload: SignupRequest):
    fullname = payload.fullname.strip()
    if not fullname:
        raise HTTPException(400, "fullname, email and password are required")
    email = _normalize_email(payload.email)
    if get_document("user", {"email": email}):
        raise HTTPException(400, "User already exists")
    user = User(fullname=fullname, email=email, password_hash=hash_password(payload.password))
    user_id = create_document("user", user)
    logger.info("New user %s signed up", user_id)
    saved = public_user(get_document_by_id("user", user_id))
    return {"message": "User created successfully", "user": saved, "token": create_access_token(saved)}


@app.post("/user/login")
def login(payload: LoginRequest):
    user = get_document("user", {"email": _normalize_email(payload.email)})
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(400, "Invalid username or password")
    safe = public_user(user)
    return {"message": "Login successful", "user": safe, "token": create_access_token(safe)}


@app.get("/user/me")
def get_profile(user: dict = Depends(get_current_user)):
    return user


@app.put("/user/me")
def update_profile(payload: ProfileUpdateRequest, user: dict = Depends(get_current_user)):
    fullname = payload.fullname.strip()
    if not fullname:
        raise HTTPException(400, "Name cannot be empty")
    update_document("user", user["_id"], {"fullname": fullname})
    return {"message": "Profile updated", "user": public_user(get_document_by_id("user", user["_id"]))}


@app.post("/user/avatar")
def upload_avatar(avatar: UploadFile = File(...), user: dict = Depends(get_current_user)):
    if not (avatar.content_type or "").startswith("image/"):
        raise HTTPException(400, "Only image files are allowed")
    content = avatar.file.read(config.MAX_AVATAR_BYTES + 1)
    if len(content) > config.MAX_AVATAR_BYTES:
        raise HTTPException(400, "Max file size is 2MB")

    ext = os.path.splitext(os.path.basename(avatar.filename or ""))[1]
    filename = f"avatar_{int(time.time() * 1000)}{ext}"
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as f:
        f.write(content)

    update_document("user", user["_id"], {"avatar_url": f"/uploads/{filename}"})
    return {"message": "Profile picture updated", "user": public_user(get_document_by_id("user", user["_id"]))}


@app.post("/user/forgot-password")
def forgot_password(payload: ForgotPasswordRequest):
    generic = {"message": "If an account exists for this email, a reset link has been sent."}
    user = get_document("user", {"email": _normalize_email(payload.email)})
    if not user:
        return generic

    token, digest = new_reset_token()
    expires = datetime.now(timezone.utc) + timedelta(minutes=config.RESET_TOKEN_MINUTES)
    update_document("user", user["_id"], {"reset_password_token": digest, "reset_password_expires": expires})

    reset_url = f"{config.FRONTEND_URL.rstrip('/')}/reset-password?token={token}"
    try:
        send_email(user["email"], "Reset your password", build_reset_password_email(user.get("fullname"), reset_url))
    except (smtplib.SMTPException, OSError):
        logger.exception("Could not send reset email to user %s", user["_id"])
        update_document("user", user["_id"], {}, unset=["reset_password_token", "reset_password_expires"])
        raise HTTPException(500, "Failed to send reset email")
    return generic


@app.post("/user/reset-password")
def reset_password(payload: ResetPasswordRequest):
    user = get_document("user", {"reset_password_token": hash_reset_token(payload.token)})
    expires = user.get("reset_password_expires") if user else None
    if not expires or as_utc(expires) < datetime.now(timezone.utc):
        raise HTTPException(400, "Reset link is invalid or has expired")
    update_document(
        "user", user["_id"], {"password_hash": hash_password(payload.password)},
        unset=["reset_password_token", "reset_password_expires"],
    )
    logger.info("Password reset for user %s", user["_id"])
    return {"message": "Password reset successful. Please log in with your new password."}


# ===================== Books =====================
class BookUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    pages: Optional[int] = Field(None, ge=1)
    image: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


@app.get("/book")
def list_books(q: Optional[str] = None, category: Optional[str] = None):
    filter_q = {}
    if category:
        filter_q["category"] = category
    if q:
        pattern = re.escape(q)
        filter_q["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"title": {"$regex": pattern, "$options": "i"}},
            {"author": {"$regex": pattern, "$options": "i"}},
        ]
    return get_documents("book", filter_q, sort=[("created_at", -1)])


@app.get("/book/free")
def list_free_books():
    return get_documents("book", {"price": 0}, sort=[("created_at", -1)])


@app.get("/book/{book_id}")
def get_book(book_id: str):
    book = get_document_by_id("book", book_id)
    if not book:
        raise HTTPException(404, "Book not found")
    return book


@app.post("/book", status_code=201)
def create_book(payload: Book, admin: dict = Depends(require_admin)):
    book_id = create_document("book", payload)
    return {"message": "Book created successfully", "book": get_document_by_id("book", book_id)}


@app.put("/book/{book_id}")
def update_book(book_id: str, payload: BookUpdate, admin: dict = Depends(require_admin)):
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(400, "No fields to update")
    if not update_document("book", book_id, changes):
        raise HTTPException(404, "Book not found")
    return {"message": "Book updated successfully", "book": get_document_by_id("book", book_id)}


@app.delete("/book/{book_id}")
def delete_book(book_id: str, admin: dict = Depends(require_admin)):
    book = get_document_by_id("book", book_id)
    if not book or not delete_document("book", book_id):
        raise HTTPException(404, "Book not found")
    return {"message": "Book deleted successfully", "book": book}


# ===================== Orders =====================
class CartLine(BaseModel):
    book_id: str
    qty: int = Field(1, ge=1)


class CreateOrderRequest(BaseModel):
    items: List[CartLine]


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


def _place_order(user: dict, lines: List[CartLine], payment_method: Optional[str] = None) -> dict:
    if not lines:
        raise HTTPException(400, "No items to order")
    items = []
    for line in lines:
        book = get_document_by_id("book", line.book_id)
        if not book:
            raise HTTPException(400, f"Book not found: {line.book_id}")
        items.append(OrderItem(book_id=book["_id"], qty=line.qty, price_at_purchase=book.get("price", 0)))
    total = round(sum(i.price_at_purchase * i.qty for i in items), 2)
    order = Order(
        user_id=user["_id"],
        items=items,
        total=total,
        payment_status="free" if total == 0 else "pending",
        payment_method=payment_method,
    )
    order_id = create_document("order", order)
    logger.info("User %s placed order %s (total %.2f)", user["_id"], order_id, total)
    return get_document_by_id("order", order_id)


def _owner_summary(user_id: str) -> Optional[dict]:
    owner = get_document_by_id("user", user_id)
    if not owner:
        return None
    return {"_id": owner["_id"], "fullname": owner.get("fullname"), "email": owner.get("email")}


def _populate_order(order: dict, with_user: bool = False) -> dict:
    order = dict(order)
    order["items"] = [
        {**item, "book": get_document_by_id("book", item["book_id"])} for item in order.get("items", [])
    ]
    if with_user:
        order["user"] = _owner_summary(order["user_id"])
    return order


def _get_order_for(user: dict, order_id: str) -> dict:
    order = get_document_by_id("order", order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    ensure_owner_or_admin(user, order["user_id"])
    return order


@app.post("/orders", status_code=201)
def create_order(payload: CreateOrderRequest, user: dict = Depends(get_current_user)):
    order = _place_order(user, payload.items)
    return {"message": "Order placed successfully", "order": _populate_order(order)}


@app.get("/orders")
def list_my_orders(user: dict = Depends(get_current_user)):
    orders = get_documents("order", {"user_id": user["_id"]}, sort=[("created_at", -1)])
    return [_populate_order(o) for o in orders]


@app.get("/orders/all")
def list_all_orders(admin: dict = Depends(require_admin)):
    orders = get_documents("order", sort=[("created_at", -1)])
    return [_populate_order(o, with_user=True) for o in orders]


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user)):
    return _populate_order(_get_order_for(user, order_id))


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: UpdateOrderStatusRequest, admin: dict = Depends(require_admin)):
    order = get_document_by_id("order", order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if order["status"] == "cancelled" and payload.status != "cancelled":
        raise HTTPException(400, "Cancelled orders cannot change status")
    update_document("order", order_id, {"status": payload.status})
    logger.info("Order %s status %s -> %s", order_id, order["status"], payload.status)
    return {"message": "Order status updated", "order": _populate_order(get_document_by_id("order", order_id), with_user=True)}


@app.get("/orders/{order_id}/invoice")
def get_order_invoice(order_id: str, user: dict = Depends(get_current_user)):
    order = _populate_order(_get_order_for(user, order_id))
    pdf = render_invoice(order, customer=_owner_summary(order["user_id"]))
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{order_id}.pdf"'},
    )


# ===================== Payments =====================
class CreatePaymentRequest(BaseModel):
    order_id: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    reference: Optional[str] = None
    notes: Optional[str] = None


class RazorpayVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


def _populate_payment(payment: dict, with_user: bool = False) -> dict:
    payment = dict(payment)
    payment["order"] = get_document_by_id("order", payment["order_id"]) if payment.get("order_id") else None
    if with_user:
        payment["user"] = _owner_summary(payment["user_id"])
    return payment


@app.post("/payments", status_code=201)
def create_payment(payload: CreatePaymentRequest, user: dict = Depends(get_current_user)):
    if payload.amount is None:
        raise HTTPException(400, "Amount is required")
    order = _get_order_for(user, payload.order_id) if payload.order_id else None
    if order and order.get("payment_status") in ("paid", "free"):
        raise HTTPException(400, "Order is already settled")

    payment = Payment(
        user_id=user["_id"],
        order_id=order["_id"] if order else None,
        amount=payload.amount,
        provider="demo",
        status="success",
        reference=(payload.reference or "").strip() or None,
        notes=(payload.notes or "").strip() or None,
    )
    payment_id = create_document("payment", payment)
    if order:
        update_document("order", order["_id"], {
            "payment_status": "free" if payload.amount == 0 else "paid",
            "payment_method": "demo",
            "payment_id": payment_id,
        })
    return {"message": "Payment recorded", "payment": get_document_by_id("payment", payment_id)}


@app.get("/payments")
def list_my_payments(user: dict = Depends(get_current_user)):
    payments = get_documents("payment", {"user_id": user["_id"]}, sort=[("created_at", -1)])
    return [_populate_payment(p) for p in payments]


@app.get("/payments/all")
def list_all_payments(admin: dict = Depends(require_admin)):
    payments = get_documents("payment", sort=[("created_at", -1)])
    return [_populate_payment(p, with_user=True) for p in payments]


@app.get("/payments/stats")
def payment_stats(admin: dict = Depends(require_admin)):
    payments = get_documents("payment", {"status": "success"})
    since = datetime.now(timezone.utc).date() - timedelta(days=6)  # includes today

    daily = {}
    for p in payments:
        day = as_utc(p["created_at"]).date()
        if day < since:
            continue
        bucket = daily.setdefault(day, {"date": day.isoformat(), "amount": 0.0, "count": 0})
        bucket["amount"] = round(bucket["amount"] + p.get("amount", 0), 2)
        bucket["count"] += 1

    return {
        "total_revenue": round(sum(p.get("amount", 0) for p in payments), 2),
        "total_payments": len(payments),
        "daily": [daily[d] for d in sorted(daily)],
    }


@app.post("/payments/razorpay/create-order", status_code=201)
def create_razorpay_order(payload: CreateOrderRequest, user: dict = Depends(get_current_user),
                          gateway: RazorpayClient = Depends(get_gateway)):
    order = _place_order(user, payload.items, payment_method="razorpay")
    if order["total"] == 0:
        return {"free": True, "order_id": order["_id"], "amount": 0, "currency": "INR"}

    payment_id = create_document("payment", Payment(
        user_id=user["_id"], order_id=order["_id"], amount=order["total"], provider="razorpay", status="created",
    ))
    try:
        provider_order = gateway.create_order(order["total"], currency="INR", receipt=order["_id"])
    except PaymentGatewayError as e:
        logger.error("Razorpay order creation failed for order %s: %s", order["_id"], e)
        update_document("payment", payment_id, {"status": "failed"})
        raise HTTPException(500, "Could not create payment order")

    update_document("payment", payment_id, {"razorpay_order_id": provider_order["id"]})
    update_document("order", order["_id"], {"payment_meta": {"razorpay_order_id": provider_order["id"]}})
    return {
        "order_id": order["_id"],
        "payment_id": payment_id,
        "razorpay_order_id": provider_order["id"],
        "amount": provider_order.get("amount", to_subunits(order["total"])),
        "currency": provider_order.get("currency", "INR"),
        "key_id": gateway.key_id,
    }


@app.post("/payments/razorpay/verify")
def verify_razorpay_payment(payload: RazorpayVerifyRequest, user: dict = Depends(get_current_user),
                            gateway: RazorpayClient = Depends(get_gateway)):
    payment = get_document("payment", {"razorpay_order_id": payload.razorpay_order_id, "user_id": user["_id"]})

    if not gateway.verify_signature(payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature):
        logger.warning("Signature mismatch for Razorpay order %s", payload.razorpay_order_id)
        # success / paid are final; only unresolved records are failed
        if payment and payment.get("status") == "created":
            update_document("payment", payment["_id"], {"status": "failed"})
            order = get_document_by_id("order", payment["order_id"]) if payment.get("order_id") else None
            if order and order.get("payment_status") == "pending":
                update_document("order", order["_id"], {"payment_status": "failed"})
        raise HTTPException(400, "Payment verification failed")

    if not payment:
        raise HTTPException(404, "Payment not found")

    update_document("payment", payment["_id"], {
        "status": "success",
        "razorpay_payment_id": payload.razorpay_payment_id,
        "razorpay_signature": payload.razorpay_signature,
    })
    if payment.get("order_id"):
        update_document("order", payment["order_id"], {
            "payment_status": "paid",
            "payment_method": "razorpay",
            "payment_id": payload.razorpay_payment_id,
        })
    logger.info("Verified Razorpay payment %s for order %s", payload.razorpay_payment_id, payment.get("order_id"))
    return {
        "message": "Payment verified",
        "payment": get_document_by_id("payment", payment["_id"]),
        "order": get_document_by_id("order", payment["order_id"]) if payment.get("order_id") else None,
    }


# ===================== Schema Export for Docs =====================
@app.get("/schema")
def get_schema():
    return {
        "collections": [
            "user",
            "book",
            "order",
            "payment"
        ],
        "counts": {name: count_documents(name) for name in ("user", "book", "order", "payment")} if database.db is not None else {},
        "notes": "Each class in schemas.py maps to a MongoDB collection (lowercase)."
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
