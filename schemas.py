"""
Database Schemas for the Bookstore

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., User -> "user").
References between collections are stored as string ids.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

OrderStatus = Literal["placed", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "free", "failed"]


class User(BaseModel):
    fullname: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique, lower-cased email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Literal["user", "admin"] = "user"
    avatar_url: str = ""
    reset_password_token: Optional[str] = Field(None, description="SHA-256 digest of the emailed reset token")
    reset_password_expires: Optional[datetime] = None


class Book(BaseModel):
    name: str = Field(..., min_length=1, description="Book name")
    price: float = Field(..., ge=0, description="0 means free")
    category: str = "General"
    genre: Optional[str] = None
    publisher: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    pages: Optional[int] = Field(None, ge=1)
    image: str = Field("", description="Cover image URL")
    title: str = Field(..., min_length=1, description="Short title")
    description: str = ""


class OrderItem(BaseModel):
    book_id: str = Field(..., description="Reference to book _id")
    qty: int = Field(1, ge=1)
    price_at_purchase: float = Field(..., ge=0, description="Unit price captured at checkout")


class Order(BaseModel):
    user_id: str = Field(..., description="Owner of the order")
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    status: OrderStatus = "placed"
    payment_status: PaymentStatus = "pending"
    payment_method: Optional[str] = Field(None, description="demo | razorpay")
    payment_id: Optional[str] = Field(None, description="Gateway payment reference")
    payment_meta: Optional[dict] = None


class Payment(BaseModel):
    user_id: str
    order_id: Optional[str] = None
    amount: float = Field(..., ge=0)
    currency: str = "INR"
    provider: Literal["demo", "razorpay"] = "demo"
    status: Literal["created", "success", "failed"] = "created"
    reference: Optional[str] = None
    notes: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
