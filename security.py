import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

import config
from database import get_document_by_id

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

# Never leave the server in a response body
PRIVATE_USER_FIELDS = ("password_hash", "reset_password_token", "reset_password_expires")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.JWT_EXPIRE_MINUTES))
    to_encode = {
        "id": user["_id"],
        "email": user["email"],
        "role": user.get("role", "user"),
        "exp": expire,
    }
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.info("Rejected token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


def new_reset_token() -> Tuple[str, str]:
    """Return (token for the email link, digest to store)."""
    token = secrets.token_hex(32)
    return token, hash_reset_token(token)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ===================== Dependencies =====================

def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Unauthorized: token missing")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = get_document_by_id("user", user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return public_user(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access only")
    return user


def ensure_owner_or_admin(user: dict, owner_id: str):
    if user["_id"] != owner_id and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not allowed")
