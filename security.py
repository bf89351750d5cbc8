import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from config import (
    ACCESS_TOKEN_TTL,
    BCRYPT_ROUNDS,
    JWT_ALGO,
    JWT_REFRESH_SECRET,
    JWT_SECRET,
    REFRESH_TOKEN_TTL,
)
from database import Database, get_db
from errors import Forbidden, Unauthorized
from schemas import Role

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
# OTP codes and refresh tokens; bcrypt_sha256 digests the whole JWT instead of its first 72 bytes.
secret_ctx = CryptContext(schemes=["bcrypt_sha256"], deprecated="auto", bcrypt_sha256__rounds=BCRYPT_ROUNDS)

ADMIN_ROLES = (Role.ADMIN.value, Role.SUPER_ADMIN.value)


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def hash_secret(value: str) -> str:
    return secret_ctx.hash(value)


def verify_secret(value: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return secret_ctx.verify(value, hashed)


def generate_otp() -> str:
    """Six digit numeric code, uniform over 100000..999999."""
    return str(100000 + secrets.randbelow(900000))


def create_access_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", Role.USER.value),
        "type": "access",
        "iat": now,
        "exp": now + ACCESS_TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def create_refresh_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + REFRESH_TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_REFRESH_SECRET, algorithm=JWT_ALGO)


def _decode(token: str, secret: str, token_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    if payload.get("type") != token_type:
        raise Unauthorized("Invalid token")
    return payload


def decode_access_token(token: str) -> dict:
    return _decode(token, JWT_SECRET, "access")


def decode_refresh_token(token: str) -> dict:
    return _decode(token, JWT_REFRESH_SECRET, "refresh")


def peek_subject(token: str) -> str:
    """Read the candidate subject of a refresh token without trusting it.

    The signature is checked later, together with the stored hash, by the
    refresh operation itself.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid refresh token payload")
    subject = claims.get("sub")
    if not subject:
        raise Unauthorized("Invalid refresh token payload")
    return str(subject)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    database: Database = Depends(get_db),
) -> dict:
    if credentials is None:
        raise Unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    uid = payload.get("sub")
    if not ObjectId.is_valid(uid):
        raise Unauthorized("Invalid token")
    user = database["user"].find_one({"_id": ObjectId(uid)})
    if not user:
        raise Unauthorized("User not found")
    if not user.get("is_active"):
        raise Unauthorized("Account is inactive")
    return user


def is_admin(user: dict) -> bool:
    return user.get("role") in ADMIN_ROLES


def require_roles(*roles):
    allowed = {r.value if isinstance(r, Role) else r for r in roles}

    def checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in allowed:
            raise Forbidden("Access denied: insufficient role")
        return user

    return checker


require_admin = require_roles(*ADMIN_ROLES)
require_super_admin = require_roles(Role.SUPER_ADMIN)
