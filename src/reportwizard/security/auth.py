from __future__ import annotations

"""Authentication utilities: password hashing, JWT handling and the current-user dependency.

This module provides:
- Pydantic models for signup, login and the user context
- PBKDF2-SHA256 password hashing
- JWT encode/decode helpers
- A FastAPI dependency resolving the user from a bearer token or the session cookie

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 720)
- RW_COOKIE_SECURE (default 0)
"""

import hashlib
import hmac
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..infrastructure.user_store import UserStore, get_user_store

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)

SESSION_COOKIE = "rw_session"
PASSWORD_MIN_LENGTH = 8
PBKDF2_ITERATIONS = int(os.getenv("RW_PBKDF2_ITERATIONS", "200000"))


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 720

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "720"))
        return JwtConfig(secret=secret, expires_min=expires)


class User(BaseModel):
    email: EmailStr


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str
    confirm_password: str = Field(alias="confirmPassword")
    captcha: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User


def hash_password(password: str, *, salt: Optional[str] = None, iterations: Optional[int] = None) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>``."""
    salt_hex = salt or secrets.token_hex(16)
    rounds = iterations or PBKDF2_ITERATIONS
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), rounds)
    return f"pbkdf2_sha256${rounds}${salt_hex}${dk.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, rounds, salt_hex, _ = encoded.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    candidate = hash_password(password, salt=salt_hex, iterations=int(rounds))
    return hmac.compare_digest(candidate, encoded)


def validate_new_password(password: str, confirm: str) -> None:
    if password != confirm:
        raise ValueError("Passwords do not match")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")


def register_user(email: str, password: str, store: Optional[UserStore] = None) -> User:
    store = store or get_user_store()
    rec = store.create(email, hash_password(password))
    logger.info("Registered user %s", rec.email)
    return User(email=rec.email)


def authenticate(email: str, password: str, store: Optional[UserStore] = None) -> User:
    store = store or get_user_store()
    rec = store.get(email)
    if rec is None or not verify_password(password, rec.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    return User(email=rec.email)


def create_access_token(user: User, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": user.email,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> User:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return User(email=data["sub"])


def cookie_secure() -> bool:
    return os.getenv("RW_COOKIE_SECURE", "0").lower() in ("1", "true", "yes")


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """Resolve the current user from a bearer token, falling back to the session cookie.

    The account must still exist in the user store.
    """
    token: Optional[str] = None
    if creds is not None and creds.scheme and creds.scheme.lower() == "bearer":
        token = creds.credentials
    if not token:
        token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    user = decode_token(token)
    if get_user_store().get(user.email) is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user
