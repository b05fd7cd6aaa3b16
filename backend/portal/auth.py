"""Authentication helpers and FastAPI security dependencies.

This module owns everything credential related: password hashing,
access/refresh JWTs, the one-shot verification/reset tokens, and the
dependencies (`get_current_user`, `get_optional_user`, `require_roles`,
...) that routers use to resolve the caller.

A bad token (missing, malformed, expired, badly signed or of the wrong
type) is always reported as the same `Unauthenticated` error; only the
reason is logged.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .errors import Forbidden, Unauthenticated

logger = logging.getLogger("portal.auth")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)
LOCKED_MESSAGE = "Account is temporarily locked due to multiple failed login attempts"


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return PWD_CTX.verify(password, password_hash)


def hash_token(raw: str) -> str:
    """Digest stored in place of a one-shot token."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def new_one_shot_token() -> Tuple[str, str]:
    """Return `(raw, hashed)`; only the hash is persisted, the raw value is mailed."""
    raw = secrets.token_hex(20)
    return raw, hash_token(raw)


def _encode(user: models.User, token_type: str, expires: timedelta, secret: str) -> str:
    expire = datetime.now(timezone.utc) + expires
    payload = {
        "user_id": user.id,
        "user_type": user.user_type,
        "role": user.role,
        "type": token_type,
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user: models.User) -> str:
    return _encode(user, "access", timedelta(minutes=settings.JWT_EXPIRE_MINUTES), settings.JWT_SECRET)


def create_refresh_token(user: models.User) -> str:
    return _encode(user, "refresh", timedelta(days=settings.JWT_REFRESH_EXPIRE_DAYS), settings.JWT_REFRESH_SECRET)


def decode_token(token: str, token_type: str = "access") -> dict:
    """Decode and verify a JWT of the given type.

    Raises `Unauthenticated` for an expired, malformed or badly signed
    token, or one of the wrong type.
    """
    secret = settings.JWT_REFRESH_SECRET if token_type == "refresh" else settings.JWT_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("token rejected: expired")
        raise Unauthenticated()
    except jwt.InvalidTokenError as exc:
        logger.info("token rejected: %s", type(exc).__name__)
        raise Unauthenticated()
    if payload.get("type") != token_type or not payload.get("user_id"):
        logger.info("token rejected: wrong type or payload")
        raise Unauthenticated()
    return payload


def check_account(user: Optional[models.User]) -> models.User:
    """Apply the account gates in order: missing, deactivated, blocked, locked."""
    if user is None:
        raise Unauthenticated("No user found with this token")
    if not user.is_active:
        raise Unauthenticated("User account is deactivated")
    if user.is_blocked:
        raise Unauthenticated("User account is blocked")
    if user.is_locked():
        raise Unauthenticated(LOCKED_MESSAGE)
    return user


def resolve_identity(session: Session, token: str, token_type: str = "access") -> models.User:
    payload = decode_token(token, token_type)
    user = repositories.UserRepository(session).get(payload["user_id"])
    return check_account(user)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    Raises `Unauthenticated` when no bearer token is present or the
    token or the account fails any check.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()
    return resolve_identity(session, credentials.credentials)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> Optional[models.User]:
    """Same pipeline as `get_current_user` but yields `None` instead of failing."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return resolve_identity(session, credentials.credentials)
    except Unauthenticated:
        return None


def require_roles(*roles: str):
    """Dependency factory: the caller's role must be one of `roles`."""
    def _dep(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in roles:
            raise Forbidden(f"User role '{user.role}' is not authorized to access this route")
        return user
    return _dep


def require_user_types(*user_types: str):
    """Dependency factory: admins pass, otherwise the user type must match."""
    def _dep(user: models.User = Depends(get_current_user)) -> models.User:
        if user.is_admin or user.user_type in user_types:
            return user
        raise Forbidden(f"User type '{user.user_type}' is not authorized to access this route")
    return _dep


def has_permission(user: models.User, permission: str) -> bool:
    return user.is_admin or permission in (user.permissions or [])


def require_permission(permission: str):
    def _dep(user: models.User = Depends(get_current_user)) -> models.User:
        if not has_permission(user, permission):
            raise Forbidden(f"Permission '{permission}' is required to access this route")
        return user
    return _dep
