"""
Authentication utilities: password hashing and signed session tokens.

A session is an HS256 JWT carrying the user id. It travels in an HTTP-only
cookie for browser navigation and is also accepted as a Bearer token.
"""
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Request, Response
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

SESSION_ALGORITHM = "HS256"


def hash_password(raw_password: str) -> str:
    return pwd_context.hash(raw_password)


def verify_password(raw_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(raw_password, hashed_password)


def create_session_token(user: User, ttl: timedelta | None = None) -> str:
    """Sign a session token for ``user``."""
    issued_at = utcnow()
    payload = {
        "sub": user.id,
        "org": user.organization_id,
        "role": user.role,
        "iat": issued_at,
        "exp": issued_at + (ttl or timedelta(hours=config.SESSION_TTL_HOURS)),
    }
    return jwt.encode(payload, config.SECRET_KEY, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    """
    Verify a session token.

    Returns None for anything that is not a valid, unexpired token; callers
    treat that the same as "not logged in".
    """
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[SESSION_ALGORITHM])
    except jwt.ExpiredSignatureError:
        log.debug("Session token expired")
    except jwt.InvalidTokenError as e:
        log.debug("Invalid session token: %s", e)
    return None


def extract_session_token(request: Request) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(config.SESSION_COOKIE_NAME)


async def resolve_session_user(request: Request, db: AsyncSession) -> Optional[User]:
    """The active user behind the request's session, or None."""
    token = extract_session_token(request)
    if not token:
        return None
    payload = decode_session_token(token)
    if not payload or not payload.get("sub"):
        return None
    user = await db.get(User, payload["sub"])
    if user is None or not user.is_active:
        return None
    return user


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=token,
        max_age=config.SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(config.SESSION_COOKIE_NAME)
