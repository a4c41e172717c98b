"""
Sign-in routes: Google OAuth, username/password and the session itself.
"""
import secrets
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import CREDENTIAL_LIMIT, limiter
from app.features.auth.schemas import LoginRequest, LoginResponse, SessionResponse
from app.features.oauth.google import GoogleOAuthClient, get_google_client
from app.features.oauth.pending import PendingOAuthUserCache
from app.features.users.auth import (
    clear_session_cookie,
    create_session_token,
    resolve_session_user,
    set_session_cookie,
    verify_password,
)
from app.features.users.models import User
from app.features.users.schemas import UserPublic
from app.utils import get_logger, utcnow


log = get_logger(__name__)

router = APIRouter(tags=["auth"])

OAUTH_STATE_COOKIE = "oauth_state"
ONBOARDING_PATH = "/oauth/onboarding"
LOGIN_PATH = "/login"


def _login_error(reason: str) -> RedirectResponse:
    return RedirectResponse(f"{LOGIN_PATH}?{urlencode({'error': reason})}", status_code=status.HTTP_302_FOUND)


@router.get("/google")
async def google_login(
    google: Annotated[GoogleOAuthClient, Depends(get_google_client)]
):
    """Send the browser to Google's consent screen."""
    state = secrets.token_urlsafe(32)
    response = RedirectResponse(google.get_authorization_url(state), status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=600,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return response


@router.get("/google/callback")
async def google_callback(
    request: Request,
    google: Annotated[GoogleOAuthClient, Depends(get_google_client)],
    db: Annotated[AsyncSession, Depends(get_db)],
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
):
    """
    Finish Google sign-in.

    Known identities get a session straight away. New ones are parked in the
    pending cache and sent to the onboarding page to create or join an
    organization.
    """
    if error or not code:
        log.info("Google sign-in aborted: %s", error or "missing code")
        return _login_error("oauth_cancelled")

    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not state or not expected_state or not secrets.compare_digest(state, expected_state):
        log.warning("Google callback with mismatched state")
        return _login_error("invalid_state")

    identity = await google.fetch_identity(code)

    user = await db.scalar(
        select(User).where(or_(User.external_id == identity.id, User.email == identity.email))
    )
    if user is not None:
        if not user.is_active:
            return _login_error("account_disabled")
        if user.external_id is None:
            # Existing password account signing in with Google for the first time
            user.external_id = identity.id
            log.info("Linked Google identity %s to user %s", identity.id, user.id)
        elif user.external_id != identity.id:
            log.warning("Google identity %s does not match user %s", identity.id, user.id)
            return _login_error("account_mismatch")
        user.photo_url = user.photo_url or identity.photo_url
        user.last_login_at = utcnow()
        await db.flush()

        response = RedirectResponse("/dashboard", status_code=status.HTTP_302_FOUND)
        set_session_cookie(response, create_session_token(user))
        response.delete_cookie(OAUTH_STATE_COOKIE)
        log.info("User %s signed in with Google", user.id)
        return response

    await PendingOAuthUserCache(db).store(identity)
    response = RedirectResponse(
        f"{ONBOARDING_PATH}?{urlencode({'googleId': identity.id})}", status_code=status.HTTP_302_FOUND
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


@router.post("/login", response_model=LoginResponse)
@limiter.limit(CREDENTIAL_LIMIT)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Username (or e-mail) and password sign-in."""
    login_name = credentials.login.strip().lower()
    user = await db.scalar(
        select(User).where(or_(User.username == login_name, User.email == login_name))
    )
    if user is None or not user.is_active or not verify_password(credentials.password, user.password_hash):
        log.info("Failed login for %s", login_name)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user.last_login_at = utcnow()
    await db.flush()
    set_session_cookie(response, create_session_token(user))
    return LoginResponse(
        message="Logged in successfully",
        redirect_to="/dashboard",
        user=UserPublic.model_validate(user),
    )


@router.post("/logout")
async def logout(response: Response):
    clear_session_cookie(response)
    return {"success": True, "message": "Logged out"}


@router.get("/session", response_model=SessionResponse)
async def get_session(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Who is signed in, if anyone. Never fails for anonymous callers."""
    user = await resolve_session_user(request, db)
    if user is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=UserPublic.model_validate(user))
