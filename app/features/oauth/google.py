"""
Google OAuth 2.0 client (authorization code flow).

Only what sign-in needs: the consent URL, the code exchange and the userinfo
lookup. Google access tokens are used once and never stored.
"""
from typing import Optional
from urllib.parse import urlencode

import httpx

from app.core import config
from app.core.errors import AppError, UpstreamError
from app.features.oauth.pending import OAuthIdentity
from app.utils import get_logger


log = get_logger(__name__)


class GoogleOAuthError(UpstreamError):
    code = "oauth_failed"


class GoogleOAuthNotConfiguredError(AppError):
    status_code = 503
    code = "oauth_not_configured"


class GoogleOAuthClient:
    AUTHORIZATION_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USER_INFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    DEFAULT_SCOPES = [
        "openid",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ]

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        scopes: Optional[list[str]] = None,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or self.DEFAULT_SCOPES
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.configured:
            raise GoogleOAuthNotConfiguredError("Google sign-in is not configured")

    def get_authorization_url(self, state: str) -> str:
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "prompt": "select_account",
        }
        return f"{self.AUTHORIZATION_URL}?{urlencode(params)}"

    async def fetch_identity(self, code: str) -> OAuthIdentity:
        """Exchange ``code`` for an access token and look up who it belongs to."""
        self._require_configured()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            access_token = await self._exchange_code(client, code)
            user_data = await self._get_user_info(client, access_token)

        if not user_data.get("id") or not user_data.get("email"):
            raise GoogleOAuthError("Google did not return an account id and email")

        return OAuthIdentity(
            id=str(user_data["id"]),
            email=user_data["email"].lower(),
            display_name=user_data.get("name") or user_data["email"],
            photo_url=user_data.get("picture"),
            profile=user_data,
        )

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> str:
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            response = await client.post(self.TOKEN_URL, data=data)
            response.raise_for_status()
            return response.json()["access_token"]
        except httpx.HTTPStatusError as e:
            log.error("Google token exchange failed: %s %s", e.response.status_code, e.response.text)
            raise GoogleOAuthError("Failed to exchange authorization code") from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            log.exception("Google token exchange failed")
            raise GoogleOAuthError("Failed to exchange authorization code") from e

    async def _get_user_info(self, client: httpx.AsyncClient, access_token: str) -> dict:
        try:
            response = await client.get(
                self.USER_INFO_URL, headers={"Authorization": f"Bearer {access_token}"}
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            log.error("Google userinfo failed: %s %s", e.response.status_code, e.response.text)
            raise GoogleOAuthError("Failed to fetch Google profile") from e
        except (httpx.HTTPError, ValueError) as e:
            log.exception("Google userinfo failed")
            raise GoogleOAuthError("Failed to fetch Google profile") from e


def get_google_client() -> GoogleOAuthClient:
    """FastAPI dependency; tests override it with a fake provider."""
    return GoogleOAuthClient(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET, config.GOOGLE_REDIRECT_URI)
