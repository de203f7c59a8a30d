"""Google OAuth 2.0 authorization-code client."""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from .config import Settings
from .errors import ExternalServiceError

logger = logging.getLogger("taskhub-core.oauth")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


@dataclass(frozen=True)
class GoogleProfile:
    google_id: str
    email: str
    name: str
    avatar: str = ""


class GoogleOAuthClient:
    """
    Exchange an authorization code for a Google profile.

    Args:
        settings: Application settings holding client id, secret and callback URL
        client: Optional shared AsyncClient (a private one is created per call otherwise)
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(
            self.settings.google_client_id
            and self.settings.google_client_secret
            and self.settings.google_callback_url
        )

    def _require_configured(self) -> None:
        if not self.configured:
            raise ExternalServiceError("Google OAuth is not configured")

    def authorization_url(self, state: Optional[str] = None) -> str:
        self._require_configured()
        params = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.google_callback_url,
            "response_type": "code",
            "scope": "openid email profile",
            "access_type": "online",
            "prompt": "select_account",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=15.0) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Google OAuth request to {url} failed: {e}")
            raise ExternalServiceError("Google authentication failed") from e

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""
        self._require_configured()
        result = await self._request(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "redirect_uri": self.settings.google_callback_url,
                "grant_type": "authorization_code",
            },
        )
        token = result.get("access_token")
        if not token:
            raise ExternalServiceError("Google authentication failed")
        return token

    async def fetch_profile(self, access_token: str) -> GoogleProfile:
        result = await self._request(
            "GET",
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not result.get("sub") or not result.get("email"):
            raise ExternalServiceError("Google profile is missing an id or email")
        return GoogleProfile(
            google_id=result["sub"],
            email=result["email"].lower(),
            name=result.get("name") or result["email"].split("@")[0],
            avatar=result.get("picture") or "",
        )

    async def authenticate(self, code: str) -> GoogleProfile:
        token = await self.exchange_code(code)
        profile = await self.fetch_profile(token)
        logger.info(f"Google authentication succeeded for {profile.email}")
        return profile
