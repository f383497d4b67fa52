"""
auth/oauth.py -- Google identity provider (authorization code flow).

The frontend asks GET /api/v1/auth/google/url for a consent URL, sends the
user to Google, and posts the returned code to POST /api/v1/auth/google. This
module does the two provider calls behind that endpoint:

  1. exchange the code for a provider access token (oauth2.googleapis.com)
  2. fetch the userinfo document (googleapis.com/oauth2/v2/userinfo)

Both go through authlib's AsyncOAuth2Client (httpx transport). The state
parameter is generated here and returned to the frontend, which owns the
round trip -- there is no server-side session for authlib to keep it in.

Security notes:
  Email verification is mandatory. exchange_code() raises OAuthFailed when
  Google reports verified_email=false. An unverified address could belong
  to someone else.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from core.config import Settings
from core.errors import OAuthFailed

logger = logging.getLogger("sessionkeep.auth.oauth")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPE = "openid email profile"


@dataclass
class GoogleProfile:
    id: str
    email: str
    given_name: str = ""
    family_name: str = ""
    picture: str | None = None


class GoogleIdentityProvider:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.google_configured

    def _client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            redirect_uri=self.settings.google_redirect_uri,
            scope=GOOGLE_SCOPE,
        )

    def authorization_url(self) -> tuple[str, str]:
        """Return (consent URL, state) for a fresh offline-access request."""
        state = secrets.token_urlsafe(24)
        client = self._client()
        url, _ = client.create_authorization_url(
            GOOGLE_AUTHORIZE_URL,
            state=state,
            access_type="offline",
            prompt="consent",
        )
        return url, state

    async def exchange_code(self, code: str) -> GoogleProfile:
        """Trade an authorization code for the user's Google profile.

        Raises:
            OAuthFailed: on any provider error or an unverified / missing email.
        """
        async with self._client() as client:
            try:
                await client.fetch_token(GOOGLE_TOKEN_URL, code=code, grant_type="authorization_code")
                resp = await client.get(GOOGLE_USERINFO_URL)
                resp.raise_for_status()
            except (OAuthError, httpx.HTTPError) as exc:
                logger.warning("Google code exchange failed: %s", exc)
                raise OAuthFailed() from exc
        info = resp.json()

        email = info.get("email")
        if not email or not info.get("id"):
            raise OAuthFailed("Google account has no email associated.")
        if info.get("verified_email") is False:
            raise OAuthFailed("Google account email is not verified.")

        return GoogleProfile(
            id=str(info["id"]),
            email=email,
            given_name=info.get("given_name") or "",
            family_name=info.get("family_name") or "",
            picture=info.get("picture"),
        )
