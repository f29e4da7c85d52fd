"""Google sign-in: OAuth installed-app flow and user info lookup."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import google_auth_oauthlib.flow
import httpx

from ..exceptions import AuthExpiredError, AuthFailedError, ConfigurationError
from ..models import TokenGrant, UserInfo

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",
]
USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
DEFAULT_EXPIRES_IN = 3600


class IdentityProvider(Protocol):
    """Issues access tokens and describes the signed-in user."""

    async def sign_in(self) -> TokenGrant:
        ...

    async def get_user_info(self, token: str) -> UserInfo:
        ...


class GoogleIdentityProvider:
    """Google OAuth 2.0 sign-in for a desktop/CLI client."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None = None,
        scopes: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes or DEFAULT_SCOPES
        self.transport = transport

    def _client_config(self) -> dict[str, Any]:
        installed: dict[str, Any] = {
            "client_id": self.client_id,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
        if self.client_secret:
            installed["client_secret"] = self.client_secret
        return {"installed": installed}

    def _run_flow(self) -> Any:
        flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(
            self._client_config(), scopes=self.scopes
        )
        return flow.run_local_server(port=0)

    async def sign_in(self) -> TokenGrant:
        """
        Run the browser sign-in flow without blocking the event loop.

        Raises:
            ConfigurationError: If no OAuth client id is configured
            AuthFailedError: If the flow fails, is cancelled or yields no token
        """
        if not self.client_id:
            raise ConfigurationError(
                "A Google OAuth client id is required to sign in "
                "(set RENTAL_TAX_GOOGLE_CLIENT_ID)"
            )
        logger.debug("Starting OAuth flow...")
        try:
            creds = await asyncio.to_thread(self._run_flow)
        except Exception as e:
            logger.error(f"OAuth flow error: {e}")
            raise AuthFailedError(f"Google sign-in failed: {e}") from e

        if not creds or not creds.token:
            raise AuthFailedError("Authentication was cancelled or no token was issued")

        return TokenGrant(token=creds.token, expires_in=_expires_in(creds.expiry))

    async def get_user_info(self, token: str) -> UserInfo:
        """
        Fetch the signed-in user's email.

        Raises:
            AuthExpiredError: If the token is rejected
            AuthFailedError: If the profile cannot be fetched
        """
        async with httpx.AsyncClient(timeout=30.0, transport=self.transport) as client:
            try:
                response = await client.get(
                    USERINFO_URL, headers={"Authorization": f"Bearer {token}"}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 401:
                    raise AuthExpiredError("Access token rejected by Google") from e
                raise AuthFailedError(
                    f"Failed to fetch user info (HTTP {e.response.status_code})"
                ) from e
            except httpx.TransportError as e:
                raise AuthFailedError(f"Failed to fetch user info: {e}") from e

        data = response.json()
        return UserInfo(email=data.get("email"))


def _expires_in(expiry: datetime | None) -> int:
    """Seconds until a google-auth expiry (naive UTC), with a one hour default."""
    if expiry is None:
        return DEFAULT_EXPIRES_IN
    now = datetime.now(UTC).replace(tzinfo=None)
    return max(int((expiry - now).total_seconds()), 0)
