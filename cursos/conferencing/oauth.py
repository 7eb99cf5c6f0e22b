"""Google OAuth 2.0 web-server flow for calendar access.

Organizers grant offline access once; the refresh token is then used to
renew the short-lived access token whenever it expires.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx

from cursos.core.errors import ExternalServiceError
from cursos.core.logging import get_logger


logger = get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class OAuthError(ExternalServiceError):
    """Token endpoint rejected the request or was unreachable."""

    def __init__(self, message: str = "Falha na autorizacao com o Google"):
        super().__init__(message, "oauth_error")


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None


class GoogleOAuthClient:
    """Thin client over the Google token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    def authorization_url(self, state: str) -> str:
        """URL the organizer visits to grant calendar access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        return await self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        tokens = await self._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"}
        )
        # Google omits the refresh token on refresh responses
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    async def _token_request(self, data: dict[str, str]) -> OAuthTokens:
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            **data,
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    GOOGLE_TOKEN_URL, data=payload, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(GOOGLE_TOKEN_URL, data=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "google_token_request_rejected",
                grant_type=data["grant_type"],
                status_code=e.response.status_code,
            )
            msg = f"Google token endpoint returned {e.response.status_code}"
            raise OAuthError(msg) from e
        except httpx.HTTPError as e:
            logger.warning(
                "google_token_request_failed",
                grant_type=data["grant_type"],
                error=str(e),
            )
            raise OAuthError from e

        body = response.json()
        expires_in = body.get("expires_in")
        return OAuthTokens(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_at=(
                datetime.now(UTC) + timedelta(seconds=int(expires_in))
                if expires_in
                else None
            ),
        )
