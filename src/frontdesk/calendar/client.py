"""
OAuth token endpoint client for calendar providers.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from frontdesk.calendar.config import CalendarOAuthConfig, get_calendar_oauth_config
from frontdesk.retry.outcome import PermanentEffectError
from frontdesk.shared.clock import utcnow

# OAuth error codes meaning the grant will never work again.
FATAL_OAUTH_ERRORS = frozenset({"invalid_grant", "invalid_client", "unauthorized_client"})


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None
    expires_at: datetime


class OAuthTokenClient:
    """Exchanges refresh tokens for new access tokens."""

    def __init__(
        self,
        config: CalendarOAuthConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_calendar_oauth_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def refresh(self, provider: str, refresh_token: str) -> TokenGrant:
        """Refresh an access token.

        Raises:
            PermanentEffectError: Unknown provider, or the provider revoked the grant.
            httpx.HTTPStatusError: Any other non-2xx response.
        """
        credentials = self._config.credentials_for(provider)
        if credentials is None:
            raise PermanentEffectError(f"Unknown calendar provider: {provider}")
        token_url, client_id, client_secret = credentials

        response = await self._get_client().post(
            token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
        )
        if response.status_code in (400, 401):
            error_code = _oauth_error(response)
            if error_code in FATAL_OAUTH_ERRORS:
                raise PermanentEffectError(f"{provider} rejected refresh token: {error_code}")
        response.raise_for_status()

        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            raise PermanentEffectError(f"{provider} token response has no access_token")
        expires_in = int(data.get("expires_in", 3600))
        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=utcnow() + timedelta(seconds=expires_in),
        )


def _oauth_error(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        return error if isinstance(error, str) else None
    return None
