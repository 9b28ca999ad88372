"""Access token storage and refresh for API requests."""

from __future__ import annotations

import asyncio
import logging

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vitransfer.const import AUTH_REFRESH_PATH, DEFAULT_REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class TokenPair(BaseModel):
    """Access/refresh token pair returned by the auth API."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")


class RefreshResponse(BaseModel):
    """Body of a token refresh response."""

    tokens: TokenPair | None = None


class TokenManager:
    """Hold the current API tokens and refresh them on demand.

    Concurrent refresh attempts share one in-flight request, so several
    transfers failing authentication at once trigger a single refresh.
    """

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        api_url: str,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> None:
        """Initialize the token manager.

        Args:
            client_session: Shared aiohttp session for HTTP requests.
            api_url: Base URL of the application API.
            access_token: Current access token, if any.
            refresh_token: Refresh token used to obtain new access tokens.
        """
        self._session = client_session
        self._api_url = api_url.rstrip("/")
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._refresh_in_flight: asyncio.Task[bool] | None = None

    @property
    def access_token(self) -> str | None:
        """Return the current access token."""
        return self._access_token

    def get_headers(self) -> dict[str, str]:
        """Return authorization headers for the current access token."""
        if not self._access_token:
            return {}
        return {"Authorization": f"Bearer {self._access_token}"}

    def set_tokens(self, access_token: str, refresh_token: str) -> None:
        """Replace both tokens."""
        self._access_token = access_token
        self._refresh_token = refresh_token

    def clear_tokens(self) -> None:
        """Forget both tokens."""
        self._access_token = None
        self._refresh_token = None

    async def attempt_refresh(self) -> bool:
        """Exchange the refresh token for a new token pair.

        Returns:
            True if new tokens were stored, False otherwise. Tokens are cleared
            when the refresh is rejected.
        """
        if self._refresh_in_flight is None:
            if not self._refresh_token:
                return False
            task = asyncio.get_running_loop().create_task(self._refresh())
            task.add_done_callback(self._clear_in_flight)
            self._refresh_in_flight = task

        return await asyncio.shield(self._refresh_in_flight)

    def _clear_in_flight(self, task: asyncio.Task[bool]) -> None:
        if self._refresh_in_flight is task:
            self._refresh_in_flight = None

    async def _refresh(self) -> bool:
        try:
            async with self._session.post(
                f"{self._api_url}{AUTH_REFRESH_PATH}",
                headers={"Authorization": f"Bearer {self._refresh_token}"},
                timeout=aiohttp.ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT_SECONDS),
            ) as response:
                if response.status >= 400:
                    logger.warning(f"Token refresh rejected: HTTP {response.status}")
                    self.clear_tokens()
                    return False
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to refresh token: {e}")
            self.clear_tokens()
            return False

        try:
            body = RefreshResponse.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Token refresh returned an invalid body: {e}")
            self.clear_tokens()
            return False

        if body.tokens is None:
            logger.warning("Token refresh response did not include tokens")
            self.clear_tokens()
            return False

        self.set_tokens(body.tokens.access_token, body.tokens.refresh_token)
        logger.info("Access token refreshed")
        return True
