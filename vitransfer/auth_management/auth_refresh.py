"""Recover transfers that fail authentication mid-flight.

An expired session token shows up as a 401/403 from the transfer endpoint.
The interceptor refreshes credentials once per upload attempt and tells the
caller whether the same transfer may be restarted.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from vitransfer.const import MAX_AUTH_REFRESH_ATTEMPTS

logger = logging.getLogger(__name__)


class AuthRefreshInterceptor:
    """Per-item, single-shot credential refresh."""

    def __init__(
        self,
        refresh: Callable[[], Awaitable[bool]],
        max_attempts: int = MAX_AUTH_REFRESH_ATTEMPTS,
    ) -> None:
        """Initialize the interceptor.

        Args:
            refresh: Credential-refresh collaborator; resolves True on success.
            max_attempts: Refreshes allowed per item before giving up.
        """
        self._refresh = refresh
        self._max_attempts = max_attempts
        self._attempts: dict[str, int] = {}

    def attempts(self, item_id: str) -> int:
        """Return how many refreshes were attempted for an item."""
        return self._attempts.get(item_id, 0)

    def reset(self, item_id: str) -> None:
        """Discard the counter of an item."""
        self._attempts.pop(item_id, None)

    async def try_recover(self, item_id: str) -> bool:
        """Attempt a credential refresh for an item's failed transfer.

        Args:
            item_id: Upload item whose transfer failed authentication.

        Returns:
            True if credentials were refreshed and the transfer may be
            restarted, False if the failure should be treated as terminal.
        """
        attempts = self._attempts.get(item_id, 0)
        if attempts >= self._max_attempts:
            logger.info(
                f"Auth refresh already attempted for {item_id}, not retrying"
            )
            return False

        self._attempts[item_id] = attempts + 1
        try:
            refreshed = await self._refresh()
        except Exception as e:
            logger.warning(
                f"Credential refresh failed for {item_id}: {e}", exc_info=True
            )
            return False

        if refreshed:
            logger.info(f"Credentials refreshed, resuming upload {item_id}")
        else:
            logger.warning(f"Credential refresh rejected for upload {item_id}")
        return bool(refreshed)
