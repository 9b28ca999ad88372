"""Server-side placeholder records for uploads.

A placeholder record is created before any byte is transferred and tells the
server which file is being uploaded. The record id travels with the transfer
as metadata. If the transfer never completes, the record is deleted again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

import aiohttp

from vitransfer.const import (
    DEFAULT_RECORD_ID_FIELD,
    DEFAULT_RECORDS_PATH,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)
from vitransfer.exceptions import RecordCreationError, RecordDeletionError
from vitransfer.models import LocalFile

logger = logging.getLogger(__name__)


class Credentials(Protocol):
    """Source of API credentials."""

    def get_headers(self) -> dict[str, str]:
        """Return authorization headers for API requests."""
        ...

    async def attempt_refresh(self) -> bool:
        """Refresh credentials; True on success."""
        ...


class UploadRecordApi(Protocol):
    """Create/delete placeholder records on the server."""

    async def create_upload_record(
        self,
        owner_id: str,
        file_name: str,
        file_size: int,
        mime_type: str,
        category: str | None = None,
    ) -> str:
        """Create a placeholder record and return its id."""
        ...

    async def delete_upload_record(self, owner_id: str, record_id: str) -> None:
        """Delete a placeholder record."""
        ...


class UploadRecordClient:
    """HTTP implementation of the placeholder record API."""

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        api_url: str,
        credentials: Credentials | None = None,
        records_path: str = DEFAULT_RECORDS_PATH,
        record_id_field: str = DEFAULT_RECORD_ID_FIELD,
    ) -> None:
        """Initialize the client.

        Args:
            client_session: Shared aiohttp session for HTTP requests.
            api_url: Base URL of the application API.
            credentials: Supplies auth headers and refreshes them on 401.
            records_path: Path template of the record collection; receives
                ``owner_id``.
            record_id_field: Field of the creation response holding the id.
        """
        self.client_session = client_session
        self._api_url = api_url.rstrip("/")
        self._credentials = credentials
        self._records_path = records_path
        self._record_id_field = record_id_field

    def _collection_url(self, owner_id: str) -> str:
        return f"{self._api_url}{self._records_path.format(owner_id=owner_id)}"

    def _headers(self) -> dict[str, str]:
        if self._credentials is None:
            return {}
        return self._credentials.get_headers()

    async def _request(
        self,
        method: Callable[..., Any],
        url: str,
        **kwargs: Any,
    ) -> tuple[int, Any, str]:
        """Send a request, refreshing credentials once on HTTP 401.

        Returns:
            Tuple of (status, json_body, text_body).
        """
        for attempt in range(2):
            async with method(
                url,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT_SECONDS),
                **kwargs,
            ) as response:
                if (
                    response.status == 401
                    and attempt == 0
                    and self._credentials is not None
                ):
                    logger.info("Access token expired, refreshing token")
                    if await self._credentials.attempt_refresh():
                        continue

                text = await response.text()
                body: Any = None
                if response.content_type == "application/json" and text:
                    try:
                        body = await response.json()
                    except (aiohttp.ContentTypeError, ValueError):
                        body = None
                return response.status, body, text

        raise RuntimeError("unreachable")

    async def create_upload_record(
        self,
        owner_id: str,
        file_name: str,
        file_size: int,
        mime_type: str,
        category: str | None = None,
    ) -> str:
        """Create a placeholder record for a file about to be uploaded.

        Args:
            owner_id: Owner the record belongs to.
            file_name: Name of the file.
            file_size: Size of the file in bytes.
            mime_type: MIME type of the file.
            category: Asset category; sent as null when unknown.

        Returns:
            Id of the created record.

        Raises:
            RecordCreationError: If the server refused or could not be reached.
        """
        payload = {
            "fileName": file_name,
            "fileSize": file_size,
            "mimeType": mime_type,
            "category": category or None,
        }
        try:
            status, body, text = await self._request(
                self.client_session.post, self._collection_url(owner_id), json=payload
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to create upload record for {file_name}: {e}")
            raise RecordCreationError(f"Failed to create upload record: {e}") from e

        if status >= 400:
            detail = body.get("error") if isinstance(body, dict) else None
            logger.error(f"Failed to create upload record: HTTP {status}: {text}")
            raise RecordCreationError(detail or f"HTTP {status}")

        record_id = body.get(self._record_id_field) if isinstance(body, dict) else None
        if not record_id:
            raise RecordCreationError("Failed to create upload record")

        logger.info(f"Created upload record {record_id} for {file_name}")
        return str(record_id)

    async def delete_upload_record(self, owner_id: str, record_id: str) -> None:
        """Delete a placeholder record.

        Raises:
            RecordDeletionError: If the server refused or could not be reached.
        """
        url = f"{self._collection_url(owner_id)}/{record_id}"
        try:
            status, _, text = await self._request(self.client_session.delete, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RecordDeletionError(f"Failed to delete upload record: {e}") from e

        if status >= 400 and status != 404:
            raise RecordDeletionError(f"HTTP {status}: {text}")
        logger.info(f"Deleted upload record {record_id}")


class RecordLifecycle:
    """Claim and release placeholder records for one owner."""

    def __init__(self, api: UploadRecordApi, owner_id: str) -> None:
        self._api = api
        self.owner_id = owner_id

    async def claim(self, file: LocalFile, category: str | None = None) -> str:
        """Create the placeholder record for a file.

        Raises:
            RecordCreationError: If the record could not be created.
        """
        record_id = await self._api.create_upload_record(
            self.owner_id, file.name, file.size, file.mime_type, category
        )
        if not record_id:
            raise RecordCreationError("Failed to create upload record")
        return record_id

    async def release(self, record_id: str) -> bool:
        """Delete a placeholder record, best effort.

        Failures are logged and never raised: releasing happens after the
        user-visible transition and must not affect it.

        Returns:
            True if the record was deleted.
        """
        try:
            await self._api.delete_upload_record(self.owner_id, record_id)
        except (RecordDeletionError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to delete upload record {record_id}: {e}")
            return False
        return True
