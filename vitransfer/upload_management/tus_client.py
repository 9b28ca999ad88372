"""Client for the tus 1.0 resumable upload protocol.

Each method performs one protocol request. Failures are raised as transfer
errors so the session above can decide whether to retry.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Callable
from urllib.parse import urljoin

import aiohttp

from vitransfer.const import (
    DEFAULT_CHUNK_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    TUS_CONTENT_TYPE,
    TUS_VERSION,
)
from vitransfer.exceptions import (
    NetworkError,
    TransferError,
    UnknownTransferError,
    classify_status,
)

logger = logging.getLogger(__name__)

NETWORK_EXCEPTIONS = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
)


def encode_metadata(metadata: dict[str, str]) -> str:
    """Encode metadata as an ``Upload-Metadata`` header value."""
    pairs = []
    for key, value in metadata.items():
        encoded = base64.b64encode(str(value).encode("utf-8")).decode("ascii")
        pairs.append(f"{key} {encoded}")
    return ",".join(pairs)


class TusClient:
    """Perform tus protocol requests against one endpoint."""

    SUCCESS_CODES = {200, 201, 204}
    UPLOAD_GONE_CODES = {404, 410}
    AUTH_CODES = {401, 403}

    def __init__(
        self,
        endpoint: str,
        client_session: aiohttp.ClientSession,
        headers_provider: Callable[[], dict[str, str]] | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: URL that accepts upload creation requests.
            client_session: aiohttp ClientSession for HTTP requests.
            headers_provider: Returns credential headers; called per request so
                refreshed credentials are picked up by the next request.
            request_timeout: Timeout for creation, offset and termination requests.
            chunk_timeout: Timeout for a single chunk request.
        """
        self.endpoint = endpoint
        self._session = client_session
        self._headers_provider = headers_provider
        self._request_timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._chunk_timeout = aiohttp.ClientTimeout(total=chunk_timeout)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Tus-Resumable": TUS_VERSION}
        if self._headers_provider is not None:
            headers.update(self._headers_provider())
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    async def _error_for(response: aiohttp.ClientResponse) -> TransferError:
        try:
            body = await response.text()
        except (aiohttp.ClientError, UnicodeDecodeError):
            body = ""
        return classify_status(response.status, body.strip()[:200])

    async def create_upload(self, length: int, metadata: dict[str, str]) -> str:
        """Create a new upload on the server.

        Args:
            length: Total size of the file in bytes.
            metadata: Key/value metadata attached to the upload.

        Returns:
            Absolute URL of the created upload.

        Raises:
            TransferError: If the request fails or the server refuses it.
        """
        headers = self._headers({
            "Upload-Length": str(length),
            "Upload-Metadata": encode_metadata(metadata),
        })
        try:
            async with self._session.post(
                self.endpoint, headers=headers, timeout=self._request_timeout
            ) as response:
                if response.status not in self.SUCCESS_CODES:
                    raise await self._error_for(response)
                location = response.headers.get("Location")
        except NETWORK_EXCEPTIONS as e:
            raise NetworkError(f"Failed to create upload: {e}") from e

        if not location:
            raise UnknownTransferError("Upload creation response had no Location")
        upload_url = urljoin(self.endpoint, location)
        logger.debug(f"Created upload {upload_url} ({length} bytes)")
        return upload_url

    async def get_offset(self, upload_url: str) -> int | None:
        """Query how many bytes the server holds for an upload.

        Returns:
            The acknowledged offset, or None if the server no longer knows the
            upload and a new one must be created.

        Raises:
            TransferError: On network, authentication or server failures.
        """
        try:
            async with self._session.head(
                upload_url, headers=self._headers(), timeout=self._request_timeout
            ) as response:
                if response.status in self.AUTH_CODES or response.status >= 500:
                    raise await self._error_for(response)
                if response.status in self.UPLOAD_GONE_CODES:
                    return None
                if response.status >= 400 and response.status != 423:
                    return None
                if response.status not in self.SUCCESS_CODES:
                    raise await self._error_for(response)
                offset_header = response.headers.get("Upload-Offset")
        except NETWORK_EXCEPTIONS as e:
            raise NetworkError(f"Failed to query upload offset: {e}") from e

        try:
            return int(offset_header) if offset_header is not None else None
        except ValueError:
            logger.warning(f"Invalid Upload-Offset {offset_header!r} for {upload_url}")
            return None

    async def upload_chunk(self, upload_url: str, offset: int, data: bytes) -> int:
        """Send one chunk starting at offset.

        Returns:
            The new offset acknowledged by the server.

        Raises:
            TransferError: If the chunk was not accepted.
        """
        headers = self._headers({
            "Upload-Offset": str(offset),
            "Content-Type": TUS_CONTENT_TYPE,
        })
        try:
            async with self._session.patch(
                upload_url, headers=headers, data=data, timeout=self._chunk_timeout
            ) as response:
                if response.status not in self.SUCCESS_CODES:
                    raise await self._error_for(response)
                offset_header = response.headers.get("Upload-Offset")
        except NETWORK_EXCEPTIONS as e:
            raise NetworkError(f"Chunk upload failed at offset {offset}: {e}") from e

        try:
            new_offset = int(offset_header) if offset_header is not None else -1
        except ValueError:
            new_offset = -1
        if new_offset < offset:
            raise UnknownTransferError(
                f"Invalid Upload-Offset in chunk response: {offset_header!r}"
            )
        return new_offset

    async def terminate(self, upload_url: str) -> None:
        """Ask the server to discard an upload.

        Raises:
            TransferError: If the server did not accept the termination.
        """
        try:
            async with self._session.delete(
                upload_url, headers=self._headers(), timeout=self._request_timeout
            ) as response:
                if (
                    response.status not in self.SUCCESS_CODES
                    and response.status not in self.UPLOAD_GONE_CODES
                ):
                    raise await self._error_for(response)
        except NETWORK_EXCEPTIONS as e:
            raise NetworkError(f"Failed to terminate upload: {e}") from e
        logger.debug(f"Terminated upload {upload_url}")
