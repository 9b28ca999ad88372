"""Pydantic models for upload queue configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field

from vitransfer.const import (
    ALL_ALLOWED_EXTENSIONS,
    API_URL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_TIMEOUT_SECONDS,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_RECORD_ID_FIELD,
    DEFAULT_RECORDS_PATH,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_DELAYS,
)


class UploadQueueConfig(BaseModel):
    """Configuration options for an upload queue.

    Attributes:
        api_url: base URL of the application API.
        tus_endpoint: resumable transfer endpoint; ``{api_url}/uploads`` when unset.
        max_concurrent: maximum number of transfers running at once.
        chunk_size: bytes sent per PATCH request.
        retry_delays: seconds to wait before each retry of a transient failure.
        allowed_extensions: file extensions accepted by ``enqueue``.
        store_fingerprint_for_resuming: remember transfer URLs so an interrupted
            transfer can continue from its last acknowledged offset.
        remove_fingerprint_on_success: forget the transfer URL once complete.
        fingerprint_store_path: SQLite database for fingerprints; in-memory
            when unset.
        request_timeout: timeout in seconds for control requests.
        chunk_timeout: timeout in seconds for a single chunk request.
        records_path: path template of the placeholder record collection.
        record_id_field: response field holding the created record id.
    """

    api_url: str = API_URL
    tus_endpoint: str | None = None
    max_concurrent: int = Field(default=DEFAULT_MAX_CONCURRENT, ge=1)
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)
    retry_delays: list[float] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_DELAYS)
    )
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(ALL_ALLOWED_EXTENSIONS)
    )
    store_fingerprint_for_resuming: bool = True
    remove_fingerprint_on_success: bool = True
    fingerprint_store_path: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT_SECONDS
    records_path: str = DEFAULT_RECORDS_PATH
    record_id_field: str = DEFAULT_RECORD_ID_FIELD

    @property
    def effective_tus_endpoint(self) -> str:
        """Return the resumable transfer endpoint."""
        return self.tus_endpoint or f"{self.api_url.rstrip('/')}/uploads"
