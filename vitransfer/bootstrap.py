"""Wire configuration and collaborators into a ready-to-use upload queue."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from vitransfer.auth_management.auth_refresh import AuthRefreshInterceptor
from vitransfer.config_manager.upload_config import UploadQueueConfig
from vitransfer.event_emitter import Emitter
from vitransfer.models import LocalFile, UploadItem
from vitransfer.upload_management.fingerprint_store import (
    FingerprintStore,
    MemoryFingerprintStore,
)
from vitransfer.upload_management.fingerprint_store_sqlite import (
    SqliteFingerprintStore,
)
from vitransfer.upload_management.record_lifecycle import (
    Credentials,
    RecordLifecycle,
    UploadRecordClient,
)
from vitransfer.upload_management.transfer_session import TransferSession
from vitransfer.upload_management.tus_client import TusClient
from vitransfer.upload_management.upload_queue import UploadQueue

logger = logging.getLogger(__name__)


def build_fingerprint_store(config: UploadQueueConfig) -> FingerprintStore:
    """Return the SQLite store when a path is configured, else in-memory."""
    if config.fingerprint_store_path:
        return SqliteFingerprintStore(config.fingerprint_store_path)
    return MemoryFingerprintStore()


def build_upload_queue(
    config: UploadQueueConfig,
    client_session: aiohttp.ClientSession,
    owner_id: str,
    credentials: Credentials,
    on_progress: Callable[[UploadItem], None] | None = None,
    on_upload_complete: Callable[[], None] | None = None,
    emitter: Emitter | None = None,
) -> UploadQueue:
    """Build an upload queue for one owner.

    Args:
        config: Resolved upload configuration.
        client_session: Shared aiohttp session used for every request.
        owner_id: Owner the uploads belong to.
        credentials: Supplies auth headers and refreshes expired tokens.
        on_progress: Called with the item after each progress update.
        on_upload_complete: Called after each completed upload.
        emitter: Event emitter for lifecycle events; a new one when omitted.

    Returns:
        The configured UploadQueue.
    """
    fingerprint_store = build_fingerprint_store(config)
    tus_client = TusClient(
        config.effective_tus_endpoint,
        client_session,
        headers_provider=credentials.get_headers,
        request_timeout=config.request_timeout,
        chunk_timeout=config.chunk_timeout,
    )

    def session_factory(file: LocalFile, **callbacks: Any) -> TransferSession:
        return TransferSession(
            file,
            tus_client,
            fingerprint_store,
            chunk_size=config.chunk_size,
            retry_delays=config.retry_delays,
            store_fingerprint_for_resuming=config.store_fingerprint_for_resuming,
            remove_fingerprint_on_success=config.remove_fingerprint_on_success,
            upload_context=owner_id,
            **callbacks,
        )

    record_client = UploadRecordClient(
        client_session,
        config.api_url,
        credentials=credentials,
        records_path=config.records_path,
        record_id_field=config.record_id_field,
    )

    logger.info(
        f"Upload queue for {owner_id} sends transfers to "
        f"{config.effective_tus_endpoint} ({config.max_concurrent} at once)"
    )
    return UploadQueue(
        owner_id,
        RecordLifecycle(record_client, owner_id),
        session_factory,
        auth_interceptor=AuthRefreshInterceptor(credentials.attempt_refresh),
        max_concurrent=config.max_concurrent,
        allowed_extensions=config.allowed_extensions,
        emitter=emitter,
        on_progress=on_progress,
        on_upload_complete=on_upload_complete,
    )
