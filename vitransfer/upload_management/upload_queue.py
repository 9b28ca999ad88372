"""Upload queue with bounded concurrency.

The queue owns every UploadItem and drives its state machine:

    enqueue -> QUEUED --admission--> UPLOADING <--> PAUSED
                  ^                     |   \\
                  |                     v    v
                retry <------------- ERROR  COMPLETED

All operations are synchronous and must be called from the event loop that
runs the transfers. Network work (record creation, transfers, best-effort
cleanup) runs in tasks the queue spawns; every transition re-runs the
admission tick so freed slots are refilled in creation order.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Coroutine, Iterable, Sequence
from typing import Any, Protocol

from vitransfer.const import (
    ALL_ALLOWED_EXTENSIONS,
    DEFAULT_MAX_CONCURRENT,
    RECORD_ID_METADATA_KEY,
)
from vitransfer.event_emitter import Emitter
from vitransfer.exceptions import (
    GENERIC_ERROR_MESSAGE,
    AuthError,
    RecordCreationError,
    TransferError,
)
from vitransfer.models import (
    LocalFile,
    QueueStats,
    TransferProgress,
    UploadItem,
    UploadStatus,
    utcnow,
)

from ..auth_management.auth_refresh import AuthRefreshInterceptor
from .record_lifecycle import RecordLifecycle
from .validation import detect_category, validate_batch

logger = logging.getLogger(__name__)


class TransferHandle(Protocol):
    """The parts of a TransferSession the queue relies on."""

    metadata: dict[str, str]

    def start(self) -> None:
        """Begin or resume the transfer."""
        ...

    def abort(self, discard: bool = False) -> None:
        """Stop the transfer, optionally discarding its resumption state."""
        ...

    async def terminate(self) -> None:
        """Discard the server-side partial transfer."""
        ...

    async def wait_stopped(self) -> None:
        """Wait until an aborted transfer has unwound."""
        ...


SessionFactory = Callable[..., TransferHandle]
"""Builds a handle from (file, on_progress=, on_success=, on_error=)."""


def generate_upload_id() -> str:
    """Return a unique client-side upload id."""
    return f"upload-{int(time.time() * 1000)}-{uuid.uuid4().hex}"


class UploadQueue:
    """Ordered queue of uploads with admission control."""

    def __init__(
        self,
        owner_id: str,
        records: RecordLifecycle,
        session_factory: SessionFactory,
        auth_interceptor: AuthRefreshInterceptor | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        allowed_extensions: Iterable[str] = ALL_ALLOWED_EXTENSIONS,
        emitter: Emitter | None = None,
        on_progress: Callable[[UploadItem], None] | None = None,
        on_upload_complete: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            owner_id: Owner the uploads belong to (project, video, ...).
            records: Creates and releases server placeholder records.
            session_factory: Builds the transfer handle of an admitted item.
            auth_interceptor: Recovers transfers from expired credentials.
            max_concurrent: Maximum number of items uploading at once.
            allowed_extensions: File extensions accepted by ``enqueue``.
            emitter: Event emitter for lifecycle events.
            on_progress: Called with the item after each progress update.
            on_upload_complete: Called after each completed upload.
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

        self.owner_id = owner_id
        self._records = records
        self._session_factory = session_factory
        self._auth = auth_interceptor
        self._max_concurrent = max_concurrent
        self._allowed_extensions = list(allowed_extensions)
        self.emitter = emitter or Emitter()
        self._on_progress = on_progress
        self._on_upload_complete = on_upload_complete

        self._items: dict[str, UploadItem] = {}
        self._background: set[asyncio.Task] = set()
        self._state_changed = asyncio.Event()
        self._closed = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def max_concurrent(self) -> int:
        """Maximum number of items uploading at once."""
        return self._max_concurrent

    @property
    def items(self) -> list[UploadItem]:
        """Items in creation order."""
        return list(self._items.values())

    def get(self, upload_id: str) -> UploadItem | None:
        """Return an item by id."""
        return self._items.get(upload_id)

    @property
    def stats(self) -> QueueStats:
        """Item counts per status."""
        return QueueStats.from_items(self.items)

    @property
    def uploading_count(self) -> int:
        """Number of items currently uploading."""
        return sum(
            1 for item in self._items.values() if item.status is UploadStatus.UPLOADING
        )

    @property
    def is_closed(self) -> bool:
        """Whether the queue has been shut down."""
        return self._closed

    @property
    def has_active_uploads(self) -> bool:
        """Whether any item is queued, uploading or paused."""
        return any(item.is_active for item in self._items.values())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def enqueue(
        self, files: Sequence[LocalFile], category: str | None = None
    ) -> list[str]:
        """Add a batch of files to the queue.

        The batch is all-or-nothing: if any file is invalid, none is added.

        Args:
            files: Files selected by the user.
            category: Asset category for every file of the batch. When
                omitted, each file's category is detected from its extension.

        Returns:
            Ids of the created items, in batch order.

        Raises:
            ValidationError: Naming every invalid file of the batch.
            RuntimeError: If the queue has been shut down.
        """
        if self._closed:
            raise RuntimeError("Upload queue is shut down")
        files = list(files)
        validate_batch(files, self._allowed_extensions, category)

        upload_ids = []
        for file in files:
            item = UploadItem(
                id=generate_upload_id(),
                file=file,
                category=category or detect_category(file),
            )
            self._items[item.id] = item
            upload_ids.append(item.id)
            self.emitter.emit(Emitter.ITEM_ADDED, item)

        if upload_ids:
            logger.info(f"Queued {len(upload_ids)} file(s) for {self.owner_id}")
        self.admission_tick()
        return upload_ids

    def admission_tick(self) -> int:
        """Start queued items while upload slots are free.

        Items are considered in creation order. A paused item whose resume was
        requested while the queue was full is eligible alongside queued items.
        Safe to call at any time; without a state change it does nothing.

        Returns:
            Number of items promoted to uploading.
        """
        if self._closed:
            return 0
        uploading = self.uploading_count
        promoted = 0
        for item in list(self._items.values()):
            if uploading >= self._max_concurrent:
                break
            if item.status is UploadStatus.QUEUED:
                self._promote(item)
            elif item.status is UploadStatus.PAUSED and item.resume_requested:
                self._resume(item)
            else:
                continue
            uploading += 1
            promoted += 1

        self._state_changed.set()
        return promoted

    def pause(self, upload_id: str) -> bool:
        """Pause an uploading item, keeping its resumption state.

        Returns:
            True if the item was paused; False (no-op) from any other state.
        """
        item = self._items.get(upload_id)
        if item is None or item.status is not UploadStatus.UPLOADING:
            return False

        item.status = UploadStatus.PAUSED
        item.resume_requested = False
        if item.transfer_handle is not None:
            item.transfer_handle.abort(discard=False)
        logger.info(f"Paused upload {upload_id}")
        self.emitter.emit(Emitter.UPLOAD_PAUSED, item)
        self.admission_tick()
        return True

    def resume(self, upload_id: str) -> bool:
        """Resume a paused item.

        When every upload slot is taken the item stays paused and is resumed
        by the admission tick as soon as a slot frees up.

        Returns:
            True if the item resumed uploading immediately.
        """
        item = self._items.get(upload_id)
        if self._closed or item is None or item.status is not UploadStatus.PAUSED:
            return False

        if self.uploading_count >= self._max_concurrent:
            item.resume_requested = True
            logger.info(f"Upload {upload_id} will resume when a slot is free")
            return False

        self._resume(item)
        self._state_changed.set()
        return True

    def cancel(self, upload_id: str) -> bool:
        """Abort an item's transfer and remove it from the queue.

        The transfer is discarded and the placeholder record deleted in the
        background; neither outcome is reported to the caller.

        Returns:
            True if the item existed.
        """
        item = self._items.pop(upload_id, None)
        if item is None:
            return False

        handle = item.transfer_handle
        record_id = item.server_record_id
        item.transfer_handle = None
        item.server_record_id = None
        if self._auth is not None:
            self._auth.reset(upload_id)

        if handle is not None:
            handle.abort(discard=True)
            self._spawn(self._terminate_transfer(handle))
        if record_id is not None:
            self._spawn(self._records.release(record_id))

        logger.info(f"Cancelled upload {upload_id} ({item.file.name})")
        self.emitter.emit(Emitter.ITEM_REMOVED, upload_id)
        self.admission_tick()
        return True

    def retry(self, upload_id: str) -> bool:
        """Re-queue a failed item from scratch.

        Returns:
            True if the item was re-queued; False unless it was in error.
        """
        item = self._items.get(upload_id)
        if self._closed or item is None or item.status is not UploadStatus.ERROR:
            return False

        item.status = UploadStatus.QUEUED
        item.progress_percent = 0
        item.transfer_speed_sample = 0.0
        item.error_message = None
        item.server_record_id = None
        item.transfer_handle = None
        item.resume_requested = False
        item.started_at = None
        item.completed_at = None
        if self._auth is not None:
            self._auth.reset(upload_id)

        logger.info(f"Retrying upload {upload_id} ({item.file.name})")
        self.admission_tick()
        return True

    def remove_completed(self, upload_id: str) -> bool:
        """Remove one completed item.

        Returns:
            True if the item was completed and has been removed.
        """
        item = self._items.get(upload_id)
        if item is None or item.status is not UploadStatus.COMPLETED:
            return False
        del self._items[upload_id]
        self.emitter.emit(Emitter.ITEM_REMOVED, upload_id)
        return True

    def clear_completed(self) -> int:
        """Remove every completed item.

        Returns:
            Number of removed items.
        """
        completed = [
            upload_id
            for upload_id, item in self._items.items()
            if item.status is UploadStatus.COMPLETED
        ]
        for upload_id in completed:
            del self._items[upload_id]
            self.emitter.emit(Emitter.ITEM_REMOVED, upload_id)
        return len(completed)

    async def wait_idle(self) -> None:
        """Wait for record creation, error handling and cleanup tasks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def join(self) -> None:
        """Wait until no item is queued or uploading."""
        while not self._closed and any(
            item.status in (UploadStatus.QUEUED, UploadStatus.UPLOADING)
            for item in self._items.values()
        ):
            self._state_changed.clear()
            await self._state_changed.wait()
        await self.wait_idle()

    async def shutdown(self) -> None:
        """Stop every transfer and background task, keeping resumption state.

        Uploading items are left paused with their fingerprints stored, so a
        new queue can resume them. A shut down queue starts no further
        transfers: ``enqueue`` raises and ``resume``/``retry`` are no-ops.
        """
        logger.info("Shutting down upload queue...")
        self._closed = True
        handles: list[TransferHandle] = []
        for item in self._items.values():
            item.resume_requested = False
            if item.transfer_handle is None:
                continue
            item.transfer_handle.abort(discard=False)
            handles.append(item.transfer_handle)
            if item.status is UploadStatus.UPLOADING:
                item.status = UploadStatus.PAUSED
                self.emitter.emit(Emitter.UPLOAD_PAUSED, item)

        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if handles:
            await asyncio.gather(
                *(handle.wait_stopped() for handle in handles),
                return_exceptions=True,
            )
        self._state_changed.set()
        logger.info("Upload queue shutdown complete")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _is_current(self, item: UploadItem, handle: TransferHandle) -> bool:
        """Whether a callback still belongs to the item's live transfer."""
        return self._items.get(item.id) is item and item.transfer_handle is handle

    def _create_handle(self, item: UploadItem) -> TransferHandle:
        handle: TransferHandle | None = None

        def on_progress(progress: TransferProgress) -> None:
            self._handle_progress(item, handle, progress)

        def on_success() -> None:
            self._handle_success(item, handle)

        def on_error(error: TransferError) -> None:
            self._handle_error(item, handle, error)

        handle = self._session_factory(
            item.file,
            on_progress=on_progress,
            on_success=on_success,
            on_error=on_error,
        )
        return handle

    def _promote(self, item: UploadItem) -> None:
        handle = self._create_handle(item)
        item.status = UploadStatus.UPLOADING
        item.started_at = utcnow()
        item.error_message = None
        item.transfer_handle = handle
        logger.info(f"Starting upload {item.id} ({item.file.name})")
        self.emitter.emit(Emitter.UPLOAD_STARTED, item)
        self._spawn(self._begin_transfer(item, handle))

    def _resume(self, item: UploadItem) -> None:
        item.status = UploadStatus.UPLOADING
        item.resume_requested = False
        # Without a record the transfer starts once record creation returns.
        if item.server_record_id is not None and item.transfer_handle is not None:
            item.transfer_handle.start()
        logger.info(f"Resumed upload {item.id}")
        self.emitter.emit(Emitter.UPLOAD_RESUMED, item)

    async def _begin_transfer(self, item: UploadItem, handle: TransferHandle) -> None:
        """Claim the placeholder record, then start the transfer."""
        try:
            record_id = await self._records.claim(item.file, item.category)
        except RecordCreationError as e:
            if self._is_current(item, handle):
                self._fail(item, str(e) or GENERIC_ERROR_MESSAGE)
            return
        except Exception as e:
            logger.error(
                f"Unexpected error creating record for {item.id}: {e}", exc_info=True
            )
            if self._is_current(item, handle):
                self._fail(item, str(e) or GENERIC_ERROR_MESSAGE)
            return

        if not self._is_current(item, handle):
            logger.info(f"Upload {item.id} was cancelled, releasing record {record_id}")
            await self._records.release(record_id)
            return

        item.server_record_id = record_id
        handle.metadata[RECORD_ID_METADATA_KEY] = record_id
        if item.status is UploadStatus.UPLOADING:
            handle.start()

    def _handle_progress(
        self,
        item: UploadItem,
        handle: TransferHandle | None,
        progress: TransferProgress,
    ) -> None:
        if handle is None or not self._is_current(item, handle):
            return
        item.progress_percent = max(item.progress_percent, progress.percent)
        item.transfer_speed_sample = progress.speed_mbps
        self.emitter.emit(Emitter.UPLOAD_PROGRESS, item)
        if self._on_progress is not None:
            self._on_progress(item)

    def _handle_success(self, item: UploadItem, handle: TransferHandle | None) -> None:
        if handle is None or not self._is_current(item, handle):
            return
        item.status = UploadStatus.COMPLETED
        item.progress_percent = 100
        item.completed_at = utcnow()
        item.transfer_handle = None
        # The server's completion handler owns the record from here on.
        item.server_record_id = None
        if self._auth is not None:
            self._auth.reset(item.id)

        logger.info(f"Upload {item.id} ({item.file.name}) complete")
        self.emitter.emit(Emitter.UPLOAD_COMPLETE, item)
        if self._on_upload_complete is not None:
            self._on_upload_complete()
        self.admission_tick()

    def _handle_error(
        self, item: UploadItem, handle: TransferHandle | None, error: TransferError
    ) -> None:
        if handle is None or not self._is_current(item, handle):
            return
        if isinstance(error, AuthError) and self._auth is not None:
            self._spawn(self._recover_auth(item, handle, error))
            return
        self._fail(item, error.user_message)

    async def _recover_auth(
        self, item: UploadItem, handle: TransferHandle, error: AuthError
    ) -> None:
        assert self._auth is not None
        recovered = await self._auth.try_recover(item.id)
        if not self._is_current(item, handle):
            return
        if recovered:
            # A pause during the refresh leaves the restart to resume().
            if item.status is UploadStatus.UPLOADING:
                handle.start()
            return
        self._fail(item, error.user_message)

    def _fail(self, item: UploadItem, message: str) -> None:
        """Move an item to error and release what it holds."""
        handle = item.transfer_handle
        record_id = item.server_record_id

        item.status = UploadStatus.ERROR
        item.error_message = message
        item.transfer_handle = None
        item.server_record_id = None
        item.resume_requested = False
        if self._auth is not None:
            self._auth.reset(item.id)

        # The partial transfer is bound to the deleted record; never resume it.
        if handle is not None:
            handle.abort(discard=True)
            self._spawn(self._terminate_transfer(handle))
        if record_id is not None:
            self._spawn(self._records.release(record_id))

        logger.warning(f"Upload {item.id} ({item.file.name}) failed: {message}")
        self.emitter.emit(Emitter.UPLOAD_FAILED, item, message)
        self.admission_tick()

    async def _terminate_transfer(self, handle: TransferHandle) -> None:
        try:
            await handle.terminate()
        except TransferError as e:
            logger.warning(f"Failed to terminate discarded transfer: {e}")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
