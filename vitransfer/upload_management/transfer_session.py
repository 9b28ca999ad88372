"""Resumable transfer of a single file.

A TransferSession owns one tus upload: it resolves where to continue from
(stored fingerprint, server offset), sends the remaining chunks, retries
transient failures and reports progress. Terminal outcomes are delivered
through the ``on_success`` / ``on_error`` callbacks once the session has
stopped, so a callback may call ``start()`` again on the same session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from vitransfer.const import (
    BYTES_PER_MIB,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_RETRY_DELAYS,
    SPEED_NOISE_FLOOR_MBPS,
    SPEED_SAMPLE_INTERVAL_SECONDS,
)
from vitransfer.exceptions import TransferError, UnknownTransferError
from vitransfer.models import LocalFile, TransferProgress
from vitransfer.sampled_logger import ChunkLogSampler

from .fingerprint_store import (
    FingerprintStore,
    ensure_fresh_upload_on_context_change,
    generate_fingerprint,
)
from .tus_client import TusClient

logger = logging.getLogger(__name__)

_chunk_log = ChunkLogSampler(
    "Transfer #%d: chunk %d/%d acknowledged for %s (%d/%d bytes)",
    target_logger=logger,
    level=logging.DEBUG,
)


def compute_percent(bytes_uploaded: int, bytes_total: int) -> int:
    """Return progress as an integer percent, rounding halves up."""
    if bytes_total <= 0:
        return 100
    return (bytes_uploaded * 200 + bytes_total) // (bytes_total * 2)


class ThroughputSampler:
    """Smoothed transfer speed in MB/s.

    A new sample is taken only once at least ``interval`` seconds have passed
    since the previous one; samples below the noise floor keep the previous
    value.
    """

    def __init__(
        self,
        interval: float = SPEED_SAMPLE_INTERVAL_SECONDS,
        noise_floor: float = SPEED_NOISE_FLOOR_MBPS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval
        self._noise_floor = noise_floor
        self._clock = clock
        self._last_bytes = 0
        self._last_time = clock()
        self.speed_mbps = 0.0

    def reset(self, bytes_uploaded: int) -> None:
        """Restart sampling from the given offset, keeping the last speed."""
        self._last_bytes = bytes_uploaded
        self._last_time = self._clock()

    def sample(self, bytes_uploaded: int) -> float:
        """Record an acknowledged offset and return the current speed."""
        now = self._clock()
        elapsed = now - self._last_time
        if elapsed < self._interval:
            return self.speed_mbps

        speed = (bytes_uploaded - self._last_bytes) / elapsed / BYTES_PER_MIB
        self._last_bytes = bytes_uploaded
        self._last_time = now
        if speed > self._noise_floor:
            self.speed_mbps = round(speed, 1)
        return self.speed_mbps


class TransferSession:
    """Upload one file with the tus protocol, resumable and abortable."""

    def __init__(
        self,
        file: LocalFile,
        tus_client: TusClient,
        fingerprint_store: FingerprintStore,
        on_progress: Callable[[TransferProgress], None] | None = None,
        on_success: Callable[[], None] | None = None,
        on_error: Callable[[TransferError], None] | None = None,
        metadata: dict[str, str] | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        store_fingerprint_for_resuming: bool = True,
        remove_fingerprint_on_success: bool = True,
        upload_context: str | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            file: File to transfer.
            tus_client: Protocol client bound to the transfer endpoint.
            fingerprint_store: Store used to resume interrupted transfers.
            on_progress: Called after every acknowledged chunk.
            on_success: Called once the server holds every byte.
            on_error: Called with the terminal error after retries ran out.
            metadata: Transfer metadata; may be extended before ``start()``.
            chunk_size: Bytes per chunk request.
            retry_delays: Seconds to wait before each retry of a transient error.
            store_fingerprint_for_resuming: Remember the transfer URL.
            remove_fingerprint_on_success: Forget the transfer URL when done.
            upload_context: Owner the file is uploaded for; a stored transfer
                made for a different owner is never resumed.
        """
        self.file = file
        self.metadata: dict[str, str] = {
            "filename": file.name,
            "filetype": file.mime_type,
        }
        if metadata:
            self.metadata.update(metadata)

        self._tus = tus_client
        self._fingerprints = fingerprint_store
        self._on_progress = on_progress
        self._on_success = on_success
        self._on_error = on_error
        self._chunk_size = chunk_size
        self._retry_delays = list(retry_delays)
        self._store_fingerprint = store_fingerprint_for_resuming
        self._remove_fingerprint_on_success = remove_fingerprint_on_success
        self._upload_context = upload_context

        self.fingerprint = generate_fingerprint(file, tus_client.endpoint)
        self._upload_url: str | None = None
        self._offset = 0
        self._sampler = ThroughputSampler()
        self._task: asyncio.Task[None] | None = None
        self._stopping: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def upload_url(self) -> str | None:
        """Server URL of the transfer, once created or resumed."""
        return self._upload_url

    @property
    def bytes_uploaded(self) -> int:
        """Last offset acknowledged by the server."""
        return self._offset

    @property
    def is_running(self) -> bool:
        """Whether a transfer task is in progress."""
        return self._running

    def start(self) -> None:
        """Begin or resume the transfer from the last acknowledged offset.

        No-op if the session is already running. Must be called from a running
        event loop.
        """
        if self._running:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    def abort(self, discard: bool = False) -> None:
        """Stop the transfer.

        Args:
            discard: Also forget the fingerprint, so no later session resumes
                this transfer.
        """
        task = self._task
        self._task = None
        self._running = False
        if task is not None and not task.done():
            task.cancel()
            self._stopping.add(task)
            task.add_done_callback(self._stopping.discard)
        _chunk_log.forget(self.fingerprint)
        if discard:
            self._fingerprints.remove(self.fingerprint)
        logger.debug(
            f"Aborted transfer of {self.file.name} at {self._offset} bytes "
            f"(discard={discard})"
        )

    async def wait_stopped(self) -> None:
        """Wait until aborted runs have unwound."""
        if self._stopping:
            await asyncio.gather(*list(self._stopping), return_exceptions=True)

    async def terminate(self) -> None:
        """Ask the server to discard the transfer's partial data.

        Raises:
            TransferError: If the server could not be reached or refused.
        """
        upload_url = self._upload_url
        self._upload_url = None
        if upload_url is None:
            return
        await self._tus.terminate(upload_url)

    async def _run(self) -> None:
        error: TransferError | None = None
        try:
            await self._transfer()
        except asyncio.CancelledError:
            raise
        except TransferError as e:
            error = e
        except OSError as e:
            error = UnknownTransferError(f"File I/O error: {e}")
        except Exception as e:
            logger.error(
                f"Unexpected error uploading {self.file.name}: {e}", exc_info=True
            )
            error = UnknownTransferError(f"Unexpected error: {e}")

        if not self._finish():
            return

        _chunk_log.forget(self.fingerprint)
        if error is not None:
            logger.error(f"Transfer of {self.file.name} failed: {error}")
            if self._on_error is not None:
                self._on_error(error)
            return

        if self._remove_fingerprint_on_success:
            self._fingerprints.remove(self.fingerprint)
        if self._upload_context is not None:
            self._fingerprints.clear_context(self.fingerprint)
        logger.info(f"Transfer of {self.file.name} complete ({self.file.size} bytes)")
        if self._on_success is not None:
            self._on_success()

    def _finish(self) -> bool:
        """Mark the current run as stopped; False if this run was superseded."""
        if self._task is not asyncio.current_task():
            return False
        self._task = None
        self._running = False
        return True

    async def _transfer(self) -> None:
        """Upload until complete, retrying transient failures."""
        attempt = 0
        offset_before_retry = self._offset
        while True:
            try:
                await self._upload_remaining()
                return
            except TransferError as e:
                if self._offset > offset_before_retry:
                    attempt = 0
                if not e.retryable or attempt >= len(self._retry_delays):
                    raise
                delay = self._retry_delays[attempt]
                attempt += 1
                offset_before_retry = self._offset
                logger.warning(
                    f"Transfer of {self.file.name} failed "
                    f"(attempt {attempt}/{len(self._retry_delays)}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)

    async def _resolve_upload(self) -> None:
        """Find the server-side transfer to continue, or create one."""
        if self._upload_url is None and self._store_fingerprint:
            if self._upload_context is not None:
                ensure_fresh_upload_on_context_change(
                    self._fingerprints, self.fingerprint, self._upload_context
                )
            self._upload_url = self._fingerprints.get_upload_url(self.fingerprint)
            if self._upload_url is not None:
                logger.info(
                    f"Found previous transfer for {self.file.name}: {self._upload_url}"
                )

        if self._upload_url is not None:
            offset = await self._tus.get_offset(self._upload_url)
            if offset is not None:
                self._offset = offset
                return
            logger.info(
                f"Server no longer holds {self._upload_url}, starting a new transfer"
            )
            self._fingerprints.remove(self.fingerprint)
            self._upload_url = None

        self._upload_url = await self._tus.create_upload(self.file.size, self.metadata)
        self._offset = 0
        if self._store_fingerprint:
            self._fingerprints.set_upload_url(self.fingerprint, self._upload_url)

    async def _upload_remaining(self) -> None:
        await self._resolve_upload()
        upload_url = self._upload_url
        assert upload_url is not None

        total = self.file.size
        self._sampler.reset(self._offset)
        if self._offset >= total:
            self._report_progress()
            return

        total_chunks = max(1, -(-total // self._chunk_size))
        with open(self.file.path, "rb") as f:
            while self._offset < total:
                f.seek(self._offset)
                chunk = f.read(min(self._chunk_size, total - self._offset))
                if not chunk:
                    raise UnknownTransferError(
                        f"File {self.file.name} is shorter than its declared size"
                    )

                self._offset = await self._tus.upload_chunk(
                    upload_url, self._offset, chunk
                )
                self._report_progress()
                chunk_idx = min(total_chunks, -(-self._offset // self._chunk_size)) - 1
                _chunk_log.log(
                    self.fingerprint,
                    chunk_idx,
                    total_chunks,
                    chunk_idx + 1,
                    total_chunks,
                    self.file.name,
                    self._offset,
                    total,
                )

    def _report_progress(self) -> None:
        if self._on_progress is None:
            return
        total = self.file.size
        self._on_progress(
            TransferProgress(
                bytes_uploaded=self._offset,
                bytes_total=total,
                percent=compute_percent(self._offset, total),
                speed_mbps=self._sampler.sample(self._offset),
            )
        )
