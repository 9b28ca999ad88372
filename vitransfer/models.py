"""Models used by the upload queue."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from vitransfer.const import DEFAULT_MIME_TYPE


class UploadStatus(str, Enum):
    """Lifecycle states for an upload item.

    State transitions:
    - QUEUED -> UPLOADING (admission)
    - UPLOADING -> PAUSED -> UPLOADING (resume)
    - UPLOADING -> COMPLETED
    - UPLOADING | PAUSED -> ERROR
    - ERROR -> QUEUED (retry)
    - Any -> removed (cancel, clear completed)
    """

    QUEUED = "queued"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LocalFile:
    """Local binary payload selected by the user.

    The queue only reads from it; the caller owns the file on disk.
    """

    path: Path
    name: str
    size: int
    mime_type: str = DEFAULT_MIME_TYPE
    last_modified_ms: int = 0

    @classmethod
    def from_path(cls, path: str | Path, mime_type: str | None = None) -> "LocalFile":
        """Build a LocalFile from a path on disk.

        Args:
            path: Path to the file.
            mime_type: Explicit MIME type; guessed from the name when omitted.

        Raises:
            FileNotFoundError: If the path does not exist.
        """
        file_path = Path(path)
        stat = file_path.stat()
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            path=file_path,
            name=file_path.name,
            size=stat.st_size,
            mime_type=mime_type or guessed or DEFAULT_MIME_TYPE,
            last_modified_ms=int(stat.st_mtime * 1000),
        )

    @property
    def extension(self) -> str:
        """Lower-cased extension including the dot, or "" if there is none."""
        index = self.name.rfind(".")
        if index < 0:
            return ""
        return self.name[index:].lower()


@dataclass(frozen=True)
class TransferProgress:
    """Progress snapshot reported by a transfer session."""

    bytes_uploaded: int
    bytes_total: int
    percent: int
    speed_mbps: float


@dataclass(eq=False)
class UploadItem:
    """One file queued for upload."""

    id: str
    file: LocalFile
    category: str | None = None
    status: UploadStatus = UploadStatus.QUEUED
    server_record_id: str | None = None
    progress_percent: int = 0
    transfer_speed_sample: float = 0.0
    error_message: str | None = None
    transfer_handle: Any = None
    resume_requested: bool = False
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Whether the item still needs work from the queue."""
        return self.status in (
            UploadStatus.QUEUED,
            UploadStatus.UPLOADING,
            UploadStatus.PAUSED,
        )


@dataclass(frozen=True)
class QueueStats:
    """Item counts per status."""

    total: int = 0
    queued: int = 0
    uploading: int = 0
    paused: int = 0
    completed: int = 0
    error: int = 0

    @classmethod
    def from_items(cls, items: list[UploadItem]) -> "QueueStats":
        """Count items by status."""
        counts = {status: 0 for status in UploadStatus}
        for item in items:
            counts[item.status] += 1
        return cls(
            total=len(items),
            queued=counts[UploadStatus.QUEUED],
            uploading=counts[UploadStatus.UPLOADING],
            paused=counts[UploadStatus.PAUSED],
            completed=counts[UploadStatus.COMPLETED],
            error=counts[UploadStatus.ERROR],
        )
