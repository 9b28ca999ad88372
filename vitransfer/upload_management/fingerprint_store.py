"""Storage of resumable transfer fingerprints.

A fingerprint identifies a local file for a given transfer endpoint. The
store maps it to the server URL of an unfinished transfer, so a new session
for the same file continues from the last acknowledged offset. It also
remembers which owner the file was last uploaded for: uploading the same
file for a different owner must never resume the other owner's transfer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from vitransfer.const import FINGERPRINT_MAX_AGE_SECONDS, FINGERPRINT_PREFIX
from vitransfer.models import LocalFile

logger = logging.getLogger(__name__)


def generate_fingerprint(file: LocalFile, endpoint: str) -> str:
    """Return the fingerprint of a file for a transfer endpoint."""
    return "-".join([
        FINGERPRINT_PREFIX,
        file.name,
        file.mime_type,
        str(file.size),
        str(file.last_modified_ms),
        endpoint,
    ])


@dataclass
class StoredUpload:
    """Transfer URL remembered for a fingerprint."""

    upload_url: str
    created_at: float


class FingerprintStore(Protocol):
    """Persistence for transfer fingerprints and upload contexts."""

    def get_upload_url(self, fingerprint: str) -> str | None:
        """Return the stored transfer URL, or None if absent or stale."""
        ...

    def set_upload_url(self, fingerprint: str, upload_url: str) -> None:
        """Remember the transfer URL of a fingerprint."""
        ...

    def remove(self, fingerprint: str) -> None:
        """Forget the transfer URL of a fingerprint."""
        ...

    def get_context(self, fingerprint: str) -> str | None:
        """Return the owner the file was last uploaded for."""
        ...

    def set_context(self, fingerprint: str, context: str) -> None:
        """Record the owner the file is being uploaded for."""
        ...

    def clear_context(self, fingerprint: str) -> None:
        """Forget the owner of a fingerprint."""
        ...

    def prune_stale(self, max_age: float = FINGERPRINT_MAX_AGE_SECONDS) -> int:
        """Drop transfer URLs older than max_age seconds; return the count."""
        ...


class MemoryFingerprintStore:
    """Fingerprint store kept in process memory."""

    def __init__(self, max_age: float = FINGERPRINT_MAX_AGE_SECONDS) -> None:
        self._max_age = max_age
        self._uploads: dict[str, StoredUpload] = {}
        self._contexts: dict[str, str] = {}

    def _is_stale(self, stored: StoredUpload) -> bool:
        return time.time() - stored.created_at > self._max_age

    def get_upload_url(self, fingerprint: str) -> str | None:
        stored = self._uploads.get(fingerprint)
        if stored is None:
            return None
        if self._is_stale(stored):
            self.remove(fingerprint)
            return None
        return stored.upload_url

    def set_upload_url(self, fingerprint: str, upload_url: str) -> None:
        self._uploads[fingerprint] = StoredUpload(upload_url, time.time())

    def remove(self, fingerprint: str) -> None:
        self._uploads.pop(fingerprint, None)

    def get_context(self, fingerprint: str) -> str | None:
        return self._contexts.get(fingerprint)

    def set_context(self, fingerprint: str, context: str) -> None:
        self._contexts[fingerprint] = context

    def clear_context(self, fingerprint: str) -> None:
        self._contexts.pop(fingerprint, None)

    def prune_stale(self, max_age: float = FINGERPRINT_MAX_AGE_SECONDS) -> int:
        now = time.time()
        stale = [
            fingerprint
            for fingerprint, stored in self._uploads.items()
            if now - stored.created_at > max_age
        ]
        for fingerprint in stale:
            del self._uploads[fingerprint]
        return len(stale)


def ensure_fresh_upload_on_context_change(
    store: FingerprintStore, fingerprint: str, context: str
) -> bool:
    """Discard a stored transfer when the file was last uploaded elsewhere.

    Args:
        store: Fingerprint store.
        fingerprint: Fingerprint of the file about to be uploaded.
        context: Owner the file is now uploaded for.

    Returns:
        True if a stored transfer was discarded.
    """
    last_context = store.get_context(fingerprint)
    discarded = False
    if last_context is not None and last_context != context:
        logger.info(
            f"Upload context changed from {last_context} to {context}, "
            "starting a fresh transfer"
        )
        store.remove(fingerprint)
        discarded = True
    store.set_context(fingerprint, context)
    return discarded
