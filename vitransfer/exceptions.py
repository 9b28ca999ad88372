"""Exception classes for the upload queue.

Transfer errors carry the user-facing text shown on the owning upload item,
so the queue never has to inspect raw HTTP failures itself.
"""

from __future__ import annotations

NETWORK_ERROR_MESSAGE = "Network error — check your connection and retry."
PAYLOAD_TOO_LARGE_MESSAGE = "File is too large."
AUTH_ERROR_MESSAGE = "Authentication failed. Please log in again."
GENERIC_ERROR_MESSAGE = "Upload failed"

RETRYABLE_CONFLICT_STATUSES = {409, 423}


class UploadError(Exception):
    """Base error for the upload queue."""


class ConfigLoadError(UploadError):
    """Raised when an upload configuration file cannot be loaded."""


class ValidationError(UploadError):
    """Raised when one or more files of a batch fail validation."""

    def __init__(self, failures: list[tuple[str, str]]):
        """Initialize ValidationError with every failing file.

        Args:
            failures: (file name, reason) pairs for each rejected file.
        """
        message = "\n".join(f"{name}: {reason}" for name, reason in failures)
        super().__init__(message)
        self.failures = failures

    @property
    def file_names(self) -> list[str]:
        """Names of the rejected files, in batch order."""
        return [name for name, _ in self.failures]


class RecordCreationError(UploadError):
    """Raised when the server refuses to create a placeholder record."""


class RecordDeletionError(UploadError):
    """Raised when the server fails to delete a placeholder record."""


class TransferError(UploadError):
    """Base error for failures of a resumable transfer."""

    retryable = False

    def __init__(self, message: str = "", status: int | None = None):
        super().__init__(message)
        self.status = status

    @property
    def user_message(self) -> str:
        """Human-readable failure reason for the upload item."""
        return str(self) or GENERIC_ERROR_MESSAGE


class NetworkError(TransferError):
    """Connection-level failure; the chunk never reached the server."""

    retryable = True

    @property
    def user_message(self) -> str:
        return NETWORK_ERROR_MESSAGE


class PayloadTooLargeError(TransferError):
    """Transport rejected the payload with HTTP 413."""

    @property
    def user_message(self) -> str:
        return PAYLOAD_TOO_LARGE_MESSAGE


class AuthError(TransferError):
    """Transport rejected the credentials (HTTP 401/403)."""

    @property
    def user_message(self) -> str:
        return AUTH_ERROR_MESSAGE


class UnknownTransferError(TransferError):
    """Any other transfer failure."""

    def __init__(self, message: str = "", status: int | None = None):
        super().__init__(message, status)
        self.retryable = status is not None and (
            status >= 500 or status in RETRYABLE_CONFLICT_STATUSES
        )


def classify_status(status: int, body: str = "") -> TransferError:
    """Map an unexpected HTTP status to a transfer error.

    Args:
        status: HTTP status code returned by the transfer endpoint.
        body: Response body, used as detail for unclassified failures.

    Returns:
        The transfer error matching the status.
    """
    detail = f"HTTP {status}: {body}" if body else f"HTTP {status}"
    if status in (401, 403):
        return AuthError(detail, status=status)
    if status == 413:
        return PayloadTooLargeError(detail, status=status)
    return UnknownTransferError(f"Unexpected response ({detail})", status=status)
