"""Rate-limited logging of per-chunk transfer messages.

Large files produce thousands of chunk acknowledgements. Only the first and
last chunk of the first transfer, and of every Nth transfer after it, are
logged.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ChunkLogSampler:
    """Log first/last chunk messages for a sample of transfers.

    The format string's first placeholder receives the transfer number; the
    remaining placeholders receive the arguments passed to ``log``.
    """

    def __init__(
        self,
        log_format: str,
        every_nth_transfer: int = 100,
        target_logger: logging.Logger | None = None,
        level: int = logging.INFO,
    ) -> None:
        self._format = log_format
        self._every_nth = max(1, every_nth_transfer)
        self._logger = target_logger or logger
        self._level = level
        self._transfer_numbers: dict[str, int] = {}
        self._transfers_seen = 0

    def _number_for(self, transfer_key: str) -> int:
        number = self._transfer_numbers.get(transfer_key)
        if number is None:
            self._transfers_seen += 1
            number = self._transfers_seen
            self._transfer_numbers[transfer_key] = number
        return number

    def is_sampled(self, transfer_key: str) -> bool:
        """Whether chunk messages of this transfer are logged."""
        number = self._number_for(transfer_key)
        return number == 1 or number % self._every_nth == 0

    def log(
        self, transfer_key: str, chunk_idx: int, total_chunks: int, *args: object
    ) -> None:
        """Log a chunk message if the transfer and chunk are sampled."""
        if chunk_idx not in (0, total_chunks - 1):
            return
        if self.is_sampled(transfer_key):
            self._logger.log(
                self._level, self._format, self._number_for(transfer_key), *args
            )

    def forget(self, transfer_key: str) -> None:
        """Drop the number assigned to a finished transfer."""
        self._transfer_numbers.pop(transfer_key, None)

    def __contains__(self, transfer_key: object) -> bool:
        return transfer_key in self._transfer_numbers
