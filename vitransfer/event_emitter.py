"""Event emitter for upload queue notifications."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pyee.asyncio import AsyncIOEventEmitter

logger = logging.getLogger(__name__)


class Emitter(AsyncIOEventEmitter):
    """Event emitter the upload queue publishes lifecycle events on."""

    # Queue -> UI
    ITEM_ADDED = "ITEM_ADDED"
    # (item)

    UPLOAD_STARTED = "UPLOAD_STARTED"
    # (item)

    UPLOAD_PROGRESS = "UPLOAD_PROGRESS"
    # (item)

    UPLOAD_PAUSED = "UPLOAD_PAUSED"
    # (item)

    UPLOAD_RESUMED = "UPLOAD_RESUMED"
    # (item)

    UPLOAD_COMPLETE = "UPLOAD_COMPLETE"
    # (item)

    UPLOAD_FAILED = "UPLOAD_FAILED"
    # (item, error_message)

    ITEM_REMOVED = "ITEM_REMOVED"
    # (item_id)

    QUIET_EVENTS = frozenset({UPLOAD_PROGRESS})

    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the event emitter.

        Args:
            loop: The event loop to use for async event handlers. Defaults to
                the running loop at emit time.
        """
        super().__init__(loop=loop)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Emit an event with logging.

        Args:
            event: The event name to emit.
            *args: Positional arguments to pass to handlers.
            **kwargs: Keyword arguments to pass to handlers.

        Returns:
            True if the event had listeners, False otherwise.
        """
        formatted_args = []
        for arg in args:
            if isinstance(arg, str) and len(arg) > 50:
                formatted_args.append(f"{arg[:50]}...")
            else:
                r = repr(arg)
                if len(r) > 100:
                    formatted_args.append(f"{r[:100]}...")
                else:
                    formatted_args.append(r)
        args_str = ", ".join(formatted_args) if formatted_args else ""
        level = logging.DEBUG if event in self.QUIET_EVENTS else logging.INFO
        logger.log(level, "EVENT %s: %s", event, args_str)
        return super().emit(event, *args, **kwargs)
