"""SQLite-backed fingerprint store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine, delete, select, text
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Engine

from vitransfer.const import FINGERPRINT_MAX_AGE_SECONDS

from .tables import metadata, upload_contexts, upload_urls

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqliteFingerprintStore:
    """Fingerprint store persisted in a SQLite database.

    Each operation reads or writes only the rows of its own fingerprint, so
    any number of stores (one per queue, or one per process) can share the
    same database file without losing each other's entries.

    Store calls are made from synchronous transfer callbacks such as
    ``TransferSession.abort``, so the engine is synchronous.
    """

    def __init__(
        self, db_path: str | Path, max_age: float = FINGERPRINT_MAX_AGE_SECONDS
    ) -> None:
        """Open (or create) the database and ensure the schema.

        Args:
            db_path: Path of the SQLite database file.
            max_age: Seconds after which a stored transfer URL is stale.
        """
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._max_age = max_age
        self._engine: Engine = create_engine(f"sqlite:///{db_path}", future=True)
        self._apply_pragmas()
        metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        """Return the database file path."""
        return self._db_path

    def _apply_pragmas(self) -> None:
        """Use WAL so readers in other stores are not blocked by a writer."""
        with self._engine.begin() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL;"))
            conn.execute(text("PRAGMA synchronous=NORMAL;"))

    def _cutoff(self, max_age: float) -> datetime:
        return _utc_now() - timedelta(seconds=max_age)

    def get_upload_url(self, fingerprint: str) -> str | None:
        with self._engine.begin() as conn:
            row = conn.execute(
                select(upload_urls.c.upload_url, upload_urls.c.created_at).where(
                    upload_urls.c.fingerprint == fingerprint
                )
            ).one_or_none()
            if row is None:
                return None
            if row.created_at < self._cutoff(self._max_age):
                conn.execute(
                    delete(upload_urls).where(upload_urls.c.fingerprint == fingerprint)
                )
                return None
        return row.upload_url

    def set_upload_url(self, fingerprint: str, upload_url: str) -> None:
        now = _utc_now()
        stmt = insert(upload_urls).values(
            fingerprint=fingerprint, upload_url=upload_url, created_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["fingerprint"],
            set_={"upload_url": upload_url, "created_at": now},
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def remove(self, fingerprint: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                delete(upload_urls).where(upload_urls.c.fingerprint == fingerprint)
            )

    def get_context(self, fingerprint: str) -> str | None:
        with self._engine.begin() as conn:
            return conn.execute(
                select(upload_contexts.c.context).where(
                    upload_contexts.c.fingerprint == fingerprint
                )
            ).scalar_one_or_none()

    def set_context(self, fingerprint: str, context: str) -> None:
        now = _utc_now()
        stmt = insert(upload_contexts).values(
            fingerprint=fingerprint, context=context, last_updated=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["fingerprint"],
            set_={"context": context, "last_updated": now},
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def clear_context(self, fingerprint: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                delete(upload_contexts).where(
                    upload_contexts.c.fingerprint == fingerprint
                )
            )

    def prune_stale(self, max_age: float = FINGERPRINT_MAX_AGE_SECONDS) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                delete(upload_urls).where(
                    upload_urls.c.created_at < self._cutoff(max_age)
                )
            )
        pruned = int(result.rowcount or 0)
        if pruned:
            logger.info(f"Pruned {pruned} stale transfer fingerprint(s)")
        return pruned

    def close(self) -> None:
        """Dispose of the engine's pooled connections."""
        self._engine.dispose()
