"""SQLAlchemy table definitions for resumable transfer state."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, MetaData, Table, Text

metadata = MetaData()

upload_urls = Table(
    "upload_urls",
    metadata,
    Column("fingerprint", Text, primary_key=True),
    Column("upload_url", Text, nullable=False),
    Column("created_at", DateTime(timezone=False), nullable=False),
)

upload_contexts = Table(
    "upload_contexts",
    metadata,
    Column("fingerprint", Text, primary_key=True),
    Column("context", Text, nullable=False),
    Column("last_updated", DateTime(timezone=False), nullable=False),
)

Index("idx_upload_urls_created_at", upload_urls.c.created_at)
