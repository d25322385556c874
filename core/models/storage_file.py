"""File registry table."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import db
from core.time import utc_now


class StorageFileModel(db.Model):
    """One row per stored file, keyed by its generated identifier.

    ``provider_path`` is indexed for reconciliation lookups and ``folder`` for
    per-folder usage sums.
    """

    __tablename__ = "storage_files"
    __table_args__ = (
        Index("ix_storage_files_provider_path", "provider_path", unique=True),
        Index("ix_storage_files_folder", "folder"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_filename: Mapped[str] = mapped_column(String(320), nullable=False)
    folder: Mapped[str] = mapped_column(String(100), nullable=False)
    relative_path: Mapped[str] = mapped_column(String(512), nullable=False)
    provider_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )


__all__ = ["StorageFileModel"]
