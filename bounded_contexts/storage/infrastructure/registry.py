"""File registry implementations."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import SQLAlchemyError

from core.db import db
from core.models.storage_file import StorageFileModel

from ..domain import RegistryError, StorageFile

__all__ = ["SqlAlchemyFileRegistry", "InMemoryFileRegistry"]

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite drops the offset on read.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SqlAlchemyFileRegistry:
    """Registry persisted in the ``storage_files`` table.

    Must be used inside a Flask application context; the session is the
    request/thread scoped ``db.session``.
    """

    def add(self, file: StorageFile) -> None:
        row = StorageFileModel(
            id=file.id,
            original_name=file.original_name,
            stored_filename=file.stored_filename,
            folder=file.folder,
            relative_path=file.relative_path,
            provider_path=file.provider_path,
            size=file.size,
            mime_type=file.mime_type,
            description=file.description,
            uploaded_by=file.uploaded_by,
            created_at=file.created_at,
            updated_at=file.updated_at,
        )
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RegistryError(f"Failed to insert registry row {file.id}: {exc}", file_id=file.id) from exc

    def get(self, file_id: str) -> StorageFile | None:
        row = self._read(lambda: db.session.get(StorageFileModel, file_id))
        return self._to_entity(row) if row is not None else None

    def get_by_provider_path(self, provider_path: str) -> StorageFile | None:
        stmt = select(StorageFileModel).where(StorageFileModel.provider_path == provider_path)
        row = self._read(lambda: db.session.scalars(stmt).first())
        return self._to_entity(row) if row is not None else None

    def delete(self, file_id: str) -> bool:
        try:
            result = db.session.execute(delete(StorageFileModel).where(StorageFileModel.id == file_id))
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RegistryError(f"Failed to delete registry row {file_id}: {exc}", file_id=file_id) from exc
        return bool(result.rowcount)

    def update_description(
        self, file_id: str, description: str | None, updated_at: datetime
    ) -> StorageFile | None:
        try:
            row = db.session.get(StorageFileModel, file_id)
            if row is None:
                return None
            row.description = description
            row.updated_at = updated_at
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RegistryError(f"Failed to update registry row {file_id}: {exc}", file_id=file_id) from exc
        return self._to_entity(row)

    def iter_pages(self, page_size: int = 500) -> Iterator[list[StorageFile]]:
        last_id: str | None = None
        while True:
            stmt = select(StorageFileModel).order_by(StorageFileModel.id).limit(page_size)
            if last_id is not None:
                stmt = stmt.where(StorageFileModel.id > last_id)
            rows = self._read(lambda: list(db.session.scalars(stmt)))
            if not rows:
                return
            yield [self._to_entity(row) for row in rows]
            if len(rows) < page_size:
                return
            last_id = rows[-1].id

    def list_folder(self, folder: str) -> list[StorageFile]:
        stmt = (
            select(StorageFileModel)
            .where(StorageFileModel.folder == folder)
            .order_by(StorageFileModel.created_at, StorageFileModel.id)
        )
        return [self._to_entity(row) for row in self._read(lambda: list(db.session.scalars(stmt)))]

    def stored_name_exists(self, folder: str, stored_filename: str) -> bool:
        stmt = select(
            exists().where(
                StorageFileModel.folder == folder,
                StorageFileModel.stored_filename == stored_filename,
            )
        )
        return bool(self._read(lambda: db.session.scalar(stmt)))

    def total_usage(self) -> tuple[int, int]:
        stmt = select(func.count(StorageFileModel.id), func.coalesce(func.sum(StorageFileModel.size), 0))
        count, total = self._read(lambda: db.session.execute(stmt).one())
        return int(count), int(total)

    def folder_usage(self, folder: str) -> tuple[int, int]:
        stmt = select(
            func.count(StorageFileModel.id), func.coalesce(func.sum(StorageFileModel.size), 0)
        ).where(StorageFileModel.folder == folder)
        count, total = self._read(lambda: db.session.execute(stmt).one())
        return int(count), int(total)

    def usage_by_folder(self) -> dict[str, tuple[int, int]]:
        stmt = select(
            StorageFileModel.folder,
            func.count(StorageFileModel.id),
            func.coalesce(func.sum(StorageFileModel.size), 0),
        ).group_by(StorageFileModel.folder)
        rows = self._read(lambda: db.session.execute(stmt).all())
        return {folder: (int(count), int(total)) for folder, count, total in rows}

    @staticmethod
    def _read(query):
        try:
            return query()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RegistryError(f"Registry query failed: {exc}") from exc

    @staticmethod
    def _to_entity(row: StorageFileModel) -> StorageFile:
        return StorageFile(
            id=row.id,
            original_name=row.original_name,
            stored_filename=row.stored_filename,
            folder=row.folder,
            relative_path=row.relative_path,
            provider_path=row.provider_path,
            size=row.size,
            mime_type=row.mime_type,
            description=row.description,
            uploaded_by=row.uploaded_by,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )


class InMemoryFileRegistry:
    """Thread-safe dict backed registry (tests and tooling)."""

    def __init__(self) -> None:
        self._files: dict[str, StorageFile] = {}
        self._lock = threading.RLock()

    def add(self, file: StorageFile) -> None:
        with self._lock:
            if file.id in self._files:
                raise RegistryError(f"Duplicate file id {file.id}", file_id=file.id)
            if any(existing.provider_path == file.provider_path for existing in self._files.values()):
                raise RegistryError(
                    f"Duplicate provider path {file.provider_path}", file_id=file.id
                )
            self._files[file.id] = file

    def get(self, file_id: str) -> StorageFile | None:
        with self._lock:
            return self._files.get(file_id)

    def get_by_provider_path(self, provider_path: str) -> StorageFile | None:
        with self._lock:
            for file in self._files.values():
                if file.provider_path == provider_path:
                    return file
        return None

    def delete(self, file_id: str) -> bool:
        with self._lock:
            return self._files.pop(file_id, None) is not None

    def update_description(
        self, file_id: str, description: str | None, updated_at: datetime
    ) -> StorageFile | None:
        with self._lock:
            current = self._files.get(file_id)
            if current is None:
                return None
            updated = current.with_description(description, updated_at)
            self._files[file_id] = updated
            return updated

    def iter_pages(self, page_size: int = 500) -> Iterator[list[StorageFile]]:
        with self._lock:
            snapshot = sorted(self._files.values(), key=lambda f: f.id)
        for start in range(0, len(snapshot), page_size):
            yield snapshot[start:start + page_size]

    def list_folder(self, folder: str) -> list[StorageFile]:
        with self._lock:
            files = [f for f in self._files.values() if f.folder == folder]
        return sorted(files, key=lambda f: (f.created_at, f.id))

    def stored_name_exists(self, folder: str, stored_filename: str) -> bool:
        with self._lock:
            return any(
                f.folder == folder and f.stored_filename == stored_filename
                for f in self._files.values()
            )

    def total_usage(self) -> tuple[int, int]:
        with self._lock:
            return len(self._files), sum(f.size for f in self._files.values())

    def folder_usage(self, folder: str) -> tuple[int, int]:
        with self._lock:
            files = [f for f in self._files.values() if f.folder == folder]
        return len(files), sum(f.size for f in files)

    def usage_by_folder(self) -> dict[str, tuple[int, int]]:
        usage: dict[str, tuple[int, int]] = {}
        with self._lock:
            for f in self._files.values():
                count, total = usage.get(f.folder, (0, 0))
                usage[f.folder] = (count + 1, total + f.size)
        return usage
