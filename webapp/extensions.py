from flask import Flask, current_app
from flask_migrate import Migrate

from bounded_contexts.storage.application import StorageServices
from core.db import db

migrate = Migrate()

STORAGE_EXTENSION_KEY = "storage"


def get_storage_services(app: Flask | None = None) -> StorageServices:
    """Return the storage services bound to *app* (or the current app)."""

    target = app or current_app
    try:
        return target.extensions[STORAGE_EXTENSION_KEY]
    except KeyError:
        raise RuntimeError("Storage services are not initialised for this application") from None


__all__ = ["db", "migrate", "get_storage_services", "STORAGE_EXTENSION_KEY"]
