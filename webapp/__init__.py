"""Flask application factory for the storage governance engine."""

from __future__ import annotations

import logging
from typing import Optional

from flask import Flask

from bounded_contexts.storage.application import build_storage_services
from bounded_contexts.storage.domain import FileRegistry, StorageConfig
from bounded_contexts.storage.infrastructure import (
    ProviderFactory,
    SqlAlchemyFileRegistry,
    StorageConfigHolder,
    StorageConfigLoader,
)
from core.db import init_db
from core.logging_config import setup_storage_logging
from core.settings import settings

from .extensions import STORAGE_EXTENSION_KEY, db, migrate

logger = logging.getLogger(__name__)


def create_app(
    config_object=None,
    *,
    storage_config: StorageConfig | StorageConfigHolder | None = None,
    registry: Optional[FileRegistry] = None,
    provider_factory: Optional[ProviderFactory] = None,
) -> Flask:
    """Application factory.

    ``storage_config`` and ``registry`` override what would otherwise be
    loaded from ``storage.yml`` and the ``storage_files`` table.
    """

    from dotenv import load_dotenv
    from .config import Config

    load_dotenv()

    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    with app.app_context():
        if not app.testing:
            setup_storage_logging(getattr(logging, settings.log_level, logging.INFO))

        init_db(app, create_tables=bool(app.config.get("STORAGE_CREATE_TABLES")))
        migrate.init_app(app, db)

        if storage_config is None:
            loader = StorageConfigLoader(settings=settings)
            storage_config = StorageConfigHolder.from_loader(loader)

        services = build_storage_services(
            storage_config,
            registry or SqlAlchemyFileRegistry(),
            factory=provider_factory,
            page_size=settings.storage_registry_page_size,
        )

    app.extensions[STORAGE_EXTENSION_KEY] = services
    logger.info(
        "Storage engine initialised with active provider '%s'",
        services.config.current.active_provider,
        extra={"event": "storage.app.initialised"},
    )

    register_cli_commands(app)
    return app


def register_cli_commands(app: Flask) -> None:
    from cli.storage import storage_cli

    app.cli.add_command(storage_cli)


__all__ = ["create_app", "register_cli_commands"]
