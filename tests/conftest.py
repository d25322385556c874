import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bounded_contexts.storage.application import build_storage_services  # noqa: E402
from bounded_contexts.storage.infrastructure import (  # noqa: E402
    DEFAULT_FOLDERS,
    InMemoryFileRegistry,
    StorageConfigLoader,
)


_STORAGE_ENV_KEYS = (
    "STORAGE_CONFIG_PATH",
    "STORAGE_CONFIG",
    "STORAGE_BASE_PATH",
    "STORAGE_DATA_DIR",
    "STORAGE_ACTIVE_PROVIDER",
    "STORAGE_GLOBAL_QUOTA",
    "STORAGE_QUOTA_ENFORCEMENT",
    "STORAGE_REGISTRY_PAGE_SIZE",
    "STORAGE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_storage_env(monkeypatch):
    """Keep developer shell settings out of the tests."""
    for key in _STORAGE_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def storage_mapping(root: Path, **overrides):
    """A storage.yml equivalent with one local provider below *root*."""
    mapping = {
        "active_provider": "local",
        "providers": {"local": {"type": "local", "path": str(root / "local")}},
        "folders": {name: dict(folder) for name, folder in DEFAULT_FOLDERS.items()},
    }
    mapping.update(overrides)
    return mapping


@pytest.fixture
def make_storage_mapping(storage_root):
    """Factory for storage mappings below the test root."""
    return lambda **overrides: storage_mapping(storage_root, **overrides)


@pytest.fixture
def storage_root(tmp_path):
    """Base directory for local providers and configuration files."""
    return tmp_path


@pytest.fixture
def storage_config(storage_root):
    """Default folders served by a single local provider."""
    return StorageConfigLoader(storage_root).from_mapping(storage_mapping(storage_root))


@pytest.fixture
def registry():
    return InMemoryFileRegistry()


@pytest.fixture
def services(storage_config, registry):
    """Storage services wired around an in-memory registry."""
    return build_storage_services(storage_config, registry, page_size=2)


@pytest.fixture
def app(storage_config):
    """Flask app with an in-memory SQLite registry."""
    from webapp import create_app
    from webapp.config import TestConfig

    app = create_app(TestConfig, storage_config=storage_config)
    with app.app_context():
        yield app
