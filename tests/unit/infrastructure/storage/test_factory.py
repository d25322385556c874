"""Provider factory and pool tests."""

from dataclasses import replace
from types import SimpleNamespace

import pytest

from bounded_contexts.storage.domain import (
    AzureBlobProviderConfig,
    LocalProviderConfig,
    S3ProviderConfig,
    StorageConfigurationError,
)
from bounded_contexts.storage.infrastructure import (
    AzureBlobStorageProvider,
    LocalStorageProvider,
    ProviderFactory,
    ProviderPool,
    S3StorageProvider,
    StorageConfigHolder,
    StorageConfigLoader,
)


class TestProviderFactory:
    def test_creates_local_provider(self, tmp_path):
        provider = ProviderFactory().create(LocalProviderConfig(name="local", path=str(tmp_path)))

        assert isinstance(provider, LocalStorageProvider)
        assert provider.name == "local"

    def test_creates_s3_and_azure_providers(self):
        factory = ProviderFactory()

        s3 = factory.create(S3ProviderConfig(name="s3", bucket="media", region="us-east-1"))
        azure = factory.create(AzureBlobProviderConfig(
            name="azure",
            container_name="media",
            connection_string="UseDevelopmentStorage=true",
        ))

        assert isinstance(s3, S3StorageProvider)
        assert isinstance(azure, AzureBlobStorageProvider)

    def test_unknown_configuration_type(self):
        with pytest.raises(AssertionError):
            ProviderFactory().create(SimpleNamespace(name="odd"))


class TestProviderPool:
    """Lazy construction and reload invalidation."""

    @pytest.fixture
    def holder(self, tmp_path, make_storage_mapping):
        mapping = make_storage_mapping(providers={
            "local": {"type": "local", "path": str(tmp_path / "local")},
            "second": {"type": "local", "path": str(tmp_path / "second")},
            "off": {"type": "local", "path": str(tmp_path / "off"), "enabled": False},
        })
        return StorageConfigHolder(StorageConfigLoader(tmp_path).from_mapping(mapping))

    def test_get_caches_instances(self, holder):
        pool = ProviderPool(holder)

        assert pool.get("local") is pool.get("local")
        assert pool.active() is pool.get("local")
        assert pool.enabled_names() == ["local", "second"]

    def test_unknown_and_disabled_providers(self, holder):
        pool = ProviderPool(holder)

        with pytest.raises(StorageConfigurationError):
            pool.get("missing")
        with pytest.raises(StorageConfigurationError):
            pool.get("off")

    def test_reload_discards_cached_providers(self, holder, tmp_path):
        pool = ProviderPool(holder)
        before = pool.get("second")

        moved = replace(holder.current.provider("second"), path=str(tmp_path / "moved"))
        holder.replace(replace(holder.current, providers={**holder.current.providers, "second": moved}))
        after = pool.get("second")

        assert after is not before
        assert after.root == (tmp_path / "moved").resolve()

    def test_set_pins_an_instance(self, holder):
        pool = ProviderPool(holder)
        pinned = pool.get("second")

        pool.set("local", pinned)

        assert pool.get("local") is pinned

    def test_reload_between_reads_cannot_pin_stale_provider(self, tmp_path, make_storage_mapping):
        class ReloadOnReadHolder(StorageConfigHolder):
            pending = None

            @property
            def current(self):
                config = super().current
                if self.pending is not None:
                    pending, self.pending = self.pending, None
                    self.replace(pending)
                return config

        mapping = make_storage_mapping(providers={
            "local": {"type": "local", "path": str(tmp_path / "local")},
            "second": {"type": "local", "path": str(tmp_path / "second")},
        })
        holder = ReloadOnReadHolder(StorageConfigLoader(tmp_path).from_mapping(mapping))
        pool = ProviderPool(holder)
        moved = replace(holder.current.provider("second"), path=str(tmp_path / "moved"))
        holder.pending = replace(holder.current, providers={**holder.current.providers, "second": moved})

        pool.get("second")
        # A concurrent reader lands the reload after the pool resolved its config.
        holder.current
        after = pool.get("second")

        assert holder.version == 1
        assert after.root == (tmp_path / "moved").resolve()


class TestStorageConfigHolderSnapshot:
    def test_snapshot_pairs_config_with_its_version(self, storage_config):
        holder = StorageConfigHolder(storage_config)
        updated = replace(storage_config, failover_providers=())

        assert holder.snapshot()[0] is storage_config
        assert holder.snapshot()[1] == 0
        holder.replace(updated)
        config, version = holder.snapshot()

        assert config is updated
        assert version == 1
