"""Registry/backend reconciliation tests."""

import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from bounded_contexts.storage.application import build_storage_services
from bounded_contexts.storage.domain import (
    LocalProviderConfig,
    OperationCancelledError,
    OrphanType,
    OrphanedFile,
    ProviderError,
    StorageFile,
)
from bounded_contexts.storage.infrastructure import (
    InMemoryFileRegistry,
    LocalStorageProvider,
    StorageConfigLoader,
)


NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _stale_row(file_id, relative_path, provider_path):
    return StorageFile(
        id=file_id,
        original_name=Path(relative_path).name,
        stored_filename=Path(relative_path).name,
        folder=relative_path.split("/")[0],
        relative_path=relative_path,
        provider_path=provider_path,
        size=3,
        mime_type="application/pdf",
        created_at=NOW,
        updated_at=NOW,
    )


def _by_type(orphans):
    return sorted((orphan.type.value, orphan.path) for orphan in orphans)


class UnlistableProvider(LocalStorageProvider):
    def list(self, prefix="", *, cancel_event=None):
        raise ProviderError("backend offline", provider=self.name)


class FlakyDeleteProvider(LocalStorageProvider):
    """Fails to delete any path containing ``locked``."""

    def delete(self, provider_path, *, missing_ok=False):
        if "locked" in provider_path:
            raise ProviderError("delete refused", provider=self.name, path=provider_path)
        super().delete(provider_path, missing_ok=missing_ok)


@pytest.fixture
def local(services):
    return services.providers.get("local")


class TestFindOrphanedFiles:
    def test_registered_file_is_not_an_orphan(self, services, local):
        stored = services.storage.upload_file("public", b"p1", "f1.pdf")
        p2 = local.locate("public/unrelated.pdf")
        local.put(b"p2", p2)

        orphans = services.reconciler.find_orphaned_files("local")

        assert orphans == [OrphanedFile(path=p2, type=OrphanType.IN_STORAGE, provider="local", size=2)]
        assert all(orphan.path != stored.provider_path for orphan in orphans)

    def test_detects_every_orphan_type(self, services, local):
        missing = services.storage.upload_file("public", b"gone", "gone.pdf")
        Path(missing.provider_path).unlink()
        stray = local.locate("private/stray.pdf")
        local.put(b"stray", stray)
        moved = local.locate("public/moved.pdf")
        local.put(b"abc", moved)
        services.registry.add(_stale_row("stale", "public/moved.pdf", "/retired-root/public/moved.pdf"))

        orphans = services.reconciler.find_orphaned_files("local")

        assert _by_type(orphans) == [
            ("in_database", missing.provider_path),
            ("in_storage", stray),
            ("mismatched", moved),
        ]
        mismatched = next(o for o in orphans if o.type is OrphanType.MISMATCHED)
        assert mismatched.file_id == "stale"

    def test_scan_spans_registry_pages(self, services):
        uploaded = [services.storage.upload_file("public", b"x", f"{i}.pdf") for i in range(5)]
        for stored in uploaded:
            Path(stored.provider_path).unlink()

        orphans = services.reconciler.find_orphaned_files("local")

        assert sorted(o.file_id for o in orphans) == sorted(s.id for s in uploaded)
        assert {o.type for o in orphans} == {OrphanType.IN_DATABASE}

    def test_rows_of_other_providers_are_ignored(self, tmp_path, make_storage_mapping):
        mapping = make_storage_mapping(providers={
            "local": {"type": "local", "path": str(tmp_path / "a")},
            "second": {"type": "local", "path": str(tmp_path / "b")},
        })
        services = build_storage_services(
            StorageConfigLoader(tmp_path).from_mapping(mapping), InMemoryFileRegistry()
        )
        services.storage.upload_file("public", b"x", "a.pdf")

        assert services.reconciler.find_orphaned_files("second") == []
        assert services.reconciler.find_orphaned_files("local") == []

    def test_cancellation(self, services):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            services.reconciler.find_orphaned_files("local", cancel)

    def test_vanished_root_aborts_instead_of_reporting_rows(self, services, local):
        stored = services.storage.upload_file("public", b"keep", "keep.pdf")
        shutil.rmtree(local.root)

        with pytest.raises(ProviderError):
            services.reconciler.find_orphaned_files("local")
        result = services.reconciler.reconcile_all(dry_run=False)

        assert result["local"].cleaned == 0
        assert result["local"].errors[0].code == "STORAGE_PROVIDER_UNAVAILABLE"
        assert services.registry.get(stored.id) is not None

    def test_listing_is_timed(self, services):
        services.reconciler.find_orphaned_files("local")

        assert services.metrics.get_metrics().operations["list"].successful == 1


class TestCleanup:
    @pytest.fixture
    def five_orphans(self, services, local):
        for index in range(3):
            local.put(b"stray", local.locate(f"public/stray{index}.pdf"))
        for index in range(2):
            stored = services.storage.upload_file("public", b"x", f"gone{index}.pdf")
            Path(stored.provider_path).unlink()
        orphans = services.reconciler.find_orphaned_files("local")
        assert len(orphans) == 5
        return orphans

    def test_dry_run_changes_nothing(self, services, local, five_orphans):
        result = services.reconciler.cleanup_orphaned_files(five_orphans, dry_run=True)

        assert (result.scanned, result.cleaned, result.failed) == (5, 5, 0)
        assert result.dry_run is True
        assert len(list(local.list())) == 3
        assert services.registry.total_usage()[0] == 2

        real = services.reconciler.cleanup_orphaned_files(five_orphans)

        assert (real.scanned, real.cleaned, real.skipped, real.failed) == (5, 5, 0, 0)
        assert list(local.list()) == []
        assert services.registry.total_usage() == (0, 0)

    def test_second_run_finds_nothing(self, services, five_orphans):
        first = services.reconciler.reconcile("local", dry_run=False)

        assert first.cleaned == 5
        assert services.reconciler.find_orphaned_files("local") == []
        assert services.reconciler.reconcile("local", dry_run=False).scanned == 0

    def test_reconcile_defaults_to_dry_run(self, services, local, five_orphans):
        result = services.reconciler.reconcile("local")

        assert result.dry_run is True
        assert result.provider == "local"
        assert len(list(local.list())) == 3

    def test_mismatched_removes_object_and_row(self, services, local):
        moved = local.locate("public/moved.pdf")
        local.put(b"abc", moved)
        services.registry.add(_stale_row("stale", "public/moved.pdf", "/retired-root/public/moved.pdf"))

        result = services.reconciler.reconcile("local", dry_run=False)

        assert result.cleaned == 1
        assert not Path(moved).exists()
        assert services.registry.get("stale") is None

    def test_items_reappearing_after_scan_are_skipped(self, services, local):
        stray = local.locate("public/late.pdf")
        local.put(b"late", stray)
        stored = services.storage.upload_file("public", b"x", "gone.pdf")
        Path(stored.provider_path).unlink()
        orphans = services.reconciler.find_orphaned_files("local")

        # An upload's row lands and a missing object is restored before cleanup.
        services.registry.add(_stale_row("late", "public/late.pdf", stray))
        local.put(b"x", stored.provider_path)
        result = services.reconciler.cleanup_orphaned_files(orphans)

        assert (result.cleaned, result.skipped) == (0, 2)
        assert Path(stray).exists()
        assert services.registry.get(stored.id) is not None

    def test_one_failure_does_not_stop_the_batch(self, services, storage_config):
        flaky = FlakyDeleteProvider(storage_config.provider("local"))
        services.providers.set("local", flaky)
        locked = flaky.locate("public/locked.pdf")
        free = flaky.locate("public/free.pdf")
        flaky.put(b"1", locked)
        flaky.put(b"2", free)

        result = services.reconciler.reconcile("local", dry_run=False)

        assert (result.scanned, result.cleaned, result.failed) == (2, 1, 1)
        assert result.errors[0].file == locked
        assert result.errors[0].code == "STORAGE_PROVIDER_UNAVAILABLE"
        assert not Path(free).exists()


class TestReconcileAll:
    def test_failing_provider_is_isolated(self, tmp_path, make_storage_mapping):
        mapping = make_storage_mapping(providers={
            "local": {"type": "local", "path": str(tmp_path / "a")},
            "offline": {"type": "local", "path": str(tmp_path / "b")},
        })
        services = build_storage_services(
            StorageConfigLoader(tmp_path).from_mapping(mapping), InMemoryFileRegistry()
        )
        services.providers.set(
            "offline", UnlistableProvider(LocalProviderConfig(name="offline", path=str(tmp_path / "b")))
        )
        local = services.providers.get("local")
        local.put(b"x", local.locate("public/stray.pdf"))

        results = services.reconciler.reconcile_all(dry_run=False)

        assert results["local"].cleaned == 1
        assert results["offline"].failed == 1
        assert results["offline"].errors[0].code == "STORAGE_PROVIDER_UNAVAILABLE"

    def test_cancellation_stops_everything(self, services):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            services.reconciler.reconcile_all(cancel_event=cancel)
