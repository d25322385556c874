"""Upload, read, edit and delete through the storage application service."""

from dataclasses import replace
from pathlib import Path

import pytest

from bounded_contexts.storage.application import (
    BatchResponseSchema,
    StorageApplicationService,
    build_storage_services,
)
from bounded_contexts.storage.domain import (
    BatchOperationError,
    OrphanedFileError,
    ProviderError,
    RegistryError,
    StorageException,
    StorageNotFoundError,
    StorageValidationError,
    UploadItem,
)
from bounded_contexts.storage.infrastructure import (
    InMemoryFileRegistry,
    LocalStorageProvider,
    StorageConfigHolder,
    StorageConfigLoader,
)


class FailingRegistry(InMemoryFileRegistry):
    """Registry whose writes fail on demand."""

    def __init__(self):
        super().__init__()
        self.fail_add = False
        self.fail_delete = False

    def add(self, file):
        if self.fail_add:
            raise RegistryError("insert failed", file_id=file.id)
        super().add(file)

    def delete(self, file_id):
        if self.fail_delete:
            raise RegistryError("delete failed", file_id=file_id)
        return super().delete(file_id)


class UnreachableProvider(LocalStorageProvider):
    def put(self, content, provider_path, *, content_type=None):
        raise ProviderError("backend offline", provider=self.name, path=provider_path)


def _stored_paths(services):
    provider = services.providers.active()
    return [item.path for item in provider.list()]


class TestUpload:
    def test_upload_registers_file(self, services):
        stored = services.storage.upload_file(
            "public", b"%PDF-1.4", "Agenda 2024.pdf", description="Agenda", uploaded_by="clerk"
        )

        assert stored.folder == "public"
        assert stored.size == 8
        assert stored.mime_type == "application/pdf"
        assert stored.stored_filename == f"Agenda 2024.{stored.id}.pdf"
        assert stored.relative_path == f"public/{stored.stored_filename}"
        assert services.registry.get(stored.id) == stored
        assert services.providers.active().relative_path(stored.provider_path) == stored.relative_path
        assert services.storage.get_file_content(stored.id) == b"%PDF-1.4"

    def test_explicit_mime_type(self, services):
        stored = services.storage.upload_file("public", b"x", "notes.md", mime_type="text/markdown")

        assert stored.mime_type == "text/markdown"

    def test_rejected_extension_writes_nothing(self, services):
        with pytest.raises(StorageValidationError):
            services.storage.upload_file("public", b"MZ", "setup.exe")

        assert _stored_paths(services) == []
        assert services.registry.total_usage() == (0, 0)
        counters = services.metrics.get_metrics().operations["upload"]
        assert (counters.total, counters.failed) == (1, 1)

    def test_rejections_are_not_charged_to_a_provider(self, services):
        with pytest.raises(StorageValidationError):
            services.storage.upload_file("public", b"MZ", "setup.exe")
        with pytest.raises(StorageValidationError):
            services.storage.upload_file("permits", b"x" * (5 * 1024 * 1024 + 1), "big.pdf")

        metrics = services.metrics.get_metrics()

        assert metrics.errors_by_type == {"STORAGE_VALIDATION_ERROR": 2}
        assert metrics.errors_by_provider == {}
        assert "local" not in metrics.providers

    def test_unknown_folder(self, services):
        with pytest.raises(StorageValidationError):
            services.storage.upload_file("archive", b"x", "a.pdf")

    def test_oversized_file(self, services):
        with pytest.raises(StorageValidationError):
            services.storage.upload_file("permits", b"x" * (5 * 1024 * 1024 + 1), "big.pdf")

    def test_registry_failure_reports_storage_orphan(self, storage_config):
        registry = FailingRegistry()
        services = build_storage_services(storage_config, registry)
        registry.fail_add = True

        with pytest.raises(OrphanedFileError) as exc_info:
            services.storage.upload_file("public", b"data", "a.pdf")

        assert exc_info.value.orphan_type == "in_storage"
        assert _stored_paths(services) == [exc_info.value.path]

    def test_stored_name_collision_retries(self, services):
        ids = iter(["dup", "dup", "fresh"])
        storage = StorageApplicationService(
            services.config,
            services.providers,
            services.registry,
            services.quota,
            services.metrics,
            id_factory=lambda: next(ids),
        )
        first = storage.upload_file("public", b"1", "a.pdf")

        second = storage.upload_file("public", b"2", "a.pdf")

        assert first.stored_filename == "a.dup.pdf"
        assert second.stored_filename == "a.fresh.pdf"

    def test_stored_name_allocation_gives_up(self, services):
        storage = StorageApplicationService(
            services.config,
            services.providers,
            services.registry,
            services.quota,
            services.metrics,
            id_factory=lambda: "same",
        )
        storage.upload_file("public", b"1", "a.pdf")

        with pytest.raises(StorageException):
            storage.upload_file("public", b"2", "a.pdf")

    def test_reloaded_folder_rules_apply_to_next_upload(self, services):
        current = services.config.current
        public = replace(current.folder("public"), max_size=4)
        services.config.replace(replace(current, folders={**current.folders, "public": public}))

        with pytest.raises(StorageValidationError):
            services.storage.upload_file("public", b"12345", "a.txt")
        assert services.storage.upload_file("public", b"1234", "a.txt").size == 4

    def test_upload_metrics(self, services):
        services.storage.upload_file("public", b"12345", "a.txt")

        metrics = services.metrics.get_metrics()
        assert metrics.operations["upload"].successful == 1
        assert metrics.operations["upload"].bytes == 5
        assert metrics.providers["local"].bytes_transferred == 5


class TestUploadFailover:
    """Writes move on to failover providers when the active one is unreachable."""

    @pytest.fixture
    def services(self, tmp_path, make_storage_mapping):
        mapping = make_storage_mapping(
            providers={
                "local": {"type": "local", "path": str(tmp_path / "a")},
                "spare": {"type": "local", "path": str(tmp_path / "s"), "enabled": False},
                "backup": {"type": "local", "path": str(tmp_path / "b")},
            },
            failover_providers=["spare", "backup"],
        )
        config = StorageConfigLoader(tmp_path).from_mapping(mapping)
        services = build_storage_services(config, InMemoryFileRegistry())
        services.providers.set("local", UnreachableProvider(config.provider("local")))
        return services

    def test_upload_lands_on_backup(self, services, tmp_path):
        stored = services.storage.upload_file("public", b"agenda", "agenda.pdf")

        assert Path(stored.provider_path).is_relative_to((tmp_path / "b").resolve())
        assert not (tmp_path / "s").exists()
        assert services.registry.get(stored.id) == stored
        assert services.storage.get_file_content(stored.id) == b"agenda"
        metrics = services.metrics.get_metrics()
        assert metrics.providers["backup"].bytes_transferred == 6
        assert metrics.operations["upload"].successful == 1

    def test_every_candidate_failing_raises_without_a_row(self, services):
        backup = services.providers.get("backup")
        services.providers.set("backup", UnreachableProvider(services.config.current.provider("backup")))

        with pytest.raises(ProviderError) as exc_info:
            services.storage.upload_file("public", b"agenda", "agenda.pdf")

        assert exc_info.value.context["provider"] == "backup"
        assert services.registry.total_usage() == (0, 0)
        assert list(backup.list()) == []
        assert services.metrics.get_metrics().errors_by_provider == {"backup": 1}

    def test_missing_object_errors_do_not_fail_over(self, services):
        class Vanishing(LocalStorageProvider):
            def put(self, content, provider_path, *, content_type=None):
                raise StorageNotFoundError("parent vanished", provider=self.name)

        services.providers.set("local", Vanishing(services.config.current.provider("local")))

        with pytest.raises(StorageNotFoundError):
            services.storage.upload_file("public", b"agenda", "agenda.pdf")
        assert list(services.providers.get("backup").list()) == []

    def test_without_failover_the_error_surfaces(self, storage_config):
        services = build_storage_services(storage_config, InMemoryFileRegistry())
        services.providers.set("local", UnreachableProvider(storage_config.provider("local")))

        with pytest.raises(ProviderError):
            services.storage.upload_file("public", b"agenda", "agenda.pdf")
        assert services.registry.total_usage() == (0, 0)


class TestReadAndEdit:
    def test_get_missing_file(self, services):
        with pytest.raises(StorageNotFoundError):
            services.storage.get_file("missing")

    def test_open_file_streams_content(self, services):
        stored = services.storage.upload_file("public", b"stream me", "a.txt")

        with services.storage.open_file(stored.id) as stream:
            assert stream.read() == b"stream me"

    def test_update_description(self, services):
        stored = services.storage.upload_file("public", b"x", "a.txt", description="old")

        updated = services.storage.update_file(stored.id, "new")

        assert updated.description == "new"
        assert updated.provider_path == stored.provider_path
        assert updated.updated_at >= stored.updated_at
        with pytest.raises(StorageNotFoundError):
            services.storage.update_file("missing", "x")

    def test_list_files(self, services):
        first = services.storage.upload_file("public", b"1", "a.txt")
        second = services.storage.upload_file("public", b"2", "b.txt")
        services.storage.upload_file("private", b"3", "c.pdf")

        listed = services.storage.list_files("public")

        assert {f.id for f in listed} == {first.id, second.id}
        with pytest.raises(StorageValidationError):
            services.storage.list_files("archive")

    def test_reads_follow_the_owning_provider(self, tmp_path, make_storage_mapping):
        mapping = make_storage_mapping(providers={
            "local": {"type": "local", "path": str(tmp_path / "a")},
            "second": {"type": "local", "path": str(tmp_path / "b")},
        })
        holder = StorageConfigHolder(StorageConfigLoader(tmp_path).from_mapping(mapping))
        services = build_storage_services(holder, InMemoryFileRegistry())
        stored = services.storage.upload_file("public", b"old home", "a.txt")

        holder.replace(replace(holder.current, active_provider="second"))

        assert services.storage.get_file_content(stored.id) == b"old home"
        moved = services.storage.upload_file("public", b"new home", "b.txt")
        assert Path(moved.provider_path).is_relative_to((tmp_path / "b").resolve())


class TestDelete:
    def test_delete_removes_object_and_row(self, services):
        stored = services.storage.upload_file("public", b"x", "a.txt")

        services.storage.delete_file(stored.id, user_id="clerk")

        assert services.registry.get(stored.id) is None
        assert _stored_paths(services) == []

    def test_delete_missing_file(self, services):
        with pytest.raises(StorageNotFoundError):
            services.storage.delete_file("missing")

    def test_delete_tolerates_missing_object(self, services):
        stored = services.storage.upload_file("public", b"x", "a.txt")
        Path(stored.provider_path).unlink()

        services.storage.delete_file(stored.id)

        assert services.registry.get(stored.id) is None

    def test_registry_failure_reports_database_orphan(self, storage_config):
        registry = FailingRegistry()
        services = build_storage_services(storage_config, registry)
        stored = services.storage.upload_file("public", b"x", "a.txt")
        registry.fail_delete = True

        with pytest.raises(OrphanedFileError) as exc_info:
            services.storage.delete_file(stored.id)

        assert exc_info.value.orphan_type == "in_database"
        assert registry.get(stored.id) is not None
        assert _stored_paths(services) == []


class TestBatchOperations:
    def test_batch_upload_partial_success(self, services):
        response = services.storage.batch_upload(
            "public",
            [
                UploadItem(content=b"ok", original_name="a.txt"),
                UploadItem(content=b"MZ", original_name="b.exe"),
                UploadItem(content=b"MZ", original_name="c.exe"),
            ],
            uploaded_by="clerk",
        )

        assert response.total == 3
        assert response.successful_count == 1
        assert response.successful[0].file.uploaded_by == "clerk"
        assert response.error_summary.by_type == {"STORAGE_VALIDATION_ERROR": 2}

    def test_batch_upload_total_failure(self, services):
        with pytest.raises(BatchOperationError) as exc_info:
            services.storage.batch_upload(
                "public",
                [UploadItem(content=b"MZ", original_name="b.exe")],
                fail_on_total_failure=True,
            )

        assert exc_info.value.status_code == 500
        assert exc_info.value.response.failed_count == 1

    def test_batch_upload_total_failure_is_reported_by_default(self, services):
        response = services.storage.batch_upload("public", [UploadItem(content=b"MZ", original_name="b.exe")])

        assert response.failed_count == 1

    def test_batch_delete(self, services):
        stored = services.storage.upload_file("public", b"x", "a.txt")

        response = services.storage.batch_delete([stored.id, "missing"])

        assert [item.item for item in response.successful] == [stored.id]
        assert response.failed[0].error_code == "STORAGE_FILE_NOT_FOUND"
        assert services.registry.get(stored.id) is None

    def test_batch_response_renders_as_json(self, services):
        response = services.storage.batch_upload(
            "public",
            [
                UploadItem(content=b"ok", original_name="a.txt"),
                UploadItem(content=b"MZ", original_name="b.exe"),
            ],
        )

        payload = BatchResponseSchema().dump(response)

        assert (payload["total"], payload["successful_count"], payload["failed_count"]) == (2, 1, 1)
        assert payload["successful"][0]["file"]["folder"] == "public"
        assert payload["failed"][0]["file"] is None
        assert payload["failed"][0]["error_code"] == "STORAGE_VALIDATION_ERROR"
        assert payload["error_summary"]["by_type"] == {"STORAGE_VALIDATION_ERROR": 1}
        assert payload["error_summary"]["total_errors"] == 1
