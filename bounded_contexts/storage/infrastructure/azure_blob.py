"""Azure Blob Storage provider."""

from __future__ import annotations

import io
import logging
import threading
from typing import IO, Any, Iterator

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestTimeoutError,
    ServiceResponseTimeoutError,
)
from azure.storage.blob import ContainerClient, ContentSettings

from ..domain import (
    AzureBlobProviderConfig,
    OperationCancelledError,
    ProviderError,
    ProviderKind,
    StorageException,
    StorageNotFoundError,
    StoragePermissionError,
    StorageTimeoutError,
    StoredObject,
)

__all__ = ["AzureBlobStorageProvider"]

logger = logging.getLogger(__name__)


class AzureBlobStorageProvider:
    """Provider for one Azure Blob container, optionally scoped to a prefix.

    Provider paths take the form ``azure://<account>/<container>/<blob>``.
    Listing walks the native flat blob listing page by page.
    """

    kind = ProviderKind.AZURE_BLOB

    def __init__(
        self,
        configuration: AzureBlobProviderConfig,
        container_client: Any | None = None,
    ) -> None:
        self.name = configuration.name
        self._configuration = configuration
        self._prefix = configuration.prefix
        self._timeout = configuration.timeout
        self._container = container_client or self._create_container_client(configuration)
        account = configuration.account_name or getattr(self._container, "account_name", None)
        if not account:
            raise ProviderError(
                f"Azure provider '{self.name}': storage account name could not be determined",
                provider=self.name,
            )
        self._base = f"azure://{account}/{configuration.container_name}/"

    @staticmethod
    def _create_container_client(configuration: AzureBlobProviderConfig) -> ContainerClient:
        transport_options = {
            "connection_timeout": configuration.timeout,
            "read_timeout": configuration.timeout,
        }
        if configuration.connection_string:
            return ContainerClient.from_connection_string(
                configuration.connection_string,
                container_name=configuration.container_name,
                **transport_options,
            )
        return ContainerClient(
            account_url=f"https://{configuration.account_name}.blob.core.windows.net",
            container_name=configuration.container_name,
            credential={
                "account_name": configuration.account_name,
                "account_key": configuration.account_key,
            },
            **transport_options,
        )

    def locate(self, relative_path: str) -> str:
        return f"{self._base}{self._prefix}{relative_path.lstrip('/')}"

    def owns(self, provider_path: str) -> bool:
        return provider_path.startswith(f"{self._base}{self._prefix}")

    def relative_path(self, provider_path: str) -> str | None:
        if not self.owns(provider_path):
            return None
        return provider_path[len(self._base) + len(self._prefix):]

    def list(
        self,
        prefix: str = "",
        *,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[StoredObject]:
        name_prefix = self._prefix
        if prefix:
            name_prefix += prefix.strip("/") + "/"
        try:
            pages = self._container.list_blobs(
                name_starts_with=name_prefix or None,
                results_per_page=self._configuration.page_size,
                timeout=self._timeout,
            ).by_page()
            for page in pages:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(
                        f"Listing of provider '{self.name}' cancelled", provider=self.name
                    )
                for blob in page:
                    yield StoredObject(path=f"{self._base}{blob.name}", size=blob.size)
        except AzureError as exc:
            raise self._translate(exc, "list", name_prefix) from exc

    def put(self, content: bytes, provider_path: str, *, content_type: str | None = None) -> None:
        blob_name = self._blob_name(provider_path)
        try:
            self._container.upload_blob(
                blob_name,
                content,
                overwrite=False,
                content_settings=ContentSettings(
                    content_type=content_type or "application/octet-stream"
                ),
                timeout=self._timeout,
            )
        except ResourceExistsError as exc:
            raise ProviderError(
                f"Object already exists: {provider_path}", provider=self.name, path=provider_path
            ) from exc
        except AzureError as exc:
            raise self._translate(exc, "put", provider_path) from exc
        logger.debug("Uploaded %d bytes to %s", len(content), provider_path)

    def get(self, provider_path: str) -> IO[bytes]:
        blob_name = self._blob_name(provider_path)
        try:
            downloader = self._container.download_blob(blob_name, timeout=self._timeout)
            return io.BytesIO(downloader.readall())
        except AzureError as exc:
            raise self._translate(exc, "get", provider_path) from exc

    def delete(self, provider_path: str, *, missing_ok: bool = False) -> None:
        blob_name = self._blob_name(provider_path)
        try:
            self._container.delete_blob(blob_name, timeout=self._timeout)
        except AzureError as exc:
            error = self._translate(exc, "delete", provider_path)
            if missing_ok and isinstance(error, StorageNotFoundError):
                return
            raise error from exc

    def exists(self, provider_path: str) -> bool:
        blob_name = self._blob_name(provider_path)
        try:
            return bool(self._container.get_blob_client(blob_name).exists(timeout=self._timeout))
        except AzureError as exc:
            raise self._translate(exc, "head", provider_path) from exc

    def _blob_name(self, provider_path: str) -> str:
        if not provider_path.startswith(self._base):
            raise StoragePermissionError(
                f"Path does not belong to container '{self._configuration.container_name}': {provider_path}",
                provider=self.name,
                path=provider_path,
            )
        return provider_path[len(self._base):]

    def _translate(self, exc: AzureError, operation: str, path: str) -> StorageException:
        context = {"provider": self.name, "operation": operation, "path": path}
        error_code = getattr(exc, "error_code", None)
        if isinstance(exc, ResourceNotFoundError):
            if error_code == "ContainerNotFound":
                # A missing container is a misconfiguration, not a missing object.
                return ProviderError(f"Azure container not found ({operation})", error_code=error_code, **context)
            return StorageNotFoundError(f"Object not found: {path}", **context)
        if isinstance(exc, ClientAuthenticationError) or (
            isinstance(exc, HttpResponseError) and exc.status_code == 403
        ):
            return StoragePermissionError(f"Azure access denied ({operation}): {exc.message}", **context)
        if isinstance(exc, (ServiceRequestTimeoutError, ServiceResponseTimeoutError)):
            return StorageTimeoutError(f"Azure {operation} timed out after {self._timeout}s", **context)
        return ProviderError(f"Azure {operation} failed: {exc.message}", error_code=error_code, **context)
