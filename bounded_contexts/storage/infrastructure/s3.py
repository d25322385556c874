"""S3 compatible object store provider."""

from __future__ import annotations

import logging
import threading
from typing import IO, Any, Iterator, cast

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from ..domain import (
    OperationCancelledError,
    ProviderError,
    ProviderKind,
    S3ProviderConfig,
    StorageException,
    StorageNotFoundError,
    StoragePermissionError,
    StorageTimeoutError,
    StoredObject,
)

__all__ = ["S3StorageProvider"]

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_EXISTS_CODES = frozenset({"412", "PreconditionFailed"})
_DENIED_CODES = frozenset(
    {"403", "AccessDenied", "Forbidden", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
)


class S3StorageProvider:
    """Provider for an S3 bucket, optionally scoped to a key prefix.

    Provider paths take the form ``s3://<bucket>/<key>``.  Listing uses the
    ``list_objects_v2`` paginator, which follows continuation tokens until the
    result set is exhausted.
    """

    kind = ProviderKind.S3

    def __init__(self, configuration: S3ProviderConfig, client: Any | None = None) -> None:
        self.name = configuration.name
        self._configuration = configuration
        self._bucket = configuration.bucket
        self._prefix = configuration.prefix
        self._client = client or self._create_client(configuration)

    @staticmethod
    def _create_client(configuration: S3ProviderConfig) -> Any:
        client_config = Config(
            connect_timeout=configuration.timeout,
            read_timeout=configuration.timeout,
            retries={"max_attempts": 3, "mode": "standard"},
        )
        return boto3.client(
            "s3",
            region_name=configuration.region,
            endpoint_url=configuration.endpoint,
            aws_access_key_id=configuration.access_key,
            aws_secret_access_key=configuration.secret_key,
            config=client_config,
        )

    @property
    def _base(self) -> str:
        return f"s3://{self._bucket}/"

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
        key_prefix = self._prefix
        if prefix:
            key_prefix += prefix.strip("/") + "/"
        paginator = self._client.get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=self._bucket,
            Prefix=key_prefix,
            PaginationConfig={"PageSize": self._configuration.page_size},
        )
        try:
            for page in pages:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(
                        f"Listing of provider '{self.name}' cancelled", provider=self.name
                    )
                for item in page.get("Contents", []):
                    key = item["Key"]
                    if key.endswith("/"):
                        continue
                    yield StoredObject(path=f"{self._base}{key}", size=item.get("Size"))
        except (BotoCoreError, ClientError) as exc:
            raise self._translate(exc, "list", key_prefix) from exc

    def put(self, content: bytes, provider_path: str, *, content_type: str | None = None) -> None:
        key = self._key(provider_path)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=content,
                ContentType=content_type or "application/octet-stream",
                IfNoneMatch="*",
            )
        except ClientError as exc:
            if str(exc.response.get("Error", {}).get("Code", "")) in _EXISTS_CODES:
                raise ProviderError(
                    f"Object already exists: {provider_path}", provider=self.name, path=provider_path
                ) from exc
            raise self._translate(exc, "put", provider_path) from exc
        except BotoCoreError as exc:
            raise self._translate(exc, "put", provider_path) from exc
        logger.debug("Uploaded %d bytes to %s", len(content), provider_path)

    def get(self, provider_path: str) -> IO[bytes]:
        key = self._key(provider_path)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise self._translate(exc, "get", provider_path) from exc
        return cast(IO[bytes], response["Body"])

    def delete(self, provider_path: str, *, missing_ok: bool = False) -> None:
        key = self._key(provider_path)
        try:
            if not missing_ok:
                # delete_object succeeds for absent keys; check first so a
                # missing object is reported as such.
                self._client.head_object(Bucket=self._bucket, Key=key)
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise self._translate(exc, "delete", provider_path) from exc

    def exists(self, provider_path: str) -> bool:
        key = self._key(provider_path)
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            error = self._translate(exc, "head", provider_path)
            if isinstance(error, StorageNotFoundError):
                return False
            raise error from exc
        return True

    def _key(self, provider_path: str) -> str:
        if not provider_path.startswith(self._base):
            raise StoragePermissionError(
                f"Path does not belong to bucket '{self._bucket}': {provider_path}",
                provider=self.name,
                path=provider_path,
            )
        return provider_path[len(self._base):]

    def _translate(self, exc: Exception, operation: str, path: str) -> StorageException:
        context = {"provider": self.name, "operation": operation, "path": path}
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            message = error.get("Message") or str(exc)
            if code in _NOT_FOUND_CODES:
                return StorageNotFoundError(f"Object not found: {path}", **context)
            if code in _DENIED_CODES:
                return StoragePermissionError(f"S3 access denied ({operation}): {message}", **context)
            return ProviderError(f"S3 {operation} failed [{code}]: {message}", error_code=code, **context)
        if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError)):
            return StorageTimeoutError(
                f"S3 {operation} timed out after {self._configuration.timeout}s", **context
            )
        return ProviderError(f"S3 {operation} failed: {exc}", **context)
