"""Marshmallow schemas rendering storage results as JSON-ready data."""

from __future__ import annotations

from marshmallow import Schema, fields

from ..domain import OrphanType

__all__ = [
    "StorageFileSchema",
    "MetricsSnapshotSchema",
    "MetricsSummarySchema",
    "OrphanedFileSchema",
    "CleanupResultSchema",
    "QuotaStatusSchema",
    "UsageReportSchema",
    "BatchResponseSchema",
]


class StorageFileSchema(Schema):
    """Registry row as exposed to callers."""

    id = fields.String(required=True)
    original_name = fields.String(required=True)
    stored_filename = fields.String(required=True)
    folder = fields.String(required=True)
    relative_path = fields.String(required=True)
    provider_path = fields.String(required=True)
    size = fields.Integer(required=True)
    mime_type = fields.String(required=True)
    description = fields.String(allow_none=True)
    uploaded_by = fields.String(allow_none=True)
    created_at = fields.DateTime(required=True)
    updated_at = fields.DateTime(required=True)


class OperationCountersSchema(Schema):
    total = fields.Integer()
    successful = fields.Integer()
    failed = fields.Integer()
    bytes = fields.Integer()


class ProviderStatsSchema(Schema):
    operations = fields.Integer()
    errors = fields.Integer()
    bytes_transferred = fields.Integer()
    average_latency = fields.Float()


class MetricsSnapshotSchema(Schema):
    """Full collector state, including the raw latency windows."""

    operations = fields.Dict(keys=fields.String(), values=fields.Nested(OperationCountersSchema))
    latency = fields.Dict(keys=fields.String(), values=fields.List(fields.Float()))
    errors_by_type = fields.Dict(keys=fields.String(), values=fields.Integer())
    errors_by_provider = fields.Dict(keys=fields.String(), values=fields.Integer())
    providers = fields.Dict(keys=fields.String(), values=fields.Nested(ProviderStatsSchema))
    start_time = fields.DateTime()
    last_update = fields.DateTime()


class ProviderSummarySchema(Schema):
    provider = fields.String()
    operations = fields.Integer()
    error_rate = fields.Float()
    bytes_transferred = fields.Integer()
    average_latency = fields.Float()


class MetricsSummarySchema(Schema):
    total_operations = fields.Integer()
    success_rate = fields.Float()
    total_bytes_transferred = fields.Integer()
    average_latencies = fields.Dict(keys=fields.String(), values=fields.Float())
    error_count = fields.Integer()
    top_errors = fields.Method("_top_errors")
    provider_stats = fields.List(fields.Nested(ProviderSummarySchema))

    def _top_errors(self, summary) -> list[dict[str, object]]:
        return [{"code": code, "count": count} for code, count in summary.top_errors]


class OrphanedFileSchema(Schema):
    path = fields.String()
    type = fields.Enum(OrphanType, by_value=True)
    provider = fields.String()
    file_id = fields.String(allow_none=True)
    size = fields.Integer(allow_none=True)


class CleanupErrorSchema(Schema):
    file = fields.String()
    error = fields.String()
    code = fields.String(allow_none=True)


class CleanupResultSchema(Schema):
    provider = fields.String(allow_none=True)
    dry_run = fields.Boolean()
    scanned = fields.Integer()
    cleaned = fields.Integer()
    skipped = fields.Integer()
    failed = fields.Integer()
    errors = fields.List(fields.Nested(CleanupErrorSchema))
    orphaned = fields.List(fields.Nested(OrphanedFileSchema))


class QuotaStatusSchema(Schema):
    scope = fields.String()
    limit = fields.Integer()
    used = fields.Integer()
    available = fields.Integer()
    percentage = fields.Float()
    limit_formatted = fields.String()
    used_formatted = fields.String()
    available_formatted = fields.String()


class UsageBucketSchema(Schema):
    files = fields.Integer()
    size = fields.Integer()
    size_formatted = fields.String()


class UsageReportSchema(Schema):
    total = fields.Nested(UsageBucketSchema)
    by_folder = fields.Dict(keys=fields.String(), values=fields.Nested(UsageBucketSchema))
    by_provider = fields.Dict(keys=fields.String(), values=fields.Nested(UsageBucketSchema))
    timestamp = fields.DateTime()


class BatchItemResultSchema(Schema):
    item = fields.String()
    success = fields.Boolean()
    file = fields.Nested(StorageFileSchema, allow_none=True)
    error = fields.String(allow_none=True)
    error_code = fields.String(allow_none=True)


class ErrorSummarySchema(Schema):
    by_type = fields.Dict(keys=fields.String(), values=fields.Integer())
    by_error = fields.Method("_by_error")
    total_errors = fields.Integer()

    def _by_error(self, summary) -> list[dict[str, object]]:
        return [{"error": error, "count": count} for error, count in summary.by_error]


class BatchResponseSchema(Schema):
    """Shared rendering for batch upload and batch delete responses."""

    total = fields.Integer()
    successful_count = fields.Integer()
    failed_count = fields.Integer()
    successful = fields.List(fields.Nested(BatchItemResultSchema))
    failed = fields.List(fields.Nested(BatchItemResultSchema))
    error_summary = fields.Nested(ErrorSummarySchema, allow_none=True)
