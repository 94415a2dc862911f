"""Export of the trailing segment window into a single clip."""

from replay.export.pipeline import (
    ExportPipeline,
    ExportResult,
    ExportStatus,
    build_descriptor,
)

__all__ = ["ExportPipeline", "ExportResult", "ExportStatus", "build_descriptor"]
