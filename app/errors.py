# =============================================================================
# Pipeline Errors — Stage-Tagged Exception Taxonomy
# =============================================================================
#
# Every failure that crosses the HTTP boundary is a PipelineError carrying:
#   - code:        stable machine-readable identifier ("DOC_NOT_FOUND")
#   - stage:       the pipeline stage that failed ("storage.download")
#   - status_code: HTTP status the boundary should answer with
#
# The exception handler in app/main.py renders these as
#   {ok: false, rid, stage, code, message, details}
#
# TAXONOMY:
#   PipelineError
#   ├── ValidationError         400/422  malformed input, never retried
#   ├── NotFoundError           404      referenced document/object missing
#   ├── UnsupportedFormatError  400      user-correctable file type
#   ├── UpstreamServiceError    502      storage/embedding/LLM/parser failure
#   └── ParseTimeoutError       504      PDF job exceeded wall-clock budget
# =============================================================================

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception for ingestion and query pipeline failures."""

    status_code: int = 500
    default_code: str = "PIPELINE_ERROR"
    default_stage: str = "unhandled"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        stage: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.stage = stage or self.default_stage
        self.details = details

    def to_dict(self, rid: str) -> dict[str, Any]:
        return {
            "ok": False,
            "rid": rid,
            "stage": self.stage,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PipelineError):
    """Raised when input is malformed or missing."""

    status_code = 400
    default_code = "VALIDATION_FAILED"
    default_stage = "validate"


class NotFoundError(PipelineError):
    """Raised when a referenced document or storage object is missing."""

    status_code = 404
    default_code = "NOT_FOUND"


class UnsupportedFormatError(PipelineError):
    """Raised for file types the parser does not handle."""

    status_code = 400
    default_code = "UNSUPPORTED_TYPE"
    default_stage = "parse"


class UpstreamServiceError(PipelineError):
    """Raised when storage, embedding, completion or parsing services fail."""

    status_code = 502
    default_code = "UPSTREAM_FAILED"


class ParseTimeoutError(PipelineError):
    """Raised when the PDF parsing job does not finish in time."""

    status_code = 504
    default_code = "PARSE_TIMEOUT"
    default_stage = "parse.poll"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class ParseTimeout(ParseTimeoutError):
    pass


class ParseJobFailed(UpstreamServiceError):
    default_code = "PARSE_JOB_FAILED"
    default_stage = "parse.poll"


class ParseEmptyResult(ValidationError):
    status_code = 422
    default_code = "PARSE_EMPTY_RESULT"
    default_stage = "parse.result"


class ParseFetchError(UpstreamServiceError):
    default_code = "PARSE_FETCH_FAILED"
    default_stage = "parse.fetch"


class ParseConversionError(UpstreamServiceError):
    default_code = "PARSE_CONVERSION_FAILED"
    default_stage = "parse.convert"


class UnsupportedFormat(UnsupportedFormatError):
    pass


# ---------------------------------------------------------------------------
# Embedding
# ---------------------------------------------------------------------------


class EmbedServiceError(UpstreamServiceError):
    default_code = "EMBED_FAILED"
    default_stage = "embed"


# ---------------------------------------------------------------------------
# Storage & document lookup
# ---------------------------------------------------------------------------


class DocNotFound(NotFoundError):
    default_code = "DOC_NOT_FOUND"
    default_stage = "db.fetch"


class MissingObjectKey(ValidationError):
    default_code = "MISSING_OBJECT_KEY"


class DownloadFailed(UpstreamServiceError):
    default_code = "DOWNLOAD_FAILED"
    default_stage = "storage.download"


class EmptyBytes(UpstreamServiceError):
    default_code = "EMPTY_BYTES"
    default_stage = "storage.download"


class SignedUrlFailed(UpstreamServiceError):
    default_code = "SIGNED_URL_FAILED"
    default_stage = "sign"


class NoChunks(ValidationError):
    status_code = 422
    default_code = "NO_CHUNKS"
    default_stage = "chunk"


class StorageWriteError(UpstreamServiceError):
    default_code = "CHUNK_WRITE_FAILED"
    default_stage = "chunks.replace"
