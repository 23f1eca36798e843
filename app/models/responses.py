# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Serialised with camelCase aliases (response_model_by_alias is FastAPI's
# default), matching what the web front end consumes.
# =============================================================================

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """GET /health — liveness probe."""

    status: str = "healthy"
    version: str
    service: str


class Citation(_CamelModel):
    """
    One cited source. At most one per document per answer.

    `url` is a short-lived signed link, or null when the source could not
    be signed.
    """

    ref: str = Field(..., description="Context block label, e.g. '#2'")
    document_id: int = Field(..., alias="documentId")
    filename: str | None = None
    page_or_sheet: str | None = Field(default=None, alias="pageOrSheet")
    section_path: str | None = Field(default=None, alias="sectionPath")
    url: str | None = None


class AskResponse(_CamelModel):
    """POST /ask."""

    answer: str
    citations: list[Citation] = Field(default_factory=list)
    intent: Literal["general", "specific"]
    general_intent: bool = Field(..., alias="generalIntent")


class IndexResponse(BaseModel):
    """POST /index-now."""

    ok: bool = True
    rid: str
    chunks: int


class RegisterResponse(_CamelModel):
    """POST /register-file."""

    ok: bool = True
    rid: str
    document_id: int = Field(..., alias="documentId")
    task_id: str = Field(..., alias="taskId")
    changed: bool


class IndexStatusResponse(_CamelModel):
    """GET /index/{task_id} — Celery task state for a dispatched ingestion."""

    task_id: str = Field(..., alias="taskId")
    state: str = Field(..., description="PENDING, STARTED, RETRY, SUCCESS, FAILURE")
    result: dict[str, Any] | None = None
    error: str | None = None


class ErrorResponse(BaseModel):
    """Stage-tagged error envelope returned by every failing endpoint."""

    ok: Literal[False] = False
    rid: str
    stage: str
    code: str
    message: str
    details: Any = None
