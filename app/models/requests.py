# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Request bodies use the camelCase keys the web front end sends
# ("documentId", "objectKey"). populate_by_name lets Python callers and
# tests use the snake_case field names as well.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class AskRequest(BaseModel):
    """
    Request body for POST /ask.

    Example:
        {"question": "What services do you offer?", "k": 4}
    """

    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="The natural-language question",
        examples=["Tell me about your audit methodology"],
    )

    # Result-count hint. Capped server-side at RAG_MAX_MATCHES; general-intent
    # questions may retrieve more than requested.
    k: int | None = Field(
        default=None,
        ge=1,
        le=50,
        description="Number of passages to retrieve (capped server-side)",
    )


class IndexRequest(BaseModel):
    """Request body for POST /index-now."""

    model_config = ConfigDict(populate_by_name=True)

    document_id: int = Field(..., alias="documentId", ge=1)


class RegisterRequest(BaseModel):
    """Request body for POST /register-file."""

    model_config = ConfigDict(populate_by_name=True)

    object_key: str = Field(
        ...,
        alias="objectKey",
        min_length=1,
        description="Object key inside the RAG storage bucket",
        examples=["decks/2024/overview.pdf"],
    )
