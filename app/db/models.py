# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌─────────────────────┐       ┌──────────────────────────────────┐
# │  documents          │       │  chunks                          │
# ├─────────────────────┤       ├──────────────────────────────────┤
# │ id (PK)             │──1:N─▶│ id (PK)                          │
# │ title               │       │ document_id (FK → documents.id)  │
# │ filename            │       │ content (text)                   │
# │ file_type           │       │ page_or_sheet (text)             │
# │ source_url          │       │ section_path (text)              │
# │ object_key          │       │ chunk_index (int)                │
# │ content_hash        │       │ token_count (int)                │
# │ status              │       │ embedding (vector(1536))         │
# │ error_message       │       │ created_at                       │
# │ last_indexed_at     │       └──────────────────────────────────┘
# │ metadata_ (jsonb)   │
# │ created_at          │
# │ updated_at          │
# └─────────────────────┘
#
# (filename, object_key) is unique: re-registering the same storage object
# resolves to the same document row.
#
# A document owns its chunks. Re-indexing deletes every chunk of the
# document and inserts the new set in the same transaction.
# =============================================================================

import enum
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.config import settings


class Base(DeclarativeBase):
    pass


class _CreatedAt:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )


class DocumentStatus(str, enum.Enum):
    """
    Indexing state for a document.

        PENDING → PARSING → READY
                          → FAILED   (error_message holds stage:code: message)
        any     → PENDING            (re-registered with a changed content hash)
        FAILED  → PARSING            (re-index requested directly)
    """

    PENDING = "pending"
    PARSING = "parsing"
    READY = "ready"
    FAILED = "failed"


class Document(_CreatedAt, Base):
    """A registered storage object and its indexing state."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("filename", "object_key", name="uq_documents_filename_object_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500))  # filename minus extension
    filename: Mapped[str] = mapped_column(String(500))  # last segment of object_key
    file_type: Mapped[str] = mapped_column(String(32))  # "pdf", "docx", "xlsx", "csv"
    source_url: Mapped[str | None] = mapped_column(Text)  # public URL, informational
    object_key: Mapped[str | None] = mapped_column(String(1000))
    content_hash: Mapped[str | None] = mapped_column(String(64))  # sha256 hex
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), default=DocumentStatus.PENDING,
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    last_indexed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # `metadata` is reserved on declarative classes
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    chunks: Mapped[list["Chunk"]] = relationship(
        back_populates="document", cascade="all, delete-orphan", lazy="noload",
    )

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.filename!r} {self.status.value}>"


class Chunk(_CreatedAt, Base):
    """One bounded slice of a document's text plus its embedding."""

    __tablename__ = "chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"),
    )
    content: Mapped[str] = mapped_column(Text)
    page_or_sheet: Mapped[str | None] = mapped_column(Text)  # "Page 3", "Sheet: Budget"
    section_path: Mapped[str | None] = mapped_column(Text)  # "Services > Audit"
    chunk_index: Mapped[int] = mapped_column(Integer)
    token_count: Mapped[int] = mapped_column(Integer)  # ceil(len(content) / 4)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
    )

    document: Mapped[Document] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return f"<Chunk {self.id} doc={self.document_id} #{self.chunk_index}>"


# Cosine HNSW for similarity search; b-tree for per-document delete/count
Index(
    "idx_chunk_embedding_hnsw",
    Chunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)
Index("idx_chunk_document_id", Chunk.document_id)
