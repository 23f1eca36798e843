# =============================================================================
# Ingestion Pipeline — One Document, Parse → Chunk → Embed → Store
# =============================================================================
#
# STATE MACHINE (documents.status):
#   pending ──▶ parsing ──▶ ready
#                  │
#                  └──▶ failed   (error_message = "<stage>:<code>: <message>")
#
# STEPS:
#   1. db.fetch          document row must exist and carry an object key
#   2. status            → parsing
#   3. storage.download  raw bytes from the RAG bucket
#   4. parse             format dispatch (PDF job / DOCX / XLSX / CSV)
#   5. chunk             heading-aware split + hard character ceiling
#   6. embed             one batched call for all chunks, all-or-nothing
#   7. chunks.replace    delete prior chunk set, batched insert of the new one
#   8. status            → ready, last_indexed_at = now
#
# Synchronous end to end: the PDF poll blocks, and the sync SQLAlchemy
# engine is used throughout. Runs in a Celery worker or, for /index-now,
# in a worker thread off the event loop.
#
# Concurrent runs for the SAME document are not coordinated here; callers
# serialise per document id.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from app.config import settings
from app.db.models import DocumentStatus
from app.db.repositories import DocumentRepository
from app.errors import (
    DocNotFound,
    EmbedServiceError,
    MissingObjectKey,
    NoChunks,
    PipelineError,
)
from app.logging_config import PipelineLogger
from app.services.chunker import chunk_units
from app.services.embedder import embed_batch
from app.services.parser import LlamaParseClient, parse_document
from app.services.storage import ObjectStorage, SupabaseObjectStorage
from app.services.vectorstore import VectorStore, get_vector_store

logger = logging.getLogger(__name__)

_ERROR_MESSAGE_CHARS = 1000


@dataclass
class IngestionResult:
    """Outcome of a successful run."""

    document_id: int
    chunks: int
    rid: str


def _failure_message(exc: Exception) -> str:
    if isinstance(exc, PipelineError):
        text = f"{exc.stage}:{exc.code}: {exc.message}"
    else:
        text = f"unhandled:UNCAUGHT: {exc}"
    return text[:_ERROR_MESSAGE_CHARS]


def index_document(
    document_id: int,
    *,
    rid: str | None = None,
    repo: DocumentRepository | None = None,
    storage: ObjectStorage | None = None,
    vector_store: VectorStore | None = None,
    embed: Callable[..., list[list[float]]] = embed_batch,
    pdf_client: LlamaParseClient | None = None,
    http_client: httpx.Client | None = None,
) -> IngestionResult:
    """
    Index (or re-index) one document.

    Every collaborator is injectable; production callers pass none of them.

    Raises:
        PipelineError: stage-tagged failure. Except for DocNotFound, the
            document is left in status `failed` with the error recorded.
    """
    plog = PipelineLogger(logger, "index-now", rid)
    repo = repo or DocumentRepository()
    storage = storage or SupabaseObjectStorage()
    vector_store = vector_store or get_vector_store()

    # --- Step 1: Load document row ---
    plog.stage("db.fetch", "Fetching document", {"documentId": document_id})
    doc = repo.get(document_id)
    if doc is None:
        raise DocNotFound(f"Document {document_id} not found")

    try:
        if not doc.object_key:
            raise MissingObjectKey("Document has no object_key")

        # --- Step 2: Mark as PARSING ---
        repo.set_status(document_id, DocumentStatus.PARSING)
        plog.stage("status", "parsing", {"filename": doc.filename, "type": doc.file_type})

        # --- Step 3: Download bytes ---
        data = storage.download(doc.object_key)
        plog.stage("storage.download", "Downloaded bytes", {"size": len(data)})

        # --- Step 4: Parse ---
        def sign_url() -> str:
            plog.stage("sign", "Signing URL for conversion", {"key": doc.object_key})
            return storage.create_signed_url(
                doc.object_key, settings.parse_signed_url_ttl_secs,
            )

        units = parse_document(
            data,
            doc.file_type,
            doc.filename,
            sign_url=sign_url,
            pdf_client=pdf_client,
            http_client=http_client,
            log=plog,
        )
        plog.stage("parse", "Parsed units", {"units": len(units)})

        # --- Step 5: Chunk ---
        chunks = chunk_units(units, log=plog)
        if not chunks:
            raise NoChunks("No chunks generated from parsed text")

        # --- Step 6: Embed ---
        texts: Sequence[str] = [c.content for c in chunks]
        vectors = embed(texts, log=plog)
        if len(vectors) != len(chunks):
            raise EmbedServiceError(
                f"vectors={len(vectors)} chunks={len(chunks)}",
                code="EMBED_COUNT_MISMATCH",
            )

        # --- Step 7: Replace chunk set ---
        plog.stage(
            "chunks.replace", "Replacing chunks",
            {"total": len(chunks), "batch": settings.chunk_insert_batch},
        )
        vector_store.replace_document_chunks(document_id, chunks, vectors)

        # --- Step 8: Mark as READY ---
        repo.set_status(
            document_id,
            DocumentStatus.READY,
            last_indexed_at=datetime.now(timezone.utc),
        )
    except Exception as exc:
        plog.stage(
            getattr(exc, "stage", "unhandled"),
            "Ingestion failed",
            {"code": getattr(exc, "code", "UNCAUGHT"), "message": str(exc)},
            level=logging.ERROR,
        )
        repo.set_status(
            document_id,
            DocumentStatus.FAILED,
            error_message=_failure_message(exc),
        )
        raise

    plog.stage("done", "Index complete", {"chunks": len(chunks)})
    return IngestionResult(document_id=document_id, chunks=len(chunks), rid=plog.rid)
