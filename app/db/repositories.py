# =============================================================================
# Document Repository — Metadata Store Access
# =============================================================================
#
# Two access paths:
#   - DocumentRepository (sync): used by the ingestion pipeline and by
#     registration. Returns plain DocumentRecord snapshots,
#     never ORM objects bound to a closed session.
#   - fetch_document_meta (async): the batched lookup the query pipeline
#     uses to hydrate retrieval hits with filename and object key.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.db.engine import async_session_factory, get_sync_session
from app.db.models import Document, DocumentStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class DocumentRecord:
    """Detached snapshot of a documents row."""

    id: int
    title: str
    filename: str
    file_type: str
    object_key: str | None
    content_hash: str | None
    status: DocumentStatus
    source_url: str | None = None
    error_message: str | None = None
    last_indexed_at: datetime | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class DocumentMeta:
    """The two fields a retrieval hit needs for citation."""

    filename: str | None
    object_key: str | None


def _to_record(doc: Document) -> DocumentRecord:
    return DocumentRecord(
        id=doc.id,
        title=doc.title,
        filename=doc.filename,
        file_type=doc.file_type,
        object_key=doc.object_key,
        content_hash=doc.content_hash,
        status=doc.status,
        source_url=doc.source_url,
        error_message=doc.error_message,
        last_indexed_at=doc.last_indexed_at,
        metadata=doc.metadata_ or {},
    )


# ---------------------------------------------------------------------------
# Sync Repository
# ---------------------------------------------------------------------------


class DocumentRepository:
    """
    Sync access to the documents table.

    `session_scope` is any zero-argument context-manager factory yielding a
    Session that commits on exit. Defaults to get_sync_session.
    """

    def __init__(
        self,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_sync_session,
    ) -> None:
        self._session_scope = session_scope

    def get(self, document_id: int) -> DocumentRecord | None:
        with self._session_scope() as session:
            doc = session.get(Document, document_id)
            return _to_record(doc) if doc else None

    def find_by_filename_key(
        self, filename: str, object_key: str,
    ) -> DocumentRecord | None:
        with self._session_scope() as session:
            stmt = select(Document).where(
                Document.filename == filename,
                Document.object_key == object_key,
            )
            doc = session.execute(stmt).scalar_one_or_none()
            return _to_record(doc) if doc else None

    def insert(
        self,
        *,
        title: str,
        filename: str,
        file_type: str,
        source_url: str | None,
        object_key: str,
        content_hash: str,
    ) -> int:
        with self._session_scope() as session:
            doc = Document(
                title=title,
                filename=filename,
                file_type=file_type,
                source_url=source_url,
                object_key=object_key,
                content_hash=content_hash,
                status=DocumentStatus.PENDING,
                metadata_={},
            )
            session.add(doc)
            session.flush()
            return doc.id

    def reset_content_hash(self, document_id: int, content_hash: str) -> None:
        """Store a new content hash and send the document back to PENDING."""
        self._update(
            document_id,
            content_hash=content_hash,
            status=DocumentStatus.PENDING,
        )

    def set_status(
        self,
        document_id: int,
        status: DocumentStatus,
        *,
        error_message: str | None = None,
        last_indexed_at: datetime | None = None,
    ) -> None:
        values: dict = {"status": status, "error_message": error_message}
        if last_indexed_at is not None:
            values["last_indexed_at"] = last_indexed_at
        self._update(document_id, **values)

    def _update(self, document_id: int, **values) -> None:
        with self._session_scope() as session:
            session.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(**values)
            )


# ---------------------------------------------------------------------------
# Async Lookup — Query Pipeline
# ---------------------------------------------------------------------------


async def fetch_document_meta(
    document_ids: Iterable[int],
    session: AsyncSession | None = None,
) -> dict[int, DocumentMeta]:
    """
    Batched lookup of filename and object key for a set of document ids.

    Returns a dict keyed by document id; ids with no row are absent.
    """
    ids = sorted(set(document_ids))
    if not ids:
        return {}

    stmt = select(Document.id, Document.filename, Document.object_key).where(
        Document.id.in_(ids)
    )

    if session is not None:
        rows = (await session.execute(stmt)).all()
    else:
        async with async_session_factory() as own_session:
            rows = (await own_session.execute(stmt)).all()

    logger.debug("Hydrated %d/%d documents", len(rows), len(ids))
    return {
        doc_id: DocumentMeta(filename=filename, object_key=object_key)
        for doc_id, filename, object_key in rows
    }
