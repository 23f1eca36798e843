# =============================================================================
# Chunk Store — Pluggable Vector Backend Protocol
# =============================================================================
#
# Common interface for the chunk store, with implementations for pgvector
# (PostgreSQL) and ChromaDB.
#
# Mixed sync/async interface:
# - replace_document_chunks() / count_document_chunks() are sync → called by
#   the ingestion pipeline (worker thread or Celery worker)
# - search() is async → called by the query graph inside FastAPI
#
# REPLACEMENT SEMANTICS: a document's chunk set is swapped as a whole.
# Prior chunks are deleted and the new ones inserted in batches of
# chunk_insert_batch rows. On pgvector this is one transaction, so a failed
# insert leaves the old chunk set in place. Chroma has no transactions;
# a failed insert there leaves the document with a partial set until the
# next successful re-index.
#
# ARCHITECTURE:
#   VectorStore (Protocol)
#   ├── PgVectorStore     — PostgreSQL + pgvector extension
#   └── ChromaVectorStore — ChromaDB (in-process or client/server)
#       └── search()      — async via asyncio.to_thread() wrapper
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Protocol

import chromadb
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.db.engine import async_session_factory, get_sync_session
from app.db.models import Chunk
from app.errors import StorageWriteError
from app.services.chunker import ChunkResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class RetrievalHit:
    """
    A single result from similarity search.

    filename / object_key are empty straight out of the store and filled in
    by the retrieve step's batched document lookup.
    """

    chunk_id: int | str
    document_id: int
    content: str
    similarity_score: float  # 1 - cosine distance, higher = more relevant
    page_or_sheet: str | None = None
    section_path: str | None = None
    filename: str | None = None
    object_key: str | None = None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    """Chunk store interface shared by the pgvector and Chroma backends."""

    def replace_document_chunks(
        self,
        document_id: int,
        chunks: Sequence[ChunkResult],
        embeddings: Sequence[list[float]],
        batch_size: int | None = None,
    ) -> int:
        """Delete every chunk of the document, then insert the new set. Sync."""
        ...

    def count_document_chunks(self, document_id: int) -> int:
        ...

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 5,
    ) -> list[RetrievalHit]:
        """Top-k chunks by similarity, highest first. Async."""
        ...


def _check_aligned(chunks: Sequence[Any], embeddings: Sequence[Any]) -> None:
    if len(chunks) != len(embeddings):
        raise StorageWriteError(
            f"chunks={len(chunks)} embeddings={len(embeddings)}",
            code="EMBED_COUNT_MISMATCH",
            stage="embed",
        )


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorStore:
    """
    pgvector-backed chunk store.

    Sync session scope for writes (ingestion), async session factory for
    search (FastAPI). Both are injectable for tests.
    """

    def __init__(
        self,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_sync_session,
        async_factory: Any = None,
    ) -> None:
        self._session_scope = session_scope
        self._async_factory = async_factory or async_session_factory

    def replace_document_chunks(
        self,
        document_id: int,
        chunks: Sequence[ChunkResult],
        embeddings: Sequence[list[float]],
        batch_size: int | None = None,
    ) -> int:
        _check_aligned(chunks, embeddings)
        batch_size = batch_size or settings.chunk_insert_batch
        stage = "chunks.clear"

        try:
            with self._session_scope() as session:
                session.execute(delete(Chunk).where(Chunk.document_id == document_id))

                stage = "chunks.insert"
                for start in range(0, len(chunks), batch_size):
                    session.add_all([
                        Chunk(
                            document_id=document_id,
                            content=chunk.content,
                            page_or_sheet=chunk.page_or_sheet,
                            section_path=chunk.section_path,
                            chunk_index=chunk.chunk_index,
                            token_count=chunk.token_count,
                            embedding=embedding,
                        )
                        for chunk, embedding in zip(
                            chunks[start : start + batch_size],
                            embeddings[start : start + batch_size],
                            strict=True,
                        )
                    ])
                    session.flush()
                    logger.debug(
                        "Inserted chunk batch %d-%d for document_id=%d",
                        start, min(start + batch_size, len(chunks)), document_id,
                    )
        except SQLAlchemyError as exc:
            raise StorageWriteError(
                f"Chunk replacement failed: {exc}",
                code="DELETE_FAILED" if stage == "chunks.clear" else "INSERT_FAILED",
                stage=stage,
            ) from exc

        logger.info(
            "Replaced chunks for document_id=%d in pgvector (%d rows)",
            document_id, len(chunks),
        )
        return len(chunks)

    def count_document_chunks(self, document_id: int) -> int:
        with self._session_scope() as session:
            stmt = select(func.count(Chunk.id)).where(Chunk.document_id == document_id)
            return session.execute(stmt).scalar_one()

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 5,
    ) -> list[RetrievalHit]:
        """
        Cosine similarity search.

        cosine_distance() is in [0, 2]; similarity = 1 - distance.
        """
        distance = Chunk.embedding.cosine_distance(query_embedding)
        async with self._async_factory() as session:
            stmt = (
                select(Chunk, distance.label("distance"))
                .where(Chunk.embedding.is_not(None))
                .order_by(distance)
                .limit(top_k)
            )
            rows = (await session.execute(stmt)).all()

        logger.debug("Vector search returned %d rows (top_k=%d)", len(rows), top_k)

        return [
            RetrievalHit(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                content=chunk.content,
                similarity_score=round(1.0 - dist, 4),
                page_or_sheet=chunk.page_or_sheet,
                section_path=chunk.section_path,
            )
            for chunk, dist in rows
        ]


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed chunk store.

    One collection for all documents; per-document operations filter on
    the document_id metadata field. In-process by default, client/server
    when CHROMA_URL is set.
    """

    def __init__(
        self,
        client: Any = None,
        collection_name: str = "rag_chunks",
    ) -> None:
        if client is not None:
            self._client = client
        elif settings.chroma_url:
            self._client = chromadb.HttpClient(host=settings.chroma_url)
        else:
            self._client = chromadb.Client()

        # Cosine distance to match the pgvector HNSW index
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def replace_document_chunks(
        self,
        document_id: int,
        chunks: Sequence[ChunkResult],
        embeddings: Sequence[list[float]],
        batch_size: int | None = None,
    ) -> int:
        _check_aligned(chunks, embeddings)
        batch_size = batch_size or settings.chunk_insert_batch

        try:
            self._collection.delete(where={"document_id": document_id})
        except Exception as exc:
            raise StorageWriteError(
                f"Chunk delete failed: {exc}", code="DELETE_FAILED", stage="chunks.clear",
            ) from exc

        for start in range(0, len(chunks), batch_size):
            batch = chunks[start : start + batch_size]
            try:
                self._collection.add(
                    ids=[f"doc{document_id}_chunk{c.chunk_index}" for c in batch],
                    documents=[c.content for c in batch],
                    embeddings=[list(e) for e in embeddings[start : start + batch_size]],
                    metadatas=[_chunk_metadata(document_id, c) for c in batch],
                )
            except Exception as exc:
                raise StorageWriteError(
                    f"Chunk insert failed at {start}: {exc}",
                    code="INSERT_FAILED",
                    stage="chunks.insert",
                ) from exc

        logger.info(
            "Replaced chunks for document_id=%d in ChromaDB (%d rows)",
            document_id, len(chunks),
        )
        return len(chunks)

    def count_document_chunks(self, document_id: int) -> int:
        found = self._collection.get(where={"document_id": document_id}, include=[])
        return len(found["ids"])

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 5,
    ) -> list[RetrievalHit]:
        """Similarity search; the sync Chroma client runs in a worker thread."""

        def _sync_search() -> list[RetrievalHit]:
            if self._collection.count() == 0:
                return []

            results = self._collection.query(
                query_embeddings=[query_embedding],
                n_results=top_k,
                include=["documents", "metadatas", "distances"],
            )

            hits: list[RetrievalHit] = []
            if not results or not results["ids"] or not results["ids"][0]:
                return hits

            for i, chroma_id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i] if results["distances"] else 0.0
                metadata = results["metadatas"][0][i] if results["metadatas"] else {}
                content = results["documents"][0][i] if results["documents"] else ""
                hits.append(RetrievalHit(
                    chunk_id=chroma_id,
                    document_id=int(metadata.get("document_id", 0)),
                    content=content or "",
                    similarity_score=round(1.0 - distance, 4),
                    page_or_sheet=metadata.get("page_or_sheet") or None,
                    section_path=metadata.get("section_path") or None,
                ))
            return hits

        return await asyncio.to_thread(_sync_search)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_vector_store(
    override_type: str | None = None,
) -> PgVectorStore | ChromaVectorStore:
    """
    Return the configured chunk store backend.

    settings.vectorstore_type: "pgvector" (default) or "chroma".
    """
    store_type = override_type or settings.vectorstore_type

    if store_type == "chroma":
        logger.info("Using ChromaDB vector store")
        return ChromaVectorStore()

    logger.info("Using pgvector vector store")
    return PgVectorStore()


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _chunk_metadata(document_id: int, chunk: ChunkResult) -> dict:
    """
    Chroma metadata for one chunk.

    Chroma accepts only str/int/float/bool values, so missing locators are
    stored as "" and read back as None.
    """
    return {
        "document_id": document_id,
        "chunk_index": chunk.chunk_index,
        "token_count": chunk.token_count,
        "page_or_sheet": chunk.page_or_sheet or "",
        "section_path": chunk.section_path or "",
    }
