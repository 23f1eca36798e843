# =============================================================================
# Retriever — Embed, Search, Hydrate
# =============================================================================
#
#   1. EMBED     the (possibly expanded) query text, off the event loop
#   2. SEARCH    top-k chunks from the configured chunk store
#   3. HYDRATE   one batched documents lookup for the distinct document ids,
#                filling filename / object_key on each hit
#
# A failed hydration lookup is logged and the hits are returned without
# filenames; citations then carry no link. A failed search is fatal.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from app.db.repositories import DocumentMeta, fetch_document_meta
from app.errors import PipelineError, UpstreamServiceError
from app.services.embedder import embed_query
from app.services.vectorstore import RetrievalHit, VectorStore

logger = logging.getLogger(__name__)

MetaLookup = Callable[[Iterable[int]], Awaitable[dict[int, DocumentMeta]]]


async def hydrate_hits(
    hits: list[RetrievalHit],
    lookup: MetaLookup = fetch_document_meta,
    log: Any = logger,
) -> list[RetrievalHit]:
    """Fill filename and object_key on each hit from one batched lookup."""
    ids = {h.document_id for h in hits if h.document_id is not None}
    if not ids:
        return hits

    try:
        meta = await lookup(ids)
    except (SQLAlchemyError, OSError) as exc:
        log.warning("retrieve.hydrate failed, continuing without filenames: %s", exc)
        return hits

    for hit in hits:
        doc = meta.get(hit.document_id)
        if doc is not None:
            hit.filename = doc.filename
            hit.object_key = doc.object_key
    return hits


async def retrieve(
    query_text: str,
    k: int,
    vector_store: VectorStore,
    embed: Callable[[str], list[float]] = embed_query,
    lookup: MetaLookup = fetch_document_meta,
    log: Any = logger,
) -> list[RetrievalHit]:
    """
    Return up to k hydrated hits for the query text, best first.

    Raises:
        EmbedServiceError: query embedding failed.
        UpstreamServiceError: the chunk store search failed.
    """
    query_vector = await asyncio.to_thread(embed, query_text)
    log.info("embed.done dims=%d", len(query_vector))

    try:
        hits = await vector_store.search(query_vector, top_k=k)
    except PipelineError:
        raise
    except Exception as exc:
        raise UpstreamServiceError(
            f"Similarity search failed: {exc}",
            code="VECTOR_SEARCH_FAILED",
            stage="retrieve",
        ) from exc

    hits = await hydrate_hits(list(hits)[:k], lookup=lookup, log=log)
    for i, hit in enumerate(hits, 1):
        log.debug(
            "retrieve.hit #%d score=%.4f document_id=%s filename=%s",
            i, hit.similarity_score, hit.document_id, hit.filename,
        )
    log.info("retrieve.done k=%d hits=%d", k, len(hits))
    return hits
