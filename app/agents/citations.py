# =============================================================================
# Citation Resolver — One Citation per Document, with Signed Links
# =============================================================================
#
# One candidate per selected context block, then deduplicated by document
# id keeping the first (best-ranked) occurrence. Each survivor with an
# object key gets a signed URL (rag signed-URL TTL, default 600s).
#
# Signing runs concurrently across documents (asyncio.gather over
# to_thread, since the storage client is sync). A signing failure keeps the
# citation with url=None: "source identified but not currently linkable".
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from app.agents.context import SelectedHit
from app.config import settings
from app.errors import PipelineError
from app.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class ResolvedCitation:
    ref: str
    document_id: int
    filename: str | None
    page_or_sheet: str | None
    section_path: str | None
    url: str | None = None
    object_key: str | None = None


def dedupe_by_document(selected: Sequence[SelectedHit]) -> list[ResolvedCitation]:
    """Build citation candidates in rank order, first per document wins."""
    seen: set[int] = set()
    citations: list[ResolvedCitation] = []
    for s in selected:
        doc_id = s.hit.document_id
        if doc_id is None or doc_id in seen:
            continue
        seen.add(doc_id)
        citations.append(ResolvedCitation(
            ref=s.ref,
            document_id=doc_id,
            filename=s.hit.filename,
            page_or_sheet=s.hit.page_or_sheet,
            section_path=s.hit.section_path,
            object_key=s.hit.object_key,
        ))
    return citations


async def _sign(
    citation: ResolvedCitation,
    storage: ObjectStorage,
    ttl: int,
    log: Any,
) -> None:
    if not citation.object_key:
        return
    try:
        citation.url = await asyncio.to_thread(
            storage.create_signed_url, citation.object_key, ttl,
        )
    except PipelineError as exc:
        log.warning(
            "sign.error object_key=%s code=%s: %s",
            citation.object_key, exc.code, exc.message,
        )
        citation.url = None


async def resolve_citations(
    selected: Sequence[SelectedHit],
    storage: ObjectStorage,
    ttl_seconds: int | None = None,
    log: Any = logger,
) -> list[ResolvedCitation]:
    """Deduplicate and sign; never drops a citation for a signing failure."""
    citations = dedupe_by_document(selected)
    ttl = ttl_seconds or settings.signed_url_ttl_secs
    await asyncio.gather(*(_sign(c, storage, ttl, log) for c in citations))
    log.info(
        "citations.resolved count=%d linked=%d",
        len(citations), sum(1 for c in citations if c.url),
    )
    return citations
