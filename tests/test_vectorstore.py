# =============================================================================
# Unit Tests — Chunk Store (ChromaDB backend)
# =============================================================================
#
# Tests replace / count / search on ChromaDB's in-process mode (no external
# services needed). pgvector tests are skipped here — they require a running
# PostgreSQL instance.
# =============================================================================

import asyncio
import uuid

import pytest

from app.errors import StorageWriteError
from app.services.chunker import ChunkResult
from app.services.vectorstore import ChromaVectorStore, RetrievalHit


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _chunks(contents, locator="Page 1", section=None):
    return [
        ChunkResult(
            content=text,
            chunk_index=i,
            token_count=len(text) // 4 + 1,
            page_or_sheet=locator,
            section_path=section,
        )
        for i, text in enumerate(contents)
    ]


class TestChromaVectorStore:
    """Tests for ChromaVectorStore (in-process mode)."""

    def _make_store(self) -> ChromaVectorStore:
        """Fresh store on a unique collection so tests never share state."""
        return ChromaVectorStore(collection_name=f"test_chunks_{uuid.uuid4().hex}")

    def test_replace_inserts_and_counts(self):
        store = self._make_store()
        written = store.replace_document_chunks(
            1, _chunks(["Hello world", "Goodbye world"]), [[0.1] * 3, [0.2] * 3],
        )
        assert written == 2
        assert store.count_document_chunks(1) == 2

    def test_replace_discards_previous_set(self):
        store = self._make_store()
        store.replace_document_chunks(
            1, _chunks(["a", "b", "c"]), [[0.1] * 3, [0.2] * 3, [0.3] * 3],
        )
        store.replace_document_chunks(1, _chunks(["only"]), [[0.4] * 3])

        assert store.count_document_chunks(1) == 1
        hits = _run(store.search([0.4] * 3, top_k=1))
        assert hits[0].content == "only"

    def test_replace_leaves_other_documents_alone(self):
        store = self._make_store()
        store.replace_document_chunks(1, _chunks(["one"]), [[1.0, 0.0, 0.0]])
        store.replace_document_chunks(2, _chunks(["two"]), [[0.0, 1.0, 0.0]])
        store.replace_document_chunks(1, _chunks(["uno"]), [[1.0, 0.0, 0.0]])

        assert store.count_document_chunks(1) == 1
        assert store.count_document_chunks(2) == 1

    def test_batched_insert(self):
        store = self._make_store()
        contents = [f"chunk {i}" for i in range(5)]
        store.replace_document_chunks(
            7, _chunks(contents), [[float(i), 1.0, 0.0] for i in range(5)], batch_size=2,
        )
        assert store.count_document_chunks(7) == 5

    def test_misaligned_embeddings_rejected(self):
        store = self._make_store()
        with pytest.raises(StorageWriteError) as exc_info:
            store.replace_document_chunks(1, _chunks(["a", "b"]), [[0.1] * 3])
        assert exc_info.value.code == "EMBED_COUNT_MISMATCH"
        assert store.count_document_chunks(1) == 0

    def test_search_ranks_by_similarity(self):
        store = self._make_store()
        store.replace_document_chunks(
            1,
            _chunks(["We run audits", "We bake bread"], section="Services"),
            [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]],
        )

        hits = _run(store.search(query_embedding=[1.0, 0.0, 0.0], top_k=2))

        assert len(hits) == 2
        assert all(isinstance(h, RetrievalHit) for h in hits)
        assert hits[0].content == "We run audits"
        assert hits[0].similarity_score >= hits[1].similarity_score
        assert hits[0].document_id == 1
        assert hits[0].page_or_sheet == "Page 1"
        assert hits[0].section_path == "Services"

    def test_missing_locators_read_back_as_none(self):
        store = self._make_store()
        store.replace_document_chunks(3, _chunks(["x"], locator=None), [[0.5] * 3])
        hit = _run(store.search([0.5] * 3, top_k=1))[0]
        assert hit.page_or_sheet is None
        assert hit.section_path is None

    def test_search_empty_collection(self):
        store = self._make_store()
        assert _run(store.search([0.1] * 3, top_k=5)) == []
