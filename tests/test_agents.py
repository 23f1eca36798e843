# =============================================================================
# Unit Tests — Query Agents
# =============================================================================
#
# Tests the query-side components without API keys, databases or storage.
# Uses mock LLM providers, fake chunk stores and fake object storage.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.agents.analyst import (
    build_fallback_answer,
    build_system_prompt,
    generate_answer,
    is_hedging,
)
from app.agents.citations import dedupe_by_document, resolve_citations
from app.agents.context import (
    BLOCK_SEPARATOR,
    TRUNCATION_MARKER,
    SelectedHit,
    assemble_context,
    render_block,
)
from app.agents.intent import (
    EXPANSION_ANCHORS,
    Intent,
    classify,
    expand_query,
    retrieval_k,
)
from app.agents.search import hydrate_hits, retrieve
from app.config import FallbackContact, settings
from app.db.repositories import DocumentMeta
from app.errors import SignedUrlFailed, UpstreamServiceError
from app.services.llm import LLMResponse
from app.services.vectorstore import RetrievalHit

CONTACT = FallbackContact(support_email="team@example.org", cal_url="https://cal.test/x")


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _hit(i: int, document_id: int = 1, content: str = "body", **kw) -> RetrievalHit:
    return RetrievalHit(
        chunk_id=i,
        document_id=document_id,
        content=content,
        similarity_score=1.0 - i / 100,
        **kw,
    )


def _llm(content: str, model: str = "gpt-test") -> AsyncMock:
    llm = AsyncMock()
    llm.complete.return_value = LLMResponse(
        content=content, model=model, input_tokens=120, output_tokens=30,
    )
    return llm


# ---------------------------------------------------------------------------
# Test: Intent Classification
# ---------------------------------------------------------------------------


class TestClassify:
    """Tests for rule-based intent classification."""

    def test_specific_is_default(self):
        assert classify("What is the refund window for the audit package?") is Intent.SPECIFIC

    def test_about_you(self):
        assert classify("Tell me about you") is Intent.GENERAL

    def test_about_yourself(self):
        assert classify("Tell me about yourself") is Intent.GENERAL
        assert classify("tell me about your self") is Intent.GENERAL
        assert classify("Tell me about yourselves") is Intent.GENERAL

    def test_about_you_needs_word_boundary(self):
        assert classify("Tell me about youth sports sponsorship terms") is Intent.SPECIFIC

    def test_who_are_you(self):
        assert classify("Who are you?") is Intent.GENERAL

    def test_background(self):
        assert classify("What's your background in retail?") is Intent.GENERAL

    def test_best_practices(self):
        assert classify("best practices for vendor onboarding") is Intent.GENERAL

    def test_short_advice_question(self):
        assert classify("Any advice on a pricing strategy?") is Intent.GENERAL

    def test_long_advice_question_is_specific(self):
        question = "advice" + " on clause twelve" * 10
        assert len(question) >= 140
        assert classify(question) is Intent.SPECIFIC

    def test_short_help_request(self):
        assert classify("need help") is Intent.GENERAL

    def test_long_help_request_is_specific(self):
        assert classify("help me find the invoice total for March") is Intent.SPECIFIC

    def test_empty_question(self):
        assert classify("") is Intent.SPECIFIC


class TestQueryExpansion:
    def test_general_gets_anchors(self):
        assert expand_query("who are you", Intent.GENERAL) == f"who are you — {EXPANSION_ANCHORS}"

    def test_specific_unchanged(self):
        assert expand_query("invoice total", Intent.SPECIFIC) == "invoice total"


class TestRetrievalK:
    def test_specific_defaults_to_max_matches(self):
        assert retrieval_k(Intent.SPECIFIC) == settings.rag_max_matches

    def test_specific_hint_capped(self):
        assert retrieval_k(Intent.SPECIFIC, 2) == 2
        assert retrieval_k(Intent.SPECIFIC, 50) == settings.rag_max_matches

    def test_general_widens(self):
        with patch.object(settings, "rag_max_matches", 6), \
             patch.object(settings, "rag_general_k", 10):
            assert retrieval_k(Intent.GENERAL) == 10
            assert retrieval_k(Intent.GENERAL, 3) == 10

    def test_general_never_beyond_ceiling(self):
        with patch.object(settings, "rag_general_k", 30), \
             patch.object(settings, "rag_general_k_ceiling", 20):
            assert retrieval_k(Intent.GENERAL) == 20


# ---------------------------------------------------------------------------
# Test: Context Assembly
# ---------------------------------------------------------------------------


class TestRenderBlock:
    def test_label_locator_and_section(self):
        hit = _hit(0, page_or_sheet="Page 2", section_path="Services > Audit")
        assert render_block(2, hit, "text") == "[#3] (Page 2) Services > Audit\ntext"

    def test_missing_locator(self):
        assert render_block(0, _hit(0), "text") == "[#1] (n/a) \ntext"


class TestAssembleContext:
    def test_stops_at_first_overflow(self):
        # each block: 15-char header + 400 chars = 104 tokens
        hits = [_hit(i, content="a" * 400, page_or_sheet="Page 1") for i in range(3)]
        hits.append(_hit(3, content="tiny", page_or_sheet="Page 1"))

        result = assemble_context(hits, max_chars_per_chunk=1800, max_context_tokens=250)

        assert [s.index for s in result.selected] == [0, 1]
        assert result.used_tokens == 208

    def test_empty_content_skipped_keeps_rank_label(self):
        hits = [_hit(0, content=""), _hit(1, content="kept")]
        result = assemble_context(hits, max_chars_per_chunk=100, max_context_tokens=100)
        assert [s.ref for s in result.selected] == ["#2"]
        assert result.context.startswith("[#2]")

    def test_truncates_long_content(self):
        result = assemble_context(
            [_hit(0, content="b" * 100), _hit(1, content="short")],
            max_chars_per_chunk=50,
            max_context_tokens=1000,
        )
        assert result.truncated_count == 1
        assert result.selected[0].block.endswith("b" * 50 + TRUNCATION_MARKER)

    def test_blocks_joined_with_separator(self):
        result = assemble_context(
            [_hit(0, content="one"), _hit(1, content="two")],
            max_chars_per_chunk=100,
            max_context_tokens=1000,
        )
        assert result.context == BLOCK_SEPARATOR.join(s.block for s in result.selected)
        assert len(result.selected) == 2

    def test_no_hits(self):
        result = assemble_context([], max_chars_per_chunk=100, max_context_tokens=100)
        assert result.selected == []
        assert result.context == ""


# ---------------------------------------------------------------------------
# Test: Answer Generation
# ---------------------------------------------------------------------------


class TestHedging:
    def test_hedges_detected(self):
        assert is_hedging("I don't know.")
        assert is_hedging("I'm not sure about that")
        assert is_hedging("There is insufficient detail here.")
        assert is_hedging("No information was provided.")
        assert is_hedging("   ")
        assert is_hedging(None)

    def test_curly_apostrophe_hedges_detected(self):
        assert is_hedging("I don’t know the answer based on the documents.")
        assert is_hedging("I can’t tell from the provided context.")

    def test_grounded_answer_passes(self):
        assert not is_hedging("We offer quarterly audits [#1].")


class TestPrompts:
    def test_fallback_carries_contact(self):
        text = build_fallback_answer("pricing?", CONTACT)
        assert "“pricing?”" in text
        assert "team@example.org" in text
        assert "https://cal.test/x" in text

    def test_system_prompt_rules(self):
        prompt = build_system_prompt(Intent.SPECIFIC, CONTACT)
        assert "[#index]" in prompt
        assert "Never invent credentials" in prompt
        assert "team@example.org" in prompt
        assert "this practice" not in prompt

    def test_general_prompt_adds_persona(self):
        prompt = build_system_prompt(Intent.GENERAL, CONTACT)
        assert "'we'/'this practice'" in prompt


class TestGenerateAnswer:
    def test_empty_context_skips_model(self):
        llm = _llm("unused")
        result = _run(generate_answer("q", "  ", Intent.SPECIFIC, llm, CONTACT))
        assert result.fallback_used is True
        assert result.model == "fallback"
        llm.complete.assert_not_called()

    def test_grounded_answer_returned(self):
        llm = _llm("Audits take two weeks [#1].")
        result = _run(generate_answer(
            "How long?", "[#1] (Page 1) \nTwo weeks.", Intent.SPECIFIC, llm, CONTACT,
        ))
        assert result.answer == "Audits take two weeks [#1]."
        assert result.fallback_used is False
        assert result.input_tokens == 120

        kwargs = llm.complete.call_args.kwargs
        assert kwargs["prompt"].startswith("Question: How long?\n\nContext:\n")
        assert "[#index]" in kwargs["system"]

    def test_hedge_replaced_by_fallback(self):
        llm = _llm("I don't know based on this.")
        result = _run(generate_answer("pricing?", "ctx", Intent.SPECIFIC, llm, CONTACT))
        assert result.fallback_used is True
        assert result.model == "gpt-test"
        assert "team@example.org" in result.answer

    def test_provider_error_wrapped(self):
        llm = AsyncMock()
        llm.complete.side_effect = RuntimeError("gateway down")
        with pytest.raises(UpstreamServiceError) as exc_info:
            _run(generate_answer("q", "ctx", Intent.SPECIFIC, llm, CONTACT))
        assert exc_info.value.code == "LLM_FAILED"
        assert exc_info.value.stage == "llm.call"


# ---------------------------------------------------------------------------
# Test: Citations
# ---------------------------------------------------------------------------


class FakeStorage:
    def __init__(self) -> None:
        self.signed: list[tuple[str, int]] = []

    def create_signed_url(self, key: str, ttl_seconds: int) -> str:
        if key.startswith("bad/"):
            raise SignedUrlFailed(f"cannot sign {key}")
        self.signed.append((key, ttl_seconds))
        return f"https://signed.test/{key}?token=abc"


def _selected(index: int, document_id: int, object_key: str | None = None) -> SelectedHit:
    hit = _hit(
        index, document_id=document_id, page_or_sheet=f"Page {index + 1}",
        filename=f"doc{document_id}.pdf", object_key=object_key,
    )
    return SelectedHit(index=index, hit=hit, block="", block_tokens=0)


class TestCitations:
    def test_first_occurrence_per_document_wins(self):
        citations = dedupe_by_document([
            _selected(0, 1), _selected(1, 2), _selected(2, 1),
        ])
        assert [(c.ref, c.document_id) for c in citations] == [("#1", 1), ("#2", 2)]
        assert citations[0].page_or_sheet == "Page 1"

    def test_signed_with_ttl(self):
        storage = FakeStorage()
        citations = _run(resolve_citations(
            [_selected(0, 1, "docs/a.pdf")], storage, ttl_seconds=600,
        ))
        assert citations[0].url == "https://signed.test/docs/a.pdf?token=abc"
        assert storage.signed == [("docs/a.pdf", 600)]

    def test_signing_failure_keeps_citation(self):
        citations = _run(resolve_citations(
            [_selected(0, 1, "bad/a.pdf"), _selected(1, 2, "docs/b.pdf")],
            FakeStorage(),
        ))
        assert len(citations) == 2
        assert citations[0].url is None
        assert citations[1].url is not None

    def test_no_object_key_not_signed(self):
        storage = FakeStorage()
        citations = _run(resolve_citations([_selected(0, 1)], storage))
        assert citations[0].url is None
        assert storage.signed == []


# ---------------------------------------------------------------------------
# Test: Retrieval
# ---------------------------------------------------------------------------


class FakeStore:
    def __init__(self, hits=None, error: Exception | None = None) -> None:
        self.hits = hits or []
        self.error = error
        self.calls: list[int] = []

    async def search(self, query_embedding, top_k):
        self.calls.append(top_k)
        if self.error:
            raise self.error
        return list(self.hits)


async def _lookup(ids):
    return {1: DocumentMeta(filename="a.pdf", object_key="docs/a.pdf")}


class TestRetrieve:
    def test_hydrates_filenames(self):
        hits = _run(hydrate_hits([_hit(0, document_id=1), _hit(1, document_id=9)], _lookup))
        assert hits[0].filename == "a.pdf"
        assert hits[0].object_key == "docs/a.pdf"
        assert hits[1].filename is None

    def test_hydration_failure_tolerated(self):
        async def broken(ids):
            raise OperationalError("SELECT", {}, Exception("db down"))

        hits = _run(hydrate_hits([_hit(0)], broken))
        assert hits[0].filename is None

    def test_connection_error_tolerated(self):
        async def refused(ids):
            raise ConnectionRefusedError("connect call failed")

        hits = _run(hydrate_hits([_hit(0)], refused))
        assert hits[0].filename is None
        assert hits[0].object_key is None

    def test_retrieve_caps_to_k(self):
        store = FakeStore(hits=[_hit(i) for i in range(5)])
        hits = _run(retrieve(
            "q", 3, store, embed=lambda text: [0.1, 0.2], lookup=_lookup,
        ))
        assert len(hits) == 3
        assert store.calls == [3]

    def test_search_failure_wrapped(self):
        store = FakeStore(error=RuntimeError("connection reset"))
        with pytest.raises(UpstreamServiceError) as exc_info:
            _run(retrieve("q", 3, store, embed=lambda text: [0.1], lookup=_lookup))
        assert exc_info.value.code == "VECTOR_SEARCH_FAILED"
        assert exc_info.value.stage == "retrieve"
