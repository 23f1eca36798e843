# =============================================================================
# Unit Tests — Query Graph
# =============================================================================
#
# Runs the compiled LangGraph end to end with every collaborator faked
# through QueryServices: chunk store, embedder, document lookup, storage
# and LLM. Exercises both branches after context assembly.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

from app.agents.context import AssembledContext
from app.agents.intent import EXPANSION_ANCHORS, Intent
from app.agents.orchestrator import QueryServices, ask, route_after_assemble
from app.config import FallbackContact, settings
from app.db.repositories import DocumentMeta
from app.services.llm import LLMResponse
from app.services.vectorstore import RetrievalHit

CONTACT = FallbackContact(support_email="team@example.org", cal_url="https://cal.test/x")


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeStore:
    def __init__(self, hits=None) -> None:
        self.hits = hits or []
        self.calls: list[int] = []

    async def search(self, query_embedding, top_k):
        self.calls.append(top_k)
        return list(self.hits)[:top_k]


class FakeStorage:
    def __init__(self) -> None:
        self.signed: list[str] = []

    def create_signed_url(self, key: str, ttl_seconds: int) -> str:
        self.signed.append(key)
        return f"https://signed.test/{key}"


async def _lookup(ids):
    return {
        1: DocumentMeta(filename="services.pdf", object_key="docs/services.pdf"),
        2: DocumentMeta(filename="pricing.xlsx", object_key="docs/pricing.xlsx"),
    }


def _hits() -> list[RetrievalHit]:
    return [
        RetrievalHit(1, 1, "We run quarterly audits.", 0.91, "Page 1", "Services"),
        RetrievalHit(2, 2, "| Audit | 100 |", 0.88, "Sheet: Pricing", None),
        RetrievalHit(3, 1, "Audits take two weeks.", 0.80, "Page 2", "Services > Audit"),
    ]


def _services(hits=None, answer: str = "We run quarterly audits [#1].", embedded=None):
    llm = AsyncMock()
    llm.complete.return_value = LLMResponse(
        content=answer, model="gpt-test", input_tokens=10, output_tokens=5,
    )

    def embed(text: str) -> list[float]:
        if embedded is not None:
            embedded.append(text)
        return [0.1, 0.2, 0.3]

    return QueryServices(
        vector_store=FakeStore(hits),
        storage=FakeStorage(),
        llm=llm,
        embed=embed,
        lookup=_lookup,
        contact=CONTACT,
    )


class TestRouting:
    def test_route_to_fallback_when_nothing_selected(self):
        assert route_after_assemble({"assembled": AssembledContext()}) == "fallback"


class TestAsk:
    def test_grounded_answer_with_deduped_citations(self):
        services = _services(_hits())
        result = _run(ask("How often do you run audits?", k=3, services=services, rid="rid-1"))

        assert result["answer"] == "We run quarterly audits [#1]."
        assert result["fallback_used"] is False
        assert result["intent"] is Intent.SPECIFIC
        assert services.vector_store.calls == [3]

        citations = result["citations"]
        assert [(c.ref, c.filename) for c in citations] == [
            ("#1", "services.pdf"), ("#2", "pricing.xlsx"),
        ]
        assert citations[0].url == "https://signed.test/docs/services.pdf"
        assert sorted(services.storage.signed) == ["docs/pricing.xlsx", "docs/services.pdf"]

    def test_no_hits_falls_back_without_model_call(self):
        services = _services([])
        result = _run(ask("What is the refund window?", services=services))

        assert result["fallback_used"] is True
        assert result["citations"] == []
        assert result["model"] == "fallback"
        assert "team@example.org" in result["answer"]
        services.llm.complete.assert_not_called()
        assert services.storage.signed == []

    def test_general_question_widens_and_expands(self):
        embedded: list[str] = []
        services = _services(_hits(), embedded=embedded)
        with patch.object(settings, "rag_general_k", 10), \
             patch.object(settings, "rag_general_k_ceiling", 20):
            result = _run(ask("Tell me about yourself", k=2, services=services))

        assert result["intent"] is Intent.GENERAL
        assert services.vector_store.calls == [10]
        assert embedded == [f"Tell me about yourself — {EXPANSION_ANCHORS}"]
        system = services.llm.complete.call_args.kwargs["system"]
        assert "'we'/'this practice'" in system

    def test_hedged_answer_replaced_but_cited(self):
        services = _services(_hits(), answer="I don't know.")
        result = _run(ask("What is the audit SLA?", services=services))

        assert result["fallback_used"] is True
        assert result["answer"].startswith("I couldn’t find a definitive answer")
        assert len(result["citations"]) == 2
