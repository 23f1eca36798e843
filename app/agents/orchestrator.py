# =============================================================================
# LangGraph Orchestrator — Query Graph Assembly
# =============================================================================
#
# GRAPH TOPOLOGY:
#
#   START ──▶ classify ──▶ retrieve ──▶ assemble ──┬──▶ generate ──▶ cite ──▶ END
#                                                  │
#                                                  └──▶ fallback ──────────▶ END
#                                                  (zero blocks selected)
#
# The fallback branch skips the model call and citation signing entirely:
# with no context there is nothing to ground on and nothing to cite.
# Hedge detection on a real model answer happens inside generate, and
# citations are still resolved in that case.
#
# Plain TypedDict state, nodes return partial updates, graph compiled once
# at import and reused across requests.
#
# Collaborators (chunk store, storage, LLM, embed fn, document lookup)
# travel in state as a QueryServices value so tests can inject fakes per
# call. Not JSON-serialisable; fine as long as no checkpointer is set.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.analyst import GeneratedAnswer, build_fallback_answer, generate_answer
from app.agents.citations import ResolvedCitation, resolve_citations
from app.agents.context import AssembledContext, assemble_context
from app.agents.intent import Intent, classify, expand_query, retrieval_k
from app.agents.search import MetaLookup, retrieve
from app.config import FallbackContact, fallback_contact
from app.db.repositories import fetch_document_meta
from app.logging_config import PipelineLogger
from app.services.embedder import embed_query
from app.services.llm import LLMProvider, get_llm_provider
from app.services.storage import ObjectStorage, SupabaseObjectStorage
from app.services.vectorstore import RetrievalHit, VectorStore, get_vector_store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass
class QueryServices:
    """
    External collaborators of the query graph. Anything left as None is
    resolved to the process-wide default on first use.
    """

    vector_store: VectorStore | None = None
    storage: ObjectStorage | None = None
    llm: LLMProvider | None = None
    embed: Callable[[str], list[float]] = embed_query
    lookup: MetaLookup = fetch_document_meta
    contact: FallbackContact = field(default_factory=lambda: fallback_contact)

    def get_vector_store(self) -> VectorStore:
        if self.vector_store is None:
            self.vector_store = get_vector_store()
        return self.vector_store

    def get_storage(self) -> ObjectStorage:
        if self.storage is None:
            self.storage = SupabaseObjectStorage()
        return self.storage

    def get_llm(self) -> LLMProvider:
        return self.llm or get_llm_provider()


# ---------------------------------------------------------------------------
# Agent State Schema
# ---------------------------------------------------------------------------


class AgentState(TypedDict, total=False):
    """State flowing through the query graph. Nodes return partial updates."""

    # --- Input (set by caller) ---
    question: str
    requested_k: int | None
    services: QueryServices
    plog: PipelineLogger

    # --- Intermediate (set by nodes) ---
    intent: Intent
    query_text: str
    k: int
    hits: list[RetrievalHit]
    assembled: AssembledContext
    generated: GeneratedAnswer

    # --- Output ---
    answer: str
    citations: list[ResolvedCitation]
    fallback_used: bool
    model: str


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def classify_node(state: AgentState) -> dict:
    question = state["question"]
    intent = classify(question)
    k = retrieval_k(intent, state.get("requested_k"))
    state["plog"].stage("intent", "classified", {"intent": intent.value, "k": k})
    return {
        "intent": intent,
        "query_text": expand_query(question, intent),
        "k": k,
    }


async def retrieve_node(state: AgentState) -> dict:
    services = state["services"]
    hits = await retrieve(
        state["query_text"],
        state["k"],
        vector_store=services.get_vector_store(),
        embed=services.embed,
        lookup=services.lookup,
        log=state["plog"],
    )
    return {"hits": hits}


async def assemble_node(state: AgentState) -> dict:
    return {"assembled": assemble_context(state.get("hits", []), log=state["plog"])}


def route_after_assemble(state: AgentState) -> str:
    """Zero selected blocks → fallback; otherwise generate."""
    return "generate" if state["assembled"].selected else "fallback"


async def generate_node(state: AgentState) -> dict:
    services = state["services"]
    generated = await generate_answer(
        question=state["question"],
        context=state["assembled"].context,
        intent=state["intent"],
        llm=services.get_llm(),
        contact=services.contact,
        log=state["plog"],
    )
    return {
        "generated": generated,
        "answer": generated.answer,
        "fallback_used": generated.fallback_used,
        "model": generated.model,
    }


async def cite_node(state: AgentState) -> dict:
    citations = await resolve_citations(
        state["assembled"].selected,
        state["services"].get_storage(),
        log=state["plog"],
    )
    return {"citations": citations}


async def fallback_node(state: AgentState) -> dict:
    state["plog"].stage("response", "friendly-fallback-empty-context")
    return {
        "answer": build_fallback_answer(state["question"], state["services"].contact),
        "citations": [],
        "fallback_used": True,
        "model": "fallback",
    }


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(AgentState)
_builder.add_node("classify", classify_node)
_builder.add_node("retrieve", retrieve_node)
_builder.add_node("assemble", assemble_node)
_builder.add_node("generate", generate_node)
_builder.add_node("cite", cite_node)
_builder.add_node("fallback", fallback_node)

_builder.add_edge(START, "classify")
_builder.add_edge("classify", "retrieve")
_builder.add_edge("retrieve", "assemble")
_builder.add_conditional_edges(
    "assemble",
    route_after_assemble,
    {"generate": "generate", "fallback": "fallback"},
)
_builder.add_edge("generate", "cite")
_builder.add_edge("cite", END)
_builder.add_edge("fallback", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def ask(
    question: str,
    k: int | None = None,
    services: QueryServices | None = None,
    rid: str | None = None,
) -> AgentState:
    """
    Answer one question through the query graph.

    Args:
        question: The user's question.
        k: Optional result-count hint (capped at rag_max_matches).
        services: Optional collaborator overrides.
        rid: Request correlation id; generated when absent.

    Returns:
        The final AgentState: answer, citations, intent, fallback_used.
    """
    plog = PipelineLogger(logger, "ask", rid)
    plog.stage("question", "received", {"question": question, "k": k})

    result = await graph.ainvoke({
        "question": question,
        "requested_k": k,
        "services": services or QueryServices(),
        "plog": plog,
    })

    plog.stage("response", "success", {
        "answerLen": len(result.get("answer", "")),
        "citations": len(result.get("citations", [])),
        "files": [c.filename for c in result.get("citations", []) if c.filename],
        "intent": result["intent"].value,
        "fallback": result.get("fallback_used", False),
    })
    return result
