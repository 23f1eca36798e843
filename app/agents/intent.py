# =============================================================================
# Intent Classifier — General vs Specific Questions
# =============================================================================
#
# A pure, rule-based heuristic over the lower-cased question. "General"
# questions ask about the practice itself, its background, or for broad
# advice/overviews; everything else is "specific".
#
# General intent changes three things downstream:
#   1. retrieval width: k is raised to at least rag_general_k (capped at
#      rag_general_k_ceiling)
#   2. the embedding query gets synonym anchors appended
#   3. the answer persona may speak as "we" / "this practice"
#
# Regex over LLM: zero latency, zero cost, trivially testable.
# =============================================================================

from __future__ import annotations

import enum
import re

from app.config import settings


class Intent(str, enum.Enum):
    GENERAL = "general"
    SPECIFIC = "specific"


_ALWAYS_GENERAL = [
    re.compile(r"\b(tell me about (your\s?self|yourselves|you|this|the (tool|service|product)))\b"),
    re.compile(r"\b(who (are|r) (you|the author|the team)|what (do|does) (you|this) do)\b"),
    re.compile(r"\b(your (background|experience|credentials|expertise|bio|story))\b"),
    re.compile(
        r"\b(general(ized)?|high[- ]level|overview|best practices"
        r"|where do i start|how to get started)\b"
    ),
]
_ADVICE = re.compile(r"\b(advice|guidance|framework|roadmap|strategy|playbook)\b")
_HELP = re.compile(r"\b(help|advice|guidance|tips)\b")

_ADVICE_MAX_CHARS = 140
_SHORT_QUERY_CHARS = 24

EXPANSION_ANCHORS = (
    "overview • summary • profile • experience • services • "
    "case studies • methodology • credentials"
)


def classify(question: str) -> Intent:
    """Classify a question as GENERAL or SPECIFIC."""
    s = (question or "").lower()
    if any(p.search(s) for p in _ALWAYS_GENERAL):
        return Intent.GENERAL
    if _ADVICE.search(s) and len(s) < _ADVICE_MAX_CHARS:
        return Intent.GENERAL
    if len(s.strip()) <= _SHORT_QUERY_CHARS and _HELP.search(s):
        return Intent.GENERAL
    return Intent.SPECIFIC


def expand_query(question: str, intent: Intent) -> str:
    """The text actually embedded for retrieval."""
    if intent is Intent.GENERAL:
        return f"{question} — {EXPANSION_ANCHORS}"
    return question


def retrieval_k(intent: Intent, requested_k: int | None = None) -> int:
    """
    Number of hits to request from the chunk store.

    The caller's hint is capped at rag_max_matches. General intent widens
    it to rag_general_k, never beyond rag_general_k_ceiling.
    """
    max_matches = settings.rag_max_matches
    k = min(requested_k, max_matches) if requested_k is not None else max_matches
    if intent is Intent.GENERAL:
        widened = min(settings.rag_general_k, settings.rag_general_k_ceiling)
        k = max(k, widened)
    return k
