# =============================================================================
# Answer Generator — Grounded Completion with a Deterministic Fallback
# =============================================================================
#
# Two-layer fallback so a bare non-answer never reaches the user:
#   1. Pre-emptive: no context selected → skip the model call, return the
#      fallback text (the orchestrator routes straight to its fallback node).
#   2. Reactive: the model answered but hedged ("I don't know", "not sure",
#      "insufficient", "no context/information") or returned nothing →
#      replace the answer with the same fallback text.
#
# The system prompt requires [#n] citations matching the context block
# labels, forbids invented facts or credentials, and asks for a gap
# acknowledgement + next steps + call-to-action instead of "I don't know".
#
# Contact details come from the FallbackContact resolved once in config.
# =============================================================================

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from app.agents.intent import Intent
from app.config import FallbackContact, fallback_contact, settings
from app.errors import PipelineError, UpstreamServiceError
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class GeneratedAnswer:
    """Result of the generate step."""

    answer: str
    model: str
    fallback_used: bool
    input_tokens: int = 0
    output_tokens: int = 0


# ---------------------------------------------------------------------------
# Fallback & Hedge Detection
# ---------------------------------------------------------------------------

_HEDGE_PATTERN = re.compile(
    r"\b(i (do not|don[’']t|cannot|can[’']t) (know|tell)|not sure|insufficient"
    r"|no (context|information))\b",
    re.IGNORECASE,
)


def build_fallback_answer(
    question: str,
    contact: FallbackContact = fallback_contact,
) -> str:
    """The "here's how we typically help" answer, with contact CTA."""
    return "\n".join([
        f"I couldn’t find a definitive answer to “{question}” in our internal "
        "docs yet, but here’s how we typically help:",
        "",
        "• Quick take: share your goal, scope, timeline, and any data or "
        "documents you already have.",
        "• Next steps we’d propose: (1) clarify your objectives, (2) map the "
        "information available, (3) agree on an approach, (4) outline a "
        "phased plan with quick wins.",
        "• If you’d like a precise recommendation, reply with a bit more "
        f"context, or email us at {contact.support_email} or book a quick "
        f"call: {contact.cal_url}.",
    ])


def is_hedging(answer: str | None) -> bool:
    """True for an empty answer or one using hedging language."""
    if not answer or not answer.strip():
        return True
    return _HEDGE_PATTERN.search(answer) is not None


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def build_system_prompt(
    intent: Intent,
    contact: FallbackContact = fallback_contact,
) -> str:
    base = " ".join([
        "You are precise and grounded. Use ONLY the provided context for "
        "factual claims and cite as [#index].",
        "If the context isn’t sufficient to answer confidently, do NOT say "
        "\"I don't know\".",
        "Instead: (1) briefly acknowledge the gap, (2) list a few concrete "
        "next steps or clarifying questions,",
        "(3) optionally share a short, high-level best-practice outline that "
        "is safe and non-specific,",
        "(4) end with this call to action: \"If you'd like, email "
        f"{contact.support_email} or book a quick call: {contact.cal_url}.\"",
        "Never invent credentials or facts not in context.",
    ])
    if intent is Intent.GENERAL:
        base += (
            " When asked for generalized advice or about us, summarize "
            "capabilities strictly from the context. If first-person details "
            "are present, you may use them; otherwise use 'we'/'this practice'."
        )
    return base


def build_user_prompt(question: str, context: str) -> str:
    return f"Question: {question}\n\nContext:\n{context}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate_answer(
    question: str,
    context: str,
    intent: Intent,
    llm: LLMProvider,
    contact: FallbackContact = fallback_contact,
    log: Any = logger,
) -> GeneratedAnswer:
    """
    Generate a grounded answer from assembled context.

    An empty context returns the fallback without calling the model.

    Raises:
        UpstreamServiceError: when the completion call fails.
    """
    if not context.strip():
        log.info("llm.skip empty context → fallback")
        return GeneratedAnswer(
            answer=build_fallback_answer(question, contact),
            model="fallback",
            fallback_used=True,
        )

    system = build_system_prompt(intent, contact)
    log.info(
        "llm.call model=%s temperature=%s intent=%s",
        settings.llm_model, settings.llm_temperature, intent.value,
    )
    try:
        response = await llm.complete(
            system=system,
            prompt=build_user_prompt(question, context),
            temperature=settings.llm_temperature,
        )
    except PipelineError:
        raise
    except Exception as exc:
        raise UpstreamServiceError(
            f"Completion failed: {exc}", code="LLM_FAILED", stage="llm.call",
        ) from exc

    if is_hedging(response.content):
        log.info("response.postprocess hedge detected → fallback")
        return GeneratedAnswer(
            answer=build_fallback_answer(question, contact),
            model=response.model,
            fallback_used=True,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )

    return GeneratedAnswer(
        answer=response.content,
        model=response.model,
        fallback_used=False,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )
