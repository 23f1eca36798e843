# =============================================================================
# Embedding Service — Batch Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Generates vector embeddings with any OpenAI-compatible embedding API
# (OpenAI, DashScope, local gateways) via a configurable base_url.
#
# SIZE LIMITS:
# - Each input is clamped to embedding_max_chars (+ " …[truncated-for-embed]")
#   when its estimate exceeds embedding_max_tokens.
# - Inputs are sent in sequential batches of embedding_batch_size (64).
#
# ATOMICITY: a failure in any batch fails the whole call with
# EmbedServiceError; vectors from earlier batches are discarded. Output is
# always index-aligned with input, or nothing is returned.
#
# No retries here. Callers (Celery task, API client) own retry policy.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from openai import OpenAI, OpenAIError

from app.config import settings
from app.errors import EmbedServiceError
from app.services.tokens import approx_tokens, truncate_with_marker

logger = logging.getLogger(__name__)

CLAMP_MARKER = " …[truncated-for-embed]"


# ---------------------------------------------------------------------------
# Embedding Client — Lazy Singleton
# ---------------------------------------------------------------------------
# API key resolution order:
#   1. OPENAI_API_KEY (explicit embedding key)
#   2. LLM_API_KEY (shared key for LLM + embeddings on one gateway)
# ---------------------------------------------------------------------------

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """Lazily initialize and cache the embedding client."""
    global _client
    if _client is None:
        resolved_key = settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise EmbedServiceError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env",
                code="EMBED_NOT_CONFIGURED",
            )

        client_kwargs: dict = {"api_key": resolved_key}
        if settings.embedding_base_url:
            client_kwargs["base_url"] = settings.embedding_base_url

        _client = OpenAI(**client_kwargs)

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            settings.embedding_model,
            settings.embedding_base_url or "https://api.openai.com/v1",
        )
    return _client


# ---------------------------------------------------------------------------
# Input Clamp
# ---------------------------------------------------------------------------


def clamp_for_embed(
    text: str,
    max_tokens: int | None = None,
    max_chars: int | None = None,
) -> str:
    """Cut `text` to max_chars (with marker) if its estimate exceeds max_tokens."""
    max_tokens = max_tokens or settings.embedding_max_tokens
    max_chars = max_chars or settings.embedding_max_chars
    if approx_tokens(text) <= max_tokens:
        return text
    return truncate_with_marker(text, max_chars, CLAMP_MARKER)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def embed_batch(
    texts: Sequence[str],
    batch_size: int | None = None,
    client: OpenAI | None = None,
    log: Any = logger,
) -> list[list[float]]:
    """
    Generate embeddings for texts, in input order.

    Args:
        texts: Strings to embed.
        batch_size: Texts per API call. Defaults to
            settings.embedding_batch_size (64).
        client: OpenAI-compatible client; defaults to the cached singleton.

    Returns:
        One vector per input text, same order.

    Raises:
        EmbedServiceError: on any batch failure or a vector-count mismatch.

    Pipeline position: Step 3 of ingestion (parse → chunk → embed → store).
    """
    if not texts:
        return []

    client = client or _get_client()
    _batch_size = batch_size or settings.embedding_batch_size

    safe_inputs: list[str] = []
    for idx, text in enumerate(texts):
        clamped = clamp_for_embed(text)
        if clamped is not text:
            log.info(
                "embed.input idx=%d clamped tokens=%d→%d",
                idx, approx_tokens(text), approx_tokens(clamped),
            )
        safe_inputs.append(clamped)

    vectors: list[list[float]] = []
    for start in range(0, len(safe_inputs), _batch_size):
        batch = safe_inputs[start : start + _batch_size]
        log.info(
            "embed.batch start=%d count=%d model=%s",
            start, len(batch), settings.embedding_model,
        )

        create_kwargs: dict = {"model": settings.embedding_model, "input": batch}
        if settings.embedding_dimensions:
            create_kwargs["dimensions"] = settings.embedding_dimensions

        try:
            response = client.embeddings.create(**create_kwargs)
        except OpenAIError as exc:
            raise EmbedServiceError(
                f"Embedding batch at {start} failed: {exc}",
                details={"start": start, "count": len(batch)},
            ) from exc

        # response.data[j].index is relative to this batch
        ordered = sorted(response.data, key=lambda item: item.index)
        if len(ordered) != len(batch):
            raise EmbedServiceError(
                f"Embedding batch at {start} returned {len(ordered)} "
                f"vectors for {len(batch)} inputs",
                code="EMBED_COUNT_MISMATCH",
            )
        vectors.extend(list(item.embedding) for item in ordered)

    log.info("embed.done count=%d", len(vectors))
    return vectors


def embed_query(text: str, client: OpenAI | None = None) -> list[float]:
    """
    Embed a single query string.

    Used by the query graph's retrieve node (through asyncio.to_thread).
    """
    return embed_batch([text], batch_size=1, client=client)[0]
