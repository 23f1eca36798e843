# =============================================================================
# Context Assembler — Token-Budgeted Prompt Context
# =============================================================================
#
# Walks retrieval hits in rank order and renders each as a labelled block:
#
#   [#3] (Page 2) Services > Audit
#   <content, cut to rag_max_chars_per_chunk + " …[truncated]">
#
# Blocks are accepted until the next one would push the running estimate
# past rag_max_context_tokens. That first overflow ends assembly: later
# hits are dropped even if they would fit, so the accepted set is always a
# rank-contiguous prefix of the usable hits.
#
# The [#n] label is the hit's 1-based retrieval rank. Hits with no content
# are skipped and consume no label slot in the output, so labels can have
# gaps; citation refs reuse the same numbers.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.services.tokens import approx_tokens, truncate_with_marker
from app.services.vectorstore import RetrievalHit

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = " …[truncated]"
BLOCK_SEPARATOR = "\n\n---\n\n"


@dataclass
class SelectedHit:
    """A hit accepted into the context, with its rendered block."""

    index: int  # 0-based retrieval rank
    hit: RetrievalHit
    block: str
    block_tokens: int

    @property
    def ref(self) -> str:
        return f"#{self.index + 1}"


@dataclass
class AssembledContext:
    selected: list[SelectedHit] = field(default_factory=list)
    context: str = ""
    used_tokens: int = 0
    truncated_count: int = 0


def render_block(index: int, hit: RetrievalHit, content: str) -> str:
    locator = hit.page_or_sheet if hit.page_or_sheet is not None else "n/a"
    return f"[#{index + 1}] ({locator}) {hit.section_path or ''}\n{content}"


def assemble_context(
    hits: Sequence[RetrievalHit],
    max_chars_per_chunk: int | None = None,
    max_context_tokens: int | None = None,
    log: Any = logger,
) -> AssembledContext:
    """
    Select and render hits under the token budget.

    Returns:
        AssembledContext with the accepted hits, the joined context string,
        the tokens used, and how many contents were truncated.
    """
    per_chunk = max_chars_per_chunk or settings.rag_max_chars_per_chunk
    budget = max_context_tokens or settings.rag_max_context_tokens

    result = AssembledContext()
    for i, hit in enumerate(hits):
        if not hit.content:
            continue

        content = truncate_with_marker(hit.content, per_chunk, TRUNCATION_MARKER)
        truncated = content is not hit.content

        block = render_block(i, hit, content)
        block_tokens = approx_tokens(block)
        if result.used_tokens + block_tokens > budget:
            log.info(
                "context.skip at_hit=%d would_use=%d budget=%d",
                i + 1, result.used_tokens + block_tokens, budget,
            )
            break

        if truncated:
            result.truncated_count += 1
        result.selected.append(SelectedHit(i, hit, block, block_tokens))
        result.used_tokens += block_tokens

    result.context = BLOCK_SEPARATOR.join(s.block for s in result.selected)
    log.info(
        "context.assembled selected=%d truncated=%d tokens=%d",
        len(result.selected), result.truncated_count, result.used_tokens,
    )
    return result
