# =============================================================================
# Heading-Aware Text Chunker — ceil(chars / 4) Token Estimate
# =============================================================================
#
# Splits parsed text units into overlapping chunks and annotates each chunk
# with its source locator (page / sheet) and heading trail (section path).
#
# ALGORITHM (per unit):
# 1. Split on top-level heading boundaries ("\n# "). A block whose estimate
#    is within max_tokens becomes exactly one chunk.
# 2. An oversized block is walked line by line. When the next line would
#    push the running estimate over max_tokens, the buffer is emitted and
#    the next buffer is seeded with the last overlap_tokens * 4 characters
#    of the emitted chunk plus the overflowing line.
# 3. Any chunk longer than the hard character ceiling is cut and marked
#    " …[trimmed]". The result, marker included, never exceeds the ceiling.
#
# Token counts use approx_tokens everywhere. No tokenizer is loaded.
# =============================================================================

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from app.config import settings
from app.services.parser import TextUnit
from app.services.tokens import approx_tokens, fit_with_marker

logger = logging.getLogger(__name__)

TRIM_MARKER = " …[trimmed]"

_H1_SPLIT = re.compile(r"\n(?=# )")
_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChunkResult:
    """A single chunk ready for embedding and storage."""

    content: str
    chunk_index: int  # 0-indexed position within the document
    token_count: int  # approx_tokens(content)
    page_or_sheet: str | None = None  # "Page 3", "Sheet: Budget", "Document"
    section_path: str | None = None  # "Services > Audit"


# ---------------------------------------------------------------------------
# Core Split
# ---------------------------------------------------------------------------


def chunk_markdown(
    text: str,
    max_tokens: int = 900,
    overlap_tokens: int = 80,
) -> list[str]:
    """
    Split Markdown into heading-bounded chunks of at most ~max_tokens.

    The overlap carried into the next chunk is a plain character slice, not
    word-aware. A single line longer than max_tokens still becomes its own
    chunk; the hard ceiling in chunk_units handles it.
    """
    chunks: list[str] = []
    overlap_chars = overlap_tokens * 4

    for block in _H1_SPLIT.split(text):
        if approx_tokens(block) <= max_tokens:
            chunks.append(block)
            continue

        buf: list[str] = []
        toks = 0
        for line in block.split("\n"):
            t = approx_tokens(line + "\n")
            if toks + t > max_tokens and buf:
                emitted = "\n".join(buf)
                chunks.append(emitted)
                carry = emitted[-overlap_chars:] if overlap_chars else ""
                buf = [carry, line]
                toks = approx_tokens("\n".join(buf))
            else:
                buf.append(line)
                toks += t
        if buf:
            chunks.append("\n".join(buf))

    return chunks


# ---------------------------------------------------------------------------
# Section Paths
# ---------------------------------------------------------------------------


class _HeadingTrail:
    """Tracks the heading hierarchy while walking a unit's chunks in order."""

    def __init__(self, locator: str | None) -> None:
        self._locator = locator
        self._levels: dict[int, str] = {}

    def _push(self, level: int, title: str) -> bool:
        # Synthetic page/sheet headings are already captured by the locator
        if level == 1 and title == self._locator:
            self._levels.clear()
            return False
        self._levels = {lv: t for lv, t in self._levels.items() if lv < level}
        self._levels[level] = title
        return True

    def path(self) -> str | None:
        if not self._levels:
            return None
        return " > ".join(self._levels[lv] for lv in sorted(self._levels))

    def observe(self, chunk: str) -> str | None:
        """
        Feed one chunk; return the section path for it.

        The path is taken after the chunk's first real heading (or inherited
        from the previous chunk when it has none), then every later
        heading in the chunk advances the trail for the next chunk.
        """
        path: str | None = None
        seen_heading = False
        for line in chunk.split("\n"):
            m = _HEADING.match(line)
            if not m:
                continue
            real = self._push(len(m.group(1)), m.group(2))
            if real and not seen_heading:
                path = self.path()
                seen_heading = True
        return path if seen_heading else self.path()


def _has_body(chunk: str) -> bool:
    return any(
        line.strip() and not _HEADING.match(line) for line in chunk.split("\n")
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_units(
    units: Sequence[TextUnit],
    max_tokens: int | None = None,
    overlap_tokens: int | None = None,
    hard_max_chars: int | None = None,
    log: Any = logger,
) -> list[ChunkResult]:
    """
    Chunk every unit and number the results across the whole document.

    Chunks with no text beyond headings are dropped. Chunks over
    hard_max_chars are trimmed with TRIM_MARKER.

    Pipeline position: Step 2 of ingestion (parse → chunk → embed → store).
    """
    max_tokens = max_tokens or settings.chunk_max_tokens
    overlap_tokens = (
        overlap_tokens if overlap_tokens is not None else settings.chunk_overlap_tokens
    )
    ceiling = hard_max_chars or settings.chunk_hard_max_chars

    results: list[ChunkResult] = []
    for unit in units:
        trail = _HeadingTrail(unit.locator)
        for raw in chunk_markdown(unit.text, max_tokens, overlap_tokens):
            section_path = trail.observe(raw)
            if not _has_body(raw):
                continue

            content = raw
            if len(content) > ceiling:
                log.info(
                    "chunk.trim index=%d chars=%d ceiling=%d",
                    len(results), len(content), ceiling,
                )
                content = fit_with_marker(content, ceiling, TRIM_MARKER)

            results.append(ChunkResult(
                content=content,
                chunk_index=len(results),
                token_count=approx_tokens(content),
                page_or_sheet=unit.locator,
                section_path=section_path,
            ))

    if results:
        log.info(
            "chunk.stats units=%d chunks=%d max_chars=%d avg_chars=%d",
            len(units),
            len(results),
            max(len(c.content) for c in results),
            sum(len(c.content) for c in results) // len(results),
        )
    else:
        log.warning("chunk.stats units=%d chunks=0", len(units))
    return results
