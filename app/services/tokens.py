# =============================================================================
# Token Estimation — ceil(chars / 4)
# =============================================================================
#
# Every budget in the system (chunk size, embedding clamp, context window)
# is enforced with this one approximation. No tokenizer is loaded, so chunk
# boundaries and context selection are reproducible across environments.
# =============================================================================

import math


def approx_tokens(text: str) -> int:
    """Approximate token count: ceil(len(text) / 4)."""
    return math.ceil(len(text) / 4)


def truncate_with_marker(text: str, max_chars: int, marker: str) -> str:
    """Cut `text` to `max_chars` characters and append `marker` if it was longer."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + marker


def fit_with_marker(text: str, ceiling: int, marker: str) -> str:
    """
    Like truncate_with_marker, but the result including the marker never
    exceeds `ceiling` characters.
    """
    if len(text) <= ceiling:
        return text
    keep = max(ceiling - len(marker), 0)
    return (text[:keep] + marker)[:ceiling]
