"""Exact token counting with tiktoken.

The chunker uses a fast heuristic; exact counts are used where a model's
real context window matters (prompt size reporting, chunk-set reports).
"""

from __future__ import annotations

import functools
import logging

import tiktoken

from policyrag.chunk.sentence import estimate_tokens

__all__ = ["count_tokens", "count_tokens_or_estimate"]

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def _get_encoding() -> tiktoken.Encoding:
    """Get the tiktoken encoding, lazily initialized and thread-safe."""
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens in text using cl100k_base encoding."""
    if not text:
        return 0
    return len(_get_encoding().encode(text))


def count_tokens_or_estimate(text: str) -> int:
    """Exact count when the encoding is available, else the chunker heuristic.

    tiktoken downloads its encoding file on first use, so offline hosts
    fall back to ``estimate_tokens``.
    """
    try:
        return count_tokens(text)
    except Exception as e:
        logger.warning("Exact token count unavailable, using estimate: %s", e)
        return estimate_tokens(text)
