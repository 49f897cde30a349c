"""Vector similarity."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from policyrag.exceptions import DimensionMismatchError

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["cosine_similarity", "l2_normalize"]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors, in [-1, 1].

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    if magnitude == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / magnitude))


def l2_normalize(vector: list[float]) -> list[float]:
    """Scale *vector* to unit length; a zero vector is returned unchanged."""
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0:
        return vector
    return [v / magnitude for v in vector]
