"""Deterministic offline embedder.

Produces stable vectors from character codes plus hand-seeded "semantic
anchor" ranges for insurance and German legal vocabulary, so retrieval keeps
working (coarsely) without an embedding API.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from policyrag.embed.base import BaseEmbedder, prepare_text
from policyrag.embed.similarity import l2_normalize
from policyrag.exceptions import EmbeddingError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.config import PolicyRagConfig

__all__ = ["SEMANTIC_ANCHORS", "FallbackEmbedder"]

logger = logging.getLogger(__name__)

# Anchor ranges are laid out over a 1536-dimension reference space and
# scaled proportionally to the configured dimension.
_REFERENCE_DIMENSION = 1536
_ANCHOR_BOOST = 0.5

SEMANTIC_ANCHORS: dict[str, tuple[int, int]] = {
    # Civil code
    "bgb": (0, 100),
    "bürgerliches": (0, 100),
    "zivilrecht": (0, 100),
    "kaufvertrag": (100, 200),
    "433": (100, 200),
    "kauf": (100, 200),
    "verkäufer": (100, 200),
    "käufer": (100, 200),
    # Damages and liability
    "schadensersatz": (200, 300),
    "schaden": (200, 300),
    "823": (200, 300),
    "haftung": (200, 300),
    "deliktsrecht": (200, 300),
    # Tenancy
    "miete": (400, 500),
    "mietvertrag": (400, 500),
    "mieter": (400, 500),
    "vermieter": (400, 500),
    "535": (400, 500),
    "wohnung": (400, 500),
    # Criminal law
    "stgb": (600, 700),
    "strafrecht": (600, 700),
    "strafe": (600, 700),
    "körperverletzung": (650, 750),
    "223": (650, 750),
    "diebstahl": (700, 800),
    "242": (700, 800),
    # Constitution
    "grundgesetz": (800, 900),
    "gg": (800, 900),
    "verfassung": (800, 900),
    "grundrecht": (850, 950),
    "menschenwürde": (850, 950),
    # Employment
    "arbeitsrecht": (1000, 1100),
    "kündigung": (1000, 1100),
    "kündigungsschutz": (1000, 1100),
    "arbeitnehmer": (1000, 1100),
    # Inheritance
    "erbrecht": (1100, 1200),
    "erbe": (1100, 1200),
    "testament": (1100, 1200),
    "1922": (1100, 1200),
    # Insurance
    "versicherung": (1200, 1300),
    "versicherungsvertrag": (1200, 1300),
    "vvg": (1200, 1300),
    "police": (1250, 1350),
    "prämie": (1250, 1350),
    "leistung": (1250, 1350),
    # General legal vocabulary
    "gesetz": (1350, 1450),
    "paragraph": (1350, 1450),
    "recht": (1400, 1500),
    "anspruch": (1400, 1500),
    "pflicht": (1450, 1536),
}


class FallbackEmbedder(BaseEmbedder):
    """Deterministic character-code embedder with domain anchors.

    Same text always yields the same unit-length vector; texts sharing
    anchor terms land closer together. ``is_degraded`` is always True.
    """

    def __init__(self, dimension: int = 1536, max_chars: int = 8000) -> None:
        if dimension < 2:
            raise EmbeddingError(f"dimension must be >= 2, got {dimension}")
        self._dimension = dimension
        self._max_chars = max_chars
        self._anchors = {
            term: self._scale_range(start, end) for term, (start, end) in SEMANTIC_ANCHORS.items()
        }

    @classmethod
    def from_config(cls, config: PolicyRagConfig) -> FallbackEmbedder:
        return cls(dimension=config.embedding.dimension, max_chars=config.embedding.max_chars)

    def _scale_range(self, start: int, end: int) -> tuple[int, int]:
        scale = self._dimension / _REFERENCE_DIMENSION
        return int(start * scale), max(int(start * scale) + 1, int(end * scale))

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def is_degraded(self) -> bool:
        return True

    def embed(self, text: str) -> list[float]:
        return self.vector_for(prepare_text(text, self._max_chars))

    def embed_batch(self, texts: Sequence[str], batch_size: int | None = None) -> list[list[float]]:
        prepared = [prepare_text(t, self._max_chars) for t in texts]
        return [self.vector_for(t) for t in prepared]

    def vector_for(self, text: str) -> list[float]:
        """Compute the vector for already-validated text."""
        dim = self._dimension
        vector = [0.0] * dim
        normalized = text.lower().strip()

        for i, char in enumerate(normalized[:dim]):
            weight = ord(char) / 255
            vector[i] += weight * math.cos(i * 0.1)
            vector[(i + 1) % dim] += weight * math.sin(i * 0.1)

        for term, (start, end) in self._anchors.items():
            if term in normalized:
                for i in range(start, min(end, dim)):
                    vector[i] += _ANCHOR_BOOST

        return l2_normalize(vector)

    def info(self) -> dict[str, Any]:
        return {
            "provider": "fallback",
            "model": "deterministic",
            "dimension": self._dimension,
            "degraded": True,
        }
