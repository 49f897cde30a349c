"""Abstract base class for embedding providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from policyrag.exceptions import ValidationError
from policyrag.types import EmbeddedChunk

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.types import Chunk

__all__ = ["BaseEmbedder", "prepare_text"]

logger = logging.getLogger(__name__)


def prepare_text(text: object, max_chars: int) -> str:
    """Validate an embedding input and truncate it to *max_chars*.

    Raises:
        ValidationError: If *text* is not a string or is blank.
    """
    if not isinstance(text, str):
        raise ValidationError(f"Text must be a string, got {type(text).__name__}")
    stripped = text.strip()
    if not stripped:
        raise ValidationError("Text cannot be empty or whitespace only")
    if len(stripped) > max_chars:
        logger.debug("Truncating embedding input from %d to %d chars", len(stripped), max_chars)
        return stripped[:max_chars]
    return stripped


class BaseEmbedder(ABC):
    """Base class for all embedding providers.

    Subclasses turn text into fixed-dimension vectors.
    """

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Generate an embedding for one text.

        Raises:
            ValidationError: If the text is not a non-blank string.
            EmbeddingError: If embedding generation fails.
        """

    @abstractmethod
    def embed_batch(self, texts: Sequence[str], batch_size: int | None = None) -> list[list[float]]:
        """Generate embeddings for many texts, in input order.

        Raises:
            ValidationError: If any text is not a non-blank string.
            EmbeddingError: If any batch fails. No partial output is returned.
        """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimensionality of the embedding vectors."""

    @property
    def is_degraded(self) -> bool:
        """True when vectors are not backed by a real embedding model."""
        return False

    def embed_chunks(self, chunks: Sequence[Chunk]) -> list[EmbeddedChunk]:
        """Generate embeddings for chunks and attach them."""
        if not chunks:
            return []
        vectors = self.embed_batch([c.text for c in chunks])
        return [
            EmbeddedChunk(chunk=chunk, embedding=tuple(vec))
            for chunk, vec in zip(chunks, vectors, strict=True)
        ]

    def info(self) -> dict[str, Any]:
        """Provider status for diagnostics."""
        return {
            "provider": type(self).__name__,
            "dimension": self.dimension,
            "degraded": self.is_degraded,
        }
