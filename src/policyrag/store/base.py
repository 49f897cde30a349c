"""Abstract base class for vector stores."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.types import EmbeddedChunk, QueryFilters

__all__ = ["BaseVectorStore", "StoreMatch"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreMatch:
    """A stored chunk returned by a search.

    ``similarity`` is cosine similarity for vector searches and 0.0 for
    keyword searches. ``dimension`` is the stored vector's length when the
    store reports it.
    """

    id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    similarity: float = 0.0
    dimension: int | None = None


class BaseVectorStore(ABC):
    """Base class for all vector stores.

    Subclasses persist embedded chunks and answer similarity and keyword
    searches. Zero matches is a valid empty result, never an error.
    """

    @abstractmethod
    def add(self, chunks: Sequence[EmbeddedChunk]) -> int:
        """Add embedded chunks to the store.

        Returns:
            Number of chunks added.

        Raises:
            StoreError: If storage fails.
        """

    @abstractmethod
    def similarity_search(
        self,
        vector: Sequence[float],
        filters: QueryFilters | None = None,
        threshold: float | None = None,
        limit: int = 5,
        *,
        procedure: str | None = None,
    ) -> list[StoreMatch]:
        """Find stored chunks most similar to *vector*.

        Args:
            vector: Query embedding.
            filters: Optional category/source restriction.
            threshold: Minimum similarity; ``None`` applies no cutoff.
            limit: Maximum number of matches.
            procedure: Named server-side search routine, for stores that have several.

        Returns:
            Matches sorted by descending similarity.

        Raises:
            StoreError: On transport or query failure.
        """

    @abstractmethod
    def keyword_search(
        self,
        term: str,
        limit: int = 5,
        filters: QueryFilters | None = None,
    ) -> list[StoreMatch]:
        """Find stored chunks whose text contains *term*.

        Raises:
            StoreError: On transport or query failure.
        """

    @abstractmethod
    def delete(self, document_id: str) -> int:
        """Delete all chunks for a document.

        Returns:
            Number of chunks deleted.

        Raises:
            StoreError: If deletion fails.
        """

    @abstractmethod
    def prune(self, document_id: str, keep: int) -> int:
        """Delete a document's chunks whose index is ``keep`` or higher.

        Used after re-ingesting a document that now has fewer chunks.

        Returns:
            Number of chunks deleted.

        Raises:
            StoreError: If deletion fails.
        """

    @abstractmethod
    def count(self) -> int:
        """Return the total number of chunks in the store."""
