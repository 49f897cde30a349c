"""Retrieval strategies tried in order by the VectorRetriever.

Every strategy has the same ``search(request) -> list[RetrievalResult]``
signature. A strategy signals "try the next one" only by raising; an
empty list is a valid answer.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from policyrag.resilience import retry_with_backoff
from policyrag.retrieve.keywords import extract_keywords
from policyrag.types import QueryFilters, RetrievalResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from policyrag.retrieve.reference import ReferenceSet
    from policyrag.store.base import BaseVectorStore, StoreMatch

__all__ = [
    "KeywordStrategy",
    "PrimaryVectorStrategy",
    "ReferenceSetStrategy",
    "RetrievalStrategy",
    "SearchRequest",
    "SecondaryVectorStrategy",
    "VectorSearchStrategy",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchRequest:
    """Inputs shared by every strategy in the cascade."""

    vector: tuple[float, ...]
    query_text: str = ""
    filters: QueryFilters = field(default_factory=QueryFilters)
    threshold: float = 0.7
    max_results: int = 5


def _to_result(match: StoreMatch) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=match.id,
        text=match.text,
        similarity=match.similarity,
        metadata=dict(match.metadata),
    )


class RetrievalStrategy(ABC):
    """One step of the retrieval cascade."""

    name: ClassVar[str] = "strategy"
    # Vector strategies return raw candidates; the retriever applies the threshold.
    applies_threshold: ClassVar[bool] = False
    # True when results are not backed by a semantic search over the corpus.
    degraded: ClassVar[bool] = False

    @abstractmethod
    def search(self, request: SearchRequest) -> list[RetrievalResult]:
        """Return candidates for *request*.

        Raises:
            Exception: Any failure; the retriever moves on to the next strategy.
        """


class VectorSearchStrategy(RetrievalStrategy):
    """Similarity search through one named store procedure."""

    applies_threshold = True

    def __init__(
        self,
        store: BaseVectorStore,
        procedure: str,
        *,
        retries: int = 2,
        initial_delay_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._procedure = procedure
        self._retries = retries
        self._initial_delay_s = initial_delay_s
        self._sleep = sleep

    def search(self, request: SearchRequest) -> list[RetrievalResult]:
        # Transient RPC failures are retried here before the cascade moves on.
        matches = retry_with_backoff(
            lambda: self._store.similarity_search(
                request.vector,
                request.filters,
                None,
                request.max_results,
                procedure=self._procedure,
            ),
            max_retries=self._retries,
            initial_delay_s=self._initial_delay_s,
            sleep=self._sleep,
        )
        dimension = len(request.vector)
        compatible = [m for m in matches if m.dimension is None or m.dimension == dimension]
        if len(compatible) < len(matches):
            logger.warning(
                "%s: dropped %d stored records with mismatched embedding dimension",
                self.name,
                len(matches) - len(compatible),
            )
        return [_to_result(m) for m in compatible]


class PrimaryVectorStrategy(VectorSearchStrategy):
    name = "primary"


class SecondaryVectorStrategy(VectorSearchStrategy):
    name = "secondary"


class KeywordStrategy(RetrievalStrategy):
    """Text search on the query's salient keywords, ranked by keyword hits.

    ``similarity`` is the fraction of extracted keywords that found the chunk.
    """

    name = "keyword"

    def __init__(
        self,
        store: BaseVectorStore,
        *,
        max_keywords: int = 5,
        per_keyword_limit: int = 5,
    ) -> None:
        self._store = store
        self._max_keywords = max_keywords
        self._per_keyword_limit = per_keyword_limit

    def search(self, request: SearchRequest) -> list[RetrievalResult]:
        keywords = extract_keywords(request.query_text, self._max_keywords)
        if not keywords:
            return []

        hits: dict[str, int] = {}
        first_seen: dict[str, StoreMatch] = {}
        for keyword in keywords:
            matches = self._store.keyword_search(keyword, self._per_keyword_limit, request.filters)
            for match in matches:
                if match.id not in first_seen:
                    first_seen[match.id] = match
                hits[match.id] = hits.get(match.id, 0) + 1

        ranked = sorted(first_seen, key=lambda chunk_id: hits[chunk_id], reverse=True)
        results = [
            RetrievalResult(
                chunk_id=chunk_id,
                text=first_seen[chunk_id].text,
                similarity=hits[chunk_id] / len(keywords),
                metadata=dict(first_seen[chunk_id].metadata),
            )
            for chunk_id in ranked[: request.max_results]
        ]
        logger.debug("keyword: %d keywords matched %d chunks", len(keywords), len(first_seen))
        return results


class ReferenceSetStrategy(RetrievalStrategy):
    """Last resort: the built-in reference corpus ranked by keyword overlap."""

    name = "reference"
    degraded = True

    def __init__(self, reference_set: ReferenceSet) -> None:
        self._reference_set = reference_set

    def search(self, request: SearchRequest) -> list[RetrievalResult]:
        return self._reference_set.rank(request.query_text, request.max_results)
