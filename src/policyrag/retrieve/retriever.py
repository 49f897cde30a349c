"""Fallback cascade over retrieval strategies."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from policyrag.exceptions import RetrievalExhaustedError, ValidationError
from policyrag.retrieve.reference import ReferenceSet
from policyrag.retrieve.strategies import (
    KeywordStrategy,
    PrimaryVectorStrategy,
    ReferenceSetStrategy,
    SearchRequest,
    SecondaryVectorStrategy,
)
from policyrag.types import QueryFilters, RetrievalOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.config import PolicyRagConfig
    from policyrag.retrieve.strategies import RetrievalStrategy
    from policyrag.store.base import BaseVectorStore
    from policyrag.types import RetrievalResult

__all__ = ["VectorRetriever", "apply_threshold"]

logger = logging.getLogger(__name__)


def apply_threshold(
    results: Sequence[RetrievalResult], threshold: float, max_results: int
) -> tuple[list[RetrievalResult], bool]:
    """Keep results at or above *threshold*, best first.

    If nothing clears the threshold, the top *max_results* candidates are
    returned anyway and the second element is True.
    """
    ranked = sorted(results, key=lambda r: r.similarity, reverse=True)
    passing = [r for r in ranked if r.similarity >= threshold]
    if passing or not ranked:
        return passing[:max_results], False
    return ranked[:max_results], True


class VectorRetriever:
    """Tries each strategy in order until one returns without raising.

    Usage::

        retriever = VectorRetriever.from_config(store, config)
        outcome = retriever.search(vector, "Was regelt § 433 BGB?")
    """

    def __init__(self, strategies: Sequence[RetrievalStrategy]) -> None:
        if not strategies:
            raise ValueError("VectorRetriever needs at least one strategy")
        self._strategies = tuple(strategies)

    @classmethod
    def from_config(
        cls,
        store: BaseVectorStore,
        config: PolicyRagConfig,
        reference_set: ReferenceSet | None = None,
    ) -> VectorRetriever:
        """Build the default cascade: primary, secondary, keyword, reference set."""
        retries = config.retrieval.rpc_retries
        delay = config.retrieval.rpc_initial_delay_s
        return cls(
            [
                PrimaryVectorStrategy(
                    store, config.store.primary_procedure, retries=retries, initial_delay_s=delay
                ),
                SecondaryVectorStrategy(
                    store, config.store.secondary_procedure, retries=retries, initial_delay_s=delay
                ),
                KeywordStrategy(
                    store,
                    max_keywords=config.retrieval.max_keywords,
                    per_keyword_limit=config.retrieval.keyword_limit,
                ),
                ReferenceSetStrategy(reference_set or ReferenceSet()),
            ]
        )

    @property
    def strategies(self) -> tuple[RetrievalStrategy, ...]:
        return self._strategies

    def search(
        self,
        vector: Sequence[float],
        query_text: str = "",
        filters: QueryFilters | None = None,
        threshold: float = 0.7,
        max_results: int = 5,
    ) -> RetrievalOutcome:
        """Run the cascade.

        Returns:
            The first non-raising strategy's results, sorted by descending
            similarity (stable on ties), with the strategy name and any
            errors of earlier strategies.

        Raises:
            RetrievalExhaustedError: If every strategy raised.
        """
        request = SearchRequest(
            vector=tuple(vector),
            query_text=query_text,
            filters=filters or QueryFilters(),
            threshold=threshold,
            max_results=max_results,
        )
        errors: dict[str, str] = {}

        for strategy in self._strategies:
            try:
                candidates = strategy.search(request)
            except ValidationError:
                raise
            except Exception as e:
                errors[strategy.name] = str(e) or type(e).__name__
                logger.warning("Retrieval strategy %s failed: %s", strategy.name, e)
                continue

            below = False
            if strategy.applies_threshold:
                results, below = apply_threshold(candidates, threshold, max_results)
                if below:
                    logger.warning(
                        "No result cleared threshold %.2f; returning %d unfiltered candidates",
                        threshold,
                        len(results),
                    )
            else:
                results = sorted(candidates, key=lambda r: r.similarity, reverse=True)[
                    :max_results
                ]

            logger.info(
                "Retrieved %d results via %s strategy%s",
                len(results),
                strategy.name,
                " (degraded)" if strategy.degraded else "",
            )
            return RetrievalOutcome(
                results=tuple(results),
                strategy=strategy.name,
                below_threshold=below,
                degraded=strategy.degraded,
                errors=tuple(errors.items()),
            )

        raise RetrievalExhaustedError(errors)
