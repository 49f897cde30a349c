"""Pipeline orchestrators for policyrag.

``IngestPipeline`` composes chunker → embedder → store; ``QueryPipeline``
composes embedder → retriever → context assembly → answer generator, with
an optional result cache. Dependencies are injected via the constructor.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from policyrag.cache import ResultCache
from policyrag.chunk.base import ChunkOptions
from policyrag.context import assemble_context
from policyrag.embed import create_embedder
from policyrag.exceptions import PipelineError, ValidationError
from policyrag.generate import AnswerGenerator, create_language_model
from policyrag.retrieve import VectorRetriever
from policyrag.store import create_store
from policyrag.types import PipelineResult, Query, QueryFilters, StageTimings

if TYPE_CHECKING:
    from policyrag.chunk.base import BaseChunker
    from policyrag.config import PolicyRagConfig
    from policyrag.embed.base import BaseEmbedder
    from policyrag.store.base import BaseVectorStore
    from policyrag.types import Document

__all__ = ["TECHNICAL_DIFFICULTY_ANSWER", "IngestPipeline", "QueryPipeline"]

logger = logging.getLogger(__name__)

TECHNICAL_DIFFICULTY_ANSWER = (
    "[Technische Störung] Ihre Frage kann derzeit nicht beantwortet werden, weil ein "
    "benötigter Dienst nicht erreichbar ist. Bitte versuchen Sie es in einigen Minuten erneut."
)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class IngestPipeline:
    """Chunks, embeds and stores documents.

    Usage::

        pipeline = IngestPipeline(
            chunker=SentenceChunker(),
            embedder=embedder,
            store=chroma_store,
            config=config,
        )
        chunk_count = pipeline.process(document)
    """

    def __init__(
        self,
        chunker: BaseChunker,
        embedder: BaseEmbedder,
        store: BaseVectorStore,
        config: PolicyRagConfig,
    ) -> None:
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.config = config

    def process(self, document: Document) -> int:
        """Run chunk → embed → store for one document.

        Chunks previously stored for the same document are overwritten in
        place; leftovers beyond the new chunk count are pruned only after the
        new chunks are stored.

        Returns:
            Number of chunks stored.

        Raises:
            PipelineError: If any stage fails.
        """
        name = document.document_id or "<document>"
        try:
            logger.info("Processing %s (%d chars)", name, len(document.text))

            chunks = self.chunker.chunk(document, ChunkOptions.from_config(self.config))
            if not chunks:
                logger.warning("No chunks produced for %s", name)
                return 0

            embedded = self.embedder.embed_chunks(chunks)
            logger.info("Embedded %d chunks", len(embedded))

            count = self.store.add(embedded)
            logger.info("Stored %d chunks for %s", count, name)

            if document.document_id:
                stale = self.store.prune(document.document_id, len(embedded))
                if stale:
                    logger.info("Removed %d stale chunks for %s", stale, name)
            return count

        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(f"Pipeline failed processing {name}: {e}") from e

    def remove(self, document_id: str) -> int:
        """Remove a document's chunks from the store.

        Raises:
            PipelineError: If removal fails.
        """
        try:
            count = self.store.delete(document_id)
            logger.info("Removed %d chunks for %s", count, document_id)
            return count
        except PipelineError:
            raise
        except Exception as e:
            raise PipelineError(f"Pipeline failed removing {document_id}: {e}") from e


class QueryPipeline:
    """Answers questions: embed → retrieve → assemble → generate.

    Stages run sequentially and are timed independently. Caller errors
    (``ValidationError``) propagate; any other failure yields a degraded
    result with a technical-difficulty answer and no sources. Only complete,
    non-degraded results are cached.

    Usage::

        pipeline = QueryPipeline(embedder, retriever, generator, config, cache=ResultCache())
        result = pipeline.run_query("Was regelt § 433 BGB?")
    """

    def __init__(
        self,
        embedder: BaseEmbedder,
        retriever: VectorRetriever,
        generator: AnswerGenerator,
        config: PolicyRagConfig,
        cache: ResultCache[PipelineResult] | None = None,
    ) -> None:
        self.embedder = embedder
        self.retriever = retriever
        self.generator = generator
        self.config = config
        self.cache = cache

    @classmethod
    def from_config(
        cls,
        config: PolicyRagConfig,
        store: BaseVectorStore | None = None,
    ) -> QueryPipeline:
        """Wire the configured providers together."""
        cache: ResultCache[PipelineResult] | None = None
        if config.cache.enabled:
            cache = ResultCache(ttl_s=config.cache.ttl_s, max_keys=config.cache.max_keys)

        return cls(
            embedder=create_embedder(config),
            retriever=VectorRetriever.from_config(store or create_store(config), config),
            generator=AnswerGenerator.from_config(create_language_model(config), config),
            config=config,
            cache=cache,
        )

    def _validate(self, query: Query) -> None:
        if not isinstance(query.text, str) or not query.text.strip():
            raise ValidationError("Question must be a non-empty string")
        limit = self.config.query.max_question_chars
        if len(query.text) > limit:
            raise ValidationError(f"Question exceeds {limit} characters ({len(query.text)})")

    def run_query(self, question: str, filters: QueryFilters | None = None) -> PipelineResult:
        return self.run(Query(text=question, filters=filters or QueryFilters()))

    def run(self, query: Query) -> PipelineResult:
        """Answer one query.

        Raises:
            ValidationError: If the question is empty or too long.
        """
        self._validate(query)
        total_start = time.perf_counter()

        key = query.cache_key()
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                logger.info("Cache hit for question %r", query.text[:60])
                return replace(hit, cached=True)

        question = query.text.strip()
        threshold = (
            query.threshold if query.threshold is not None else self.config.retrieval.threshold
        )
        max_results = query.max_results or self.config.retrieval.max_results
        timings: dict[str, float] = {}
        stage = "embed"

        try:
            start = time.perf_counter()
            vector = self.embedder.embed(question)
            timings["embed_ms"] = _elapsed_ms(start)

            stage = "search"
            start = time.perf_counter()
            outcome = self.retriever.search(
                vector, question, query.filters, threshold, max_results
            )
            timings["search_ms"] = _elapsed_ms(start)

            stage = "assemble"
            start = time.perf_counter()
            context = assemble_context(
                outcome.results,
                self.config.context.max_chars,
                self.config.context.min_fragment_chars,
            )
            timings["assemble_ms"] = _elapsed_ms(start)

            stage = "generate"
            start = time.perf_counter()
            generated = self.generator.generate(question, context, query.filters)
            timings["llm_ms"] = _elapsed_ms(start)

        except ValidationError:
            raise
        except Exception as e:
            logger.error("Query pipeline failed during %s: %s", stage, e)
            return PipelineResult(
                question=question,
                answer=TECHNICAL_DIFFICULTY_ANSWER,
                timings=StageTimings(**timings, total_ms=_elapsed_ms(total_start)),
                degraded=True,
                error=f"{stage}: {e}",
            )

        result = PipelineResult(
            question=question,
            answer=generated.answer,
            sources=tuple(context),
            timings=StageTimings(**timings, total_ms=_elapsed_ms(total_start)),
            degraded=(
                outcome.degraded
                or self.embedder.is_degraded
                or bool(generated.metadata.get("degraded"))
            ),
            below_threshold=outcome.below_threshold,
            strategy=outcome.strategy,
        )

        logger.info(
            "Answered via %s strategy with %d sources in %.0f ms",
            outcome.strategy,
            len(context),
            result.timings.total_ms,
        )

        if self.cache is not None and not result.degraded:
            self.cache.set(key, result)
        return result

    def info(self) -> dict[str, Any]:
        """Provider and cache status."""
        return {
            "embedding": self.embedder.info(),
            "llm": self.generator.model.info(),
            "retrieval": [s.name for s in self.retriever.strategies],
            "cache": self.cache.stats() if self.cache is not None else {"enabled": False},
        }
