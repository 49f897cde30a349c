"""Tests for policyrag.pipeline: ingest and query orchestration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from policyrag.cache import ResultCache
from policyrag.chunk import SentenceChunker
from policyrag.embed import FallbackEmbedder
from policyrag.embed.base import BaseEmbedder
from policyrag.exceptions import EmbeddingError, PipelineError, StoreError, ValidationError
from policyrag.generate import AnswerGenerator, BaseLanguageModel, FallbackLanguageModel
from policyrag.pipeline import TECHNICAL_DIFFICULTY_ANSWER, IngestPipeline, QueryPipeline
from policyrag.retrieve import RetrievalStrategy, VectorRetriever
from policyrag.store import ChromaStore
from policyrag.store.base import BaseVectorStore
from policyrag.types import Document, QueryFilters, RetrievalResult

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from policyrag.config import PolicyRagConfig
    from policyrag.generate import GenerationOptions
    from policyrag.retrieve import SearchRequest
    from policyrag.store.base import StoreMatch
    from policyrag.types import EmbeddedChunk

# --- Mock implementations ---


class MockEmbedder(BaseEmbedder):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise EmbeddingError("embedding service down")
        return [0.1, 0.2, 0.3]

    def embed_batch(self, texts: Sequence[str], batch_size: int | None = None) -> list[list[float]]:
        return [self.embed(t) for t in texts]

    @property
    def dimension(self) -> int:
        return 3


class RecordingStore(BaseVectorStore):
    """Records the order of mutating calls."""

    def __init__(self, fail_add: bool = False) -> None:
        self.fail_add = fail_add
        self.calls: list[str] = []
        self.added: list[EmbeddedChunk] = []

    def add(self, chunks: Sequence[EmbeddedChunk]) -> int:
        self.calls.append("add")
        if self.fail_add:
            raise StoreError("disk full")
        self.added.extend(chunks)
        return len(chunks)

    def similarity_search(
        self,
        vector: Sequence[float],
        filters: QueryFilters | None = None,
        threshold: float | None = None,
        limit: int = 5,
        *,
        procedure: str | None = None,
    ) -> list[StoreMatch]:
        return []

    def keyword_search(
        self, term: str, limit: int = 5, filters: QueryFilters | None = None
    ) -> list[StoreMatch]:
        return []

    def delete(self, document_id: str) -> int:
        self.calls.append(f"delete:{document_id}")
        return 2

    def prune(self, document_id: str, keep: int) -> int:
        self.calls.append(f"prune:{document_id}:{keep}")
        return 0

    def count(self) -> int:
        return len(self.added)


class StaticStrategy(RetrievalStrategy):
    name = "static"
    applies_threshold = True

    def __init__(self, results: list[RetrievalResult]) -> None:
        self.results = results
        self.calls = 0

    def search(self, request: SearchRequest) -> list[RetrievalResult]:
        self.calls += 1
        return list(self.results)


class FailingStrategy(RetrievalStrategy):
    name = "failing"

    def search(self, request: SearchRequest) -> list[RetrievalResult]:
        raise StoreError("rpc unavailable")


class EchoModel(BaseLanguageModel):
    def __init__(self) -> None:
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "echo"

    def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        *,
        question: str = "",
        context: Sequence[RetrievalResult] = (),
    ) -> str:
        self.calls += 1
        return f"Antwort auf: {question} ({len(context)} Quellen)"


# --- Helpers ---


def _results() -> list[RetrievalResult]:
    return [
        RetrievalResult(
            chunk_id="bgb_433_chunk_0000",
            text="Durch den Kaufvertrag wird der Verkäufer einer Sache verpflichtet.",
            similarity=0.92,
            metadata={"law_code": "BGB", "paragraph_number": "§ 433", "title": "Kaufvertrag"},
        ),
        RetrievalResult(
            chunk_id="bgb_535_chunk_0000",
            text="Durch den Mietvertrag wird der Vermieter verpflichtet.",
            similarity=0.75,
        ),
    ]


def _make_pipeline(
    config: PolicyRagConfig,
    *,
    embedder: BaseEmbedder | None = None,
    strategies: list[RetrievalStrategy] | None = None,
    model: BaseLanguageModel | None = None,
    cache: ResultCache | None = None,
) -> QueryPipeline:
    return QueryPipeline(
        embedder=embedder or MockEmbedder(),
        retriever=VectorRetriever(strategies or [StaticStrategy(_results())]),
        generator=AnswerGenerator(model or EchoModel(), sleep=lambda s: None),
        config=config,
        cache=cache,
    )


# --- Ingest ---


class TestIngestPipeline:
    def test_process_stores_chunks(self, config: PolicyRagConfig, sample_document: Document):
        store = RecordingStore()
        pipeline = IngestPipeline(SentenceChunker(), MockEmbedder(), store, config)

        count = pipeline.process(sample_document)

        assert count == 1
        assert store.added[0].chunk.document_id == "bgb_433"
        assert store.added[0].embedding == (0.1, 0.2, 0.3)

    def test_overwrites_then_prunes(self, config: PolicyRagConfig, sample_document: Document):
        store = RecordingStore()
        IngestPipeline(SentenceChunker(), MockEmbedder(), store, config).process(sample_document)
        assert store.calls == ["add", "prune:bgb_433:1"]

    def test_empty_document_stores_nothing(self, config: PolicyRagConfig):
        store = RecordingStore()
        pipeline = IngestPipeline(SentenceChunker(), MockEmbedder(), store, config)
        assert pipeline.process(Document(text="   ", document_id="leer")) == 0
        assert store.calls == []

    def test_store_failure_wrapped(self, config: PolicyRagConfig, sample_document: Document):
        store = RecordingStore(fail_add=True)
        pipeline = IngestPipeline(SentenceChunker(), MockEmbedder(), store, config)
        with pytest.raises(PipelineError, match="bgb_433"):
            pipeline.process(sample_document)
        assert store.calls == ["add"]

    def test_failed_reingest_keeps_stored_chunks(
        self,
        config: PolicyRagConfig,
        sample_document: Document,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ):
        store = ChromaStore(tmp_path / "index")
        pipeline = IngestPipeline(SentenceChunker(), FallbackEmbedder(dimension=32), store, config)
        assert pipeline.process(sample_document) == 1

        def _upsert(self, *args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(type(store._collection), "upsert", _upsert)
        with pytest.raises(PipelineError, match="disk full"):
            pipeline.process(sample_document)

        assert store.count() == 1

    def test_shorter_reingest_prunes_leftovers(self, config: PolicyRagConfig, tmp_path: Path):
        config.chunk.target_tokens = 15
        config.chunk.overlap_tokens = 0
        config.chunk.min_tokens = 1
        config.chunk.max_tokens = 30
        store = ChromaStore(tmp_path / "index")
        pipeline = IngestPipeline(SentenceChunker(), FallbackEmbedder(dimension=32), store, config)
        long_text = " ".join(
            f"Absatz {i} verpflichtet den Käufer zur Zahlung des vereinbarten Kaufpreises."
            for i in range(8)
        )

        first = pipeline.process(Document(text=long_text, document_id="bgb_433"))
        second = pipeline.process(Document(text="Der Käufer zahlt.", document_id="bgb_433"))

        assert first > 1
        assert second == 1
        assert store.count() == 1

    def test_embedding_failure_keeps_old_chunks(
        self, config: PolicyRagConfig, sample_document: Document
    ):
        store = RecordingStore()
        pipeline = IngestPipeline(SentenceChunker(), MockEmbedder(fail=True), store, config)
        with pytest.raises(PipelineError):
            pipeline.process(sample_document)
        assert store.calls == []

    def test_remove(self, config: PolicyRagConfig):
        store = RecordingStore()
        pipeline = IngestPipeline(SentenceChunker(), MockEmbedder(), store, config)
        assert pipeline.remove("bgb_433") == 2
        assert store.calls == ["delete:bgb_433"]


# --- Query ---


class TestQueryPipeline:
    def test_answers_with_sources(self, config: PolicyRagConfig):
        result = _make_pipeline(config).run_query("Was regelt § 433 BGB?")

        assert result.answer == "Antwort auf: Was regelt § 433 BGB? (2 Quellen)"
        assert [s.chunk_id for s in result.sources] == [
            "bgb_433_chunk_0000",
            "bgb_535_chunk_0000",
        ]
        assert result.strategy == "static"
        assert result.degraded is False
        assert result.cached is False
        assert result.error == ""
        assert result.timings.total_ms >= result.timings.llm_ms

    def test_sources_respect_threshold(self, config: PolicyRagConfig):
        config.retrieval.threshold = 0.8
        result = _make_pipeline(config).run_query("Kaufvertrag")
        assert [s.chunk_id for s in result.sources] == ["bgb_433_chunk_0000"]
        assert result.below_threshold is False

    def test_cache_hit_is_identical(self, config: PolicyRagConfig):
        model = EchoModel()
        strategy = StaticStrategy(_results())
        pipeline = _make_pipeline(config, strategies=[strategy], model=model, cache=ResultCache())

        first = pipeline.run_query("Was regelt § 433 BGB?")
        second = pipeline.run_query("  was regelt   § 433 bgb?")

        assert second.cached is True
        assert second.answer == first.answer
        assert second.sources == first.sources
        assert model.calls == 1
        assert strategy.calls == 1

    def test_filters_are_part_of_the_cache_key(self, config: PolicyRagConfig):
        model = EchoModel()
        pipeline = _make_pipeline(config, model=model, cache=ResultCache())
        pipeline.run_query("Kaufvertrag")
        result = pipeline.run_query("Kaufvertrag", QueryFilters(category="zivilrecht"))
        assert result.cached is False
        assert model.calls == 2

    def test_retrieval_failure_degrades(self, config: PolicyRagConfig):
        cache: ResultCache = ResultCache()
        pipeline = _make_pipeline(config, strategies=[FailingStrategy()], cache=cache)

        result = pipeline.run_query("Was regelt § 433 BGB?")

        assert result.answer == TECHNICAL_DIFFICULTY_ANSWER
        assert result.degraded is True
        assert result.sources == ()
        assert result.error.startswith("search:")
        assert len(cache) == 0

    def test_embedding_failure_degrades(self, config: PolicyRagConfig):
        result = _make_pipeline(config, embedder=MockEmbedder(fail=True)).run_query("Frage?")
        assert result.answer == TECHNICAL_DIFFICULTY_ANSWER
        assert result.error.startswith("embed:")

    def test_fallback_providers_mark_degraded(self, config: PolicyRagConfig):
        cache: ResultCache = ResultCache()
        pipeline = _make_pipeline(
            config,
            embedder=FallbackEmbedder(dimension=32),
            model=FallbackLanguageModel(),
            cache=cache,
        )
        result = pipeline.run_query("Was regelt § 433 BGB?")
        assert result.degraded is True
        assert "Kaufvertrag" in result.answer
        assert len(cache) == 0

    @pytest.mark.parametrize("question", ["", "   "])
    def test_empty_question_rejected(self, config: PolicyRagConfig, question: str):
        with pytest.raises(ValidationError):
            _make_pipeline(config).run_query(question)

    def test_too_long_question_rejected(self, config: PolicyRagConfig):
        config.query.max_question_chars = 20
        with pytest.raises(ValidationError, match="exceeds 20"):
            _make_pipeline(config).run_query("x" * 21)

    def test_to_dict(self, config: PolicyRagConfig):
        data = _make_pipeline(config).run_query("Was regelt § 433 BGB?").to_dict()
        assert data["sources"][0]["source"] == "BGB § 433 - Kaufvertrag"
        assert data["error"] is None
        assert set(data["timings"]) == {"embedMs", "searchMs", "assembleMs", "llmMs", "totalMs"}

    def test_info(self, config: PolicyRagConfig):
        pipeline = _make_pipeline(config, cache=ResultCache(ttl_s=60))
        info = pipeline.info()
        assert info["llm"]["model"] == "echo"
        assert info["embedding"]["dimension"] == 3
        assert info["retrieval"] == ["static"]
        assert info["cache"]["ttl_s"] == 60

    def test_from_config_without_keys(self, config: PolicyRagConfig):
        pipeline = QueryPipeline.from_config(config, store=RecordingStore())
        assert pipeline.embedder.is_degraded is True
        assert pipeline.generator.model.is_degraded is True
        assert pipeline.cache is not None
        assert [s.name for s in pipeline.retriever.strategies][0] == "primary"
