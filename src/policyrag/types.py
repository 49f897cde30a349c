"""Pipeline data contracts for policyrag.

Frozen dataclasses that flow between pipeline stages:
  Document → list[Chunk] → list[EmbeddedChunk] → stored
  Query → vector → RetrievalOutcome → context → GeneratedAnswer → PipelineResult
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "Chunk",
    "ChunkValidation",
    "Document",
    "DocumentMetadata",
    "EmbeddedChunk",
    "GeneratedAnswer",
    "PipelineResult",
    "Query",
    "QueryFilters",
    "RetrievalOutcome",
    "RetrievalResult",
    "StageTimings",
]

_WHITESPACE_RE = re.compile(r"\s+")

# Keys of the chunker's document record that map onto typed fields.
_DOCUMENT_KEYS = frozenset({"text", "documentId", "insurerId", "title", "category", "sourceUrl"})
_METADATA_KEYS = {
    "page": "page",
    "section": "section",
    "documentType": "document_type",
    "insuranceType": "category",
}


@dataclass(frozen=True)
class DocumentMetadata:
    """Known document fields plus an open extension map for anything else."""

    title: str = ""
    category: str = ""
    source_url: str = ""
    page: int = 0
    section: str = ""
    document_type: str = ""
    extra: tuple[tuple[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the JSON shape carried on chunk records."""
        data: dict[str, Any] = {
            "title": self.title or None,
            "category": self.category or None,
            "sourceUrl": self.source_url or None,
        }
        if self.page:
            data["page"] = self.page
        if self.section:
            data["section"] = self.section
        if self.document_type:
            data["documentType"] = self.document_type
        data.update(dict(self.extra))
        return data


@dataclass(frozen=True)
class Document:
    """A cleaned source document awaiting chunking."""

    text: str
    document_id: str = ""
    insurer_id: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Document:
        """Build a Document from the ingestion record ``{text, documentId, ...}``."""
        known: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for key, value in data.items():
            if key in _DOCUMENT_KEYS or value is None:
                continue
            if key in _METADATA_KEYS:
                known.setdefault(_METADATA_KEYS[key], value)
            else:
                extras[key] = value

        page = 0
        if known.get("page"):
            try:
                page = int(known["page"])
            except (TypeError, ValueError):
                # Roman numerals and similar labels stay available as-is.
                extras["page"] = known["page"]

        metadata = DocumentMetadata(
            title=str(data.get("title") or ""),
            category=str(data.get("category") or known.get("category") or ""),
            source_url=str(data.get("sourceUrl") or ""),
            page=page,
            section=str(known.get("section") or ""),
            document_type=str(known.get("document_type") or ""),
            extra=tuple(sorted(extras.items())),
        )
        return cls(
            text=str(data.get("text") or ""),
            document_id=str(data.get("documentId") or ""),
            insurer_id=str(data.get("insurerId") or ""),
            metadata=metadata,
        )


@dataclass(frozen=True)
class Chunk:
    """A contiguous, token-bounded span of a source document."""

    document_id: str
    text: str
    index: int
    token_count: int
    insurer_id: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    sentence_count: int = 0
    start_sentence: int = 0
    end_sentence: int = 0

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id or 'doc'}_chunk_{self.index:04d}"

    def to_record(self) -> dict[str, Any]:
        """Serialize to the chunk record consumed by the ingestion stage."""
        metadata = self.metadata.to_dict()
        metadata.update(
            {
                "sentences": self.sentence_count,
                "startSentence": self.start_sentence,
                "endSentence": self.end_sentence,
            }
        )
        return {
            "documentId": self.document_id or None,
            "insurerId": self.insurer_id or None,
            "chunkText": self.text,
            "chunkIndex": self.index,
            "tokenCount": self.token_count,
            "metadata": metadata,
        }


@dataclass(frozen=True)
class EmbeddedChunk:
    """A chunk with its embedding vector attached."""

    chunk: Chunk
    embedding: tuple[float, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ChunkValidation:
    """Quality report for a produced chunk set. Flags, never fails."""

    valid: bool
    warnings: tuple[str, ...] = ()
    count: int = 0
    avg_tokens: int = 0
    min_tokens: int = 0
    max_tokens: int = 0
    total_tokens: int = 0
    short_chunks: tuple[int, ...] = ()
    long_chunks: tuple[int, ...] = ()


@dataclass(frozen=True)
class QueryFilters:
    """Optional metadata restrictions on retrieval."""

    category: str = ""
    source: str = ""

    def as_dict(self) -> dict[str, str]:
        """Non-empty filters only."""
        return {k: v for k, v in (("category", self.category), ("source", self.source)) if v}

    def __bool__(self) -> bool:
        return bool(self.category or self.source)


@dataclass(frozen=True)
class Query:
    """Stateless pipeline input; identity is its content."""

    text: str
    filters: QueryFilters = field(default_factory=QueryFilters)
    threshold: float | None = None
    max_results: int | None = None

    def normalized_text(self) -> str:
        return _WHITESPACE_RE.sub(" ", self.text).strip().lower()

    def cache_key(self) -> str:
        """Deterministic key over the normalized question and filters."""
        parts = [self.normalized_text()]
        parts.extend(f"{k}={v}" for k, v in sorted(self.filters.as_dict().items()))
        if self.threshold is not None:
            parts.append(f"threshold={self.threshold}")
        if self.max_results is not None:
            parts.append(f"max_results={self.max_results}")
        return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class RetrievalResult:
    """A retrieved chunk and its similarity to the query (cosine, in [-1, 1])."""

    chunk_id: str
    text: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)

    @property
    def source_label(self) -> str:
        """Human-readable origin: law code and paragraph, else document title."""
        law = str(self.metadata.get("law_code") or self.metadata.get("insurer_name") or "")
        paragraph = str(self.metadata.get("paragraph_number") or "")
        title = str(self.metadata.get("title") or self.metadata.get("document_title") or "")
        label = " ".join(p for p in (law, paragraph) if p)
        if title:
            label = f"{label} - {title}" if label else title
        return label or self.chunk_id


@dataclass(frozen=True)
class RetrievalOutcome:
    """What the retrieval cascade produced, and how."""

    results: tuple[RetrievalResult, ...] = ()
    strategy: str = ""
    below_threshold: bool = False
    degraded: bool = False
    errors: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class StageTimings:
    """Wall-clock duration per pipeline stage, in milliseconds."""

    embed_ms: float = 0.0
    search_ms: float = 0.0
    assemble_ms: float = 0.0
    llm_ms: float = 0.0
    total_ms: float = 0.0


@dataclass(frozen=True)
class GeneratedAnswer:
    """Language model output plus generation metadata."""

    answer: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineResult:
    """End-to-end answer for one query. Not persisted; optionally cached."""

    question: str
    answer: str
    sources: tuple[RetrievalResult, ...] = ()
    timings: StageTimings = field(default_factory=StageTimings)
    cached: bool = False
    degraded: bool = False
    below_threshold: bool = False
    strategy: str = ""
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "sources": [
                {
                    "id": s.chunk_id,
                    "text": s.text,
                    "similarity": s.similarity,
                    "source": s.source_label,
                    "metadata": s.metadata,
                }
                for s in self.sources
            ],
            "timings": {
                "embedMs": self.timings.embed_ms,
                "searchMs": self.timings.search_ms,
                "assembleMs": self.timings.assemble_ms,
                "llmMs": self.timings.llm_ms,
                "totalMs": self.timings.total_ms,
            },
            "cached": self.cached,
            "degraded": self.degraded,
            "belowThreshold": self.below_threshold,
            "strategy": self.strategy,
            "error": self.error or None,
        }
