"""Sentence-respecting chunker with heuristic token estimation.

Splits Document text into Chunk objects:
- Sentences are atomic; abbreviations never cause spurious breaks
- Chunks close at the target size (2+ sentences) or before exceeding max
- Trailing whole sentences of each chunk seed the next one as overlap
- A too-small trailing fragment is dropped unless it is the only chunk
"""

from __future__ import annotations

import logging
import math
import re
from collections import deque
from typing import TYPE_CHECKING, ClassVar

from policyrag.chunk.base import BaseChunker, ChunkOptions
from policyrag.exceptions import ChunkError, ValidationError
from policyrag.types import Chunk, ChunkValidation

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.types import Document

__all__ = [
    "SentenceChunker",
    "chunk_document",
    "estimate_tokens",
    "split_sentences",
    "validate_chunks",
]

logger = logging.getLogger(__name__)

# Abbreviations whose periods must not end a sentence.
ABBREVIATIONS: tuple[str, ...] = (
    "z.B.",
    "u.a.",
    "d.h.",
    "i.d.R.",
    "Dr.",
    "Prof.",
    "etc.",
    "usw.",
    "bzw.",
    "inkl.",
    "ggf.",
    "evtl.",
    "vgl.",
    "Nr.",
    "Abs.",
    "Art.",
    "ca.",
    "e.g.",
    "i.e.",
)

_MASK = "\x00"
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")
_ABBREVIATION_RE = re.compile(
    "|".join(
        rf"(?<![\w.]){re.escape(a)}"
        for a in sorted(ABBREVIATIONS, key=len, reverse=True)
    )
)

# Quality thresholds for validate_chunks.
_SHORT_CHUNK_TOKENS = 50
_LONG_CHUNK_FACTOR = 1.5
_OPTIMAL_AVG_RANGE = (400, 1200)


def _estimate(chars: int, words: int) -> int:
    if chars == 0:
        return 0
    char_based = math.ceil(chars / 4)
    word_based = math.ceil(words * 1.3)  # compound-heavy languages
    return (char_based + word_based) // 2


def estimate_tokens(text: str) -> int:
    """Approximate token count: average of a char-based and a word-based estimate.

    Deterministic and non-decreasing as text grows.
    """
    if not text:
        return 0
    return _estimate(len(text), len(text.split()))


def split_sentences(text: str) -> list[str]:
    """Split text on ``.``, ``!`` and ``?`` boundaries, keeping the punctuation.

    Known abbreviations (``Dr.``, ``z.B.``, ``etc.`` ...) are masked before
    splitting and restored after.
    """
    if not text:
        return []

    masked = _ABBREVIATION_RE.sub(lambda m: m.group(0).replace(".", _MASK), text)
    sentences = []
    for part in _SENTENCE_END_RE.split(masked):
        sentence = part.replace(_MASK, ".").strip()
        if sentence:
            sentences.append(sentence)
    return sentences


def _split_at_budget(sentence: str, budget: int) -> tuple[str, str]:
    """Split *sentence* at a word boundary so the head fits within *budget* tokens.

    Falls back to a character split when not even the first word fits.
    """
    words = sentence.split()
    chars = 0
    taken = 0
    for word in words:
        next_chars = chars + len(word) + (1 if taken else 0)
        if _estimate(next_chars, taken + 1) > budget:
            break
        chars = next_chars
        taken += 1

    if taken == 0:
        word = words[0]
        cut = 1
        while cut < len(word) and estimate_tokens(word[: cut + 1]) <= budget:
            cut += 1
        head = word[:cut]
        tail = " ".join([word[cut:], *words[1:]]).strip()
        return head, tail

    return " ".join(words[:taken]), " ".join(words[taken:])


def _fit_sentences(sentences: list[str], max_tokens: int) -> list[str]:
    """Break any sentence whose estimate exceeds max_tokens into word-bounded pieces."""
    fitted: list[str] = []
    for sentence in sentences:
        remaining = sentence
        while estimate_tokens(remaining) > max_tokens:
            head, remaining = _split_at_budget(remaining, max_tokens)
            fitted.append(head)
        if remaining:
            fitted.append(remaining)
    return fitted


class _ChunkBuilder:
    """Greedy sentence accumulator; emits (sentences, tokens, start, end) tuples."""

    def __init__(self, options: ChunkOptions) -> None:
        self.options = options
        self.current: list[tuple[str, int]] = []
        self.tokens = 0
        self.fresh = 0
        self.position = 0
        self.emitted: list[tuple[list[str], int, int, int]] = []

    def add(self, sentence: str, tokens: int) -> None:
        self.current.append((sentence, tokens))
        self.tokens += tokens
        self.fresh += 1
        self.position += 1

    def shed_seed(self, incoming: int) -> None:
        """Drop overlap sentences from the front until *incoming* fits."""
        while self.current and self.fresh < len(self.current):
            if self.tokens + incoming <= self.options.max_tokens:
                return
            _, tokens = self.current.pop(0)
            self.tokens -= tokens

    def close(self) -> None:
        sentences = [s for s, _ in self.current]
        start = self.position - len(self.current)
        self.emitted.append((sentences, self.tokens, start, self.position - 1))

        seed: list[tuple[str, int]] = []
        seed_tokens = 0
        for sentence, tokens in reversed(self.current):
            if seed_tokens + tokens > self.options.overlap_tokens:
                break
            seed.insert(0, (sentence, tokens))
            seed_tokens += tokens

        self.current = seed
        self.tokens = seed_tokens
        self.fresh = 0


class SentenceChunker(BaseChunker):
    """Greedy sentence accumulator producing overlapping, token-bounded chunks."""

    ABBREVIATIONS: ClassVar[tuple[str, ...]] = ABBREVIATIONS

    def chunk(self, document: Document, options: ChunkOptions) -> list[Chunk]:
        """Split a Document into chunks.

        Args:
            document: Cleaned document with metadata.
            options: Token budget.

        Returns:
            Chunks with indices ``0..N-1`` and the document's metadata.

        Raises:
            ChunkError: If chunking fails unexpectedly.
        """
        try:
            return self._do_chunk(document, options)
        except (ChunkError, ValidationError):
            raise
        except Exception as e:
            logger.error("Failed to chunk document %s: %s", document.document_id, e)
            raise ChunkError(f"Failed to chunk document {document.document_id}: {e}") from e

    def _do_chunk(self, document: Document, options: ChunkOptions) -> list[Chunk]:
        text = document.text.strip()
        if not text:
            return []

        sentences = _fit_sentences(split_sentences(text), options.max_tokens)
        builder = _ChunkBuilder(options)
        pending = deque(sentences)

        while pending:
            sentence = pending.popleft()
            tokens = estimate_tokens(sentence)

            if builder.current and builder.tokens + tokens > options.max_tokens:
                if builder.fresh == 0:
                    builder.shed_seed(tokens)
                elif builder.tokens < options.min_tokens:
                    # Too little content to close: fill up with the head of the
                    # incoming sentence, the tail goes back to the queue.
                    head, tail = _split_at_budget(sentence, options.max_tokens - builder.tokens)
                    builder.add(head, estimate_tokens(head))
                    if tail:
                        pending.appendleft(tail)
                    builder.close()
                    continue
                else:
                    builder.close()
                    builder.shed_seed(tokens)

            builder.add(sentence, tokens)

            if builder.tokens >= options.target_tokens and len(builder.current) >= 2:
                builder.close()

        # Trailing content: a pure overlap seed carries nothing new.
        if builder.fresh > 0:
            is_only_chunk = not builder.emitted
            if is_only_chunk or builder.tokens >= options.min_tokens:
                builder.close()
            else:
                logger.debug(
                    "Dropped trailing fragment of %d tokens from %s",
                    builder.tokens,
                    document.document_id,
                )

        chunks = [
            Chunk(
                document_id=document.document_id,
                insurer_id=document.insurer_id,
                text=" ".join(parts),
                index=index,
                token_count=tokens,
                metadata=document.metadata,
                sentence_count=len(parts),
                start_sentence=start,
                end_sentence=end,
            )
            for index, (parts, tokens, start, end) in enumerate(builder.emitted)
        ]

        logger.info(
            "Chunked %s into %d chunks (target=%d, overlap=%d, max=%d)",
            document.document_id or "<document>",
            len(chunks),
            options.target_tokens,
            options.overlap_tokens,
            options.max_tokens,
        )
        return chunks


def chunk_document(document: Document, options: ChunkOptions | None = None) -> list[Chunk]:
    """Chunk a document with the default SentenceChunker."""
    return SentenceChunker().chunk(document, options or ChunkOptions())


def validate_chunks(chunks: Sequence[Chunk], max_tokens: int = 1000) -> ChunkValidation:
    """Inspect a chunk set for quality problems without failing.

    Flags chunks below 50 tokens or above 1.5 × ``max_tokens``, empty
    chunk text, and an average outside the optimal range.
    """
    if not chunks:
        return ChunkValidation(valid=False, warnings=("No chunks provided",))

    counts = [c.token_count for c in chunks]
    total = sum(counts)
    avg = round(total / len(counts))
    long_limit = max_tokens * _LONG_CHUNK_FACTOR

    short = tuple(c.index for c in chunks if c.token_count < _SHORT_CHUNK_TOKENS)
    long = tuple(c.index for c in chunks if c.token_count > long_limit)
    empty = [c.index for c in chunks if not c.text.strip()]

    warnings: list[str] = []
    if short:
        warnings.append(f"Some chunks are very short (min: {min(counts)} tokens)")
    if long:
        warnings.append(f"Some chunks are very long (max: {max(counts)} tokens)")
    low, high = _OPTIMAL_AVG_RANGE
    if not low <= avg <= high:
        warnings.append(f"Average chunk size is outside optimal range: {avg} tokens")
    if empty:
        warnings.append(f"{len(empty)} chunks have empty text")

    for warning in warnings:
        logger.warning("Chunk validation: %s", warning)

    return ChunkValidation(
        valid=not warnings,
        warnings=tuple(warnings),
        count=len(chunks),
        avg_tokens=avg,
        min_tokens=min(counts),
        max_tokens=max(counts),
        total_tokens=total,
        short_chunks=short,
        long_chunks=long,
    )
