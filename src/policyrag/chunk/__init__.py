"""Chunking engine: sentence-respecting, token-bounded splitting with overlap."""

from policyrag.chunk.base import BaseChunker, ChunkOptions
from policyrag.chunk.sentence import (
    SentenceChunker,
    chunk_document,
    estimate_tokens,
    split_sentences,
    validate_chunks,
)

__all__ = [
    "BaseChunker",
    "ChunkOptions",
    "SentenceChunker",
    "chunk_document",
    "estimate_tokens",
    "split_sentences",
    "validate_chunks",
]
