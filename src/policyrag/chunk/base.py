"""Abstract base class for chunking strategies."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from policyrag.exceptions import ValidationError

if TYPE_CHECKING:
    from policyrag.config import PolicyRagConfig
    from policyrag.types import Chunk, Document

__all__ = ["BaseChunker", "ChunkOptions"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkOptions:
    """Token budget for a chunking run."""

    target_tokens: int = 800
    overlap_tokens: int = 75
    min_tokens: int = 100
    max_tokens: int = 1000

    def __post_init__(self) -> None:
        if self.max_tokens <= 0 or self.target_tokens <= 0:
            raise ValidationError("target_tokens and max_tokens must be positive")
        if self.min_tokens < 0 or self.overlap_tokens < 0:
            raise ValidationError("min_tokens and overlap_tokens must not be negative")
        if not self.min_tokens <= self.target_tokens <= self.max_tokens:
            raise ValidationError(
                "Expected min_tokens <= target_tokens <= max_tokens, got "
                f"{self.min_tokens}/{self.target_tokens}/{self.max_tokens}"
            )
        if self.overlap_tokens >= self.target_tokens:
            raise ValidationError(
                f"overlap_tokens ({self.overlap_tokens}) must be below "
                f"target_tokens ({self.target_tokens})"
            )

    @classmethod
    def from_config(cls, config: PolicyRagConfig) -> ChunkOptions:
        return cls(
            target_tokens=config.chunk.target_tokens,
            overlap_tokens=config.chunk.overlap_tokens,
            min_tokens=config.chunk.min_tokens,
            max_tokens=config.chunk.max_tokens,
        )


class BaseChunker(ABC):
    """Base class for all chunking strategies.

    Subclasses split a ``Document`` into a list of ``Chunk`` objects.
    """

    @abstractmethod
    def chunk(self, document: Document, options: ChunkOptions) -> list[Chunk]:
        """Split a document into chunks.

        Args:
            document: The cleaned document to chunk.
            options: Token budget (target, overlap, min, max).

        Returns:
            List of chunks with sequential indices and document metadata.

        Raises:
            ChunkError: If chunking fails.
        """
