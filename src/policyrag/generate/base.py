"""Abstract base class for language model providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.config import LlmConfig
    from policyrag.types import RetrievalResult

__all__ = ["BaseLanguageModel", "GenerationOptions"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling and time budget for one generation call."""

    temperature: float = 0.7
    max_tokens: int = 2048
    timeout_s: float = 30.0

    @classmethod
    def from_config(cls, config: LlmConfig) -> GenerationOptions:
        return cls(
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_s=config.timeout_s,
        )


class BaseLanguageModel(ABC):
    """Base class for all language model providers.

    ``question`` and ``context`` are passed alongside the prompt for
    providers that compose answers locally; remote providers use the
    prompt only.
    """

    @abstractmethod
    def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        *,
        question: str = "",
        context: Sequence[RetrievalResult] = (),
    ) -> str:
        """Generate a completion for *prompt*.

        Raises:
            TransientError: On timeouts, rate limits, 5xx and connection failures.
            InvalidRequestError: On other 4xx responses.
            GenerationError: On malformed responses.
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier reported in answer metadata."""

    @property
    def is_degraded(self) -> bool:
        """True when answers are not produced by a real language model."""
        return False

    def info(self) -> dict[str, Any]:
        return {
            "provider": type(self).__name__,
            "model": self.model_name,
            "degraded": self.is_degraded,
        }
