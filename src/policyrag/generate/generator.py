"""Answer generation under timeout and retry discipline."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from policyrag.exceptions import ValidationError
from policyrag.generate.base import GenerationOptions
from policyrag.generate.prompts import build_prompt
from policyrag.resilience import retry_with_backoff, with_timeout
from policyrag.tokens import count_tokens_or_estimate
from policyrag.types import GeneratedAnswer

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from policyrag.config import PolicyRagConfig
    from policyrag.generate.base import BaseLanguageModel
    from policyrag.types import QueryFilters, RetrievalResult

__all__ = ["AnswerGenerator"]

logger = logging.getLogger(__name__)


class AnswerGenerator:
    """Builds the prompt and calls the language model.

    Each attempt runs under ``with_timeout``; transient failures (timeouts,
    rate limits, 5xx, connection errors) are retried with exponential
    backoff. Once retries are exhausted the last error propagates.
    ``on_retry(attempt, error, delay_s)`` is called before each backoff sleep.
    """

    def __init__(
        self,
        model: BaseLanguageModel,
        options: GenerationOptions | None = None,
        *,
        max_retries: int = 3,
        initial_delay_s: float = 1.0,
        max_delay_s: float = 10.0,
        factor: float = 2.0,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._model = model
        self._options = options or GenerationOptions()
        self._max_retries = max_retries
        self._initial_delay_s = initial_delay_s
        self._max_delay_s = max_delay_s
        self._factor = factor
        self._on_retry = on_retry
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        model: BaseLanguageModel,
        config: PolicyRagConfig,
        *,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> AnswerGenerator:
        return cls(
            model,
            GenerationOptions.from_config(config.llm),
            max_retries=config.retry.max_retries,
            initial_delay_s=config.retry.initial_delay_s,
            max_delay_s=config.retry.max_delay_s,
            factor=config.retry.factor,
            on_retry=on_retry,
            sleep=sleep,
        )

    @property
    def model(self) -> BaseLanguageModel:
        return self._model

    def generate(
        self,
        question: str,
        context: Sequence[RetrievalResult],
        filters: QueryFilters | None = None,
    ) -> GeneratedAnswer:
        """Answer *question* from *context*.

        Raises:
            ValidationError: If the question is blank.
            TransientError: If every attempt failed transiently.
            GenerationError: On a non-retryable model failure.
        """
        if not isinstance(question, str) or not question.strip():
            raise ValidationError("Question must be a non-empty string")

        prompt = build_prompt(question, context, filters)
        attempts = 0
        start = time.monotonic()

        def _attempt() -> str:
            nonlocal attempts
            attempts += 1
            return with_timeout(
                lambda: self._model.generate(
                    prompt, self._options, question=question, context=context
                ),
                self._options.timeout_s,
                "LLM generation timed out",
            )

        answer = retry_with_backoff(
            _attempt,
            max_retries=self._max_retries,
            initial_delay_s=self._initial_delay_s,
            max_delay_s=self._max_delay_s,
            factor=self._factor,
            on_retry=self._on_retry,
            sleep=self._sleep,
        )
        duration_ms = (time.monotonic() - start) * 1000

        logger.info(
            "Generated answer with %s (%d context chunks, %d attempts, %.0f ms)",
            self._model.model_name,
            len(context),
            attempts,
            duration_ms,
        )
        return GeneratedAnswer(
            answer=answer,
            metadata={
                "model": self._model.model_name,
                "context_chunks": len(context),
                "prompt_tokens": count_tokens_or_estimate(prompt),
                "duration_ms": round(duration_ms, 1),
                "attempts": attempts,
                "degraded": self._model.is_degraded,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
