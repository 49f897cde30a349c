"""OpenAI-compatible embedding provider.

Works with any server implementing the OpenAI /v1/embeddings API:
OpenAI, Azure OpenAI behind a compatible gateway, LiteLLM proxy, vLLM, etc.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import TYPE_CHECKING, Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from policyrag.embed.base import BaseEmbedder, prepare_text
from policyrag.embed.fallback import FallbackEmbedder
from policyrag.exceptions import EmbeddingError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from policyrag.config import PolicyRagConfig

__all__ = ["DEFAULT_BASE_URL", "OpenAICompatEmbedder"]

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatEmbedder(BaseEmbedder):
    """Embedding provider using any OpenAI-compatible /v1/embeddings endpoint.

    Supports both cloud APIs (with API key) and local servers (without API key).

    Config fields used::

        [embedding]
        model = "text-embedding-3-small"
        api_key_env = "OPENAI_API_KEY"   # env var name; empty = no auth
        base_url = ""                     # empty = https://api.openai.com/v1
        dimension = 1536
        batch_size = 16
        batch_delay_ms = 100
        timeout_s = 10.0
        fallback_on_error = false
    """

    def __init__(
        self,
        config: PolicyRagConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        emb = config.embedding
        self._model = emb.model
        self._base_url = (emb.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._dimension = emb.dimension
        self._batch_size = emb.batch_size
        self._batch_delay_s = emb.batch_delay_ms / 1000
        self._timeout_s = emb.timeout_s
        self._max_chars = emb.max_chars
        self._sleep = sleep
        self._fallback = FallbackEmbedder.from_config(config) if emb.fallback_on_error else None
        self._fallback_calls = 0

        if self._batch_size < 1:
            raise EmbeddingError(f"batch_size must be >= 1, got {self._batch_size}")

        # Resolve API key from environment variable
        self._api_key: str | None = None
        if emb.api_key_env:
            self._api_key = os.environ.get(emb.api_key_env)
            if not self._api_key:
                logger.warning(
                    "API key env var %s is not set; requests may fail",
                    emb.api_key_env,
                )

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def fallback_calls(self) -> int:
        """Number of calls answered by the deterministic embedder after an API error."""
        return self._fallback_calls

    def embed(self, text: str) -> list[float]:
        """Generate an embedding for a search query or a single chunk.

        Raises:
            ValidationError: If the text is not a non-blank string.
            EmbeddingError: If the API fails and fallback is disabled.
        """
        prepared = prepare_text(text, self._max_chars)
        start = time.monotonic()
        vectors = self._with_fallback([prepared], lambda: self._call_embeddings([prepared]))
        logger.debug(
            "Embedded %d chars in %.0f ms", len(prepared), (time.monotonic() - start) * 1000
        )
        return vectors[0]

    def embed_batch(self, texts: Sequence[str], batch_size: int | None = None) -> list[list[float]]:
        """Embed *texts* in sequential fixed-size batches with a delay between batches.

        Any batch failure aborts the whole call; no partial output is returned.

        Raises:
            ValidationError: If any text is invalid (checked before any request).
            EmbeddingError: If a batch fails and fallback is disabled.
        """
        if not texts:
            return []
        size = batch_size or self._batch_size
        if size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {size}")

        prepared = [prepare_text(t, self._max_chars) for t in texts]
        vectors = self._with_fallback(prepared, lambda: self._embed_batches(prepared, size))
        logger.info(
            "Embedded %d texts via OpenAI-compatible API (%s)", len(vectors), self._model
        )
        return vectors

    def _embed_batches(self, texts: list[str], size: int) -> list[list[float]]:
        results: list[list[float]] = []
        for batch_start in range(0, len(texts), size):
            if batch_start:
                self._sleep(self._batch_delay_s)
            batch = texts[batch_start : batch_start + size]
            results.extend(self._call_embeddings(batch))
            logger.debug("Embedded batch %d/%d", min(batch_start + size, len(texts)), len(texts))
        return results

    def _with_fallback(
        self, texts: list[str], call: Callable[[], list[list[float]]]
    ) -> list[list[float]]:
        try:
            return call()
        except EmbeddingError as e:
            if self._fallback is None:
                raise
            logger.warning("Embedding API error, using fallback embedding: %s", e)
            self._fallback_calls += 1
            return [self._fallback.vector_for(t) for t in texts]

    def _call_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Call the /v1/embeddings endpoint.

        Args:
            texts: List of text strings to embed.

        Returns:
            List of embedding vectors, ordered by input index.

        Raises:
            EmbeddingError: On connection, API or format errors.
        """
        url = f"{self._base_url}/embeddings"
        payload = json.dumps({"model": self._model, "input": texts}).encode("utf-8")

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        req = Request(url, data=payload, headers=headers, method="POST")

        try:
            with urlopen(req, timeout=self._timeout_s) as resp:
                body = resp.read()
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise EmbeddingError(f"Embedding API returned invalid JSON from {url}") from e
        except HTTPError as e:
            raise EmbeddingError(f"Embedding API error (HTTP {e.code}): {e.reason}") from e
        except TimeoutError as e:
            raise EmbeddingError(
                f"Embedding API timed out after {self._timeout_s}s at {self._base_url}"
            ) from e
        except (ConnectionError, URLError) as e:
            raise EmbeddingError(
                f"Embedding API not reachable at {self._base_url}. Error: {e}"
            ) from e

        # Items carry an "index"; restore input order
        raw_items = data.get("data", []) if isinstance(data, dict) else []
        if raw_items and all("index" in item for item in raw_items):
            raw_items = sorted(raw_items, key=lambda x: x["index"])

        try:
            embeddings: list[list[float]] = [
                [float(v) for v in item["embedding"]] for item in raw_items
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Unexpected response format from {url}: missing 'embedding' field"
            ) from e

        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"API returned {len(embeddings)} embeddings for {len(texts)} inputs"
            )

        for vec in embeddings:
            if len(vec) != self._dimension:
                raise EmbeddingError(
                    f"Embedding dimension {len(vec)} does not match configured {self._dimension}"
                )

        return embeddings

    def info(self) -> dict[str, Any]:
        return {
            "provider": "openai",
            "model": self._model,
            "dimension": self._dimension,
            "endpoint": self._base_url,
            "degraded": False,
            "fallback_on_error": self._fallback is not None,
            "fallback_calls": self._fallback_calls,
        }
