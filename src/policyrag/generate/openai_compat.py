"""OpenAI-compatible chat completion provider.

Works with any server implementing the OpenAI /v1/chat/completions API.
HTTP failures are mapped onto the retry taxonomy: 429 is a rate limit,
408 and socket timeouts are timeouts, 5xx and connection errors mean the
service is unavailable, other 4xx are invalid requests.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from policyrag.exceptions import (
    GenerationError,
    InvalidRequestError,
    LLMTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
)
from policyrag.generate.base import BaseLanguageModel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.config import PolicyRagConfig
    from policyrag.generate.base import GenerationOptions
    from policyrag.types import RetrievalResult

__all__ = ["OpenAICompatLanguageModel"]

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatLanguageModel(BaseLanguageModel):
    """Language model behind an OpenAI-compatible chat completions endpoint.

    Config fields used::

        [llm]
        model = "gpt-4o-mini"
        api_key_env = "OPENAI_API_KEY"   # env var name; empty = no auth
        base_url = ""                     # empty = https://api.openai.com/v1
    """

    def __init__(self, config: PolicyRagConfig) -> None:
        self._model = config.llm.model
        self._base_url = (config.llm.base_url or _DEFAULT_BASE_URL).rstrip("/")

        self._api_key: str | None = None
        if config.llm.api_key_env:
            self._api_key = os.environ.get(config.llm.api_key_env)
            if not self._api_key:
                logger.warning(
                    "API key env var %s is not set; requests may fail",
                    config.llm.api_key_env,
                )

    @property
    def model_name(self) -> str:
        return self._model

    def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        *,
        question: str = "",
        context: Sequence[RetrievalResult] = (),
    ) -> str:
        url = f"{self._base_url}/chat/completions"
        payload = json.dumps(
            {
                "model": self._model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": options.temperature,
                "max_tokens": options.max_tokens,
            }
        ).encode("utf-8")

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        req = Request(url, data=payload, headers=headers, method="POST")
        logger.debug("Calling chat completions (%s, %d prompt chars)", self._model, len(prompt))

        try:
            with urlopen(req, timeout=options.timeout_s) as resp:
                body = resp.read()
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise GenerationError(f"LLM API returned invalid JSON from {url}") from e
        except HTTPError as e:
            raise self._map_http_error(e) from e
        except TimeoutError as e:
            raise LLMTimeoutError(
                f"LLM request timed out after {options.timeout_s}s", timeout_s=options.timeout_s
            ) from e
        except (ConnectionError, URLError) as e:
            if isinstance(getattr(e, "reason", None), TimeoutError):
                raise LLMTimeoutError(
                    f"LLM request timed out after {options.timeout_s}s",
                    timeout_s=options.timeout_s,
                ) from e
            raise ServiceUnavailableError(
                f"LLM API not reachable at {self._base_url}. Error: {e}"
            ) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError(f"Unexpected response format from {url}") from e
        if not isinstance(content, str) or not content.strip():
            raise GenerationError(f"Empty completion from {url}")
        return content

    @staticmethod
    def _map_http_error(e: HTTPError) -> Exception:
        status = e.code
        message = f"LLM API error (HTTP {status}): {e.reason}"
        if status == 429:
            return RateLimitError(message, status_code=status)
        if status == 408:
            return LLMTimeoutError(message)
        if status >= 500:
            return ServiceUnavailableError(message, status_code=status)
        return InvalidRequestError(message, status_code=status)

    def info(self) -> dict[str, Any]:
        return {
            "provider": "openai",
            "model": self._model,
            "endpoint": self._base_url,
            "degraded": False,
        }
