"""Answer generation: prompt building, language model providers and the generator."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from policyrag.generate.base import BaseLanguageModel, GenerationOptions
from policyrag.generate.fallback import FallbackLanguageModel
from policyrag.generate.generator import AnswerGenerator
from policyrag.generate.openai_compat import OpenAICompatLanguageModel
from policyrag.generate.prompts import build_prompt, format_source
from policyrag.registry import default_registry

if TYPE_CHECKING:
    from policyrag.config import PolicyRagConfig

__all__ = [
    "AnswerGenerator",
    "BaseLanguageModel",
    "FallbackLanguageModel",
    "GenerationOptions",
    "OpenAICompatLanguageModel",
    "build_prompt",
    "create_language_model",
    "format_source",
]

logger = logging.getLogger(__name__)

# Register built-in language model providers
default_registry.register("llm", "openai", lambda cfg: OpenAICompatLanguageModel(cfg))
default_registry.register("llm", "fallback", lambda cfg: FallbackLanguageModel())


def create_language_model(config: PolicyRagConfig) -> BaseLanguageModel:
    """Create the configured language model.

    An ``openai`` provider with neither a custom base URL nor an API key in
    the environment falls back to the offline model.
    """
    llm = config.llm
    if llm.provider == "openai" and not llm.base_url:
        if not llm.api_key_env or not os.environ.get(llm.api_key_env):
            logger.warning(
                "No LLM API key configured (%s); using fallback answers",
                llm.api_key_env or "<unset>",
            )
            return FallbackLanguageModel()
    model: BaseLanguageModel = default_registry.create("llm", llm.provider, config)
    return model
