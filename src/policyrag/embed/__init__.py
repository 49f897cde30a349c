"""Embedding engine: abstract provider interface and concrete providers."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from policyrag.embed.base import BaseEmbedder, prepare_text
from policyrag.embed.fallback import FallbackEmbedder
from policyrag.embed.openai_compat import OpenAICompatEmbedder
from policyrag.embed.similarity import cosine_similarity, l2_normalize
from policyrag.registry import default_registry

if TYPE_CHECKING:
    from policyrag.config import PolicyRagConfig

__all__ = [
    "BaseEmbedder",
    "FallbackEmbedder",
    "OpenAICompatEmbedder",
    "cosine_similarity",
    "create_embedder",
    "l2_normalize",
    "prepare_text",
]

logger = logging.getLogger(__name__)

# Register built-in embedding providers
default_registry.register("embedding", "openai", lambda cfg: OpenAICompatEmbedder(cfg))
default_registry.register("embedding", "fallback", lambda cfg: FallbackEmbedder.from_config(cfg))


def create_embedder(config: PolicyRagConfig) -> BaseEmbedder:
    """Create the configured embedder.

    An ``openai`` provider with neither a custom base URL nor an API key
    in the environment cannot work, so the deterministic fallback is
    returned instead.
    """
    emb = config.embedding
    if emb.provider == "openai" and not emb.base_url:
        if not emb.api_key_env or not os.environ.get(emb.api_key_env):
            logger.warning(
                "No embedding API key configured (%s); using fallback embeddings",
                emb.api_key_env or "<unset>",
            )
            return FallbackEmbedder.from_config(config)
    embedder: BaseEmbedder = default_registry.create("embedding", emb.provider, config)
    return embedder
