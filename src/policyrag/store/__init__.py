"""Vector store: local ChromaDB persistence or a remote PostgREST API."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from policyrag.registry import default_registry
from policyrag.store.base import BaseVectorStore, StoreMatch
from policyrag.store.chroma import ChromaStore
from policyrag.store.rest import RestRpcStore

if TYPE_CHECKING:
    from policyrag.config import PolicyRagConfig

__all__ = ["BaseVectorStore", "ChromaStore", "RestRpcStore", "StoreMatch", "create_store"]

# Register built-in stores
default_registry.register(
    "store",
    "chroma",
    lambda cfg: ChromaStore(Path(cfg.store.path), collection_name=cfg.store.collection_name),
)
default_registry.register("store", "rest", lambda cfg: RestRpcStore.from_config(cfg))


def create_store(config: PolicyRagConfig) -> BaseVectorStore:
    """Create the vector store named by ``[store] provider``."""
    store: BaseVectorStore = default_registry.create("store", config.store.provider, config)
    return store
