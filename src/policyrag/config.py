"""Configuration system for policyrag.

Manages service configuration via a TOML file with typed dataclasses
and sensible defaults for all values. Secrets never live in the file:
providers receive the *name* of an environment variable instead.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from policyrag.exceptions import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

_T = TypeVar("_T")

__all__ = [
    "CacheConfig",
    "ChunkConfig",
    "ContextConfig",
    "EmbeddingConfig",
    "LlmConfig",
    "PolicyRagConfig",
    "ProjectConfig",
    "QueryConfig",
    "RetrievalConfig",
    "RetryConfig",
    "StoreConfig",
    "default_config",
    "load_config",
    "save_config",
]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "policyrag.toml"


@dataclass
class ProjectConfig:
    """[project] section."""

    name: str = ""
    description: str = ""


@dataclass
class ChunkConfig:
    """[chunk] section."""

    target_tokens: int = 800
    overlap_tokens: int = 75
    min_tokens: int = 100
    max_tokens: int = 1000


@dataclass
class EmbeddingConfig:
    """[embedding] section."""

    provider: str = "openai"
    model: str = "text-embedding-3-small"
    base_url: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    dimension: int = 1536
    batch_size: int = 16
    batch_delay_ms: int = 100
    timeout_s: float = 10.0
    max_chars: int = 8000
    fallback_on_error: bool = False


@dataclass
class StoreConfig:
    """[store] section."""

    provider: str = "chroma"
    path: str = ".policyrag/index"
    collection_name: str = "policyrag"
    url: str = ""
    api_key_env: str = ""
    primary_procedure: str = "match_documents"
    secondary_procedure: str = "search_documents"
    keyword_table: str = "document_chunks"
    timeout_s: float = 10.0


@dataclass
class RetrievalConfig:
    """[retrieval] section."""

    threshold: float = 0.7
    max_results: int = 5
    keyword_limit: int = 5
    max_keywords: int = 5
    rpc_retries: int = 2
    rpc_initial_delay_s: float = 0.5


@dataclass
class ContextConfig:
    """[context] section."""

    max_chars: int = 4000
    min_fragment_chars: int = 100


@dataclass
class LlmConfig:
    """[llm] section."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    base_url: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    temperature: float = 0.7
    max_tokens: int = 2048
    timeout_s: float = 30.0


@dataclass
class RetryConfig:
    """[retry] section."""

    max_retries: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 10.0
    factor: float = 2.0


@dataclass
class CacheConfig:
    """[cache] section."""

    enabled: bool = True
    ttl_s: int = 300
    max_keys: int = 1000


@dataclass
class QueryConfig:
    """[query] section."""

    max_question_chars: int = 1000


@dataclass
class PolicyRagConfig:
    """Root configuration combining all sections."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    llm: LlmConfig = field(default_factory=LlmConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    query: QueryConfig = field(default_factory=QueryConfig)


_SECTIONS: dict[str, type] = {
    "project": ProjectConfig,
    "chunk": ChunkConfig,
    "embedding": EmbeddingConfig,
    "store": StoreConfig,
    "retrieval": RetrievalConfig,
    "context": ContextConfig,
    "llm": LlmConfig,
    "retry": RetryConfig,
    "cache": CacheConfig,
    "query": QueryConfig,
}


def default_config() -> PolicyRagConfig:
    """Return a config with all default values."""
    return PolicyRagConfig()


def _config_to_dict(config: PolicyRagConfig) -> dict[str, object]:
    """Convert PolicyRagConfig to a nested dict suitable for TOML serialization."""
    return {name: dict(vars(getattr(config, name))) for name in _SECTIONS}


def save_config(config: PolicyRagConfig, path: Path) -> None:
    """Save configuration to a TOML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = _config_to_dict(config)
    try:
        with path.open("wb") as f:
            tomli_w.dump(data, f)
        logger.info("Saved config to %s", path)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise ConfigError(f"Failed to save config to {path}: {e}") from e


def _load_section(cls: type[_T], data: dict[str, object]) -> _T:
    """Load a dataclass section from a dict, ignoring unknown keys."""
    known_fields = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in data.items() if k in known_fields}
    try:
        return cls(**filtered)
    except TypeError as e:
        raise ConfigError(f"Invalid values for section {cls.__name__}: {e}") from e


def _check_values(config: PolicyRagConfig) -> None:
    """Reject values no component can work with."""
    problems = []
    if not -1.0 <= config.retrieval.threshold <= 1.0:
        problems.append(
            f"retrieval.threshold must be in [-1, 1], got {config.retrieval.threshold}"
        )
    if config.embedding.dimension < 2:
        problems.append(f"embedding.dimension must be >= 2, got {config.embedding.dimension}")
    if config.retry.max_retries < 0:
        problems.append(f"retry.max_retries must not be negative, got {config.retry.max_retries}")
    if config.retrieval.rpc_retries < 0:
        problems.append(
            f"retrieval.rpc_retries must not be negative, got {config.retrieval.rpc_retries}"
        )
    for name in ("embedding", "llm", "store"):
        timeout = getattr(config, name).timeout_s
        if timeout <= 0:
            problems.append(f"{name}.timeout_s must be positive, got {timeout}")
    if config.cache.ttl_s <= 0 or config.cache.max_keys <= 0:
        problems.append("cache.ttl_s and cache.max_keys must be positive")
    if problems:
        raise ConfigError("Invalid config: " + "; ".join(problems))


def load_config(path: Path) -> PolicyRagConfig:
    """Load configuration from a TOML file.

    Missing sections or keys get default values.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = path.read_bytes()
        data = tomllib.loads(raw.decode("utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        raise ConfigError(f"Failed to load config from {path}: {e}") from e

    config = PolicyRagConfig()
    for name, cls in _SECTIONS.items():
        section = data.get(name)
        if isinstance(section, dict):
            setattr(config, name, _load_section(cls, section))

    _check_values(config)
    logger.info("Loaded config from %s", path)
    return config
