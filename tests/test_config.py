"""Tests for policyrag.config module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from policyrag.config import PolicyRagConfig, default_config, load_config, save_config
from policyrag.exceptions import ConfigError

if TYPE_CHECKING:
    from pathlib import Path


class TestDefaultConfig:
    def test_chunk_defaults(self):
        config = default_config()
        assert config.chunk.target_tokens == 800
        assert config.chunk.overlap_tokens == 75
        assert config.chunk.min_tokens == 100
        assert config.chunk.max_tokens == 1000

    def test_retrieval_and_context_defaults(self):
        config = default_config()
        assert config.retrieval.threshold == 0.7
        assert config.retrieval.max_results == 5
        assert config.retrieval.rpc_retries == 2
        assert config.retrieval.rpc_initial_delay_s == 0.5
        assert config.context.max_chars == 4000

    def test_retry_defaults(self):
        config = default_config()
        assert config.retry.max_retries == 3
        assert config.retry.initial_delay_s == 1.0
        assert config.retry.factor == 2.0

    def test_cache_enabled_by_default(self):
        config = default_config()
        assert config.cache.enabled is True
        assert config.cache.ttl_s == 300


class TestConfigRoundTrip:
    def test_save_and_load_defaults(self, tmp_path: Path):
        path = tmp_path / "policyrag.toml"
        original = default_config()
        save_config(original, path)
        assert load_config(path) == original

    def test_save_and_load_custom_values(self, tmp_path: Path):
        path = tmp_path / "policyrag.toml"
        config = PolicyRagConfig()
        config.project.name = "avb-index"
        config.store.provider = "rest"
        config.store.url = "https://db.example.org"
        config.llm.temperature = 0.2
        config.cache.enabled = False
        save_config(config, path)

        loaded = load_config(path)
        assert loaded.project.name == "avb-index"
        assert loaded.store.provider == "rest"
        assert loaded.store.url == "https://db.example.org"
        assert loaded.llm.temperature == 0.2
        assert loaded.cache.enabled is False

    def test_save_creates_parent_dirs(self, tmp_path: Path):
        path = tmp_path / "nested" / "dir" / "policyrag.toml"
        save_config(default_config(), path)
        assert path.exists()


class TestLoadConfig:
    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_invalid_toml_raises(self, tmp_path: Path):
        path = tmp_path / "bad.toml"
        path.write_text("[chunk\ntarget_tokens = ", encoding="utf-8")
        with pytest.raises(ConfigError, match="Failed to load"):
            load_config(path)

    def test_partial_config_gets_defaults(self, tmp_path: Path):
        path = tmp_path / "partial.toml"
        path.write_text("[retrieval]\nthreshold = 0.5\n", encoding="utf-8")
        config = load_config(path)
        assert config.retrieval.threshold == 0.5
        assert config.retrieval.max_results == 5
        assert config.chunk.target_tokens == 800

    def test_unknown_keys_ignored(self, tmp_path: Path):
        path = tmp_path / "extra.toml"
        path.write_text(
            '[llm]\nmodel = "local"\nunknown = 1\n\n[unknown_section]\nkey = "value"\n',
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.llm.model == "local"

    def test_out_of_range_values_rejected(self, tmp_path: Path):
        path = tmp_path / "range.toml"
        path.write_text(
            "[retrieval]\nthreshold = 1.5\n\n[llm]\ntimeout_s = 0\n", encoding="utf-8"
        )
        with pytest.raises(ConfigError, match="retrieval.threshold") as exc_info:
            load_config(path)
        assert "llm.timeout_s" in str(exc_info.value)

    def test_negative_retries_rejected(self, tmp_path: Path):
        path = tmp_path / "retry.toml"
        path.write_text("[retry]\nmax_retries = -1\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="max_retries"):
            load_config(path)

    def test_negative_rpc_retries_rejected(self, tmp_path: Path):
        path = tmp_path / "retrieval.toml"
        path.write_text("[retrieval]\nrpc_retries = -2\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="retrieval.rpc_retries"):
            load_config(path)
