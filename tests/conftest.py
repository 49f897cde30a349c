"""Shared fixtures for policyrag tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from policyrag.config import DEFAULT_CONFIG_FILE, PolicyRagConfig, save_config
from policyrag.types import Document, DocumentMetadata

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _no_api_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real credentials from leaking into tests."""
    for name in ("OPENAI_API_KEY", "TEST_API_KEY", "TEST_STORE_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config() -> PolicyRagConfig:
    """Default config with a small embedding dimension."""
    cfg = PolicyRagConfig()
    cfg.embedding.dimension = 32
    return cfg


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A working directory holding a config that keeps the index under tmp_path."""
    cfg = PolicyRagConfig()
    cfg.project.name = "test-project"
    cfg.embedding.dimension = 32
    cfg.store.path = str(tmp_path / "index")
    save_config(cfg, tmp_path / DEFAULT_CONFIG_FILE)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sample_document() -> Document:
    """A short German statute excerpt."""
    return Document(
        text=(
            "Durch den Kaufvertrag wird der Verkäufer einer Sache verpflichtet, dem Käufer "
            "die Sache zu übergeben. Der Käufer ist verpflichtet, den Kaufpreis zu zahlen. "
            "Die Pflichten gelten z.B. auch für Tiere. Näheres regelt Art. 5 des Vertrags."
        ),
        document_id="bgb_433",
        insurer_id="ins_1",
        metadata=DocumentMetadata(
            title="Kaufvertrag",
            category="zivilrecht",
            source_url="https://example.org/bgb/433",
        ),
    )
