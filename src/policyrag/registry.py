"""Named provider factories for the external collaborators.

The embedding client, the language model and the vector store are chosen
by name in the config (``[embedding] provider = "openai"``). Each provider
package registers its factories on import; ``default_registry`` imports
them the first time it is asked for one.
"""

from __future__ import annotations

import importlib
import logging
import threading
from typing import TYPE_CHECKING, Any

from policyrag.exceptions import PluginError

if TYPE_CHECKING:
    from collections.abc import Callable

    from policyrag.config import PolicyRagConfig

    ProviderFactory = Callable[[PolicyRagConfig], Any]

__all__ = ["PROVIDER_PACKAGES", "ProviderRegistry", "default_registry"]

logger = logging.getLogger(__name__)

# Packages whose import registers the built-in providers.
PROVIDER_PACKAGES: tuple[str, ...] = ("policyrag.embed", "policyrag.generate", "policyrag.store")


class ProviderRegistry:
    """Factories keyed by ``(category, name)``.

    Usage::

        registry = ProviderRegistry()
        registry.register("llm", "fallback", lambda cfg: FallbackLanguageModel())
        model = registry.create("llm", config.llm.provider, config)
    """

    def __init__(self, *, discover: tuple[str, ...] = ()) -> None:
        self._factories: dict[tuple[str, str], ProviderFactory] = {}
        self._pending = list(discover)
        self._lock = threading.Lock()

    def register(self, category: str, name: str, factory: ProviderFactory) -> None:
        """Add *factory* under ``category/name``.

        Raises:
            PluginError: If the name is already taken in that category.
        """
        key = (category, name)
        if key in self._factories:
            raise PluginError(f"Provider '{name}' already registered in category '{category}'")
        self._factories[key] = factory
        logger.debug("Registered provider %s/%s", category, name)

    def _discover(self) -> None:
        with self._lock:
            packages, self._pending = self._pending, []
        for package in packages:
            importlib.import_module(package)

    def names(self, category: str) -> list[str]:
        return sorted(n for c, n in self._factories if c == category)

    def create(self, category: str, name: str, config: PolicyRagConfig) -> Any:
        """Build the provider registered as ``category/name`` from *config*.

        Raises:
            PluginError: If nothing is registered under that category or name.
        """
        self._discover()
        factory = self._factories.get((category, name))
        if factory is None:
            available = self.names(category)
            if not available:
                raise PluginError(f"Unknown provider category '{category}'")
            raise PluginError(
                f"Unknown provider '{name}' in category '{category}'. Available: {available}"
            )
        logger.info("Creating %s provider %r", category, name)
        return factory(config)

    def list_providers(self, category: str) -> list[str]:
        self._discover()
        return self.names(category)

    def has_provider(self, category: str, name: str) -> bool:
        self._discover()
        return (category, name) in self._factories


default_registry = ProviderRegistry(discover=PROVIDER_PACKAGES)
