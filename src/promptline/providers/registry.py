from __future__ import annotations
from typing import Callable, Dict, List, Type
from importlib import import_module
from importlib.metadata import entry_points

from promptline.core.errors import ConfigurationError
from promptline.logging import get_logger
from promptline.providers.base import EventStreamAdapter, ProviderAdapter, RawStreamAdapter

logger = get_logger("providers")

PLUGIN_GROUP = "promptline.providers"


class ProviderRegistry:
    _classes: Dict[str, Type[ProviderAdapter]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[Type[ProviderAdapter]], Type[ProviderAdapter]]:
        name = name.lower()
        def deco(klass: Type[ProviderAdapter]) -> Type[ProviderAdapter]:
            if not issubclass(klass, (EventStreamAdapter, RawStreamAdapter)):
                raise TypeError(f"{klass.__name__} must derive from EventStreamAdapter or RawStreamAdapter")
            klass.name = name
            cls._classes[name] = klass
            return klass
        return deco

    @classmethod
    def get(cls, name: str) -> Type[ProviderAdapter]:
        key = (name or "").lower()
        if key not in cls._classes:
            raise ConfigurationError(f"Provider '{name}' not registered")
        return cls._classes[key]

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._classes)

    @classmethod
    def ensure_imports(cls) -> None:
        """
        Import built-in adapters so their @register decorators run.
        Call once at bootstrap before get().
        """
        import_module("promptline.providers.openai_adapter")
        import_module("promptline.providers.claude_adapter")
        import_module("promptline.providers.ollama_adapter")
        cls.load_plugins()

    @classmethod
    def load_plugins(cls) -> List[str]:
        """Import adapters advertised under the promptline.providers entry point group."""
        loaded: List[str] = []
        for ep in entry_points(group=PLUGIN_GROUP):
            try:
                ep.load()
            except ImportError as e:
                logger.warning("provider plugin %s failed to import: %s", ep.name, e)
                continue
            loaded.append(ep.name)
        return loaded
