# src/promptline/secrets/sources.py

from __future__ import annotations
from typing import Protocol, Optional, Dict, Iterable, List, Tuple, Union
import os

import keyring as _keyring
from keyring.errors import KeyringError

from promptline.core.errors import ConfigurationError
from promptline.logging import get_logger

logger = get_logger("secrets")

KEYRING_SERVICE = "promptline"

# Variables the vendors' own tooling reads
PROVIDER_ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "claude": ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
}


class SecretSource(Protocol):
    label: str

    def lookup(self, provider: str, name: str, hint: Optional[str]) -> Optional[str]: ...


def _clean(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    val = val.strip()
    return val or None


class EnvSource:
    label = "env"

    def candidates(self, provider: str, name: str, hint: Optional[str]) -> List[str]:
        names: List[str] = []
        if hint:
            names.append(hint)
        if name == "api_key":
            names.extend(PROVIDER_ENV_VARS.get(provider, ()))
        names.append(f"{provider}_{name}".upper())
        return list(dict.fromkeys(names))

    def lookup(self, provider: str, name: str, hint: Optional[str]) -> Optional[str]:
        for var in self.candidates(provider, name, hint):
            val = _clean(os.getenv(var))
            if val:
                return val
        return None


class KeyringSource:
    """Secrets stored with `keyring set promptline <account>`; account is the hint or '<provider>:<name>'."""

    label = "keyring"

    def __init__(self, service: str = KEYRING_SERVICE):
        self.service = service

    def lookup(self, provider: str, name: str, hint: Optional[str]) -> Optional[str]:
        accounts = [a for a in (hint, f"{provider}:{name}", provider) if a]
        try:
            for account in dict.fromkeys(accounts):
                val = _clean(_keyring.get_password(self.service, account))
                if val:
                    return val
        except KeyringError as e:
            # no usable backend counts as a miss
            logger.debug("keyring lookup for %s failed: %s", provider, e, extra={"provider": provider})
        return None


_SOURCES = {"env": EnvSource, "keyring": KeyringSource}


def build_secret_sources(method: Union[str, Iterable[str]]) -> List[SecretSource]:
    methods = [method] if isinstance(method, str) else list(method)
    sources: List[SecretSource] = []
    seen = set()
    for m in methods:
        key = str(m).strip().lower()
        if key not in _SOURCES:
            raise ConfigurationError(f"Unknown secrets method '{m}'. Allowed: {sorted(_SOURCES)}")
        if key not in seen:
            seen.add(key)
            sources.append(_SOURCES[key]())
    return sources


class SecretsResolver:
    """
    Looks up provider secrets through the configured sources, first hit wins.
    mapping narrows the lookup per provider, e.g. { "claude": { "api_key": "ANTHROPIC_API_KEY" } };
    the value is an env var name for env and an account name for keyring.
    Hits are cached for the life of the resolver; misses are not.
    """

    def __init__(self, method: Union[str, Iterable[str]], mapping: Optional[Dict[str, Dict[str, str]]] = None):
        self._sources = build_secret_sources(method)
        self._map = {str(k).lower(): dict(v or {}) for k, v in (mapping or {}).items()}
        self._cache: Dict[Tuple[str, str], str] = {}

    @property
    def methods(self) -> List[str]:
        return [s.label for s in self._sources]

    def secret(self, provider: str, name: str = "api_key") -> Optional[str]:
        provider = provider.lower()
        cached = self._cache.get((provider, name))
        if cached:
            return cached
        hint = self._map.get(provider, {}).get(name)
        for src in self._sources:
            val = src.lookup(provider, name, hint)
            if val:
                logger.debug("%s for %s found via %s", name, provider, src.label, extra={"provider": provider})
                self._cache[(provider, name)] = val
                return val
        return None
