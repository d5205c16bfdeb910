# src/promptline/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import yaml

from promptline.core.errors import ConfigurationError


class ConfigError(ConfigurationError):
    pass


_UNSET = object()


def _lookup(d: Dict[str, Any], dotted: str) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            return _UNSET
        cur = cur[k]
    return cur


def _check_type(dotted: str, val: Any, typ: type) -> None:
    if typ is bool and not isinstance(val, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(val, str):
        raise ConfigError(f"'{dotted}' must be a string")
    if typ is dict and not isinstance(val, dict):
        raise ConfigError(f"'{dotted}' must be a mapping")
    if typ is float and (isinstance(val, bool) or not isinstance(val, (int, float))):
        raise ConfigError(f"'{dotted}' must be a number")


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    val = _lookup(d, dotted)
    if val is _UNSET:
        raise ConfigError(f"Missing config key: {dotted}")
    _check_type(dotted, val, typ)
    return val


def _optional(d: Dict[str, Any], dotted: str, typ: type) -> Optional[Any]:
    val = _lookup(d, dotted)
    if val is _UNSET or val is None:
        return None
    _check_type(dotted, val, typ)
    return val


_PROVIDER_KEYS = {
    "endpoint": str,
    "model": str,
    "api_key": str,
    "proxy": str,
    "stream": bool,
    "allow_insecure": bool,
    "temperature": float,
    "max_tokens": float,
    "timeout": float,
}


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Config is not valid YAML: {path}: {e}") from e
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    # Only the provider is required; everything else has defaults downstream
    raw["provider"] = _require(raw, "provider", str).strip().lower()
    _optional(raw, "system_prompt", str)
    _optional(raw, "debug", bool)
    _optional(raw, "timeout", float)
    _optional(raw, "secrets", dict)

    providers = _optional(raw, "providers", dict) or {}
    normalised: Dict[str, Dict[str, Any]] = {}
    for name, pcfg in providers.items():
        key = str(name).lower()
        if pcfg is None:
            pcfg = {}
        _check_type(f"providers.{name}", pcfg, dict)
        for field, typ in _PROVIDER_KEYS.items():
            _optional(pcfg, field, typ)
        normalised[key] = pcfg
    raw["providers"] = normalised

    return raw
