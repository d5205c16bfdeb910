from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from .config_loader import ConfigError, load_config
from .core.orchestrator import Orchestrator
from .core.ports import Transport
from .providers.registry import ProviderRegistry
from .secrets.sources import SecretsResolver
from .transport.httpx_transport import DEFAULT_TIMEOUT, HttpxTransport


def build_app(
    config_path: Path,
    *,
    provider: Optional[str] = None,
    transport: Optional[Transport] = None,
) -> Dict[str, Any]:
    """
    Composition root: load .env and YAML, resolve secrets, build the transport and orchestrator.
    Returns: dict with cfg, secrets, transport, orchestrator.
    """
    load_dotenv()
    cfg = load_config(config_path)
    if provider:
        cfg["provider"] = provider.lower()

    # ----- Providers -----
    ProviderRegistry.ensure_imports()  # make sure built-ins register
    if cfg["provider"] not in ProviderRegistry.names():
        raise ConfigError(
            f"Unknown provider '{cfg['provider']}' (expected one of {', '.join(ProviderRegistry.names())})."
        )

    secrets_cfg = cfg.get("secrets") or {}
    try:
        resolver = SecretsResolver(
            method=secrets_cfg.get("method", "env"),
            mapping=secrets_cfg.get("mapping", {}),
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e

    # ----- Transport -----
    if transport is None:
        transport = HttpxTransport(timeout=float(cfg.get("timeout") or DEFAULT_TIMEOUT))

    orchestrator = Orchestrator(cfg, transport, secrets=resolver)

    return {
        "cfg": cfg,
        "secrets": resolver,
        "transport": transport,
        "orchestrator": orchestrator,
    }
