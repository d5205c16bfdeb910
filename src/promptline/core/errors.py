from __future__ import annotations
from typing import Optional


class PromptlineError(Exception):
    """Base class for orchestrator failures."""


class ConfigurationError(PromptlineError, ValueError):
    """
    Raised synchronously, before any network I/O: unknown provider,
    missing API key, invalid config file. The fix is change config, not retry.
    """


class TransportError(PromptlineError):
    """
    Network-level or local failure reported by the transport (connection refused,
    DNS failure, local write failure, aborted job).
    exit_code follows curl's numbering so diagnostics can key off it.
    """

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class ProtocolError(PromptlineError):
    """HTTP status >= 400 returned by the provider."""

    def __init__(self, status: int, body: str, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"API request failed with status {status}. Body: {body!r}")
