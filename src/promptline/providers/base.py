from __future__ import annotations
import json
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, Optional, Protocol

from promptline.core.errors import ConfigurationError, ProtocolError
from promptline.core.models import HandlerPair, PromptRequest, WireSpec


class SecretLookup(Protocol):
    def secret(self, provider: str, name: str = "api_key") -> Optional[str]: ...


def error_detail(body: str) -> Optional[str]:
    """Pull a message out of a JSON error body ({"error": {"message": ...}} or {"error": "..."})."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return err.get("message") or err.get("type")
    if isinstance(err, str):
        return err
    return None


class ProviderAdapter(ABC):
    """
    Translates a PromptRequest into a wire request and wire responses back
    into fragments. One instance is created per call, so per-request decoding
    state may live on the instance.

    Concrete adapters derive from exactly one of EventStreamAdapter or
    RawStreamAdapter; deriving from both is rejected when the class is created.
    """

    name: ClassVar[str] = ""
    requires_api_key: ClassVar[bool] = True
    default_endpoint: ClassVar[str] = ""

    def __init__(self, provider_cfg: Optional[Dict[str, Any]] = None, secrets: Optional[SecretLookup] = None):
        self.cfg: Dict[str, Any] = dict(provider_cfg or {})
        self.secrets = secrets

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if hasattr(cls, "decode_stream_fragment") and hasattr(cls, "decode_raw_stream"):
            raise TypeError(
                f"{cls.__name__}: decode_stream_fragment and decode_raw_stream are mutually exclusive"
            )

    @classmethod
    def create(cls, *, provider_cfg: Optional[Dict[str, Any]], secrets: Optional[SecretLookup]) -> "ProviderAdapter":
        return cls(provider_cfg, secrets)

    @property
    def uses_raw_stream(self) -> bool:
        return isinstance(self, RawStreamAdapter)

    # Wire construction

    @abstractmethod
    def build_wire_spec(self, request: PromptRequest) -> WireSpec:
        """Pure: no I/O. Raises ConfigurationError when required fields are absent."""

    def api_key(self) -> Optional[str]:
        key = self.cfg.get("api_key")
        if not key and self.secrets is not None:
            key = self.secrets.secret(self.name, "api_key")
        if not key and self.requires_api_key:
            raise ConfigurationError(f"No API key for '{self.name}'")
        return key

    @property
    def endpoint(self) -> str:
        return str(self.cfg.get("endpoint") or self.default_endpoint).rstrip("/")

    @property
    def model(self) -> str:
        model = self.cfg.get("model")
        if not model:
            raise ConfigurationError(f"No model configured for '{self.name}'")
        return str(model)

    def wire_options(self) -> Dict[str, Any]:
        timeout = self.cfg.get("timeout")
        return {
            "proxy": self.cfg.get("proxy"),
            "insecure": bool(self.cfg.get("allow_insecure", False)),
            "timeout": float(timeout) if timeout is not None else None,
        }

    # Response decoding

    @abstractmethod
    def decode_full_response(self, raw_body: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        """Called once with the whole body when the request did not stream."""

    def on_transport_error(self, status: int, body: str) -> str:
        """Interpret a failed HTTP response; returns the completion message."""
        return str(ProtocolError(status, body))


class EventStreamAdapter(ProviderAdapter):
    """Provider whose stream is 'event:'/'data:' lines, fed through EventStreamParser."""

    @abstractmethod
    def decode_stream_fragment(self, data: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        """
        Called once per 'data:' line. Emits zero or more chunks; may complete
        early when the payload signals end of stream.
        """


class RawStreamAdapter(ProviderAdapter):
    """Provider with its own stream framing; receives transport chunks directly."""

    @abstractmethod
    def decode_raw_stream(self, chunk: str, handlers: HandlerPair) -> None:
        ...

    def finish_raw_stream(self, handlers: HandlerPair) -> None:
        """End of transport stream; flush any buffered partial frame."""
