from __future__ import annotations
import json
from typing import Any, Dict, List, Optional

from promptline.core.models import HandlerPair, PromptRequest, WireSpec
from promptline.logging import get_logger, warn_once
from promptline.providers.base import RawStreamAdapter
from promptline.providers.registry import ProviderRegistry

logger = get_logger("providers.ollama")


@ProviderRegistry.register("ollama")
class OllamaAdapter(RawStreamAdapter):
    """
    Local Ollama server, /api/chat. The stream is newline-delimited JSON rather
    than an event stream, so this adapter does its own framing.
    """

    requires_api_key = False
    default_endpoint = "http://localhost:11434"

    def __init__(self, provider_cfg=None, secrets=None):
        super().__init__(provider_cfg, secrets)
        self._pending = ""

    def build_wire_spec(self, request: PromptRequest) -> WireSpec:
        if request.image_paths:
            warn_once(logger, "ollama: image attachments are not sent (only inline base64 is accepted)")
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": request.system_prompt},
            {"role": "user", "content": "\n\n".join(request.user_prompts)},
        ]
        options: Dict[str, Any] = {"temperature": self.cfg.get("temperature", 0)}
        if self.cfg.get("max_tokens") is not None:
            options["num_predict"] = self.cfg["max_tokens"]
        return WireSpec(
            url=f"{self.endpoint}/api/chat",
            headers={"Content-Type": "application/json"},
            body={"model": self.model, "messages": messages, "stream": request.stream, "options": options},
            stream=request.stream,
            **self.wire_options(),
        )

    def decode_raw_stream(self, chunk: str, handlers: HandlerPair) -> None:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._decode_line(line, handlers)

    def finish_raw_stream(self, handlers: HandlerPair) -> None:
        rest, self._pending = self._pending, ""
        self._decode_line(rest, handlers)

    def _decode_line(self, line: str, handlers: HandlerPair) -> None:
        line = line.strip()
        if not line:
            return
        obj = json.loads(line)
        if obj.get("error"):
            handlers.on_complete(str(obj["error"]))
            return
        piece = (obj.get("message") or {}).get("content")
        if piece:
            handlers.on_chunk(piece)
        if obj.get("done"):
            handlers.on_complete(None)

    def decode_full_response(self, raw_body: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        obj = json.loads(raw_body)
        piece = (obj.get("message") or {}).get("content")
        if piece:
            handlers.on_chunk(piece)
