from __future__ import annotations
import json
from typing import Any, Dict, List, Optional

from promptline.core.models import HandlerPair, PromptRequest, WireSpec
from promptline.providers.base import EventStreamAdapter, error_detail
from promptline.providers.registry import ProviderRegistry

ANTHROPIC_VERSION = "2023-06-01"


@ProviderRegistry.register("claude")
class ClaudeAdapter(EventStreamAdapter):
    """
    Anthropic Messages API. Stream events arrive as 'event:' + 'data:' pairs:
    content_block_delta carries text, message_stop ends the stream, error aborts it.
    """

    default_endpoint = "https://api.anthropic.com"

    def build_content(self, request: PromptRequest) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = [
            {"type": "image", "source": {"type": "url", "url": ref}} for ref in request.image_paths
        ]
        for prompt in request.user_prompts:
            content.append({"type": "text", "text": prompt})
        return content

    def build_wire_spec(self, request: PromptRequest) -> WireSpec:
        api_key = self.api_key()
        body: Dict[str, Any] = {
            "model": self.model,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": self.build_content(request)}],
            "temperature": self.cfg.get("temperature", 0),
            "max_tokens": self.cfg.get("max_tokens", 4096),
            "stream": request.stream,
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        return WireSpec(
            url=f"{self.endpoint}/v1/messages",
            headers=headers,
            body=body,
            stream=request.stream,
            **self.wire_options(),
        )

    def decode_stream_fragment(self, data: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        if event_state == "content_block_delta":
            payload = json.loads(data)
            text = (payload.get("delta") or {}).get("text")
            if text:
                handlers.on_chunk(text)
        elif event_state == "message_stop":
            handlers.on_complete(None)
        elif event_state == "error":
            payload = json.loads(data)
            err = payload.get("error") or {}
            handlers.on_complete(err.get("message") or data)

    def decode_full_response(self, raw_body: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        data = json.loads(raw_body)
        for block in data.get("content") or []:
            if block.get("type") == "text" and block.get("text"):
                handlers.on_chunk(block["text"])

    def on_transport_error(self, status: int, body: str) -> str:
        detail = error_detail(body)
        if detail:
            return f"API request failed with status {status}: {detail}"
        return super().on_transport_error(status, body)
