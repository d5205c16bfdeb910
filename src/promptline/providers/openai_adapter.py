from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from promptline.core.models import HandlerPair, PromptRequest, WireSpec
from promptline.logging import get_logger
from promptline.providers.base import EventStreamAdapter, error_detail
from promptline.providers.registry import ProviderRegistry

logger = get_logger("providers.openai")


def _image_url(ref: str) -> str:
    if "://" in ref or ref.startswith("data:"):
        return ref
    return Path(ref).expanduser().absolute().as_uri()


@ProviderRegistry.register("openai")
class OpenAIAdapter(EventStreamAdapter):
    """
    OpenAI-compatible Chat Completions:
    - stream lines are data-only; '[DONE]' ends the stream
    - each choices[0].delta.content is one chunk
    """

    default_endpoint = "https://api.openai.com/v1"

    def build_messages(self, request: PromptRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        user_text = "\n\n".join(request.user_prompts)
        if request.image_paths:
            parts: List[Dict[str, Any]] = [
                {"type": "image_url", "image_url": {"url": _image_url(p)}} for p in request.image_paths
            ]
            parts.append({"type": "text", "text": user_text})
            messages.append({"role": "user", "content": parts})
        else:
            messages.append({"role": "user", "content": user_text})
        return messages

    def build_wire_spec(self, request: PromptRequest) -> WireSpec:
        api_key = self.api_key()
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(request),
            "temperature": self.cfg.get("temperature", 0),
            "max_tokens": self.cfg.get("max_tokens", 4096),
            "stream": request.stream,
        }
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return WireSpec(
            url=f"{self.endpoint}/chat/completions",
            headers=headers,
            body=body,
            stream=request.stream,
            **self.wire_options(),
        )

    def decode_stream_fragment(self, data: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        if data.strip() == "[DONE]":
            handlers.on_complete(None)
            return
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("skipping undecodable stream line: %r", data)
            return
        choices = event.get("choices") or []
        if not choices:
            return
        piece = (choices[0].get("delta") or {}).get("content")
        if piece:
            handlers.on_chunk(piece)

    def decode_full_response(self, raw_body: str, event_state: Optional[str], handlers: HandlerPair) -> None:
        data = json.loads(raw_body)
        content = data["choices"][0]["message"].get("content") or ""
        if content:
            handlers.on_chunk(content)

    def on_transport_error(self, status: int, body: str) -> str:
        detail = error_detail(body)
        if detail:
            return f"API request failed with status {status}: {detail}"
        return super().on_transport_error(status, body)
