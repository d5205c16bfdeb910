from __future__ import annotations
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from promptline.core.cancellation import CancellationSignal, cancel_inflight_request, default_signal
from promptline.core.dispatcher import JobHandle, StreamDispatcher
from promptline.core.models import PromptRequest, RequestOptions
from promptline.core.ports import Transport
from promptline.logging import get_logger
from promptline.providers.base import SecretLookup
from promptline.providers.registry import ProviderRegistry

__all__ = ["Orchestrator", "extract_image_paths", "cancel_inflight_request"]

logger = get_logger("orchestrator")

DEFAULT_SYSTEM_PROMPT = "You are an excellent programming expert."

# Hook for upstream prompt composition: (options, cleaned instructions) -> prompt sections
PromptRenderer = Callable[[RequestOptions, str], Sequence[str]]


def extract_image_paths(instructions: str) -> Tuple[str, List[str]]:
    """Split 'image: <path>' lines out of the instructions."""
    if "image: " not in instructions:
        return instructions, []
    kept: List[str] = []
    images: List[str] = []
    for line in instructions.split("\n"):
        if line.startswith("image: "):
            path = line[len("image: "):].strip()
            if path:
                images.append(path)
        else:
            kept.append(line)
    return "\n".join(kept), images


class Orchestrator:
    """
    Caller-facing entry point: start(options) -> JobHandle, cancel_active().

    Starting a new request while another is still in flight does not stop the
    earlier one; the newest handle takes the active slot and cancel_active()
    targets it. The earlier job can still be cancelled through its own handle
    or the broadcast signal.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        transport: Transport,
        *,
        secrets: Optional[SecretLookup] = None,
        render_prompts: Optional[PromptRenderer] = None,
        cancel_signal: Optional[CancellationSignal] = None,
        temp_dir: Optional[Path] = None,
    ):
        self.config = config
        self.transport = transport
        self.secrets = secrets
        self.render_prompts = render_prompts
        self.signal = cancel_signal or default_signal
        self.temp_dir = temp_dir
        self._active: Optional[JobHandle] = None

    @property
    def debug(self) -> bool:
        return bool(self.config.get("debug", False))

    @property
    def active(self) -> Optional[JobHandle]:
        if self._active is not None and self._active.done:
            self._active = None
        return self._active

    def _provider_cfg(self, name: str) -> Dict[str, Any]:
        return dict((self.config.get("providers") or {}).get(name.lower()) or {})

    def build_request(self, options: RequestOptions, *, stream: bool) -> PromptRequest:
        instructions, images = extract_image_paths(options.instructions)
        if self.render_prompts is not None:
            prompts = list(self.render_prompts(options, instructions))
        elif options.user_prompts:
            prompts = list(options.user_prompts)
        else:
            prompts = [instructions]
        return PromptRequest(
            system_prompt=self.config.get("system_prompt") or DEFAULT_SYSTEM_PROMPT,
            user_prompts=tuple(p for p in prompts if p),
            image_paths=tuple(images),
            stream=stream,
        )

    def start(self, options: RequestOptions) -> JobHandle:
        """Must be called from a running event loop. Raises ConfigurationError before any I/O."""
        provider_name = options.provider or self.config.get("provider") or ""
        Adapter = ProviderRegistry.get(provider_name)
        provider_cfg = self._provider_cfg(provider_name)
        adapter = Adapter.create(provider_cfg=provider_cfg, secrets=self.secrets)

        request = self.build_request(options, stream=bool(provider_cfg.get("stream", True)))
        dispatcher = StreamDispatcher(
            adapter,
            request,
            options.handlers,
            transport=self.transport,
            cancel_signal=options.cancel_signal or self.signal,
            debug=self.debug,
            temp_dir=self.temp_dir,
        )
        handle = dispatcher.start()

        if self.active is not None:
            logger.warning(
                "request %s started while request %s is still in flight",
                handle.job_id,
                self._active.job_id,
            )
        self._active = handle
        logger.debug(
            "started %s request (mode=%s)",
            provider_name,
            options.mode,
            extra={"provider": provider_name, "job_id": handle.job_id, "target": options.target},
        )
        return handle

    def cancel_active(self) -> bool:
        """Cancel the most recently started request still in flight. No-op if none."""
        handle = self.active
        if handle is None:
            return False
        return handle.cancel()
