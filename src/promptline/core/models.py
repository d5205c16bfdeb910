from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Literal, Optional, Tuple

if TYPE_CHECKING:
    from .cancellation import CancellationSignal

LlmMode = Literal["planning", "editing", "suggesting"]

ChunkHandler = Callable[[Any], None]
CompleteHandler = Callable[[Optional[str]], None]


@dataclass(frozen=True)
class PromptRequest:
    """
    Provider-neutral prompt. user_prompts are rendered upstream; empty ones
    are dropped before this is built.
    """
    system_prompt: str
    user_prompts: Tuple[str, ...] = ()
    image_paths: Tuple[str, ...] = ()
    stream: bool = True


@dataclass
class WireSpec:
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    stream: bool = True
    proxy: Optional[str] = None
    insecure: bool = False
    timeout: Optional[float] = None


@dataclass
class HandlerPair:
    on_chunk: ChunkHandler
    on_complete: CompleteHandler


@dataclass(frozen=True)
class TransportResult:
    status: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class RequestOptions:
    """
    What a caller hands to Orchestrator.start().
    - instructions: the rendered question; 'image: <path>' lines are lifted out
    - target: caller's buffer/context id, only used for logging
    - user_prompts: pre-rendered prompt sections (optional)
    """
    instructions: str
    handlers: HandlerPair
    target: Optional[str] = None
    mode: LlmMode = "planning"
    provider: Optional[str] = None
    user_prompts: Tuple[str, ...] = ()
    cancel_signal: Optional["CancellationSignal"] = None
