from __future__ import annotations
from pathlib import Path
from typing import Callable, Protocol

from .errors import TransportError
from .models import TransportResult, WireSpec

TransportChunkHook = Callable[[str], None]
TransportErrorHook = Callable[[TransportError], None]
TransportSuccessHook = Callable[[TransportResult], None]


class TransportJob(Protocol):
    """Handle to one in-flight HTTP call."""

    def shutdown(self) -> None:
        """
        Request termination. Asynchronous: the job reports through its error
        hook once it has actually stopped.
        """
        ...

    @property
    def done(self) -> bool:
        ...


class Transport(Protocol):
    """
    Interface the dispatcher uses to talk to the HTTP layer.
    Exactly one of on_error / on_success is called per submitted job;
    on_chunk only before that, and only for streaming specs.
    """

    def submit(
        self,
        wire: WireSpec,
        body_path: Path,
        *,
        on_chunk: TransportChunkHook,
        on_error: TransportErrorHook,
        on_success: TransportSuccessHook,
    ) -> TransportJob:
        ...
