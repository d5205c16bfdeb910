from __future__ import annotations
from typing import Callable, Dict

from promptline.logging import get_logger

logger = get_logger("cancel")

CANCEL_PATTERN = "LLMEscape"


class CancellationSignal:
    """
    Named broadcast channel with no payload.

    Handlers are armed with 'once' semantics: raising the signal fires every
    armed handler a single time and disarms it. A handler that is disarmed
    first (its request completed normally) never fires.
    """

    def __init__(self, name: str = CANCEL_PATTERN):
        self.name = name
        self._handlers: Dict[int, Callable[[], None]] = {}
        self._next_id = 0

    def arm(self, handler: Callable[[], None]) -> Callable[[], None]:
        """Register a one-shot handler; returns a function that disarms it."""
        token = self._next_id
        self._next_id += 1
        self._handlers[token] = handler

        def disarm() -> None:
            self._handlers.pop(token, None)

        return disarm

    @property
    def armed(self) -> int:
        return len(self._handlers)

    def raise_(self) -> int:
        """Fire and disarm all armed handlers. Returns how many fired."""
        handlers, self._handlers = self._handlers, {}
        if not handlers:
            logger.debug("%s raised with nothing armed", self.name)
        for handler in handlers.values():
            try:
                handler()
            except Exception:
                logger.exception("%s handler failed", self.name)
        return len(handlers)


default_signal = CancellationSignal()


def cancel_inflight_request() -> int:
    """Raise the process-wide cancellation signal."""
    return default_signal.raise_()
