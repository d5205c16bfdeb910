from __future__ import annotations
import re
from typing import Callable, List, Optional

_EVENT_RE = re.compile(r"^event: (.+)$")
_DATA_RE = re.compile(r"^data: (.+)$")
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

FragmentSink = Callable[[str, Optional[str]], None]


class EventStreamParser:
    """
    Line parser for a text event stream, one instance per request.

    An 'event:' line labels the 'data:' lines that follow it, so the last seen
    event name is carried across lines (and across chunks). Chunks may split
    lines anywhere; partial lines are buffered until their terminator arrives.
    """

    def __init__(self, on_data: FragmentSink):
        self._on_data = on_data
        self._buffer = ""
        self.event_state: Optional[str] = None

    def feed(self, chunk: str) -> None:
        if not chunk:
            return
        self._buffer += chunk
        parts: List[str] = _LINE_BREAK_RE.split(self._buffer)
        # A trailing '\r' may be the first half of '\r\n'; hold it back.
        if self._buffer.endswith("\r"):
            self._buffer = parts.pop(-2) + "\r"
            complete = parts[:-1]
        else:
            self._buffer = parts.pop()
            complete = parts
        for line in complete:
            self.feed_line(line)

    def flush(self) -> None:
        """Process whatever unterminated line is left at end of stream."""
        rest, self._buffer = self._buffer, ""
        rest = rest.rstrip("\r")
        if rest:
            self.feed_line(rest)

    def feed_line(self, line: str) -> None:
        m = _EVENT_RE.match(line)
        if m:
            self.event_state = m.group(1)
            return
        m = _DATA_RE.match(line)
        if m:
            self._on_data(m.group(1), self.event_state)
