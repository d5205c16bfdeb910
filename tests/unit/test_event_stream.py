# tests/unit/test_event_stream.py

from __future__ import annotations
import sys
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from promptline.core.event_stream import EventStreamParser


STREAM = (
    "event: message_start\n"
    'data: {"id":"1"}\n'
    "\n"
    ": keep-alive comment\n"
    "event: content\n"
    'data: {"t":"hi"}\n'
    'data: {"t":"there"}\n'
    "\n"
    "event: message_stop\r\n"
    "data: {}\r\n"
    "\r\n"
)

EXPECTED = [
    ('{"id":"1"}', "message_start"),
    ('{"t":"hi"}', "content"),
    ('{"t":"there"}', "content"),
    ("{}", "message_stop"),
]


def run(chunks):
    seen = []
    p = EventStreamParser(lambda data, event: seen.append((data, event)))
    for c in chunks:
        p.feed(c)
    p.flush()
    return seen


def test_whole_stream_dispatches_pairs_in_order():
    assert run([STREAM]) == EXPECTED


def test_every_single_split_point_gives_same_sequence():
    for i in range(len(STREAM) + 1):
        assert run([STREAM[:i], STREAM[i:]]) == EXPECTED, f"split at {i}"


def test_char_by_char_gives_same_sequence():
    assert run(list(STREAM)) == EXPECTED


def test_three_way_splits():
    n = len(STREAM)
    for i in range(0, n, 7):
        for j in range(i, n, 11):
            assert run([STREAM[:i], STREAM[i:j], STREAM[j:]]) == EXPECTED


def test_data_before_any_event_has_no_event_state():
    assert run(['data: {"x":1}\n']) == [('{"x":1}', None)]


def test_event_line_alone_dispatches_nothing_but_sets_state():
    seen = []
    p = EventStreamParser(lambda d, e: seen.append((d, e)))
    p.feed("event: ping\n")
    assert seen == []
    assert p.event_state == "ping"


def test_unrecognised_lines_are_ignored():
    assert run(["id: 7\nretry: 100\ndata:\ndata:nospace\n\n"]) == []


def test_flush_processes_unterminated_last_line():
    seen = []
    p = EventStreamParser(lambda d, e: seen.append((d, e)))
    p.feed("data: tail")
    assert seen == []
    p.flush()
    assert seen == [("tail", None)]


def test_state_is_per_instance():
    a = EventStreamParser(lambda d, e: None)
    b = EventStreamParser(lambda d, e: None)
    a.feed("event: one\n")
    assert b.event_state is None
