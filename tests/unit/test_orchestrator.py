# tests/unit/test_orchestrator.py

from __future__ import annotations
import asyncio
import json
import sys
from pathlib import Path

import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from promptline.core.cancellation import CancellationSignal
from promptline.core.errors import ConfigurationError
from promptline.core.models import RequestOptions
from promptline.core.orchestrator import DEFAULT_SYSTEM_PROMPT, Orchestrator, extract_image_paths
from promptline.providers.registry import ProviderRegistry

from _fakes import PlaybackTransport, Recorder, ScriptedTransport, settle

ProviderRegistry.ensure_imports()

CLAUDE_STREAM = (
    "event: message_start\n"
    'data: {"type":"message_start"}\n\n'
    "event: content_block_delta\n"
    'data: {"delta":{"text":"Hello"}}\n\n'
    "event: content_block_delta\n"
    'data: {"delta":{"text":", world"}}\n\n'
    "event: message_stop\n"
    'data: {"type":"message_stop"}\n\n'
)


def config(**over):
    cfg = {
        "provider": "claude",
        "system_prompt": "be brief",
        "providers": {
            "claude": {"model": "claude-x", "api_key": "ak"},
            "openai": {"model": "gpt-4o", "stream": False},
        },
    }
    cfg.update(over)
    return cfg


def test_extract_image_paths():
    text, images = extract_image_paths("look at this\nimage: /tmp/a.png\nand this\nimage: https://x/b.png")
    assert text == "look at this\nand this"
    assert images == ["/tmp/a.png", "https://x/b.png"]
    assert extract_image_paths("no pictures") == ("no pictures", [])


def test_build_request_defaults_and_filters_empty_prompts():
    orch = Orchestrator({"provider": "claude"}, ScriptedTransport())
    rec = Recorder()
    req = orch.build_request(
        RequestOptions(instructions="q\nimage: /i.png", handlers=rec.handlers, user_prompts=("", "ctx", "q")),
        stream=True,
    )
    assert req.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert req.user_prompts == ("ctx", "q")
    assert req.image_paths == ("/i.png",)


def test_render_hook_receives_cleaned_instructions():
    seen = []

    def render(options, instructions):
        seen.append((options.mode, instructions))
        return ["<context/>", "", f"Q: {instructions}"]

    orch = Orchestrator(config(), ScriptedTransport(), render_prompts=render)
    rec = Recorder()
    req = orch.build_request(
        RequestOptions(instructions="why?\nimage: a.png", handlers=rec.handlers, mode="editing"), stream=True
    )
    assert seen == [("editing", "why?")]
    assert req.user_prompts == ("<context/>", "Q: why?")


def test_end_to_end_claude_stream(tmp_path: Path):
    async def main():
        transport = PlaybackTransport([CLAUDE_STREAM[:40], CLAUDE_STREAM[40:]])
        orch = Orchestrator(config(), transport, cancel_signal=CancellationSignal("t"), temp_dir=tmp_path)
        rec = Recorder()
        handle = orch.start(RequestOptions(instructions="hi", handlers=rec.handlers, target="buf:3"))
        assert orch.active is handle
        result = await handle.wait()
        await settle()
        return transport, orch, rec, result

    transport, orch, rec, result = asyncio.run(main())
    assert result is None
    assert rec.chunks == ["Hello", ", world"]
    assert rec.completions == [None]
    assert transport.body["system"] == "be brief"
    assert transport.body["messages"][0]["content"] == [{"type": "text", "text": "hi"}]
    assert orch.active is None
    assert list(tmp_path.iterdir()) == []


def test_provider_override_and_non_stream_mode(tmp_path: Path):
    async def main():
        body = json.dumps({"choices": [{"message": {"content": "full"}}]})
        transport = PlaybackTransport([], body=body)
        orch = Orchestrator(config(), transport, temp_dir=tmp_path)
        orch.config["providers"]["openai"]["api_key"] = "sk"
        rec = Recorder()
        handle = orch.start(RequestOptions(instructions="hi", handlers=rec.handlers, provider="OpenAI"))
        await handle.wait()
        return transport, rec

    transport, rec = asyncio.run(main())
    assert transport.wire.stream is False
    assert transport.body["stream"] is False
    assert rec.chunks == ["full"]
    assert rec.completions == [None]


def test_unknown_provider_fails_before_io(tmp_path: Path):
    async def main():
        transport = ScriptedTransport()
        orch = Orchestrator(config(provider="nope"), transport, temp_dir=tmp_path)
        with pytest.raises(ConfigurationError):
            orch.start(RequestOptions(instructions="hi", handlers=Recorder().handlers))
        return transport

    assert asyncio.run(main()).submissions == 0
    assert list(tmp_path.iterdir()) == []


def test_cancel_active_without_job_is_noop():
    orch = Orchestrator(config(), ScriptedTransport())
    assert orch.cancel_active() is False


def test_cancel_active_targets_latest_request(tmp_path: Path):
    async def main():
        t1, t2 = ScriptedTransport(), ScriptedTransport()
        sig = CancellationSignal("t")
        orch = Orchestrator(config(), t1, cancel_signal=sig, temp_dir=tmp_path)
        r1, r2 = Recorder(), Recorder()
        orch.start(RequestOptions(instructions="one", handlers=r1.handlers))
        orch.transport = t2
        orch.start(RequestOptions(instructions="two", handlers=r2.handlers))
        assert orch.cancel_active() is True
        await settle()
        assert r2.completions == ["request cancelled"]
        assert r1.completions == []
        # the earlier request is still reachable through the broadcast signal
        assert sig.raise_() == 1
        await settle()
        return t1, t2, r1

    t1, t2, r1 = asyncio.run(main())
    assert t1.job.shutdown_calls == 1
    assert t2.job.shutdown_calls == 1
    assert r1.completions == ["request cancelled"]


def test_per_request_signal_overrides_default(tmp_path: Path):
    async def main():
        own = CancellationSignal("mine")
        shared = CancellationSignal("shared")
        orch = Orchestrator(config(), ScriptedTransport(), cancel_signal=shared, temp_dir=tmp_path)
        rec = Recorder()
        orch.start(RequestOptions(instructions="hi", handlers=rec.handlers, cancel_signal=own))
        assert shared.raise_() == 0
        assert own.raise_() == 1
        await settle()
        return rec

    assert asyncio.run(main()).completions == ["request cancelled"]


def test_claude_error_event_ends_request_and_stops_stream(tmp_path: Path):
    async def main():
        transport = ScriptedTransport()
        orch = Orchestrator(config(), transport, temp_dir=tmp_path)
        rec = Recorder()
        handle = orch.start(RequestOptions(instructions="hi", handlers=rec.handlers))
        transport.chunk('event: error\ndata: {"error":{"message":"overloaded"}}\n\n')
        result = await handle.wait()
        await settle()
        return transport, orch, rec, result

    transport, orch, rec, result = asyncio.run(main())
    assert result == "overloaded"
    assert rec.completions == ["overloaded"]
    assert transport.job.shutdown_calls == 1
    assert orch.active is None
