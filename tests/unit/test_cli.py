# tests/unit/test_cli.py

from __future__ import annotations
import sys
from pathlib import Path
from typer.testing import CliRunner

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

import promptline.bootstrap as bootstrap
import promptline.cli as cli
from promptline.bootstrap import build_app
from promptline.cli import app  # Typer app

from _fakes import PlaybackTransport

STREAM = (
    "event: content_block_delta\n"
    'data: {"delta":{"text":"Lorem "}}\n\n'
    "event: content_block_delta\n"
    'data: {"delta":{"text":"ipsum"}}\n\n'
    "event: message_stop\n"
    "data: {}\n\n"
)


def write_config(tmp_path: Path, api_key: str = "ak-test", debug: bool = False) -> Path:
    cfg = tmp_path / "config" / "default.yaml"
    cfg.parent.mkdir(parents=True)
    cfg.write_text(
        f"""
        provider: claude
        debug: {str(debug).lower()}
        providers:
          claude:
            model: claude-x
            api_key: "{api_key}"
        secrets:
          method: env
          mapping: {{ claude: {{ api_key: PROMPTLINE_TEST_UNSET_KEY }} }}
        """,
        encoding="utf-8",
    )
    return cfg


def use_transport(monkeypatch, transport):
    # leave pytest's logging handlers alone
    monkeypatch.setattr(cli, "setup_logging", lambda *a, **k: None)
    # keep a developer .env out of the run
    monkeypatch.setattr(bootstrap, "load_dotenv", lambda *a, **k: False)
    monkeypatch.setattr(
        cli, "build_app", lambda config, provider=None: build_app(config, provider=provider, transport=transport)
    )


def test_cli_streams_answer(tmp_path: Path, monkeypatch):
    cfg = write_config(tmp_path)
    transport = PlaybackTransport([STREAM[:30], STREAM[30:]])
    use_transport(monkeypatch, transport)

    runner = CliRunner()
    result = runner.invoke(app, ["ask", "hello", "--config", str(cfg)], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Lorem ipsum" in result.output
    assert transport.body["messages"][0]["content"] == [{"type": "text", "text": "hello"}]


def test_cli_reads_question_from_stdin(tmp_path: Path, monkeypatch):
    cfg = write_config(tmp_path)
    transport = PlaybackTransport([STREAM])
    use_transport(monkeypatch, transport)

    result = CliRunner().invoke(app, ["ask", "--config", str(cfg)], input="from stdin\n")

    assert result.exit_code == 0
    assert transport.body["messages"][0]["content"][0]["text"] == "from stdin\n"


def test_cli_http_error_exits_1(tmp_path: Path, monkeypatch):
    cfg = write_config(tmp_path)
    use_transport(monkeypatch, PlaybackTransport([], status=401, body='{"error":{"message":"invalid x-api-key"}}'))

    result = CliRunner().invoke(app, ["ask", "hello", "--config", str(cfg)])

    assert result.exit_code == 1


def test_cli_missing_key_exits_2(tmp_path: Path, monkeypatch):
    for var in ("PROMPTLINE_TEST_UNSET_KEY", "ANTHROPIC_API_KEY", "CLAUDE_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    cfg = write_config(tmp_path, api_key="")
    transport = PlaybackTransport([STREAM])
    use_transport(monkeypatch, transport)

    result = CliRunner().invoke(app, ["ask", "hello", "--config", str(cfg)])

    assert result.exit_code == 2
    assert transport.submissions == 0


def test_cli_lists_providers():
    result = CliRunner().invoke(app, ["providers"])
    assert result.exit_code == 0
    assert "claude" in result.output.split()


def test_cli_debug_reports_kept_body_file(tmp_path: Path, monkeypatch):
    cfg = write_config(tmp_path, debug=True)
    transport = PlaybackTransport([STREAM])
    use_transport(monkeypatch, transport)

    result = CliRunner().invoke(app, ["ask", "hello", "--config", str(cfg)])

    assert result.exit_code == 0
    assert f"request body kept at {transport.body_path}" in result.output
    assert transport.body_path.exists()
    transport.body_path.unlink()
