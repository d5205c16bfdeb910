from __future__ import annotations
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import typer

from .bootstrap import build_app
from .core.errors import ConfigurationError
from .core.models import HandlerPair, RequestOptions
from .core.orchestrator import Orchestrator
from .logging import setup_logging
from .providers.registry import ProviderRegistry

app = typer.Typer(add_completion=False)


async def _stream_answer(orchestrator: Orchestrator, question: str, mode: str) -> Optional[str]:
    handlers = HandlerPair(
        on_chunk=lambda piece: typer.echo(piece, nl=False),
        on_complete=lambda _err: None,
    )
    handle = orchestrator.start(RequestOptions(instructions=question, handlers=handlers, mode=mode))

    # Ctrl+C cancels the request; the job still ends through its own completion
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel_active)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        error = await handle.wait()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
    if orchestrator.debug and handle.body_path is not None:
        typer.echo(f"\n[debug] request body kept at {handle.body_path}", err=True)
    return error


@app.command()
def ask(
    question: Optional[str] = typer.Argument(None, help="Question to send; read from stdin when omitted."),
    config: Path = typer.Option(Path("config/default.yaml"), "--config", "-c"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p"),
    mode: str = typer.Option("planning", "--mode", "-m"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_logs: bool = typer.Option(False, "--json-logs"),
):
    """Stream one answer to stdout."""
    setup_logging("DEBUG" if verbose else "WARNING", json_lines=json_logs)

    if question is None:
        question = sys.stdin.read()
    if not question.strip():
        typer.echo("[error] empty question", err=True)
        raise typer.Exit(2)

    try:
        ctx = build_app(config, provider=provider)
        error = asyncio.run(_stream_answer(ctx["orchestrator"], question, mode))
    except (ConfigurationError, FileNotFoundError) as e:
        typer.echo(f"[config] {e}", err=True)
        raise typer.Exit(2)

    typer.echo("")
    if error:
        typer.echo(f"[error] {error}", err=True)
        raise typer.Exit(1)


@app.command()
def providers():
    """List built-in providers."""
    ProviderRegistry.ensure_imports()
    for name in ProviderRegistry.names():
        typer.echo(name)


def main() -> None:
    app()
