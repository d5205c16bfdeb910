"""HTTP transport on httpx.AsyncClient, reporting through callbacks.

Each submitted request runs as one asyncio task. Whatever happens to the task
(finished, failed, cancelled) exactly one of on_error / on_success is called.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Dict, Optional

import httpx

from promptline.core.errors import TransportError
from promptline.core.models import TransportResult, WireSpec
from promptline.core.ports import TransportChunkHook, TransportErrorHook, TransportSuccessHook
from promptline.logging import get_logger

logger = get_logger("transport")

# curl exit codes, kept so error diagnostics read the same whatever the transport
EXIT_CONNECT = 7
EXIT_WRITE_ERROR = 23
EXIT_READ_ERROR = 26
EXIT_TIMEOUT = 28
EXIT_RECV_ERROR = 56

DEFAULT_TIMEOUT = 120.0

# request bodies are streamed from the temp file in blocks of this size
BODY_BLOCK_SIZE = 64 * 1024


async def _read_blocks(fh: BinaryIO, size: int = BODY_BLOCK_SIZE) -> AsyncIterator[bytes]:
    while True:
        block = fh.read(size)
        if not block:
            return
        yield block


class HttpxJob:
    """Handle for one in-flight request task."""

    def __init__(self, task: "asyncio.Task[None]"):
        self._task = task

    def shutdown(self) -> None:
        if not self._task.done():
            self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()


class HttpxTransport:
    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self._http_transport = http_transport

    def _client(self, wire: WireSpec) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {
            "verify": not wire.insecure,
            "timeout": httpx.Timeout(wire.timeout or self.timeout),
        }
        if wire.proxy:
            kwargs["proxy"] = wire.proxy
        if self._http_transport is not None:
            kwargs["transport"] = self._http_transport
        return httpx.AsyncClient(**kwargs)

    def submit(
        self,
        wire: WireSpec,
        body_path: Path,
        *,
        on_chunk: TransportChunkHook,
        on_error: TransportErrorHook,
        on_success: TransportSuccessHook,
    ) -> HttpxJob:
        loop = asyncio.get_running_loop()
        reported = False

        def report_error(err: TransportError) -> None:
            nonlocal reported
            if not reported:
                reported = True
                on_error(err)

        def report_success(result: TransportResult) -> None:
            nonlocal reported
            if not reported:
                reported = True
                on_success(result)

        async def run() -> None:
            try:
                fh = open(body_path, "rb")
            except OSError as e:
                report_error(TransportError(f"could not read request body: {e}", EXIT_READ_ERROR))
                return
            try:
                with fh:
                    result = await self._post(wire, _read_blocks(fh), on_chunk)
            except httpx.ConnectError as e:
                report_error(TransportError(f"connection failed: {e}", EXIT_CONNECT))
            except httpx.TimeoutException as e:
                report_error(TransportError(f"request timed out: {e}", EXIT_TIMEOUT))
            except (httpx.ReadError, httpx.RemoteProtocolError) as e:
                report_error(TransportError(f"failure receiving data: {e}", EXIT_RECV_ERROR))
            except httpx.HTTPError as e:
                report_error(TransportError(str(e) or e.__class__.__name__))
            except OSError as e:
                report_error(TransportError(f"failure writing output: {e}", EXIT_WRITE_ERROR))
            else:
                report_success(result)

        def on_done(task: "asyncio.Task[None]") -> None:
            if task.cancelled():
                report_error(TransportError("request cancelled"))
                return
            exc = task.exception()
            if exc is not None:
                logger.error("transport task failed", exc_info=exc)
                report_error(TransportError(str(exc) or exc.__class__.__name__))

        task = loop.create_task(run())
        task.add_done_callback(on_done)
        return HttpxJob(task)

    async def _post(self, wire: WireSpec, content: AsyncIterator[bytes], on_chunk: TransportChunkHook) -> TransportResult:
        async with self._client(wire) as client:
            async with client.stream("POST", wire.url, headers=wire.headers, content=content) as resp:
                if wire.stream and resp.status_code < 400:
                    # chunks go to on_chunk only; a streamed body is not kept
                    async for text in resp.aiter_text():
                        if text:
                            on_chunk(text)
                    body = ""
                else:
                    await resp.aread()
                    body = resp.text
                return TransportResult(status=resp.status_code, body=body, headers=dict(resp.headers))
