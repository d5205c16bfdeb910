from __future__ import annotations
import asyncio
import enum
import itertools
import os
from pathlib import Path
from typing import Any, Callable, Optional

from promptline.core.cancellation import CancellationSignal, default_signal
from promptline.core.errors import TransportError
from promptline.core.event_stream import EventStreamParser
from promptline.core.models import HandlerPair, PromptRequest, TransportResult, WireSpec
from promptline.core.ports import Transport, TransportJob
from promptline.logging import get_logger, warn_once
from promptline.providers.base import ProviderAdapter
from promptline.storage.request_store import TempRequestStore

logger = get_logger("dispatcher")

# curl's "failed writing received data" exit code
WRITE_ERROR_EXIT = 23

_job_ids = itertools.count(1)


class JobState(enum.Enum):
    IDLE = "idle"
    BUILDING = "building"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    COMPLETED = "completed"


_LIVE_STATES = (JobState.SUBMITTED, JobState.STREAMING)


def runtime_dir_problem(env_var: str = "XDG_RUNTIME_DIR") -> Optional[str]:
    """Describe why the runtime dir would make curl-style output writes fail, if it would."""
    path = os.environ.get(env_var)
    if not path:
        return None
    if not os.path.isdir(path):
        return (
            f"${env_var}={path} is set but does not exist. The transport could not write output. "
            "Please make sure it exists, or unset it."
        )
    if not os.access(path, os.W_OK):
        return (
            f"${env_var}={path} exists but is not writable. The transport could not write output. "
            "Please make sure it is writable, or unset it."
        )
    return None


class JobHandle:
    """Caller's view of one request: state, cancel(), and an awaitable completion."""

    def __init__(self, dispatcher: "StreamDispatcher"):
        self._dispatcher = dispatcher

    @property
    def job_id(self) -> int:
        return self._dispatcher.job_id

    @property
    def state(self) -> JobState:
        return self._dispatcher.state

    @property
    def done(self) -> bool:
        return self._dispatcher.state is JobState.COMPLETED

    @property
    def body_path(self) -> Optional[Path]:
        return self._dispatcher.store.path

    def cancel(self) -> bool:
        return self._dispatcher.cancel()

    async def wait(self) -> Optional[str]:
        """Resolve with the value passed to on_complete."""
        return await asyncio.shield(self._dispatcher.completion)


class StreamDispatcher:
    """
    Owns the lifecycle of one in-flight request.

    IDLE -> BUILDING -> SUBMITTED -> STREAMING -> COMPLETED

    Transport hooks may fire from the transport's own task; every one of them is
    re-scheduled onto the loop with call_soon so caller callbacks run one at a
    time and in arrival order. COMPLETED is entered once; anything arriving after
    that is dropped.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        request: PromptRequest,
        handlers: HandlerPair,
        *,
        transport: Transport,
        cancel_signal: Optional[CancellationSignal] = None,
        debug: bool = False,
        temp_dir: Optional[Path] = None,
    ):
        self.job_id = next(_job_ids)
        self.adapter = adapter
        self.request = request
        self.handlers = handlers
        self.transport = transport
        self.signal = cancel_signal or default_signal
        self.debug = debug
        self._temp_dir = temp_dir

        self.state = JobState.IDLE
        self.wire: Optional[WireSpec] = None
        self.store: TempRequestStore = TempRequestStore(debug=debug, directory=temp_dir)
        self.parser: Optional[EventStreamParser] = None
        self.active_job: Optional[TransportJob] = None
        self.completion: "Optional[asyncio.Future[Optional[str]]]" = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._completed = False
        self._disarm: Callable[[], None] = lambda: None
        # What adapters see: completion and chunks go through the single-completion guard
        self._guarded = HandlerPair(on_chunk=self._emit_chunk, on_complete=self._finish)

    @property
    def _log_extra(self) -> dict:
        return {"provider": self.adapter.name, "job_id": self.job_id}

    def start(self) -> JobHandle:
        """
        Build, persist and submit the request. ConfigurationError from the adapter
        propagates before anything touches disk or network.
        """
        if self.state is not JobState.IDLE:
            raise RuntimeError("dispatcher already started")
        self._loop = asyncio.get_running_loop()
        self.completion = self._loop.create_future()

        self.state = JobState.BUILDING
        try:
            self.wire = self.adapter.build_wire_spec(self.request)
        except Exception:
            self.state = JobState.COMPLETED
            self._completed = True
            raise

        self.store = TempRequestStore(debug=self.debug, directory=self._temp_dir, loop=self._loop)
        body_path = self.store.write(self.wire.body)
        if not self.adapter.uses_raw_stream:
            self.parser = EventStreamParser(self._on_data)

        self.state = JobState.SUBMITTED
        self._disarm = self.signal.arm(self._on_cancel)
        try:
            self.active_job = self.transport.submit(
                self.wire,
                body_path,
                on_chunk=self._on_transport_chunk,
                on_error=self._on_transport_error,
                on_success=self._on_transport_success,
            )
        except Exception:
            self._disarm()
            self.store.cleanup()
            self.state = JobState.COMPLETED
            self._completed = True
            raise
        logger.debug("submitted %s", self.wire.url, extra=self._log_extra)
        return JobHandle(self)

    # Cancellation

    def cancel(self) -> bool:
        """Cancel through this job only, leaving other armed requests alone."""
        self._disarm()
        return self._on_cancel()

    def _on_cancel(self) -> bool:
        if self.state not in _LIVE_STATES or self.active_job is None:
            return False
        self._shutdown_job()
        logger.debug("LLM request cancelled", extra=self._log_extra)
        return True

    def _shutdown_job(self) -> None:
        job, self.active_job = self.active_job, None
        if job is None:
            return
        try:
            job.shutdown()
        except Exception as e:
            logger.debug("error while shutting down job: %s", e, extra=self._log_extra)

    # Transport hooks (may run outside the caller's context; always re-scheduled)

    def _schedule(self, fn: Callable[..., Any], *args: Any) -> None:
        if self._loop is None:
            raise RuntimeError("dispatcher has not been started")
        self._loop.call_soon(fn, *args)

    def _on_transport_chunk(self, text: str) -> None:
        self._schedule(self._handle_chunk, text)

    def _on_transport_error(self, err: TransportError) -> None:
        self._schedule(self._handle_error, err)

    def _on_transport_success(self, result: TransportResult) -> None:
        self._schedule(self._handle_success, result)

    def _handle_chunk(self, text: str) -> None:
        if self._completed:
            return
        self.state = JobState.STREAMING
        try:
            if self.parser is None:
                self.adapter.decode_raw_stream(text, self._guarded)  # type: ignore[attr-defined]
            else:
                self.parser.feed(text)
        except Exception as e:
            self._fail_decode(e)

    def _on_data(self, data: str, event_state: Optional[str]) -> None:
        if self._completed:
            return
        self.adapter.decode_stream_fragment(data, event_state, self._guarded)  # type: ignore[attr-defined]

    def _handle_error(self, err: TransportError) -> None:
        self.active_job = None
        if self._completed:
            logger.debug("ignoring transport error after completion: %s", err, extra=self._log_extra)
            return
        if err.exit_code == WRITE_ERROR_EXIT:
            problem = runtime_dir_problem()
            if problem:
                warn_once(logger, problem, **self._log_extra)
        self._finish(str(err))

    def _handle_success(self, result: TransportResult) -> None:
        self.active_job = None
        if self._completed:
            return
        if result.status >= 400:
            try:
                message = self.adapter.on_transport_error(result.status, result.body)
            except Exception:
                logger.exception("provider error handler failed", extra=self._log_extra)
                message = None
            warn_once(logger, f"API request failed with status {result.status}", status=result.status, **self._log_extra)
            self._finish(message or f"API request failed with status {result.status}. Body: {result.body!r}")
            return
        if self.wire is None:
            raise RuntimeError("transport reported success before a request was built")
        try:
            if not self.wire.stream:
                event_state = self.parser.event_state if self.parser else None
                self.adapter.decode_full_response(result.body, event_state, self._guarded)
            elif self.adapter.uses_raw_stream:
                self.adapter.finish_raw_stream(self._guarded)  # type: ignore[attr-defined]
            elif self.parser is not None:
                self.parser.flush()
        except Exception as e:
            self._fail_decode(e)
            return
        self._finish(None)

    def _fail_decode(self, exc: Exception) -> None:
        logger.error("failed to decode provider response", exc_info=exc, extra=self._log_extra)
        self._finish(f"failed to decode response: {exc}")

    # Guarded handlers

    def _emit_chunk(self, fragment: Any) -> None:
        if self._completed:
            return
        self.handlers.on_chunk(fragment)

    def _finish(self, error: Optional[str]) -> None:
        if self._completed:
            return
        self._completed = True
        # adapter-signalled end or decode failure: stop the transport, its late callback is dropped
        if self.state in _LIVE_STATES:
            self._shutdown_job()
        self.state = JobState.COMPLETED
        self._disarm()
        self.store.cleanup()
        if self.completion is not None and not self.completion.done():
            self.completion.set_result(error)
        self.handlers.on_complete(error)
