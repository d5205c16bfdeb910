from __future__ import annotations
import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from promptline.logging import get_logger

logger = get_logger("storage")


class TempRequestStore:
    """
    Transient JSON file holding one request body, streamed from disk by the transport.
    - write() serialises the body to a fresh temp file
    - cleanup() schedules deletion on the loop so it never races the transport's read
    - in debug mode the file is kept for inspection
    - deletion is idempotent
    """

    def __init__(
        self,
        *,
        debug: bool = False,
        directory: Optional[Path] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.debug = debug
        self._directory = Path(directory) if directory else None
        self._loop = loop
        self._path: Optional[Path] = None
        self._cleanup_scheduled = False

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def write(self, body: Dict[str, Any]) -> Path:
        if self._path is not None:
            raise RuntimeError("request body already written")
        content = json.dumps(body, ensure_ascii=False)
        fd, name = tempfile.mkstemp(suffix=".json", dir=self._directory)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        self._path = Path(name)
        logger.debug("request body file: %s", self._path)
        return self._path

    def cleanup(self) -> None:
        if self.debug or self._path is None or self._cleanup_scheduled:
            return
        self._cleanup_scheduled = True
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon(self._delete)

    def _delete(self) -> None:
        if self._path is None:
            return
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("could not delete request body file %s: %s", self._path, e)
