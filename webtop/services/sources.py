from __future__ import annotations

import logging
import os
import queue
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, TextIO

from webtop.services.config import DEFAULT_BACKFILL_BYTES


logger = logging.getLogger(__name__)


STDIN_TARGET = "-"


class SourceError(Exception):
    """Raised when a round of reading has to be skipped.

    The message is meant for the status line.
    """


class Source(ABC):
    """Something that yields newly appended log text once per round."""

    label = "source"

    @abstractmethod
    def next_chunk(self) -> str:
        ...

    @property
    def last_read_bytes(self) -> int:
        return 0

    @property
    def reader_alive(self) -> bool:
        return False

    def wait_eof(self, timeout: Optional[float] = None) -> bool:
        return True


class FileSource(Source):
    """Poll a growing file and return what was appended since the last call.

    The first call backfills the last `backfill_bytes` so the screen is not
    empty on start. A backfill that starts mid-file drops the partial line
    it lands in.
    """

    def __init__(self, path: str, backfill_bytes: int = DEFAULT_BACKFILL_BYTES):
        self.path = path
        self.backfill_bytes = backfill_bytes
        self.label = path

        self.last_size = 0
        self._last_read = 0

    @property
    def last_read_bytes(self) -> int:
        return self._last_read

    def next_chunk(self) -> str:
        self._last_read = 0
        try:
            size = os.stat(self.path).st_size
        except OSError as e:
            raise SourceError(f"Can't stat {self.path}: {e.strerror or e}") from e

        if size < self.last_size:
            # Rotated or truncated. Take the new size as the baseline and
            # only follow growth from here.
            previous = self.last_size
            self.last_size = size
            raise SourceError(
                f"{self.path} shrank from {previous} to {size} bytes, skipping this round."
            )

        if self.last_size == 0:
            read_size = min(size, self.backfill_bytes)
        else:
            read_size = size - self.last_size
        if read_size <= 0:
            self.last_size = size
            return ""

        start = size - read_size
        backfill = self.last_size == 0 and start > 0
        try:
            with open(self.path, "rb") as f:
                if backfill:
                    f.seek(start - 1)
                    at_line_start = f.read(1) == b"\n"
                else:
                    f.seek(start)
                    at_line_start = True
                raw = f.read(read_size)
        except OSError as e:
            raise SourceError(f"Had trouble reading {self.path}: {e.strerror or e}") from e

        self.last_size = size
        self._last_read = len(raw)
        if not at_line_start:
            cut = raw.find(b"\n")
            raw = raw[cut + 1 :] if cut >= 0 else b""
        return raw.decode("utf-8", errors="replace")


class StdinSource(Source):
    """Collect lines pushed through a pipe.

    A daemon thread blocks on `stream` and hands complete lines over through
    a queue; next_chunk() only drains what is already there. The thread is
    never cancelled: if it is still waiting for input at exit, the caller
    should say so instead of promising a clean shutdown.
    """

    label = "<stdin>"

    def __init__(self, stream: TextIO):
        self.stream = stream
        self.q: "queue.Queue[str]" = queue.Queue()
        self._eof = threading.Event()
        self._last_read = 0
        self._thread = threading.Thread(target=self._reader, name="webtop-stdin-reader", daemon=True)
        self._thread.start()

    def _reader(self) -> None:
        try:
            for line in self.stream:
                if line.endswith("\n"):
                    self.q.put(line)
                else:
                    # Last line of a stream without a trailing newline.
                    self.q.put(line + "\n")
        except (OSError, ValueError):
            logger.exception("Reading standard input failed")
        finally:
            self._eof.set()

    @property
    def last_read_bytes(self) -> int:
        return self._last_read

    @property
    def eof(self) -> bool:
        return self._eof.is_set() and self.q.empty()

    def wait_eof(self, timeout: Optional[float] = None) -> bool:
        return self._eof.wait(timeout)

    @property
    def reader_alive(self) -> bool:
        return self._thread.is_alive()

    def next_chunk(self) -> str:
        lines: List[str] = []
        while True:
            try:
                lines.append(self.q.get_nowait())
            except queue.Empty:
                break
        chunk = "".join(lines)
        self._last_read = len(chunk.encode("utf-8", errors="replace"))
        return chunk


def open_source(target: str, *, backfill_bytes: int = DEFAULT_BACKFILL_BYTES, stdin: Optional[TextIO] = None) -> Source:
    if target == STDIN_TARGET:
        if stdin is None:
            raise ValueError("Reading from standard input needs a stream")
        return StdinSource(stdin)
    return FileSource(target, backfill_bytes=backfill_bytes)
