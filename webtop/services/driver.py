from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from webtop.services.errors import public_error_message
from webtop.services.hits import parse_line
from webtop.services.logutil import log_exception_throttled, log_throttled
from webtop.services.sources import Source, SourceError
from webtop.services.visits import VisitStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    read_bytes: int = 0
    lines: int = 0
    hits: int = 0
    purged: int = 0
    error: Optional[str] = None

    @property
    def rejected(self) -> int:
        return self.lines - self.hits


MAX_PENDING_CHARS = 64 * 1024


class LineBuffer:
    """Split chunks into complete lines, holding back an unfinished tail.

    A tail longer than `max_pending` is not a log line (wrong or binary
    file) and is dropped with a warning.
    """

    def __init__(self, max_pending: int = MAX_PENDING_CHARS) -> None:
        self.max_pending = max_pending
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> List[str]:
        if not chunk:
            return []
        data = self._pending + chunk
        lines = data.split("\n")
        tail = lines.pop()
        if len(tail) > self.max_pending:
            log_throttled(
                logger,
                logging.WARNING,
                "driver.pending_overflow",
                "Dropped %d characters without a newline; is this a combined access log?",
                len(tail),
                interval_seconds=300.0,
            )
            tail = ""
        self._pending = tail
        return [line for line in lines if line.strip()]

    def reset(self) -> None:
        self._pending = ""


class RefreshDriver:
    """One ingestion pass per tick: read, parse, aggregate, evict.

    Must be called from the thread that owns the store; nothing here blocks
    except the file read of a polled source.
    """

    def __init__(self, source: Source, store: VisitStore):
        self.source = source
        self.store = store
        self.buffer = LineBuffer()
        self.last_result = TickResult()

    def tick(self) -> TickResult:
        try:
            chunk = self.source.next_chunk()
        except SourceError as e:
            # The file was rotated or is unreadable; a half line from before
            # can't be completed by what comes next.
            self.buffer.reset()
            log_throttled(
                logger,
                logging.WARNING,
                "driver.source." + self.source.label,
                "Skipping round: %s",
                e,
                interval_seconds=60.0,
            )
            self.last_result = TickResult(error=public_error_message(e))
            return self.last_result
        except Exception as e:
            log_exception_throttled(
                logger,
                "driver.source.unexpected",
                interval_seconds=60.0,
                message="Unexpected failure reading the log source",
            )
            self.buffer.reset()
            self.last_result = TickResult(error=public_error_message(e))
            return self.last_result

        lines = self.buffer.feed(chunk)
        hits = 0
        for line in lines:
            hit = parse_line(line)
            if hit is None:
                continue
            self.store.feed_hit(hit)
            hits += 1

        purged = self.store.purge_visits()
        if lines and not hits:
            log_throttled(
                logger,
                logging.INFO,
                "driver.no_hits",
                "None of %d new lines looked like a combined log entry",
                len(lines),
                interval_seconds=300.0,
            )

        self.last_result = TickResult(
            read_bytes=self.source.last_read_bytes,
            lines=len(lines),
            hits=hits,
            purged=purged,
        )
        return self.last_result
