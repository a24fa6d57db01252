from __future__ import annotations

import logging
import threading
import time
from typing import Dict


_lock = threading.Lock()
_last_log: Dict[str, float] = {}


def should_log(key: str, *, interval_seconds: float) -> bool:
    now = time.monotonic()
    with _lock:
        last = _last_log.get(key)
        if last is not None and (now - last) < float(interval_seconds):
            return False
        _last_log[key] = now
        return True


def reset_throttle() -> None:
    with _lock:
        _last_log.clear()


def log_throttled(
    logger: logging.Logger,
    level: int,
    key: str,
    message: str,
    *args,
    interval_seconds: float,
    exc_info: bool = False,
) -> bool:
    """Emit `message` at most once per interval per key.

    The refresh loop runs every second; a file that stays unreadable would
    otherwise write the same record sixty times a minute. Returns True when
    the record was emitted.
    """
    try:
        if not should_log(key, interval_seconds=interval_seconds):
            return False
        logger.log(level, message, *args, exc_info=exc_info)
        return True
    except Exception:
        # Never let logging break the refresh loop.
        return False


def log_exception_throttled(logger: logging.Logger, key: str, *args, interval_seconds: float, message: str) -> bool:
    return log_throttled(
        logger,
        logging.ERROR,
        key,
        message,
        *args,
        interval_seconds=interval_seconds,
        exc_info=True,
    )
