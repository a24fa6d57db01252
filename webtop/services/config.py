from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional


logger = logging.getLogger(__name__)


DEFAULT_IDLE_SECONDS = 5 * 60
DEFAULT_BACKFILL_BYTES = 90000
DEFAULT_REFRESH_SECONDS = 1.0


@dataclass(frozen=True)
class Settings:
    idle_seconds: int = DEFAULT_IDLE_SECONDS
    backfill_bytes: int = DEFAULT_BACKFILL_BYTES
    refresh_seconds: float = DEFAULT_REFRESH_SECONDS
    log_file: Optional[str] = None
    log_level: str = "INFO"

    def with_overrides(self, **kwargs) -> "Settings":
        # CLI flags left unset arrive as None and keep the environment value.
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, *, minimum: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default


def _env_float(name: str, default: float, *, minimum: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return max(minimum, float(raw))
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default


def load_settings() -> Settings:
    """Read WEBTOP_* environment variables into a Settings instance."""
    return Settings(
        idle_seconds=_env_int("WEBTOP_IDLE_SECONDS", DEFAULT_IDLE_SECONDS, minimum=1),
        backfill_bytes=_env_int("WEBTOP_BACKFILL_BYTES", DEFAULT_BACKFILL_BYTES, minimum=0),
        refresh_seconds=_env_float("WEBTOP_REFRESH_SECONDS", DEFAULT_REFRESH_SECONDS, minimum=0.1),
        log_file=(os.environ.get("WEBTOP_LOG_FILE") or "").strip() or None,
        log_level=(os.environ.get("WEBTOP_LOG_LEVEL") or "INFO").strip().upper() or "INFO",
    )


def configure_logging(settings: Settings) -> None:
    """Route log records to a file, or nowhere.

    The terminal is owned by the UI, so nothing may be written to stderr
    while it runs.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if not settings.log_file:
        root.addHandler(logging.NullHandler())
        return

    handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    level = logging.getLevelName(settings.log_level)
    root.setLevel(level if isinstance(level, int) else logging.INFO)
