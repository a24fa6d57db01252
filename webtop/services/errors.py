"""Text that reaches the terminal.

Everything drawn by the UI either comes out of the access log (hosts,
paths, referers, user agents) or out of an exception raised while reading
it. Log fields are written by whoever sends the request, so they are
scrubbed of escape sequences before they can move the cursor or recolour
the screen.
"""
from __future__ import annotations

import re

from webtop.services.config import env_flag
from webtop.services.sources import SourceError


# CSI (ESC [ ... final) and OSC (ESC ] ... BEL/ST) sequences.
_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?")
_WS_RE = re.compile(r"\s+")


def expose_internal_errors() -> bool:
    return env_flag("WEBTOP_EXPOSE_INTERNAL_ERRORS")


def clean_text(text: str, *, max_len: int = 200) -> str:
    """Flatten a log field or message to one printable line.

    Escape sequences are removed whole; other control characters become
    spaces. Cut to `max_len` characters with an ellipsis (0 keeps it all).
    """
    s = _ESCAPE_RE.sub("", text or "")
    s = "".join(ch if (ch >= " " and ch != "\x7f") else " " for ch in s)
    s = _WS_RE.sub(" ", s).strip()
    if max_len and len(s) > max_len:
        s = s[: max_len - 1].rstrip() + "…"
    return s


def public_error_message(
    e: BaseException,
    *,
    default: str = "Unexpected error while reading the log. Check the log file for details.",
    max_len: int = 200,
) -> str:
    """Message for the status line when a round is skipped.

    A SourceError, OSError or ValueError says what is wrong with the log
    (rotated, missing, unreadable) and is shown as is. Anything else is a
    bug; the status line shows `default` and the traceback goes to the log
    file, unless WEBTOP_EXPOSE_INTERNAL_ERRORS is set.
    """
    if expose_internal_errors():
        detail = clean_text(f"{type(e).__name__}: {e}", max_len=max_len)
        return detail or default

    if isinstance(e, (SourceError, ValueError, OSError)):
        msg = clean_text(str(e), max_len=max_len)
        return msg or default

    return default
