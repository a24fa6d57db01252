from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from typing import Optional


# Combined log format:
#   host ident user [10/Oct/2023:13:55:36 +0000] "GET /path HTTP/1.1" 200 1024 "referer" "agent"
_LINE_RE = re.compile(
    r'^(\S+) \S+ \S+ \[([^\]]*?) [+-]\d{4}\] "\S+ (\S+) [^" ]+" (\S+) (\S+) "([^"]*)" "([^"]*)"'
)
_TIME_RE = re.compile(r"^(\d{1,2})/([A-Za-z]{3})/(\d{4}):(\d{2}):(\d{2}):(\d{2})$")

# strptime's %b follows the process locale, which the UI changes.
_MONTHS = {
    name: index
    for index, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}

PAGE_EXTENSIONS = frozenset(("html", "htm", "php"))

STATUS_UNKNOWN = 999


def _now() -> datetime.datetime:
    return datetime.datetime.now()


def is_path_resource(path: str) -> bool:
    """Tell page hits from resource hits by the extension of the last segment.

    "/" and "/blog/" are pages. "/about" has no dot, so its whole last segment
    is taken as the extension and it counts as a resource.
    """
    segment = path.rsplit("/", 1)[-1]
    if not segment:
        return False
    extension = segment.rsplit(".", 1)[-1]
    return extension not in PAGE_EXTENSIONS


@dataclass(frozen=True)
class Hit:
    host: str
    time: datetime.datetime
    status: int
    bytes: int
    path: str
    referer: str
    agent: str

    @property
    def is_4xx(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_5xx(self) -> bool:
        return 500 <= self.status < 600

    @property
    def is_resource(self) -> bool:
        return is_path_resource(self.path)

    def fmt_time(self) -> str:
        return self.time.strftime("%H:%M")


def _strip_query(value: str) -> str:
    return value.split("?", 1)[0]


def _parse_time(raw: str) -> datetime.datetime:
    m = _TIME_RE.match(raw)
    if not m:
        return _now()
    month = _MONTHS.get(m.group(2).lower())
    if month is None:
        return _now()
    try:
        return datetime.datetime(
            int(m.group(3)),
            month,
            int(m.group(1)),
            int(m.group(4)),
            int(m.group(5)),
            int(m.group(6)),
        )
    except ValueError:
        # e.g. 31/Feb or hour 25
        return _now()


def parse_line(line: str) -> Optional[Hit]:
    """Parse one combined-log line into a Hit, or None if it doesn't fit.

    Field-level problems don't reject the line: a bad timestamp becomes "now",
    a non-numeric status becomes STATUS_UNKNOWN and a non-numeric byte count
    (nginx writes "-" for empty bodies) becomes 0.
    """
    m = _LINE_RE.match((line or "").strip("\r\n"))
    if not m:
        return None

    host, raw_time, path, raw_status, raw_bytes, referer, agent = m.groups()

    try:
        status = int(raw_status)
    except ValueError:
        status = STATUS_UNKNOWN

    try:
        size_bytes = int(raw_bytes)
    except ValueError:
        size_bytes = 0

    return Hit(
        host=host,
        time=_parse_time(raw_time),
        status=status,
        bytes=max(size_bytes, 0),
        path=_strip_query(path),
        referer=_strip_query(referer),
        agent=agent,
    )
