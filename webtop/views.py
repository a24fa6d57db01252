from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from webtop.services.driver import TickResult
from webtop.services.errors import clean_text
from webtop.services.visits import Visit, VisitStore


MODE_HOST = "host"
MODE_PATH = "path"
MODE_REFERER = "referer"
MODES = (MODE_HOST, MODE_PATH, MODE_REFERER)

HELP_LINES = (
    "h - Host mode",
    "p - Path mode",
    "r - Referer mode",
    "↑/↓ - Selection",
    "enter - Details",
    "? - Toggle this help",
    "q - Quit/Close panel",
)

VISIT_COLUMNS = ("Hits", "Host", "Last hit", "Last path", "Referer")
CHUNK_COLUMNS = {
    MODE_PATH: ("Visits", "Path"),
    MODE_REFERER: ("Visits", "Referer"),
}

Row = Tuple[str, Tuple[str, ...]]


def visit_cells(visit: Visit) -> Tuple[str, ...]:
    return (
        str(visit.hit_count),
        clean_text(visit.host, max_len=40),
        visit.last_hit_time.strftime("%Y-%m-%d %H:%M:%S"),
        clean_text(visit.last_path, max_len=80),
        clean_text(visit.referer, max_len=80),
    )


def visit_rows(visits: Iterable[Visit], limit: Optional[int] = None) -> List[Row]:
    """Rows keyed by visit id, in the order given."""
    rows: List[Row] = []
    for visit in visits:
        if limit is not None and len(rows) >= limit:
            break
        rows.append((str(visit.id), visit_cells(visit)))
    return rows


def chunk_rows(chunks: Iterable[Tuple[str, int]], limit: Optional[int] = None) -> List[Row]:
    rows: List[Row] = []
    for key, count in chunks:
        if limit is not None and len(rows) >= limit:
            break
        rows.append((key, (str(count), clean_text(key, max_len=120) or "-")))
    return rows


def mode_rows(store: VisitStore, mode: str, limit: Optional[int] = None) -> List[Row]:
    if mode == MODE_PATH:
        return chunk_rows(store.iter_sorted_path_chunks(), limit)
    if mode == MODE_REFERER:
        return chunk_rows(store.iter_sorted_referer_chunks(), limit)
    return visit_rows(store.iter_sorted_visits(), limit)


def detail_lines(visit: Visit, max_hits: int) -> List[str]:
    """Text of the visit detail panel; older hits collapse into a counter."""
    lines = [
        clean_text(visit.host),
        visit.fmt_time_range(),
        visit.fmt_bytes(),
        f"Hits: {visit.hit_count}",
        f"4xx: {visit.hit_4xx_count}",
        f"5xx: {visit.hit_5xx_count}",
        clean_text(visit.referer),
        clean_text(visit.agent),
        "",
    ]
    max_hits = max(1, max_hits)
    overflow = len(visit.hits) > max_hits
    take = max_hits - 1 if overflow else max_hits
    for hit in visit.hits[:take]:
        lines.append(f"{hit.fmt_time()} {hit.status} {clean_text(hit.path)}")
    if overflow:
        lines.append(f"[{len(visit.hits) - take} more hits]")
    return lines


def drilldown_lines(store: VisitStore, mode: str, key: str) -> List[str]:
    """Visits behind one path or referer row."""
    if mode == MODE_PATH:
        visits = store.visits_for_path(key)
        title = f"Path: {clean_text(key)}"
    else:
        visits = store.visits_for_referer(key)
        title = f"Referer: {clean_text(key) or '-'}"
    lines = [title, f"{len(visits)} active visits", ""]
    for visit in visits:
        lines.append(f"{visit.hit_count:>4} {clean_text(visit.host, max_len=40)} {clean_text(visit.last_path, max_len=80)}")
    return lines


def status_line(store: VisitStore, result: TickResult, mode: str) -> str:
    msg = f"{store.visit_count()} active visits. Last read: {result.read_bytes} bytes. "
    if result.rejected:
        msg += f"{result.rejected} unparsed lines. "
    msg += f"{mode.capitalize()} mode. Hit 'q' to quit, '?' for help"
    if result.error:
        msg += f" | {result.error}"
    return msg
