from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, TextIO, Tuple

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import DataTable, Static

from webtop import __version__
from webtop.services.config import Settings, configure_logging, load_settings
from webtop.services.driver import RefreshDriver
from webtop.services.sources import STDIN_TARGET, Source, open_source
from webtop.services.visits import VisitStore
from webtop.views import (
    CHUNK_COLUMNS,
    HELP_LINES,
    MODE_HOST,
    MODES,
    VISIT_COLUMNS,
    detail_lines,
    drilldown_lines,
    mode_rows,
    status_line,
)


logger = logging.getLogger(__name__)


MAX_ROWS = 500


class WebtopApp(App):
    CSS = """
    #table {
        height: 1fr;
    }
    #panel {
        dock: right;
        width: 50%;
        height: 1fr;
        border: round $accent;
        display: none;
    }
    #help {
        dock: right;
        width: 28;
        height: auto;
        border: round $accent;
        display: none;
    }
    #status {
        dock: bottom;
        height: 1;
    }
    """

    BINDINGS = [
        Binding("h", "mode('host')", "Hosts"),
        Binding("p", "mode('path')", "Paths"),
        Binding("r", "mode('referer')", "Referers"),
        Binding("question_mark", "toggle_help", "Help"),
        Binding("q", "close_or_quit", "Quit"),
        Binding("escape", "close_or_quit", "Close", show=False),
    ]

    def __init__(self, driver: RefreshDriver, *, refresh_seconds: float = 1.0):
        super().__init__()
        self.refresh_driver = driver
        self.store = driver.store
        self.refresh_seconds = refresh_seconds
        self.view_mode = MODE_HOST
        # (mode, row key) of the row shown in the side panel
        self.panel: Optional[Tuple[str, str]] = None
        self.help_visible = False

    @property
    def panel_visible(self) -> bool:
        return self.panel is not None

    def compose(self) -> ComposeResult:
        yield DataTable(id="table", cursor_type="row")
        yield Static(id="panel")
        yield Static("\n".join(HELP_LINES), id="help")
        yield Static(id="status")

    def on_mount(self) -> None:
        self.title = f"webtop {__version__}"
        self.sub_title = self.refresh_driver.source.label
        self._reset_columns()
        self.refresh_stats()
        self.set_interval(self.refresh_seconds, self.refresh_stats)

    def refresh_stats(self) -> None:
        result = self.refresh_driver.tick()
        self._render_table()
        self._render_panel()
        self.query_one("#status", Static).update(status_line(self.store, result, self.view_mode))

    def _reset_columns(self) -> None:
        table = self.query_one("#table", DataTable)
        table.clear(columns=True)
        table.add_columns(*(VISIT_COLUMNS if self.view_mode == MODE_HOST else CHUNK_COLUMNS[self.view_mode]))

    def _render_table(self) -> None:
        table = self.query_one("#table", DataTable)
        selected = table.cursor_row
        table.clear()
        for key, cells in mode_rows(self.store, self.view_mode, MAX_ROWS):
            if self.view_mode == MODE_HOST and self._has_problems(key):
                table.add_row(*(Text(c, style="bold red") for c in cells), key=key)
            else:
                table.add_row(*cells, key=key)
        if table.row_count:
            table.move_cursor(row=min(max(selected, 0), table.row_count - 1))

    def _has_problems(self, key: str) -> bool:
        visit = self.store.get_visit_by_id(int(key))
        return visit is not None and visit.has_problems()

    def _panel_lines(self) -> Optional[List[str]]:
        if self.panel is None:
            return None
        mode, key = self.panel
        if mode == MODE_HOST:
            visit = self.store.get_visit_by_id(int(key))
            if visit is None:
                return None
            return detail_lines(visit, max_hits=max(1, self.size.height - 14))
        return drilldown_lines(self.store, mode, key)

    def _render_panel(self) -> None:
        widget = self.query_one("#panel", Static)
        lines = self._panel_lines()
        if lines is None:
            # The visit was purged while its panel was open.
            self.panel = None
            widget.display = False
            return
        widget.update("\n".join(lines))
        widget.display = True

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        key = event.row_key.value
        if key is None:
            return
        self.panel = (self.view_mode, key)
        self._render_panel()

    def action_mode(self, mode: str) -> None:
        if mode not in MODES or mode == self.view_mode:
            return
        self.view_mode = mode
        self.panel = None
        self._reset_columns()
        self._render_table()
        self._render_panel()
        self.query_one("#status", Static).update(status_line(self.store, self.refresh_driver.last_result, self.view_mode))

    def action_toggle_help(self) -> None:
        self.help_visible = not self.help_visible
        self.query_one("#help", Static).display = self.help_visible

    def action_close_or_quit(self) -> None:
        if self.help_visible:
            self.action_toggle_help()
        elif self.panel is not None:
            self.panel = None
            self._render_panel()
        else:
            self.exit()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="webtop",
        description="Watch a combined-format access log and show live visits per host, path and referer",
    )
    ap.add_argument("target", help=f"Log file to follow, or '{STDIN_TARGET}' to read lines piped on standard input")
    ap.add_argument(
        "--backfill-bytes",
        type=int,
        default=None,
        help="Bytes read from the end of the file on start (env WEBTOP_BACKFILL_BYTES, default 90000)",
    )
    ap.add_argument(
        "--idle-seconds",
        type=int,
        default=None,
        help="Drop visits idle this long in log time (env WEBTOP_IDLE_SECONDS, default 300)",
    )
    ap.add_argument(
        "--refresh-seconds",
        type=float,
        default=None,
        help="Seconds between ingestion passes (env WEBTOP_REFRESH_SECONDS, default 1)",
    )
    ap.add_argument("--log-file", default=None, help="Write diagnostics here (env WEBTOP_LOG_FILE)")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def _detach_stdin() -> TextIO:
    """Move the piped log off fd 0 and put the controlling terminal there.

    The UI reads keys from fd 0, so the log stream gets a descriptor of its own.
    Raises OSError when there is no terminal to attach.
    """
    log_fd = os.dup(0)
    try:
        tty_fd = os.open("/dev/tty", os.O_RDONLY)
    except OSError:
        os.close(log_fd)
        raise
    os.dup2(tty_fd, 0)
    os.close(tty_fd)
    return os.fdopen(log_fd, "r", encoding="utf-8", errors="replace")


def open_cli_source(target: str, settings: Settings) -> Source:
    if target == STDIN_TARGET:
        if sys.stdin is None or sys.stdin.isatty():
            raise ValueError("Nothing is piped on standard input. Try: tail -f access.log | webtop -")
        try:
            stream = _detach_stdin()
        except OSError as e:
            raise ValueError(f"Can't open the terminal for keyboard input: {e.strerror or e}") from e
        return open_source(target, stdin=stream)

    if not os.path.exists(target):
        raise ValueError(f"{target} doesn't exist! aborting.")
    return open_source(target, backfill_bytes=settings.backfill_bytes)


def main(argv: Optional[List[str]] = None) -> int:
    ns = build_parser().parse_args(argv)
    settings = load_settings().with_overrides(
        backfill_bytes=ns.backfill_bytes,
        idle_seconds=ns.idle_seconds,
        refresh_seconds=ns.refresh_seconds,
        log_file=ns.log_file,
    )
    configure_logging(settings)

    try:
        source = open_cli_source(ns.target, settings)
    except ValueError as e:
        print(f"webtop: {e}", file=sys.stderr)
        return 2

    logger.info("Following %s (idle window %ss)", source.label, settings.idle_seconds)
    store = VisitStore(idle_seconds=settings.idle_seconds)
    app = WebtopApp(RefreshDriver(source, store), refresh_seconds=settings.refresh_seconds)
    app.run()

    if source.reader_alive and not source.wait_eof(timeout=0.2):
        print(
            "webtop: still waiting on standard input; if the process doesn't exit, "
            "stop the command feeding it or press Ctrl-C.",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
