"""straceprof - Main Textual application."""

import argparse
import logging
import math
import sys
from dataclasses import dataclass
from enum import Enum
from itertools import groupby
from pathlib import Path

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container, VerticalScroll
from textual.logging import TextualHandler
from textual.message import Message
from textual.widget import Widget
from textual.widgets import DataTable, Footer, Input, Static

from straceprof.config import ConfigError, ViewerConfig, load_config
from straceprof.models import Process, ScreenRect
from straceprof.parser import IssueKind
from straceprof.render import (
    ELLIPSIS,
    EMPTY_RESULT,
    LayoutConstants,
    RenderResult,
    Surface,
    describe_process,
    generate_label,
)
from straceprof.session import TraceSession

# Pixel size of one terminal cell. A cell is one glyph of a 12px font wide.
CELL_WIDTH = 7.2
CELL_HEIGHT = 15.0

# Share of the window span moved by one pan step.
PAN_FRACTION = 0.1

TERMINAL_CONSTANTS = LayoutConstants(
    row_height=2 * CELL_HEIGHT,
    row_gap=CELL_HEIGHT,
    top_margin=2 * CELL_HEIGHT,
    padding=CELL_WIDTH,
    font_size=12,
)


class SortKey(Enum):
    """Sort keys for the process table."""

    DURATION = "duration"
    START = "start"
    PID = "pid"
    PROGRAM = "program"


def format_duration(seconds: float) -> str:
    """Format seconds as a short human-readable string."""
    if seconds < 60:
        return f"{seconds:.3f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


class TraceSummary(Static):
    """Header widget showing trace and filter statistics."""

    DEFAULT_CSS = """
    TraceSummary {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def update_summary(self, session: TraceSession) -> None:
        """Update the statistics from a session."""
        self.update(self.describe(session))

    @staticmethod
    def describe(session: TraceSession) -> Text:
        """Build the summary text for a session."""
        diagnostics = session.result.diagnostics
        start, end = session.window
        text = Text()
        text.append(f"{len(session.processes)}", style="bold")
        text.append(" processes, ")
        text.append(f"{len(session.assignments)}", style="bold")
        text.append(f" shown on {session.lane_count} lanes | ")
        text.append(f"threshold {session.threshold:g}s | ")
        text.append(f"window {start:.1f}s-{end:.1f}s | ")
        text.append(f"filter {session.pattern!r}")

        issues = [
            f"{kind.value.replace('_', ' ')}: {diagnostics.count(kind)}"
            for kind in IssueKind
            if diagnostics.count(kind)
        ]
        if issues:
            text.append("\n")
            text.append(", ".join(issues), style="yellow")
        return text


class _CellCanvas:
    """Character grid with per-cell styles."""

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self._chars = [[" "] * width for _ in range(height)]
        self._styles = [[""] * width for _ in range(height)]

    def put(self, row: int, col: int, text: str, style: str = "") -> None:
        if not 0 <= row < self.height:
            return
        for offset, char in enumerate(text):
            c = col + offset
            if 0 <= c < self.width:
                self._chars[row][c] = char
                self._styles[row][c] = style

    def fill(self, row: int, first: int, last: int, style: str) -> None:
        self.put(row, first, " " * (last - first + 1), style)

    def to_text(self) -> Text:
        text = Text(no_wrap=True, overflow="crop")
        for row in range(self.height):
            if row:
                text.append("\n")
            cells = zip(self._chars[row], self._styles[row])
            for style, run in groupby(cells, key=lambda cell: cell[1]):
                text.append("".join(char for char, _ in run), style=style or None)
        return text


def cell_span(x: float, width: float) -> tuple[int, int]:
    """
    Get the first and last column drawn for ``[x, x + width]``.

    These are the columns whose center lies inside the interval. A rectangle
    narrower than that still gets the column it starts in.
    """
    first = math.ceil(x / CELL_WIDTH - 0.5)
    last = math.floor((x + width) / CELL_WIDTH - 0.5)
    if last < first:
        first = last = math.floor(x / CELL_WIDTH)
    return first, last


@dataclass(slots=True, frozen=True)
class CellSpan:
    """Terminal cells drawn for one process rectangle."""

    row: int
    first: int
    last: int
    rect: ScreenRect

    @property
    def cells(self) -> int:
        return self.last - self.first + 1

    def contains(self, col: int, row: int) -> bool:
        return row == self.row and self.first <= col <= self.last


def layout_cells(result: RenderResult) -> tuple[CellSpan, ...]:
    """Map every rectangle of a render result to terminal cells, in draw order."""
    spans = []
    for rect in result.rects:
        first, last = cell_span(rect.x, rect.width)
        spans.append(CellSpan(math.floor(rect.y / CELL_HEIGHT), first, last, rect))
    return tuple(spans)


def process_in_cells(spans: tuple[CellSpan, ...], col: int, row: int) -> Process | None:
    """Get the process drawn in a cell; the first span in draw order wins."""
    for span in spans:
        if span.contains(col, row):
            return span.rect.process
    return None


def fit_label(process: Process, cells: int) -> str:
    """Get the label of a process drawn ``cells`` columns wide."""
    label = generate_label(process, cells * CELL_WIDTH, TERMINAL_CONSTANTS)
    if len(label) <= cells:
        return label
    if cells <= len(ELLIPSIS):
        return ""
    return label[: cells - len(ELLIPSIS)] + ELLIPSIS


class TimelineView(Widget):
    """Timeline of processes on lanes, drawn with terminal cells."""

    DEFAULT_CSS = """
    TimelineView {
        height: auto;
        min-height: 3;
    }
    """

    class ProcessHovered(Message):
        """Posted when the process under the pointer changes."""

        def __init__(self, process: Process | None) -> None:
            super().__init__()
            self.process = process

    class ProcessSelected(Message):
        """Posted when a process rectangle is clicked."""

        def __init__(self, process: Process) -> None:
            super().__init__()
            self.process = process

    def __init__(self, *args, **kwargs) -> None:
        """Initialize TimelineView."""
        super().__init__(*args, **kwargs)
        self._trace_session: TraceSession | None = None
        self._result: RenderResult = EMPTY_RESULT
        self._cells: tuple[CellSpan, ...] = ()
        self._hovered_process: Process | None = None

    @property
    def result(self) -> RenderResult:
        """Get the geometry of the last layout."""
        return self._result

    def set_session(self, session: TraceSession) -> None:
        """Show a session and lay it out."""
        self._trace_session = session
        self.relayout()

    def relayout(self) -> None:
        """Recompute the geometry for the current session and width."""
        if self._trace_session is None or self.size.width == 0:
            return
        width = self.size.width * CELL_WIDTH
        result = self._trace_session.render(Surface(width, 0), TERMINAL_CONSTANTS)
        self._result = result
        self._cells = layout_cells(result)
        self.styles.height = max(math.ceil(result.height / CELL_HEIGHT), 3)
        self.refresh()

    @property
    def cells(self) -> tuple[CellSpan, ...]:
        """Get the terminal cells of each rectangle, in draw order."""
        return self._cells

    def process_at(self, col: int, row: int) -> Process | None:
        """Get the process drawn in a terminal cell."""
        return process_in_cells(self._cells, col, row)

    def on_resize(self, event: events.Resize) -> None:
        """Lay out again for the new width."""
        self.relayout()

    def on_mouse_move(self, event: events.MouseMove) -> None:
        """Track the process under the pointer."""
        process = self.process_at(event.x, event.y)
        if process != self._hovered_process:
            self._hovered_process = process
            self.post_message(self.ProcessHovered(process))

    def on_leave(self, event: events.Leave) -> None:
        """Clear the hovered process."""
        if self._hovered_process is not None:
            self._hovered_process = None
            self.post_message(self.ProcessHovered(None))

    def on_click(self, event: events.Click) -> None:
        """Select the clicked process."""
        process = self.process_at(event.x, event.y)
        if process is not None:
            self.post_message(self.ProcessSelected(process))

    def render(self) -> Text:
        """Draw title, time axis and process rectangles."""
        height = max(math.ceil(self._result.height / CELL_HEIGHT), 3)
        canvas = _CellCanvas(self.size.width, height)
        if self._trace_session is not None:
            title = self._trace_session.config.title
            canvas.put(0, max((canvas.width - len(title)) // 2, 0), title, "bold")

        for tick in self._result.ticks:
            col = math.floor(tick.x / CELL_WIDTH)
            canvas.put(1, col, tick.label, "dim")
            for row in range(2, height):
                canvas.put(row, col, "│", "grey23")

        # earlier spans paint over later ones, as they win the hit-test
        for span in reversed(self._cells):
            style = f"black on {span.rect.color}"
            canvas.fill(span.row, span.first, span.last, style)
            label = fit_label(span.rect.process, span.cells)
            if label:
                canvas.put(span.row, span.first + (span.cells - len(label)) // 2, label, style)

        return canvas.to_text()


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._sort_key: SortKey = SortKey.DURATION
        self._sort_reverse: bool = True
        self._processes: list[Process] = []
        self._origin: float = 0.0
        self._columns_ready: bool = False

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def row_count(self) -> int:
        """Get the number of processes listed."""
        return len(self._processes)

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        next_index = (current_index + 1) % len(keys)
        self._sort_key = keys[next_index]
        # Longest first for durations, ascending otherwise
        self._sort_reverse = self._sort_key is SortKey.DURATION
        self._fill_table()
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("Program", key="program", width=16)
        table.add_column("Start", key="start", width=10)
        table.add_column("Duration", key="duration", width=10)
        table.add_column("Command", key="command")
        self._columns_ready = True
        self._fill_table()

    def update_processes(self, processes: list[Process], origin: float) -> None:
        """
        Replace the listed processes.

        Args:
            processes: Processes to list.
            origin: Trace origin used to show relative start times.
        """
        self._processes = list(processes)
        self._origin = origin
        self._fill_table()

    def _sort_processes(self, processes: list[Process]) -> list[Process]:
        """Sort processes based on the current sort key."""
        key_func = {
            SortKey.DURATION: lambda p: p.duration,
            SortKey.START: lambda p: p.start_time,
            SortKey.PID: lambda p: p.pid,
            SortKey.PROGRAM: lambda p: p.basename.lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)

    def _fill_table(self) -> None:
        if not self._columns_ready:
            return  # Filled from on_mount
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in self._sort_processes(self._processes):
            table.add_row(
                str(proc.pid),
                proc.basename[:16],
                f"{proc.start_time - self._origin:.3f}",
                format_duration(proc.duration),
                proc.full_command,
            )


class RawContent(Static):
    """Raw trace text, shown when no process could be reconstructed."""

    DEFAULT_CSS = """
    RawContent {
        height: 1fr;
        padding: 1;
        border: solid $warning;
    }
    """

    def __init__(self, content: str, *args, **kwargs) -> None:
        """Initialize RawContent."""
        text = Text("File content (no processes found):\n\n", style="bold")
        text.append(content)
        super().__init__(text, *args, **kwargs)


class StraceprofApp(App):
    """Main straceprof application."""

    TITLE = "straceprof"
    SUB_TITLE = "Multi-process profiler for strace logs"
    AUTO_FOCUS = "#process-table"

    CSS = """
    Screen {
        layout: vertical;
    }

    #filter {
        dock: top;
    }

    #timeline-scroll {
        height: 2fr;
    }

    #status {
        height: auto;
        min-height: 2;
        padding: 0 1;
        background: $panel;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("slash", "search", "Filter"),
        ("plus", "raise_threshold", "Threshold +"),
        ("minus", "lower_threshold", "Threshold -"),
        ("t", "toggle_table", "Table"),
        ("h", "pan(-1)", "Pan left"),
        ("l", "pan(1)", "Pan right"),
        ("i", "zoom(0.5)", "Zoom in"),
        ("o", "zoom(2)", "Zoom out"),
        ("0", "reset_window", "Full span"),
    ]

    def __init__(self, text: str, config: ViewerConfig | None = None) -> None:
        """Initialize the StraceprofApp with the trace contents."""
        super().__init__()
        self._trace_session = TraceSession(text, config)
        self.hovered_process: Process | None = None

    @property
    def session(self) -> TraceSession:
        """Get the loaded trace session."""
        return self._trace_session

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Input(value=self._trace_session.pattern, placeholder="Regular expression to filter processes", id="filter")
        yield TraceSummary(id="summary")
        if self._trace_session.is_empty:
            yield RawContent(self._trace_session.text, id="raw-content")
        else:
            yield VerticalScroll(TimelineView(id="timeline"), id="timeline-scroll")
            yield ProcessTable(id="processes")
        yield Static("", id="status")
        yield Footer()

    def on_mount(self) -> None:
        """Show the trace once the widgets exist."""
        if not self._trace_session.is_empty:
            self.query_one(TimelineView).set_session(self._trace_session)
        self._refresh_views()

    def _refresh_views(self) -> None:
        """Recompute the layout-dependent widgets."""
        self.query_one(TraceSummary).update_summary(self._trace_session)
        if self._trace_session.is_empty:
            return
        self.query_one(TimelineView).relayout()
        self.query_one(ProcessTable).update_processes(self._trace_session.visible(), self._trace_session.origin)

    def on_input_changed(self, event: Input.Changed) -> None:
        """Apply the command filter as it is typed."""
        if event.value == self._trace_session.pattern:
            return
        self._trace_session.set_pattern(event.value)
        self._refresh_views()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Leave the filter input."""
        if not self._trace_session.is_empty:
            self.query_one("#process-table", DataTable).focus()

    def on_timeline_view_process_hovered(self, message: TimelineView.ProcessHovered) -> None:
        """Show the hovered process in the status bar."""
        status = self.query_one("#status", Static)
        process = message.process
        self.hovered_process = process
        if process is None:
            status.update("")
            return
        status.update(
            Text.assemble(
                (f"{process.basename}", "bold"),
                f" PID {process.pid}, {format_duration(process.duration)}, "
                f"started at {process.start_time - self._trace_session.origin:.3f}s\n",
                process.full_command,
            )
        )

    def on_timeline_view_process_selected(self, message: TimelineView.ProcessSelected) -> None:
        """Copy the clicked process to the clipboard."""
        self.copy_to_clipboard(describe_process(message.process))
        self.notify("Process information copied to clipboard!")

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        if self._trace_session.is_empty:
            return
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_search(self) -> None:
        """Focus the filter input."""
        self.query_one("#filter", Input).focus()

    def action_raise_threshold(self) -> None:
        """Hide processes one second shorter than the current threshold."""
        self._trace_session.set_threshold(self._trace_session.threshold + 1)
        self._refresh_views()

    def action_lower_threshold(self) -> None:
        """Show processes one second shorter than the current threshold."""
        self._trace_session.set_threshold(self._trace_session.threshold - 1)
        self._refresh_views()

    def action_pan(self, direction: int) -> None:
        """Move the window by a tenth of its span without changing its size."""
        start, end = self._trace_session.window
        low, high = self._trace_session.global_range
        step = (end - start) * PAN_FRACTION * direction
        step = min(max(step, low - start), high - end)
        self._trace_session.set_window(start + step, end + step)
        self._refresh_views()

    def action_zoom(self, factor: float) -> None:
        """Scale the window span around its center."""
        start, end = self._trace_session.window
        center = (start + end) / 2
        half = (end - start) * factor / 2
        self._trace_session.set_window(center - half, center + half)
        self._refresh_views()

    def action_reset_window(self) -> None:
        """Show the whole trace span."""
        self._trace_session.set_window(None, None)
        self._refresh_views()

    def action_toggle_table(self) -> None:
        """Show or hide the process table."""
        if self._trace_session.is_empty:
            return
        table = self.query_one(ProcessTable)
        table.display = not table.display


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="straceprof",
        description=(
            "Visualize a trace recorded with: strace --trace=execve,execveat,exit,exit_group "
            "--follow-forks --string-limit=1000 -ttt --output=straceprof.log <command>"
        ),
    )
    parser.add_argument("trace", type=Path, help="strace log to visualize")
    parser.add_argument("--threshold", type=float, help="minimum process duration in seconds")
    parser.add_argument("--filter", dest="pattern", help="regular expression matched against commands")
    parser.add_argument("--start", type=float, help="window start, seconds from the first execve")
    parser.add_argument("--end", type=float, help="window end, seconds from the first execve")
    parser.add_argument("--title", help="title drawn above the timeline")
    parser.add_argument("--log-file", type=Path, help="write log records to this file")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="log level (default: WARNING)",
    )
    return parser


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """Send log records to a file, or to the Textual console while the app runs."""
    handler: logging.Handler = (
        logging.FileHandler(log_file, encoding="utf-8") if log_file else TextualHandler()
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[handler],
        force=True,
    )


def main(argv: list[str] | None = None) -> int:
    """Entry point for straceprof application."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        config = load_config().with_overrides(
            threshold=args.threshold,
            pattern=args.pattern,
            title=args.title or args.trace.name,
        )
    except ConfigError as e:
        print(f"straceprof: {e}", file=sys.stderr)
        return 2
    config = config.with_overrides(window=(args.start, args.end))

    try:
        text = args.trace.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        print(f"straceprof: cannot read {args.trace}: {e}", file=sys.stderr)
        return 1

    app = StraceprofApp(text, config)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
