"""Trace session for straceprof.

Holds one loaded trace and the current filter settings, and recomputes the
lane layout whenever a setting changes.
"""

from straceprof.colors import build_color_map
from straceprof.config import ViewerConfig
from straceprof.layout import (
    assign_lanes,
    calculate_threshold,
    compile_filter,
    global_time_range,
    lane_count,
    trace_origin,
    visible_processes,
)
from straceprof.models import LaneAssignment, Process
from straceprof.parser import ParseResult, parse_log
from straceprof.render import LayoutConstants, RenderResult, Surface, render


class TraceSession:
    """
    A parsed trace plus the threshold, filter and window applied to it.

    Colors are computed once per trace so a program keeps its color while the
    filters change; lanes are recomputed on every change.
    """

    def __init__(self, text: str, config: ViewerConfig | None = None) -> None:
        """
        Parse a trace and apply the configured filters.

        Args:
            text: Complete trace contents.
            config: Viewer settings, defaults to ``ViewerConfig()``.
        """
        self._config = config or ViewerConfig()
        self.text = text
        self.result: ParseResult = parse_log(text)
        self.processes: list[Process] = list(self.result.processes)
        self.color_map = build_color_map(self.processes, self._config.palette)
        self.origin = trace_origin(self.processes)
        self.global_range = global_time_range(self.processes)

        self._threshold = max(
            0,
            self._config.threshold
            if self._config.threshold is not None
            else calculate_threshold(self.processes, self._config.max_processes),
        )
        self._pattern = self._config.pattern
        self._regexp = compile_filter(self._pattern)
        start, end = self._config.window
        self._window = self._clamp_window(start, end)
        self.assignments: list[LaneAssignment] = []
        self._relayout()

    @property
    def config(self) -> ViewerConfig:
        """Get the session configuration."""
        return self._config

    @property
    def is_empty(self) -> bool:
        """True when the trace has no finished process."""
        return self.result.is_empty

    @property
    def threshold(self) -> float:
        """Get the minimum duration shown, in seconds."""
        return self._threshold

    @property
    def pattern(self) -> str:
        """Get the command filter expression."""
        return self._pattern

    @property
    def window(self) -> tuple[float, float]:
        """Get the visible time window relative to the trace origin."""
        return self._window

    @property
    def lane_count(self) -> int:
        """Get the number of lanes in the current layout."""
        return lane_count(self.assignments)

    def set_threshold(self, value: float) -> None:
        """Set the minimum duration; negative values are clamped to 0."""
        self._threshold = max(0, value)
        self._relayout()

    def set_pattern(self, pattern: str) -> None:
        """Set the command filter expression."""
        self._pattern = pattern
        self._regexp = compile_filter(pattern)
        self._relayout()

    def set_window(self, start: float | None, end: float | None) -> None:
        """Set the visible window; None keeps the trace bound on that side."""
        self._window = self._clamp_window(start, end)

    def _clamp_window(self, start: float | None, end: float | None) -> tuple[float, float]:
        low, high = self.global_range
        start = low if start is None else min(max(start, low), high)
        end = high if end is None else min(max(end, start), high)
        return (start, end)

    def _relayout(self) -> None:
        self.assignments = assign_lanes(self.processes, self._threshold, self._regexp)

    def visible(self) -> list[Process]:
        """Get the filtered processes overlapping the window, by start time."""
        return visible_processes(
            self.processes, self._threshold, self._regexp, self._window, self.origin
        )

    def render(self, surface: Surface, constants: LayoutConstants = LayoutConstants()) -> RenderResult:
        """Compute the timeline geometry for a surface."""
        return render(
            [a.process for a in self.assignments],
            [a.lane for a in self.assignments],
            self.color_map,
            self._window,
            surface,
            constants,
            origin=self.origin,
            default_color=self._config.default_color,
        )
