"""Render engine for straceprof.

Maps laned processes to pixel-space rectangles and answers which process sits
under a pointer. Times handed to the engine are absolute trace timestamps;
the visible window is expressed relative to the trace origin.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from straceprof.colors import DEFAULT_COLOR, color_for
from straceprof.models import Process, ScreenRect, TimeTick

ELLIPSIS = "..."


@dataclass(slots=True, frozen=True)
class LayoutConstants:
    """Fixed geometry of the timeline, in pixels."""

    row_height: float = 30
    row_gap: float = 2  # Space left between adjacent lanes
    top_margin: float = 65  # Title and time-axis labels
    padding: float = 5
    font_size: float = 12
    glyph_width_ratio: float = 0.6
    min_label_width: float = 10

    @property
    def character_width(self) -> float:
        """Estimated average glyph width."""
        return self.font_size * self.glyph_width_ratio


@dataclass(slots=True, frozen=True)
class Surface:
    """Size of the drawing surface in pixels."""

    width: float
    height: float


@dataclass(slots=True, frozen=True)
class RenderResult:
    """Geometry produced by one render pass."""

    rects: tuple[ScreenRect, ...]
    ticks: tuple[TimeTick, ...]
    height: float  # Surface height needed to show every lane

    def hit_test(self, x: float, y: float) -> Process | None:
        """Get the process drawn at a point, first drawn wins."""
        for rect in self.rects:
            if rect.contains(x, y):
                return rect.process
        return None


EMPTY_RESULT = RenderResult(rects=(), ticks=(), height=0)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def generate_label(process: Process, width: float, constants: LayoutConstants) -> str:
    """
    Build the text shown inside a process rectangle.

    Narrow rectangles get no label. Otherwise the command and its rounded
    duration are truncated to the number of characters that fit.
    """
    if width < constants.min_label_width:
        return ""

    max_chars = max(math.floor(width / constants.character_width) - 1, 0)
    text = f"{process.full_command} ({_round_half_up(process.duration)} sec)"
    if len(text) > max_chars:
        return text[:max_chars] + ELLIPSIS
    return text


def describe_process(process: Process) -> str:
    """Summarize a process for the clipboard."""
    return (
        f"Command: {process.full_command}\n"
        f"PID: {process.pid}\n"
        f"Duration: {_round_half_up(process.duration)} sec"
    )


def required_height(lanes: int, constants: LayoutConstants) -> float:
    """Get the surface height needed to draw ``lanes`` lanes."""
    return lanes * constants.row_height + constants.top_margin + constants.padding


def _pixel_mapper(window: tuple[float, float], surface: Surface, constants: LayoutConstants):
    window_start, window_end = window
    span = window_end - window_start
    drawable_width = surface.width - 2 * constants.padding
    if span <= 0 or drawable_width <= 0:
        return None

    def pixel_x(t: float) -> float:
        return constants.padding + (t - window_start) / span * drawable_width

    return pixel_x


def time_ticks(
    window: tuple[float, float],
    surface: Surface,
    constants: LayoutConstants = LayoutConstants(),
) -> tuple[TimeTick, ...]:
    """Place about ten whole-second ticks across the window."""
    pixel_x = _pixel_mapper(window, surface, constants)
    if pixel_x is None:
        return ()

    window_start, window_end = window
    interval = max(math.floor((window_end - window_start) / 10), 1)
    ticks = []
    # Integer multiples keep tick times free of accumulated float error
    for k in range(math.ceil(window_start / interval), math.floor(window_end / interval) + 1):
        t = k * interval
        ticks.append(TimeTick(time=t, x=pixel_x(t), label=f"{t:.1f}s"))
    return tuple(ticks)


def render(
    processes: Sequence[Process],
    lanes: Sequence[int],
    colors: Mapping[str, str],
    window: tuple[float, float],
    surface: Surface,
    constants: LayoutConstants = LayoutConstants(),
    origin: float | None = None,
    default_color: str = DEFAULT_COLOR,
) -> RenderResult:
    """
    Lay out one rectangle per visible process.

    Args:
        processes: Filtered processes in start-time order.
        lanes: Lane of each process, same order.
        colors: Color per program basename.
        window: Visible ``(start, end)`` in seconds relative to ``origin``.
        surface: Drawing surface size in pixels.
        constants: Row and label geometry.
        origin: Absolute time of relative zero. Defaults to the earliest
            start in ``processes``; pass the earliest start of the whole
            trace so filtering does not shift the axis.
        default_color: Fill of programs missing from ``colors``.

    Returns:
        Rectangles in draw order, axis ticks and the height needed for all
        lanes. Identical inputs give identical results.
    """
    if len(processes) != len(lanes):
        raise ValueError(f"{len(processes)} processes but {len(lanes)} lanes")

    pixel_x = _pixel_mapper(window, surface, constants)
    if pixel_x is None:
        return EMPTY_RESULT

    if origin is None:
        origin = min((p.start_time for p in processes), default=0.0)
    window_start, window_end = window

    rects = []
    for process, lane in zip(processes, lanes):
        visible_start = max(process.start_time - origin, window_start)
        visible_end = min(process.end_time - origin, window_end)
        if visible_end <= visible_start:
            continue

        x = pixel_x(visible_start)
        width = pixel_x(visible_end) - x
        rects.append(
            ScreenRect(
                process=process,
                x=x,
                y=lane * constants.row_height + constants.top_margin,
                width=width,
                height=constants.row_height - constants.row_gap,
                lane=lane,
                color=color_for(process, colors, default_color),
                label=generate_label(process, width, constants),
            )
        )

    return RenderResult(
        rects=tuple(rects),
        ticks=time_ticks(window, surface, constants),
        height=required_height(max(lanes, default=-1) + 1, constants),
    )
