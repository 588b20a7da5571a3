"""Lane layout for straceprof.

Lanes come from greedy interval partitioning: processes sorted by start time
go on the first lane that is free when they start. This is a display
heuristic, not a model of how the kernel scheduled the processes.
"""

import logging
import math
import re
from collections.abc import Iterable, Sequence

from straceprof.models import LaneAssignment, Process

logger = logging.getLogger(__name__)

MAX_PROCESSES_TO_DISPLAY = 100
MATCH_ALL = ".*"


def compile_filter(pattern: str | re.Pattern[str]) -> re.Pattern[str]:
    """
    Compile a command filter expression.

    An expression that fails to compile is replaced by one matching every
    command, so a half-typed filter never empties the view.
    """
    if isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning("Invalid filter expression %r (%s), showing all processes", pattern, e)
        return re.compile(MATCH_ALL)


def filter_processes(
    processes: Iterable[Process],
    threshold: float,
    pattern: str | re.Pattern[str] = MATCH_ALL,
) -> list[Process]:
    """Keep processes at least ``threshold`` seconds long whose command matches, by start time."""
    regexp = compile_filter(pattern)
    kept = [p for p in processes if p.duration >= threshold and regexp.search(p.full_command)]
    # sorted() is stable, so equal start times keep their parse order
    return sorted(kept, key=lambda p: p.start_time)


def assign_lanes(
    processes: Iterable[Process],
    threshold: float,
    pattern: str | re.Pattern[str] = MATCH_ALL,
) -> list[LaneAssignment]:
    """
    Place the filtered processes on non-overlapping lanes.

    Args:
        processes: All parsed processes, in any order.
        threshold: Minimum duration in seconds.
        pattern: Regular expression searched in each full command.

    Returns:
        One assignment per filtered process, in start-time order. The number
        of lanes used equals the peak number of simultaneously running
        filtered processes, except that a zero-duration process starting at
        the same instant as processes still holding every lane opens one
        more lane. The sweep in ``peak_concurrency`` does not count it.
    """
    lane_free_times: list[float] = []
    assignments: list[LaneAssignment] = []

    for process in filter_processes(processes, threshold, pattern):
        for lane, free_time in enumerate(lane_free_times):
            if free_time <= process.start_time:
                lane_free_times[lane] = process.end_time
                break
        else:
            lane_free_times.append(process.end_time)
            lane = len(lane_free_times) - 1
        assignments.append(LaneAssignment(process=process, lane=lane))

    return assignments


def lane_count(assignments: Sequence[LaneAssignment]) -> int:
    """Get the number of lanes used by a layout."""
    return max((a.lane for a in assignments), default=-1) + 1


def peak_concurrency(processes: Iterable[Process]) -> int:
    """Count the most processes running at the same instant, intervals half-open."""
    events: list[tuple[float, int]] = []
    for p in processes:
        events.append((p.start_time, 1))
        events.append((p.end_time, -1))
    # Ends sort before starts at the same instant
    events.sort()

    running = peak = 0
    for _, delta in events:
        running += delta
        peak = max(peak, running)
    return peak


def calculate_threshold(
    processes: Sequence[Process],
    max_processes: int = MAX_PROCESSES_TO_DISPLAY,
) -> float:
    """
    Pick a default duration threshold that shows at most ``max_processes``.

    Returns 0 when the trace is small enough to show everything, otherwise the
    duration of the ``max_processes``-th longest process rounded up to a
    whole second.
    """
    if len(processes) <= max_processes or max_processes <= 0:
        return 0
    durations = sorted((p.duration for p in processes), reverse=True)
    return math.ceil(durations[max_processes - 1])


def trace_origin(processes: Iterable[Process]) -> float:
    """Get the earliest start time, the zero of the relative time axis."""
    return min((p.start_time for p in processes), default=0.0)


def global_time_range(processes: Sequence[Process]) -> tuple[float, float]:
    """Get the full trace span relative to its earliest start time."""
    if not processes:
        return (0.0, 0.0)
    origin = trace_origin(processes)
    return (0.0, max(p.end_time for p in processes) - origin)


def visible_processes(
    processes: Iterable[Process],
    threshold: float,
    pattern: str | re.Pattern[str],
    window: tuple[float, float],
    origin: float,
) -> list[Process]:
    """Get the filtered processes whose relative interval overlaps the window."""
    window_start, window_end = window
    return [
        p
        for p in filter_processes(processes, threshold, pattern)
        if min(p.end_time - origin, window_end) > max(p.start_time - origin, window_start)
    ]
