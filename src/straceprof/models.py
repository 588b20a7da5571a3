"""Data models for straceprof."""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Process:
    """Immutable record of one traced process lifetime."""

    pid: int
    start_time: float  # Absolute trace timestamp, seconds
    end_time: float
    program: str  # Executable path as traced
    full_command: str

    @property
    def duration(self) -> float:
        """Seconds between execve and exit."""
        return self.end_time - self.start_time

    @property
    def basename(self) -> str:
        """Last path segment of the program."""
        return self.program.rsplit("/", 1)[-1] or self.program


@dataclass(slots=True, frozen=True)
class LaneAssignment:
    """A filtered process placed on a display lane."""

    process: Process
    lane: int


@dataclass(slots=True, frozen=True)
class ScreenRect:
    """Rectangle drawn for a process during one render pass."""

    process: Process
    x: float
    y: float
    width: float
    height: float
    lane: int
    color: str
    label: str

    def contains(self, x: float, y: float) -> bool:
        """Check if a point lies inside the rectangle, edges included."""
        return self.x <= x <= self.x + self.width and self.y <= y <= self.y + self.height


@dataclass(slots=True, frozen=True)
class TimeTick:
    """A time-axis tick and its grid line position."""

    time: float  # Seconds relative to the trace origin
    x: float
    label: str
