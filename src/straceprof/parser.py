"""strace log parser for straceprof.

Reconstructs process lifetimes from a trace recorded with::

    strace --trace=execve,execveat,exit,exit_group --follow-forks \\
        --string-limit=1000 -ttt --output=straceprof.log <command>

Each line looks like ``<pid> <timestamp> <event>(...)``. Only ``execve``
starts a process and only ``exit``/``exit_group`` end one; everything else is
ignored.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from straceprof.models import Process

logger = logging.getLogger(__name__)

START_EVENTS = frozenset({"execve"})
END_EVENTS = frozenset({"exit", "exit_group"})
UNSUPPORTED_EVENTS = frozenset({"execveat"})

_SEPARATORS = str.maketrans({"(": " ", ")": " ", '"': " ", ",": " "})


class IssueKind(Enum):
    """Recoverable conditions reported while parsing a trace."""

    MALFORMED_LINE = "malformed_line"
    UNMATCHED_EXIT = "unmatched_exit"
    UNRESOLVED_PROCESS = "unresolved_process"
    UNSUPPORTED_EVENT = "unsupported_event"
    OVERWRITTEN_START = "overwritten_start"


class MalformedLineError(ValueError):
    """Raised by the line extractors when a recognized line cannot be parsed."""


@dataclass(slots=True, frozen=True)
class ParseDiagnostics:
    """Counts and messages for the issues found in one parse."""

    counts: dict[IssueKind, int] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()
    line_count: int = 0
    ignored_lines: int = 0

    def count(self, kind: IssueKind) -> int:
        """Get the number of issues of the given kind."""
        return self.counts.get(kind, 0)

    @property
    def total_issues(self) -> int:
        """Get the number of issues of all kinds."""
        return sum(self.counts.values())


@dataclass(slots=True, frozen=True)
class ParseResult:
    """Finalized processes plus the diagnostics gathered while parsing."""

    processes: tuple[Process, ...]
    diagnostics: ParseDiagnostics

    @property
    def is_empty(self) -> bool:
        """True when the trace yielded no finished process."""
        return not self.processes


@dataclass(slots=True)
class _OpenRecord:
    pid: int
    start_time: float
    program: str
    full_command: str
    end_time: float | None = None


def tokenize(line: str) -> list[str]:
    """Split a trace line into whitespace tokens with punctuation removed."""
    return line.translate(_SEPARATORS).split()


def _parse_pid(token: str) -> int:
    try:
        pid = int(token)
    except ValueError:
        raise MalformedLineError(f"invalid pid {token!r}") from None
    if pid < 0:
        raise MalformedLineError(f"negative pid {token!r}")
    return pid


def _parse_timestamp(token: str) -> float:
    try:
        timestamp = float(token)
    except ValueError:
        raise MalformedLineError(f"invalid timestamp {token!r}") from None
    if not math.isfinite(timestamp):
        raise MalformedLineError(f"non-finite timestamp {token!r}")
    return timestamp


def extract_argv(line: str) -> str:
    """
    Extract the argument vector of an execve line.

    Returns the text between the first ``[`` and its matching ``]`` with quote
    characters removed and arguments joined by single spaces. Brackets inside
    quoted arguments do not count.
    """
    begin = line.find("[")
    if begin < 0:
        raise MalformedLineError("missing argument vector")

    depth = 0
    in_quotes = False
    escaped = False
    for index in range(begin, len(line)):
        char = line[index]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = in_quotes
        elif char == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                inner = line[begin + 1 : index]
                return " ".join(inner.replace('"', "").replace(",", " ").split())

    raise MalformedLineError("unterminated argument vector")


def parse_execve_line(line: str) -> Process:
    """
    Parse an execve line into a Process with its end time still unknown.

    The returned record carries ``end_time == start_time``; the caller sets
    the real end time when the matching exit arrives.

    Raises:
        MalformedLineError: If the line is not a well-formed execve event.
    """
    words = tokenize(line)
    if len(words) < 4 or words[2] not in START_EVENTS:
        raise MalformedLineError("not an execve event")

    pid = _parse_pid(words[0])
    start_time = _parse_timestamp(words[1])
    full_command = extract_argv(line)
    return Process(
        pid=pid,
        start_time=start_time,
        end_time=start_time,
        program=words[3],
        full_command=full_command,
    )


def parse_exit_line(line: str) -> tuple[int, float]:
    """
    Parse an exit or exit_group line into ``(pid, end_time)``.

    Raises:
        MalformedLineError: If the line is not a well-formed exit event.
    """
    words = tokenize(line)
    if len(words) < 3 or words[2] not in END_EVENTS:
        raise MalformedLineError("not an exit event")
    return _parse_pid(words[0]), _parse_timestamp(words[1])


class _ParseState:
    """Open-record table and issue log for a single parse call."""

    def __init__(self) -> None:
        self.records: list[_OpenRecord] = []
        self.open: dict[int, _OpenRecord] = {}
        self.counts: dict[IssueKind, int] = {}
        self.warnings: list[str] = []
        self.line_count = 0
        self.ignored_lines = 0

    def report(self, kind: IssueKind, message: str) -> None:
        self.counts[kind] = self.counts.get(kind, 0) + 1
        self.warnings.append(message)
        logger.warning(message)

    def feed(self, lineno: int, line: str) -> None:
        words = tokenize(line)
        event = words[2] if len(words) > 2 else None

        if event in START_EVENTS:
            self._start(lineno, line)
        elif event in END_EVENTS:
            self._end(lineno, line)
        elif event in UNSUPPORTED_EVENTS:
            self.report(
                IssueKind.UNSUPPORTED_EVENT,
                f"line {lineno}: {event} is not supported, skipped",
            )
        else:
            self.ignored_lines += 1

    def _start(self, lineno: int, line: str) -> None:
        try:
            process = parse_execve_line(line)
        except MalformedLineError as e:
            self.report(IssueKind.MALFORMED_LINE, f"line {lineno}: cannot parse execve: {e}")
            return

        record = self.open.get(process.pid)
        if record is not None:
            # A pid that execs again before exiting replaces its earlier record.
            self.report(
                IssueKind.OVERWRITTEN_START,
                f"line {lineno}: PID {process.pid} execs {process.program} "
                f"before exiting, replacing {record.program}",
            )
            record.start_time = process.start_time
            record.program = process.program
            record.full_command = process.full_command
            return

        record = _OpenRecord(
            pid=process.pid,
            start_time=process.start_time,
            program=process.program,
            full_command=process.full_command,
        )
        self.records.append(record)
        self.open[process.pid] = record

    def _end(self, lineno: int, line: str) -> None:
        try:
            pid, end_time = parse_exit_line(line)
        except MalformedLineError as e:
            self.report(IssueKind.MALFORMED_LINE, f"line {lineno}: cannot parse exit: {e}")
            return

        record = self.open.pop(pid, None)
        if record is None:
            self.report(
                IssueKind.UNMATCHED_EXIT,
                f"line {lineno}: cannot find execve corresponding to PID {pid}",
            )
            return
        record.end_time = max(end_time, record.start_time)

    def finish(self) -> ParseResult:
        processes = []
        for record in self.records:
            if record.end_time is None:
                self.report(
                    IssueKind.UNRESOLVED_PROCESS,
                    f"PID {record.pid} {record.program} has no end time",
                )
                continue
            processes.append(
                Process(
                    pid=record.pid,
                    start_time=record.start_time,
                    end_time=record.end_time,
                    program=record.program,
                    full_command=record.full_command,
                )
            )

        diagnostics = ParseDiagnostics(
            counts=dict(self.counts),
            warnings=tuple(self.warnings),
            line_count=self.line_count,
            ignored_lines=self.ignored_lines,
        )
        logger.debug(
            "Parsed %d processes from %d lines (%d issues, %d ignored lines)",
            len(processes),
            self.line_count,
            diagnostics.total_issues,
            self.ignored_lines,
        )
        return ParseResult(processes=tuple(processes), diagnostics=diagnostics)


def parse_log(text: str) -> ParseResult:
    """
    Parse a whole strace log.

    Bad lines are skipped and reported in the diagnostics; this never raises
    for malformed content.

    Args:
        text: Complete trace contents.

    Returns:
        Finished processes in the order their execve was first seen.
    """
    if not isinstance(text, str):
        raise TypeError(f"expected trace text, got {type(text).__name__}")

    state = _ParseState()
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        state.line_count += 1
        state.feed(lineno, line)
    return state.finish()

