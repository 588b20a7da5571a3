"""Tests for the strace log parser."""

import logging

import pytest

from straceprof.parser import (
    IssueKind,
    MalformedLineError,
    extract_argv,
    parse_execve_line,
    parse_exit_line,
    parse_log,
    tokenize,
)

LS_LOG = """22627 1742129218.860822 execve("/usr/bin/ls", ["ls", "-1"], 0x7fff06887510 /* 66 vars */) = 0
22627 1742129218.871370 exit_group(0)   = ?
22627 1742129218.871699 +++ exited with 0 +++"""

SCENARIO_LOG = """100 10.0 execve("/bin/a", ["a"], ...) = 0
100 10.0 exit_group(0)
101 10.5 execve("/bin/b", ["b","x"], ...) = 0
101 15.5 exit_group(0)
"""


def test_tokenize_strips_punctuation():
    """Test tokenize removes parentheses, quotes and commas."""
    words = tokenize('1 2.5 execve("/bin/sh", ["sh"], 0x0) = 0')
    assert words[:4] == ["1", "2.5", "execve", "/bin/sh"]


def test_parse_execve_line():
    """Test parse_execve_line extracts pid, time, program and command."""
    process = parse_execve_line(LS_LOG.splitlines()[0])

    assert process.pid == 22627
    assert process.start_time == 1742129218.860822
    assert process.program == "/usr/bin/ls"
    assert process.full_command == "ls -1"


def test_parse_execve_line_rejects_exit():
    """Test parse_execve_line refuses other events."""
    with pytest.raises(MalformedLineError):
        parse_execve_line("1 1.0 exit_group(0) = ?")


def test_parse_exit_line():
    """Test parse_exit_line extracts pid and end time."""
    assert parse_exit_line("7 3.25 exit(1) = ?") == (7, 3.25)


class TestExtractArgv:
    """Tests for argument vector extraction."""

    def test_simple_vector(self):
        """Test quotes are removed and arguments joined by spaces."""
        assert extract_argv('1 1.0 execve("/bin/b", ["b","x"], ...) = 0') == "b x"

    def test_bracket_inside_argument(self):
        """Test a bracket inside a quoted argument does not end the vector."""
        line = '1 1.0 execve("/usr/bin/test", ["[", "-f", "x", "]"], 0x1) = 0'
        assert extract_argv(line) == "[ -f x ]"

    def test_escaped_quote_inside_argument(self):
        """Test escaped quotes do not toggle the quoted state."""
        line = r'1 1.0 execve("/bin/sh", ["sh", "-c", "echo \"]\""], 0x1) = 0'
        assert extract_argv(line).startswith("sh -c echo")

    def test_environment_array_ignored(self):
        """Test only the first bracketed vector is used."""
        line = '1 1.0 execve("/bin/env", ["env"], ["HOME=/root"]) = 0'
        assert extract_argv(line) == "env"

    def test_missing_vector(self):
        """Test a line without an argument vector is malformed."""
        with pytest.raises(MalformedLineError):
            extract_argv('1 1.0 execve("/bin/sh", 0x1) = 0')

    def test_unterminated_vector(self):
        """Test a truncated argument vector is malformed."""
        with pytest.raises(MalformedLineError):
            extract_argv('1 1.0 execve("/bin/sh", ["sh", "-c"')


class TestParseLog:
    """Tests for parse_log."""

    def test_parse_ls_log(self):
        """Test a single execve/exit_group pair yields one process."""
        processes = parse_log(LS_LOG).processes

        assert len(processes) == 1
        process = processes[0]
        assert process.pid == 22627
        assert process.start_time == 1742129218.860822
        assert process.end_time == 1742129218.87137
        assert process.program == "/usr/bin/ls"

    def test_scenario(self):
        """Test two pairs yield two processes with their durations."""
        result = parse_log(SCENARIO_LOG)

        assert [p.pid for p in result.processes] == [100, 101]
        assert result.processes[0].duration == 0.0
        assert result.processes[1].duration == 5.0
        assert result.processes[1].full_command == "b x"
        assert result.diagnostics.total_issues == 0

    def test_blank_lines_skipped(self):
        """Test blank lines are not counted."""
        result = parse_log("\n\n" + SCENARIO_LOG + "\n   \n")
        assert result.diagnostics.line_count == 4

    def test_lone_exit(self, caplog):
        """Test an exit without execve yields nothing and a warning."""
        with caplog.at_level(logging.WARNING, logger="straceprof.parser"):
            result = parse_log("5 1.0 exit_group(0) = ?")

        assert result.is_empty
        assert result.diagnostics.count(IssueKind.UNMATCHED_EXIT) == 1
        assert "PID 5" in caplog.text

    def test_start_without_exit_dropped(self):
        """Test a process still running at the end is dropped."""
        result = parse_log('5 1.0 execve("/bin/sleep", ["sleep", "9"], 0x1) = 0')

        assert result.processes == ()
        assert result.diagnostics.count(IssueKind.UNRESOLVED_PROCESS) == 1
        assert "has no end time" in result.diagnostics.warnings[0]

    def test_exit_variant(self):
        """Test plain exit ends a process too."""
        log = '9 1.0 execve("/bin/true", ["true"], 0x1) = 0\n9 2.0 exit(0) = ?'
        assert parse_log(log).processes[0].end_time == 2.0

    def test_execveat_reported_not_parsed(self):
        """Test execveat is counted but never opens or replaces a record."""
        log = (
            '3 1.0 execve("/bin/a", ["a"], 0x1) = 0\n'
            '3 1.5 execveat(3, "", ["b"], 0x1, AT_EMPTY_PATH) = 0\n'
            "3 2.0 exit_group(0) = ?\n"
            '4 2.5 execveat(3, "", ["c"], 0x1, AT_EMPTY_PATH) = 0\n'
        )
        result = parse_log(log)

        assert len(result.processes) == 1
        assert result.processes[0].program == "/bin/a"
        assert result.processes[0].start_time == 1.0
        assert result.diagnostics.count(IssueKind.UNSUPPORTED_EVENT) == 2
        assert result.diagnostics.count(IssueKind.UNRESOLVED_PROCESS) == 0

    def test_malformed_lines_do_not_stop_parsing(self):
        """Test bad timestamps and pids are skipped and parsing continues."""
        log = (
            'x 1.0 execve("/bin/a", ["a"], 0x1) = 0\n'
            '2 abc execve("/bin/a", ["a"], 0x1) = 0\n'
            '3 1.0 execve("/bin/a", 0x1) = 0\n'
            "4 nan exit(0) = ?\n"
            + SCENARIO_LOG
        )
        result = parse_log(log)

        assert [p.pid for p in result.processes] == [100, 101]
        assert result.diagnostics.count(IssueKind.MALFORMED_LINE) == 4

    def test_unrecognized_lines_ignored(self):
        """Test other strace output is ignored without warnings."""
        log = LS_LOG + "\n22628 1.0 --- SIGCHLD {si_signo=SIGCHLD} ---\nnoise"
        result = parse_log(log)

        assert len(result.processes) == 1
        assert result.diagnostics.ignored_lines == 3
        assert result.diagnostics.total_issues == 0

    def test_reexec_overwrites_open_record(self):
        """Test a second execve before exit replaces the first process."""
        log = (
            '7 1.0 execve("/bin/sh", ["sh", "-c", "exec make"], 0x1) = 0\n'
            '7 2.0 execve("/usr/bin/make", ["make"], 0x1) = 0\n'
            "7 5.0 exit_group(0) = ?\n"
        )
        result = parse_log(log)

        assert len(result.processes) == 1
        assert result.processes[0].program == "/usr/bin/make"
        assert result.processes[0].start_time == 2.0
        assert result.diagnostics.count(IssueKind.OVERWRITTEN_START) == 1

    def test_pid_reuse_after_exit(self):
        """Test a pid reused after exiting yields two processes."""
        log = (
            '7 1.0 execve("/bin/a", ["a"], 0x1) = 0\n'
            "7 2.0 exit_group(0) = ?\n"
            '7 3.0 execve("/bin/b", ["b"], 0x1) = 0\n'
            "7 4.0 exit_group(0) = ?\n"
        )
        result = parse_log(log)

        assert [(p.program, p.start_time, p.end_time) for p in result.processes] == [
            ("/bin/a", 1.0, 2.0),
            ("/bin/b", 3.0, 4.0),
        ]

    def test_output_in_insertion_order(self):
        """Test processes come out in execve order, not by start time or pid."""
        log = (
            '20 5.0 execve("/bin/late", ["late"], 0x1) = 0\n'
            '10 1.0 execve("/bin/early", ["early"], 0x1) = 0\n'
            "10 2.0 exit(0) = ?\n"
            "20 6.0 exit(0) = ?\n"
        )
        assert [p.pid for p in parse_log(log).processes] == [20, 10]

    def test_non_text_input(self):
        """Test non-text input is outside the parser contract."""
        with pytest.raises(TypeError):
            parse_log(b"1 1.0 exit(0)")
