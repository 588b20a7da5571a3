"""Verification Test: Load Test - Visualize a trace of a large parallel build.

A build with tens of thousands of short compiler processes must parse, lay
out and render quickly and without holding on to memory between renders.

Note: In CI environments, we scale the trace down to keep the suite fast while
still validating the same behavior.
"""

import gc
import os
import random
import time

import psutil
import pytest

from straceprof.layout import assign_lanes, lane_count, peak_concurrency
from straceprof.parser import parse_log
from straceprof.render import Surface
from straceprof.session import TraceSession

PROGRAMS = ["/usr/bin/make", "/usr/bin/cc1", "/usr/bin/as", "/usr/bin/ld", "/bin/sh"]


def get_current_memory_mb() -> float:
    """Get current process memory usage in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


def build_trace(num_processes: int, jobs: int = 16, seed: int = 1) -> str:
    """Simulate ``make -j<jobs>``: each job slot runs processes back to back."""
    rng = random.Random(seed)
    slot_free = [1000.0] * jobs
    lines = []
    for pid in range(2, num_processes + 2):
        slot = rng.randrange(jobs)
        start = slot_free[slot] + rng.uniform(0, 0.01)
        end = start + rng.expovariate(2.0)
        slot_free[slot] = end
        program = rng.choice(PROGRAMS)
        name = program.rsplit("/", 1)[-1]
        lines.append(f'{pid} {start:.6f} execve("{program}", ["{name}", "src/f{pid}.c"], 0x7ffd /* 40 vars */) = 0')
        lines.append(f"{pid} {end:.6f} exit_group(0) = ?")
        lines.append(f"{pid} {end:.6f} +++ exited with 0 +++")
    return "\n".join(lines)


@pytest.fixture(scope="module")
def large_trace() -> str:
    """Trace of a large build, scaled down in CI."""
    is_ci = os.environ.get("CI", "false").lower() == "true"
    return build_trace(5_000 if is_ci else 20_000)


class TestLoadTest:
    """Load test verification suite tests."""

    def test_parse_large_trace(self, large_trace):
        """Test every process of a large trace is reconstructed."""
        start = time.perf_counter()
        result = parse_log(large_trace)
        elapsed = time.perf_counter() - start

        expected = large_trace.count("execve(")
        assert len(result.processes) == expected
        assert result.diagnostics.total_issues == 0
        assert elapsed < 10.0, f"Parsing took {elapsed:.2f}s"

    def test_lanes_bounded_by_jobs(self, large_trace):
        """Test the layout never needs more lanes than build jobs."""
        processes = parse_log(large_trace).processes
        assignments = assign_lanes(processes, 0)

        assert lane_count(assignments) == peak_concurrency(processes)
        assert lane_count(assignments) <= 16

    def test_render_memory_stability(self, large_trace):
        """Test repeated renders do not accumulate memory."""
        session = TraceSession(large_trace)
        surface = Surface(1920, 1080)

        # Warm up
        for _ in range(3):
            session.render(surface)
        gc.collect()
        baseline = get_current_memory_mb()

        for i in range(20):
            session.set_threshold(i % 3)
            result = session.render(surface)
            assert result.rects
        gc.collect()

        delta = get_current_memory_mb() - baseline
        assert delta < 20.0, f"Memory grew by {delta:.2f}MB across renders"
