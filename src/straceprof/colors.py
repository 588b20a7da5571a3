"""Program color assignment for straceprof."""

import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

from straceprof.models import Process

# red, orange, yellow, magenta, purple, blue, cyan, green
DEFAULT_PALETTE: tuple[str, ...] = (
    "#FF0000",
    "#FFA500",
    "#FFFF00",
    "#FF00FF",
    "#800080",
    "#0000FF",
    "#00FFFF",
    "#008000",
)
DEFAULT_COLOR = "#CCCCCC"


def build_color_map(
    processes: Iterable[Process],
    palette: Sequence[str] = DEFAULT_PALETTE,
) -> dict[str, str]:
    """
    Color the programs that ran longest in total.

    Durations are summed per program basename and the busiest programs take
    the palette colors in order. Programs past the end of the palette get no
    entry and fall back to the default color when drawn.
    """
    durations: dict[str, list[float]] = defaultdict(list)
    for process in processes:
        durations[process.basename].append(process.duration)

    # fsum is exact, so the totals do not depend on input order
    totals = {name: math.fsum(values) for name, values in durations.items()}
    ranked = sorted(totals, key=lambda name: (-totals[name], name))

    return dict(zip(ranked, palette))


def color_for(process: Process, color_map: Mapping[str, str], default: str = DEFAULT_COLOR) -> str:
    """Get the fill color of a process."""
    return color_map.get(process.basename, default)
