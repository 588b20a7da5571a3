"""straceprof configuration.

Values are resolved with precedence: command line > environment > defaults.

Environment variables:
- STRACEPROF_MAX_PROCESSES: processes shown by the default threshold
- STRACEPROF_PALETTE: comma-separated program colors, busiest first
- STRACEPROF_FILTER: default command filter expression
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

from straceprof.colors import DEFAULT_COLOR, DEFAULT_PALETTE
from straceprof.layout import MAX_PROCESSES_TO_DISPLAY


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


@dataclass(slots=True, frozen=True)
class ViewerConfig:
    """Settings for one viewer session."""

    max_processes: int = MAX_PROCESSES_TO_DISPLAY
    palette: tuple[str, ...] = DEFAULT_PALETTE
    default_color: str = DEFAULT_COLOR
    pattern: str = "^.*$"
    threshold: float | None = None  # None: derived from max_processes
    window: tuple[float | None, float | None] = (None, None)  # Relative seconds
    title: str = "Process Visualization"

    def with_overrides(self, **overrides: object) -> ViewerConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _parse_palette(value: str) -> tuple[str, ...]:
    colors = tuple(c.strip() for c in value.split(",") if c.strip())
    if not colors:
        raise ConfigError("STRACEPROF_PALETTE must list at least one color")
    return colors


def load_config(environ: Mapping[str, str] | None = None) -> ViewerConfig:
    """
    Build the configuration from environment variables.

    Args:
        environ: Variables to read, defaults to ``os.environ``.

    Raises:
        ConfigError: If a variable holds an unusable value.
    """
    env = os.environ if environ is None else environ
    config = ViewerConfig()

    if raw := env.get("STRACEPROF_MAX_PROCESSES"):
        try:
            max_processes = int(raw)
        except ValueError:
            raise ConfigError(f"STRACEPROF_MAX_PROCESSES must be an integer, got {raw!r}") from None
        if max_processes <= 0:
            raise ConfigError("STRACEPROF_MAX_PROCESSES must be positive")
        config = replace(config, max_processes=max_processes)

    if raw := env.get("STRACEPROF_PALETTE"):
        config = replace(config, palette=_parse_palette(raw))

    if raw := env.get("STRACEPROF_FILTER"):
        config = replace(config, pattern=raw)

    return config
