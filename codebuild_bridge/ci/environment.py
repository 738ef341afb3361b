"""Environment collection for build overrides.

Selects process environment variables whose names match one or more
patterns and turns them into EnvOverride entries.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path

from codebuild_bridge.types import EnvOverride

logger = logging.getLogger(__name__)


def parse_env_line(line: str) -> EnvOverride | None:
    """Parse a ``NAME=value`` line.

    Splits on the first ``=`` only so values containing ``=`` survive.

    Args:
        line: A single line.

    Returns:
        EnvOverride, or None for blank lines, comments and lines without ``=``.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    name, sep, value = stripped.partition("=")
    name = name.strip()
    if not sep or not name:
        return None
    return EnvOverride(name=name, value=value)


def load_env_file(path: Path) -> list[EnvOverride]:
    """Read overrides from a dotenv-style file.

    Args:
        path: File with one ``NAME=value`` per line.

    Returns:
        Overrides in file order.
    """
    overrides: list[EnvOverride] = []
    with path.open(encoding="utf-8") as f:
        for line in f:
            override = parse_env_line(line.rstrip("\n"))
            if override is not None:
                overrides.append(override)
    logger.debug("Loaded %d override(s) from %s", len(overrides), path)
    return overrides


def collect_overrides(
    patterns: Iterable[str],
    environ: Mapping[str, str] | None = None,
) -> list[EnvOverride]:
    """Collect environment variables matching any pattern.

    Patterns are regular expressions matched at the start of the name.

    Args:
        patterns: Name patterns; an empty iterable collects nothing.
        environ: Environment to scan (defaults to os.environ).

    Returns:
        Overrides in environment enumeration order.
    """
    compiled = [re.compile(p) for p in patterns if p]
    if not compiled:
        return []

    if environ is None:
        environ = os.environ

    overrides = [
        EnvOverride(name=name, value=value)
        for name, value in environ.items()
        if any(rx.match(name) for rx in compiled)
    ]
    logger.debug(
        "Collected %d environment override(s) for %d pattern(s)",
        len(overrides),
        len(compiled),
    )
    return overrides


__all__ = ["collect_overrides", "load_env_file", "parse_env_line"]
