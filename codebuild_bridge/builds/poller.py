"""Completion polling for a submitted build.

Polls CodeBuild on a fixed interval, tailing the log every cycle, until
the build reports completion. Waiting can be interrupted through a
threading.Event or bounded by an optional timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from codebuild_bridge.builds.logs import Emit, tail_logs
from codebuild_bridge.types import BuildHandle, LogCursor

if TYPE_CHECKING:
    from codebuild_bridge.builds.service import CodeBuildService

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0


class PollingCancelled(Exception):
    """Raised when waiting for a build stops before it completes."""

    def __init__(self, message: str, code: str = "cancelled") -> None:
        super().__init__(message)
        self.code = code


def wait_for_completion(
    service: CodeBuildService,
    handle: BuildHandle,
    cursor: LogCursor,
    emit: Emit,
    interval: float = DEFAULT_POLL_INTERVAL,
    cancel: threading.Event | None = None,
    timeout: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Wait for a build to complete while relaying its log.

    Each cycle checks the cancel event, tails the log, then checks
    completion. On completion the log is tailed once more to flush
    trailing events.

    Args:
        service: Remote service.
        handle: Build to wait for.
        cursor: Log position, updated in place.
        emit: Receives log output.
        interval: Seconds between cycles.
        cancel: Event that aborts waiting when set.
        timeout: Maximum seconds to wait (None = no limit).
        clock: Monotonic clock, replaceable in tests.

    Returns:
        Number of poll cycles performed.

    Raises:
        PollingCancelled: If cancelled or timed out before completion.
    """
    if cancel is None:
        cancel = threading.Event()
    deadline = clock() + timeout if timeout is not None else None

    cycles = 0
    while True:
        if cancel.is_set():
            raise PollingCancelled(f"Waiting for build {handle.build_id} was cancelled")
        cycles += 1
        tail_logs(service, handle, cursor, emit)

        if service.is_build_complete(handle):
            tail_logs(service, handle, cursor, emit)
            logger.info("Build %s complete after %d cycle(s)", handle.build_id, cycles)
            return cycles

        delay = interval
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise PollingCancelled(
                    f"Gave up waiting for build {handle.build_id} after {timeout}s",
                    code="poll_timeout",
                )
            delay = min(interval, remaining)

        logger.debug("Build %s still running; next check in %.1fs", handle.build_id, delay)
        cancel.wait(delay)


__all__ = ["DEFAULT_POLL_INTERVAL", "PollingCancelled", "wait_for_completion"]
