"""Incremental build log tailing.

The tailer keeps its position in a LogCursor that the poller threads
through every cycle. Each call drains the stream until the forward token
stops changing, so a burst of events is relayed within one poll cycle
instead of one page per cycle.

States: AWAITING_STREAM (no log location yet, or nothing written),
STREAMING (events being relayed) and DRAINED (caught up for now).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from codebuild_bridge.types import BuildHandle, LogCursor, LogState

if TYPE_CHECKING:
    from codebuild_bridge.builds.service import CodeBuildService

logger = logging.getLogger(__name__)

WAITING_NOTICE = "Waiting for the build phase to start..."
LOG_BANNER = "=" * 24 + " CodeBuild log " + "=" * 24

# Upper bound on pages fetched in one cycle; the rest waits for the next cycle.
DEFAULT_MAX_FETCHES = 1000

Emit = Callable[[str], None]


def _token(value: str | None) -> str | None:
    return value or None


def tail_logs(
    service: CodeBuildService,
    handle: BuildHandle,
    cursor: LogCursor,
    emit: Emit,
    max_fetches: int = DEFAULT_MAX_FETCHES,
) -> int:
    """Relay every log event written since the cursor position.

    Args:
        service: Remote service.
        handle: Build being tailed.
        cursor: Position carried across poll cycles; updated in place.
        emit: Receives each message, the waiting notice and the banner.
        max_fetches: Page limit for this call.

    Returns:
        Number of log messages emitted.
    """
    descriptor = service.get_log_descriptor(handle)
    if descriptor is None:
        cursor.state = LogState.AWAITING_STREAM
        if not cursor.waiting_notice_shown:
            cursor.waiting_notice_shown = True
            emit(WAITING_NOTICE)
        return 0

    cursor.log_group = descriptor.group_name
    cursor.log_stream = descriptor.stream_name

    emitted = 0
    for _ in range(max_fetches):
        batch = service.fetch_log_events(
            cursor.log_group,
            cursor.log_stream,
            _token(cursor.next_token),
        )
        cursor.fetches += 1

        if batch.messages:
            if not cursor.started:
                cursor.started = True
                emit(LOG_BANNER)
            cursor.state = LogState.STREAMING
            for message in batch.messages:
                emit(message.rstrip("\n"))
            emitted += len(batch.messages)

        cursor.previous_token = _token(cursor.next_token)
        cursor.next_token = _token(batch.next_token)
        if cursor.next_token == cursor.previous_token:
            cursor.state = LogState.DRAINED if cursor.started else LogState.AWAITING_STREAM
            return emitted

    logger.warning(
        "Log stream for %s still paging after %d fetches; continuing next cycle",
        handle.build_id,
        max_fetches,
    )
    return emitted


__all__ = ["DEFAULT_MAX_FETCHES", "LOG_BANNER", "WAITING_NOTICE", "tail_logs"]
