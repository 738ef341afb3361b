"""End-to-end build lifecycle.

Runs one build from the CI step's point of view:
package and upload -> collect environment -> merge request -> submit ->
wait while tailing the log -> resolve result -> exit code.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from codebuild_bridge.builds.logs import Emit
from codebuild_bridge.builds.poller import PollingCancelled, wait_for_completion
from codebuild_bridge.builds.request import PreconditionError, build_request
from codebuild_bridge.builds.result import ResolvedResult, resolve_result
from codebuild_bridge.builds.service import RemoteCallError, submit_build
from codebuild_bridge.ci.environment import collect_overrides
from codebuild_bridge.ci.platforms import detect_platform, env_patterns, result_filename
from codebuild_bridge.source.archive import DEFAULT_EXCLUDES, package_source
from codebuild_bridge.types import BuildHandle, BuildRequest, EnvOverride, LogCursor

if TYPE_CHECKING:
    from codebuild_bridge.builds.service import CodeBuildService
    from codebuild_bridge.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class LifecycleResult:
    """Result of one bridge invocation."""

    exit_code: int
    request: BuildRequest
    handle: BuildHandle
    resolved: ResolvedResult | None = None
    cursor: LogCursor = field(default_factory=LogCursor)


@contextmanager
def cancel_on_signals(cancel: threading.Event) -> Iterator[threading.Event]:
    """Set ``cancel`` on SIGINT/SIGTERM while the block runs.

    Handlers are only installed from the main thread and are restored on
    exit.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def _handler(signum: int, _frame: Any) -> None:
        logger.warning("Received signal %d; cancelling", signum)
        cancel.set()

    original = {
        sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield cancel
    finally:
        for sig, handler in original.items():
            signal.signal(sig, handler)


def _raise_if_cancelled(cancel: threading.Event | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise PollingCancelled(f"Cancelled before {stage}")


def _source_excludes(root: Path, artifact_dir: Path) -> list[str]:
    excludes = list(DEFAULT_EXCLUDES)
    candidate = artifact_dir if artifact_dir.is_absolute() else root / artifact_dir
    try:
        excludes.append(candidate.resolve().relative_to(root.resolve()).as_posix())
    except ValueError:
        pass
    return excludes


def run_build_lifecycle(
    settings: Settings,
    service: CodeBuildService,
    emit: Emit,
    source_root: Path | None = None,
    environ: Mapping[str, str] | None = None,
    templates: Sequence[Mapping[str, Any] | None] = (),
    extra_overrides: Sequence[EnvOverride] = (),
    cancel: threading.Event | None = None,
) -> LifecycleResult:
    """Run one build through its whole lifecycle.

    Args:
        settings: Effective settings.
        service: Remote service.
        emit: Receives user-facing lines (log output and notices).
        source_root: Working tree to package (defaults to the cwd).
        environ: Environment to read CI context from (defaults to os.environ).
        templates: Request templates merged in order.
        extra_overrides: Overrides appended after the collected ones.
        cancel: Event that aborts waiting when set.

    Returns:
        LifecycleResult with the exit code.

    Raises:
        PreconditionError: If required configuration is missing.
        SubmissionError: If CodeBuild rejects the build.
        RemoteCallError: If a non best-effort AWS call fails.
        PollingCancelled: If cancelled at any stage, or if waiting times
            out. The remote build is only stopped when it was submitted
            and stop_on_cancel is set.
    """
    missing = settings.missing_required()
    if missing:
        raise PreconditionError(missing)

    if source_root is None:
        source_root = Path.cwd()
    if environ is None:
        environ = os.environ

    platform = detect_platform(environ)
    overrides = collect_overrides(env_patterns(platform, settings.env_pattern), environ)
    overrides.extend(extra_overrides)

    _raise_if_cancelled(cancel, "packaging the source")
    archive = package_source(
        source_root, exclude=_source_excludes(source_root, settings.artifact_dir)
    )
    _raise_if_cancelled(cancel, "uploading the source")
    source_version = service.upload_archive(
        archive, str(settings.source_bucket), str(settings.source_key)
    )

    request = build_request(
        overrides,
        *templates,
        source_version=source_version,
        source_bucket=settings.source_bucket,
        source_key=settings.source_key,
        project_name=settings.project_name,
        on_conflict=settings.override_conflicts,
    )
    _raise_if_cancelled(cancel, "submitting the build")
    handle = submit_build(service, request)
    emit(f"Started build {handle.build_id}")

    cursor = LogCursor()
    if not settings.wait:
        return LifecycleResult(
            exit_code=0, request=request, handle=handle, cursor=cursor
        )

    try:
        wait_for_completion(
            service,
            handle,
            cursor,
            emit,
            interval=settings.poll_interval,
            cancel=cancel,
            timeout=settings.build_timeout,
        )
    except (PollingCancelled, KeyboardInterrupt):
        if settings.stop_on_cancel:
            try:
                service.stop_build(handle)
                logger.warning("Stopped build %s", handle.build_id)
            except RemoteCallError as e:
                logger.warning("Could not stop build %s: %s", handle.build_id, e)
        raise

    resolved = resolve_result(
        service,
        handle,
        packaging=settings.artifact_packaging,
        artifact_dir=settings.artifact_dir,
        archive_destination=settings.result_archive,
        archive_filename=result_filename(platform, environ),
    )
    return LifecycleResult(
        exit_code=resolved.exit_code,
        request=request,
        handle=handle,
        resolved=resolved,
        cursor=cursor,
    )


__all__ = ["LifecycleResult", "cancel_on_signals", "run_build_lifecycle"]
