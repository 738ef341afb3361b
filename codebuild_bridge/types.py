"""Shared type definitions for codebuild_bridge.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BuildStatus(str, Enum):
    """Status of a remote CodeBuild build."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    FAULT = "FAULT"
    STOPPED = "STOPPED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        """Whether the build has stopped running."""
        return self is not BuildStatus.IN_PROGRESS


class PackagingMode(str, Enum):
    """How the build stores its artifacts in S3."""

    ZIP = "ZIP"
    NONE = "NONE"


class Severity(str, Enum):
    """Severity of a lifecycle step outcome."""

    FATAL = "fatal"
    WARNING = "warning"
    INFO = "info"


class LogState(str, Enum):
    """Position of the log tailer in its state machine."""

    AWAITING_STREAM = "awaiting_stream"
    STREAMING = "streaming"
    DRAINED = "drained"


@dataclass(frozen=True)
class EnvOverride:
    """A named environment value injected into the remote build."""

    name: str
    value: str
    type: str = "PLAINTEXT"

    def to_api(self) -> dict[str, str]:
        """Render as a CodeBuild ``environmentVariablesOverride`` entry."""
        return {"name": self.name, "value": self.value, "type": self.type}


@dataclass(frozen=True)
class BuildRequest:
    """A fully merged build-start request.

    Attributes:
        source_version: S3 object version of the uploaded source archive.
        overrides: Deduplicated environment overrides.
        project_name: CodeBuild project; None lets the template or the
            service decide.
        extra_fields: Remaining StartBuild fields from templates and
            trailing CLI options.
    """

    source_version: str
    overrides: tuple[EnvOverride, ...] = ()
    project_name: str | None = None
    extra_fields: dict[str, Any] = field(default_factory=dict)

    def to_api_kwargs(self) -> dict[str, Any]:
        """Render keyword arguments for ``codebuild.start_build``."""
        kwargs = copy.deepcopy(self.extra_fields)
        kwargs["sourceVersion"] = self.source_version
        kwargs["environmentVariablesOverride"] = [o.to_api() for o in self.overrides]
        if self.project_name:
            kwargs["projectName"] = self.project_name
        return kwargs


@dataclass(frozen=True)
class BuildHandle:
    """Correlation key for every call made about one remote build."""

    build_id: str


@dataclass(frozen=True)
class LogDescriptor:
    """CloudWatch Logs location of a build's output."""

    group_name: str
    stream_name: str


@dataclass(frozen=True)
class LogBatch:
    """One page of log events."""

    messages: list[str]
    next_token: str | None


@dataclass
class LogCursor:
    """Position of the log tailer, threaded through every poll cycle.

    ``previous_token`` always holds the token used to produce the current
    ``next_token``; the stream is drained when the two are equal.
    ``started`` only ever goes from False to True.
    """

    log_group: str | None = None
    log_stream: str | None = None
    next_token: str | None = None
    previous_token: str | None = None
    started: bool = False
    state: LogState = LogState.AWAITING_STREAM
    waiting_notice_shown: bool = False
    fetches: int = 0


@dataclass(frozen=True)
class BuildRecord:
    """Snapshot of a build as reported by CodeBuild."""

    build_id: str
    status: BuildStatus
    artifacts_location: str | None = None
    logs: LogDescriptor | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ArtifactInfo:
    """Information about a fetched build artifact."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str


@dataclass
class Outcome:
    """Result of one lifecycle step.

    Only FATAL outcomes affect the exit code.
    """

    severity: Severity
    message: str
    code: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL


__all__ = [
    "ArtifactInfo",
    "BuildHandle",
    "BuildRecord",
    "BuildRequest",
    "BuildStatus",
    "EnvOverride",
    "LogBatch",
    "LogCursor",
    "LogDescriptor",
    "LogState",
    "Outcome",
    "PackagingMode",
    "Severity",
]
