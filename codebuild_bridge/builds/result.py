"""Terminal build result resolution.

This module handles:
- Archiving the final build record to S3 (best-effort)
- Fetching artifacts (best-effort)
- Mapping the build status to an exit code

Best-effort steps produce WARNING outcomes; only FATAL outcomes change
the exit code.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from codebuild_bridge.builds.artifacts import (
    ArtifactFetchError,
    fetch_artifact,
    parse_artifact_location,
)
from codebuild_bridge.builds.service import RemoteCallError
from codebuild_bridge.config import DEFAULT_ARTIFACT_DIR
from codebuild_bridge.types import (
    ArtifactInfo,
    BuildHandle,
    BuildRecord,
    BuildStatus,
    Outcome,
    Severity,
)

if TYPE_CHECKING:
    from codebuild_bridge.builds.service import CodeBuildService

logger = logging.getLogger(__name__)


@dataclass
class ResolvedResult:
    """Everything known about a finished build."""

    record: BuildRecord
    outcomes: list[Outcome] = field(default_factory=list)
    artifacts: list[ArtifactInfo] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if any(o.is_fatal for o in self.outcomes) else 0

    @property
    def warnings(self) -> list[Outcome]:
        return [o for o in self.outcomes if o.severity is Severity.WARNING]


def serialize_record(record: BuildRecord) -> bytes:
    """Serialize a build record as JSON."""
    return json.dumps(record.raw, indent=2, sort_keys=True, default=str).encode("utf-8")


def split_s3_uri(uri: str) -> tuple[str, str]:
    """Split ``s3://bucket/prefix`` (or ``bucket/prefix``) into its parts."""
    value = uri.removeprefix("s3://")
    bucket, _, prefix = value.partition("/")
    if not bucket:
        raise ValueError(f"Invalid S3 destination: {uri!r}")
    return bucket, prefix.strip("/")


def archive_record(
    service: CodeBuildService,
    record: BuildRecord,
    destination: str,
    filename: str,
) -> Outcome:
    """Upload the build record; failures become a warning.

    Args:
        service: Remote service.
        record: Final build record.
        destination: ``s3://bucket/prefix``.
        filename: Object name under the prefix.

    Returns:
        INFO outcome on success, WARNING otherwise.
    """
    try:
        bucket, prefix = split_s3_uri(destination)
        key = f"{prefix}/{filename}" if prefix else filename
        service.archive_result(serialize_record(record), bucket, key)
    except (RemoteCallError, ValueError) as e:
        logger.warning("Could not archive build record: %s", e)
        return Outcome(
            severity=Severity.WARNING,
            message=f"Could not archive build record: {e}",
            code="archive_failed",
        )

    logger.info("Archived build record to s3://%s/%s", bucket, key)
    return Outcome(
        severity=Severity.INFO,
        message=f"Archived build record to s3://{bucket}/{key}",
        code="archived",
        details={"bucket": bucket, "key": key},
    )


def status_outcome(status: BuildStatus) -> Outcome:
    """Map the build status to an outcome; anything but SUCCEEDED is fatal."""
    if status is BuildStatus.SUCCEEDED:
        return Outcome(
            severity=Severity.INFO,
            message=f"Build {status.value}",
            code="build_succeeded",
        )
    return Outcome(
        severity=Severity.FATAL,
        message=f"Build finished with status {status.value}",
        code=f"build_{status.value.lower()}",
        details={"status": status.value},
    )


def resolve_result(
    service: CodeBuildService,
    handle: BuildHandle,
    packaging: str = "ZIP",
    artifact_dir: Path = DEFAULT_ARTIFACT_DIR,
    archive_destination: str | None = None,
    archive_filename: str | None = None,
) -> ResolvedResult:
    """Resolve the final state of a build.

    Args:
        service: Remote service.
        handle: Finished build.
        packaging: Artifact packaging mode of the project.
        artifact_dir: Local directory receiving artifacts.
        archive_destination: ``s3://bucket/prefix`` for the build record.
        archive_filename: Object name of the archived record.

    Returns:
        ResolvedResult with the record, outcomes and fetched artifacts.

    Raises:
        RemoteCallError: If the build record cannot be read.
    """
    record = service.get_build_record(handle)
    result = ResolvedResult(record=record)

    if archive_destination:
        filename = archive_filename or f"{record.build_id.replace(':', '_')}.json"
        result.outcomes.append(
            archive_record(service, record, archive_destination, filename)
        )

    if record.artifacts_location:
        try:
            location = parse_artifact_location(record.artifacts_location)
            result.artifacts = fetch_artifact(service, location, packaging, artifact_dir)
        except (ArtifactFetchError, RemoteCallError, OSError) as e:
            logger.warning("Artifacts not fetched: %s", e)
            result.outcomes.append(
                Outcome(
                    severity=Severity.WARNING,
                    message=f"Artifacts not fetched: {e}",
                    code=getattr(e, "code", "artifact_error"),
                )
            )
        else:
            result.outcomes.append(
                Outcome(
                    severity=Severity.INFO,
                    message=f"Fetched {len(result.artifacts)} artifact(s) into {artifact_dir}",
                    code="artifacts_fetched",
                )
            )

    result.outcomes.append(status_outcome(record.status))
    return result


__all__ = [
    "ResolvedResult",
    "archive_record",
    "resolve_result",
    "serialize_record",
    "split_s3_uri",
    "status_outcome",
]
