"""AWS service layer for the build lifecycle.

This module provides the remote operations the lifecycle needs:
- Source archive upload and result archival (S3)
- Build submission, status and stop (CodeBuild)
- Log event paging (CloudWatch Logs)
- Optional role elevation through STS

None of the calls are retried: a failed call surfaces as an exception.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from codebuild_bridge.types import (
    BuildHandle,
    BuildRecord,
    BuildRequest,
    BuildStatus,
    LogBatch,
    LogDescriptor,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "codebuild-bridge"


class RemoteCallError(Exception):
    """Raised when an AWS call fails."""

    def __init__(self, message: str, code: str = "remote_error") -> None:
        super().__init__(message)
        self.code = code


class SubmissionError(Exception):
    """Raised when CodeBuild rejects the build start."""

    def __init__(self, message: str, code: str = "submission_error") -> None:
        super().__init__(message)
        self.code = code


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def create_session(
    region: str | None = None,
    role_arn: str | None = None,
    session_name: str = DEFAULT_SESSION_NAME,
) -> boto3.session.Session:
    """Create a boto3 session, assuming a role when one is given.

    Args:
        region: AWS region, or None for the default chain.
        role_arn: Role to assume, or None to use ambient credentials.
        session_name: STS role session name.

    Returns:
        Configured boto3 session.

    Raises:
        RemoteCallError: If the role cannot be assumed.
    """
    session = boto3.session.Session(region_name=region)
    if not role_arn:
        return session

    logger.info("Assuming role %s", role_arn)
    try:
        response = session.client("sts").assume_role(
            RoleArn=role_arn,
            RoleSessionName=session_name,
        )
    except (BotoCoreError, ClientError) as e:
        raise RemoteCallError(
            f"Cannot assume role {role_arn}: {e}", code="assume_role_error"
        ) from e

    credentials = response["Credentials"]
    return boto3.session.Session(
        aws_access_key_id=credentials["AccessKeyId"],
        aws_secret_access_key=credentials["SecretAccessKey"],
        aws_session_token=credentials["SessionToken"],
        region_name=region,
    )


class CodeBuildService:
    """Remote operations over the CodeBuild, CloudWatch Logs and S3 clients."""

    def __init__(self, codebuild: Any, logs: Any, s3: Any) -> None:
        self.codebuild = codebuild
        self.logs = logs
        self.s3 = s3

    @classmethod
    def from_session(cls, session: boto3.session.Session) -> CodeBuildService:
        """Create the service with clients from a boto3 session."""
        return cls(
            codebuild=session.client("codebuild"),
            logs=session.client("logs"),
            s3=session.client("s3"),
        )

    def _call(self, action: str, method: Any, **kwargs: Any) -> dict[str, Any]:
        logger.debug("AWS call: %s", action)
        try:
            return method(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise RemoteCallError(f"Failed to {action}: {e}") from e

    # S3

    def upload_archive(self, data: bytes, bucket: str, key: str) -> str | None:
        """Upload the source archive.

        Args:
            data: Archive bytes.
            bucket: Destination bucket.
            key: Destination key.

        Returns:
            The S3 version ID, or None when the bucket is not versioned.
        """
        response = self._call(
            f"upload source archive to s3://{bucket}/{key}",
            self.s3.put_object,
            Bucket=bucket,
            Key=key,
            Body=data,
        )
        version_id = response.get("VersionId")
        logger.info(
            "Uploaded %d bytes to s3://%s/%s (version=%s)",
            len(data),
            bucket,
            key,
            version_id,
        )
        return version_id

    def archive_result(self, data: bytes, bucket: str, key: str) -> None:
        """Store a serialized build record."""
        self._call(
            f"archive build record to s3://{bucket}/{key}",
            self.s3.put_object,
            Bucket=bucket,
            Key=key,
            Body=data,
            ContentType="application/json",
        )

    def list_keys(self, bucket: str, prefix: str) -> list[str]:
        """List every object key under a prefix."""
        keys: list[str] = []
        try:
            paginator = self.s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise RemoteCallError(f"Failed to list s3://{bucket}/{prefix}: {e}") from e
        return keys

    def download(self, bucket: str, key: str, destination: Path) -> Path:
        """Download one object to a local path.

        A partially written file is removed when the transfer fails.

        Raises:
            RemoteCallError: If the request or the body stream fails.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        response = self._call(
            f"download s3://{bucket}/{key}",
            self.s3.get_object,
            Bucket=bucket,
            Key=key,
        )
        try:
            with destination.open("wb") as f:
                for chunk in response["Body"].iter_chunks():
                    f.write(chunk)
        except (BotoCoreError, ClientError) as e:
            destination.unlink(missing_ok=True)
            raise RemoteCallError(f"Failed to download s3://{bucket}/{key}: {e}") from e
        return destination

    # CodeBuild

    def start_build(self, request: BuildRequest) -> BuildHandle:
        """Submit a build.

        Raises:
            SubmissionError: If CodeBuild rejects the request.
        """
        try:
            response = self.codebuild.start_build(**request.to_api_kwargs())
        except (BotoCoreError, ClientError) as e:
            raise SubmissionError(f"Build submission rejected: {e}") from e
        return BuildHandle(build_id=response["build"]["id"])

    def stop_build(self, handle: BuildHandle) -> None:
        """Ask CodeBuild to stop a running build."""
        self._call(
            f"stop build {handle.build_id}",
            self.codebuild.stop_build,
            id=handle.build_id,
        )

    def _describe(self, handle: BuildHandle) -> dict[str, Any]:
        response = self._call(
            f"describe build {handle.build_id}",
            self.codebuild.batch_get_builds,
            ids=[handle.build_id],
        )
        builds = response.get("builds") or []
        if not builds:
            raise RemoteCallError(
                f"Build not found: {handle.build_id}", code="build_not_found"
            )
        return builds[0]

    def is_build_complete(self, handle: BuildHandle) -> bool:
        return bool(self._describe(handle).get("buildComplete"))

    def get_build_record(self, handle: BuildHandle) -> BuildRecord:
        """Fetch the build and convert it to a BuildRecord."""
        build = self._describe(handle)
        location = (build.get("artifacts") or {}).get("location") or None
        return BuildRecord(
            build_id=build.get("id", handle.build_id),
            status=BuildStatus(build.get("buildStatus", BuildStatus.IN_PROGRESS.value)),
            artifacts_location=location,
            logs=_descriptor_from_build(build),
            raw=build,
        )

    def get_log_descriptor(self, handle: BuildHandle) -> LogDescriptor | None:
        """Return the build's log location, or None before it is assigned."""
        return _descriptor_from_build(self._describe(handle))

    # CloudWatch Logs

    def fetch_log_events(
        self,
        group_name: str,
        stream_name: str,
        token: str | None = None,
    ) -> LogBatch:
        """Fetch one page of log events.

        A stream that does not exist yet yields an empty page with the
        token unchanged.
        """
        kwargs: dict[str, Any] = {
            "logGroupName": group_name,
            "logStreamName": stream_name,
            "startFromHead": True,
        }
        if token:
            kwargs["nextToken"] = token

        try:
            response = self.logs.get_log_events(**kwargs)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                logger.debug("Log stream %s/%s not created yet", group_name, stream_name)
                return LogBatch(messages=[], next_token=token)
            raise RemoteCallError(f"Failed to fetch log events: {e}") from e
        except BotoCoreError as e:
            raise RemoteCallError(f"Failed to fetch log events: {e}") from e

        return LogBatch(
            messages=[event.get("message", "") for event in response.get("events", [])],
            next_token=response.get("nextForwardToken"),
        )


def _descriptor_from_build(build: dict[str, Any]) -> LogDescriptor | None:
    logs = build.get("logs") or {}
    group_name = logs.get("groupName")
    stream_name = logs.get("streamName")
    if not group_name or not stream_name:
        return None
    return LogDescriptor(group_name=group_name, stream_name=stream_name)


def submit_build(service: CodeBuildService, request: BuildRequest) -> BuildHandle:
    """Start the remote build.

    Submission is never retried, since a retry could start a second build.

    Args:
        service: Remote service.
        request: Merged build request.

    Returns:
        Handle of the started build.

    Raises:
        SubmissionError: If the build could not be started.
    """
    project = request.project_name or request.extra_fields.get("projectName")
    logger.info("Starting build for project %s", project or "(service default)")
    handle = service.start_build(request)
    logger.info("Started build %s", handle.build_id)
    return handle


__all__ = [
    "CodeBuildService",
    "RemoteCallError",
    "SubmissionError",
    "create_session",
    "submit_build",
]
