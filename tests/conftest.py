"""Shared fixtures: an in-memory stand-in for the AWS service layer."""

from __future__ import annotations

from pathlib import Path

import pytest

from codebuild_bridge.types import (
    BuildHandle,
    BuildRecord,
    BuildRequest,
    BuildStatus,
    LogBatch,
    LogDescriptor,
)

DESCRIPTOR = LogDescriptor(group_name="/aws/codebuild/demo", stream_name="stream-1")


class FakeCodeBuildService:
    """Scripted replacement for CodeBuildService.

    Sequences (descriptors, log pages, completions) are consumed one item
    per call; once exhausted the last descriptor repeats, log pages come
    back empty with the token unchanged, and the build reports complete.
    """

    def __init__(
        self,
        descriptors: list[LogDescriptor | None] | None = None,
        log_pages: list[LogBatch] | None = None,
        completions: list[bool] | None = None,
        status: BuildStatus = BuildStatus.SUCCEEDED,
        artifacts_location: str | None = None,
        objects: dict[tuple[str, str], bytes] | None = None,
        version_id: str | None = "v1",
    ) -> None:
        self.descriptors = list(descriptors) if descriptors is not None else [DESCRIPTOR]
        self.log_pages = list(log_pages or [])
        self.completions = list(completions or [])
        self.status = status
        self.artifacts_location = artifacts_location
        self.objects = dict(objects or {})
        self.version_id = version_id

        self.uploads: list[tuple[str, str, bytes]] = []
        self.requests: list[BuildRequest] = []
        self.fetch_tokens: list[str | None] = []
        self.archived: list[tuple[str, str, bytes]] = []
        self.downloads: list[tuple[str, str]] = []
        self.stopped: list[str] = []
        self.completion_checks = 0

    def upload_archive(self, data: bytes, bucket: str, key: str) -> str | None:
        self.uploads.append((bucket, key, data))
        return self.version_id

    def start_build(self, request: BuildRequest) -> BuildHandle:
        self.requests.append(request)
        return BuildHandle(build_id="demo:0001")

    def stop_build(self, handle: BuildHandle) -> None:
        self.stopped.append(handle.build_id)

    def is_build_complete(self, handle: BuildHandle) -> bool:
        self.completion_checks += 1
        if self.completions:
            return self.completions.pop(0)
        return True

    def get_log_descriptor(self, handle: BuildHandle) -> LogDescriptor | None:
        if len(self.descriptors) > 1:
            return self.descriptors.pop(0)
        return self.descriptors[0] if self.descriptors else None

    def fetch_log_events(
        self, group_name: str, stream_name: str, token: str | None = None
    ) -> LogBatch:
        self.fetch_tokens.append(token)
        if self.log_pages:
            return self.log_pages.pop(0)
        return LogBatch(messages=[], next_token=token)

    def get_build_record(self, handle: BuildHandle) -> BuildRecord:
        return BuildRecord(
            build_id=handle.build_id,
            status=self.status,
            artifacts_location=self.artifacts_location,
            logs=DESCRIPTOR,
            raw={"id": handle.build_id, "buildStatus": self.status.value},
        )

    def archive_result(self, data: bytes, bucket: str, key: str) -> None:
        self.archived.append((bucket, key, data))

    def list_keys(self, bucket: str, prefix: str) -> list[str]:
        return sorted(k for b, k in self.objects if b == bucket and k.startswith(prefix))

    def download(self, bucket: str, key: str, destination: Path) -> Path:
        self.downloads.append((bucket, key))
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.objects[(bucket, key)])
        return destination


class Collector:
    """Collects emitted lines."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, line: str) -> None:
        self.lines.append(line)


@pytest.fixture
def emit() -> Collector:
    return Collector()


@pytest.fixture
def fake_service() -> FakeCodeBuildService:
    return FakeCodeBuildService()


@pytest.fixture
def service_factory() -> type[FakeCodeBuildService]:
    return FakeCodeBuildService
