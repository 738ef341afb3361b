"""Build artifact retrieval.

This module handles:
- Parsing the artifact location reported by CodeBuild
- Fetching artifacts for each packaging mode
- Describing the files a fetch wrote, with checksums

Packaging modes:
- NONE: the artifacts are a loose tree under a prefix; every object is
  downloaded into the destination directory.
- ZIP: the artifacts are a single archive; it is downloaded, extracted
  into the destination directory and deleted.
"""

from __future__ import annotations

import hashlib
import logging
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from codebuild_bridge.types import ArtifactInfo, PackagingMode

if TYPE_CHECKING:
    from codebuild_bridge.builds.service import CodeBuildService

logger = logging.getLogger(__name__)

S3_ARN_PREFIX = "arn:aws:s3:::"
S3_URI_PREFIX = "s3://"

HASH_CHUNK_SIZE = 1024 * 1024


class ArtifactFetchError(Exception):
    """Raised when artifacts cannot be fetched or unpacked."""

    def __init__(self, message: str, code: str = "artifact_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ArtifactLocation:
    """S3 bucket and key of a build's artifacts."""

    bucket: str
    key: str


def parse_artifact_location(location: str) -> ArtifactLocation:
    """Split an artifact location into bucket and key.

    Accepts ``arn:aws:s3:::bucket/key``, ``s3://bucket/key`` and
    ``bucket/key``.

    Raises:
        ArtifactFetchError: If no bucket can be found.
    """
    value = location.strip()
    if value.startswith(S3_ARN_PREFIX):
        value = value[len(S3_ARN_PREFIX) :]
    elif value.startswith(S3_URI_PREFIX):
        value = value[len(S3_URI_PREFIX) :]

    bucket, _, key = value.partition("/")
    if not bucket:
        raise ArtifactFetchError(
            f"Cannot parse artifact location: {location!r}", code="invalid_location"
        )
    return ArtifactLocation(bucket=bucket, key=key)


def _safe_target(destination: Path, relative: str) -> Path:
    """Resolve a relative path under destination, refusing escapes."""
    root = destination.resolve()
    target = (root / relative).resolve()
    if target != root and root not in target.parents:
        raise ArtifactFetchError(
            f"Artifact path escapes destination: {relative}", code="unsafe_path"
        )
    return target


def _sync_directory(
    service: CodeBuildService,
    location: ArtifactLocation,
    destination: Path,
) -> list[Path]:
    prefix = location.key.rstrip("/")
    keys = [
        key
        for key in service.list_keys(location.bucket, prefix)
        if not prefix or key == prefix or key.startswith(prefix + "/")
    ]
    if not keys:
        raise ArtifactFetchError(
            f"No artifacts under s3://{location.bucket}/{location.key}",
            code="artifacts_missing",
        )

    written: list[Path] = []
    for key in keys:
        if key.endswith("/"):
            continue
        relative = key[len(prefix) :].lstrip("/") if prefix else key
        if not relative:
            relative = PurePosixPath(key).name
        target = _safe_target(destination, relative)
        written.append(service.download(location.bucket, key, target))
        logger.debug("Downloaded s3://%s/%s", location.bucket, key)
    return written


def _fetch_zip(
    service: CodeBuildService,
    location: ArtifactLocation,
    destination: Path,
) -> list[Path]:
    archive_name = PurePosixPath(location.key).name or "artifacts.zip"
    archive_path = destination / archive_name
    service.download(location.bucket, location.key, archive_path)

    try:
        with zipfile.ZipFile(archive_path) as archive:
            members = [
                _safe_target(destination, info.filename)
                for info in archive.infolist()
                if not info.is_dir()
            ]
            archive.extractall(destination)
    except zipfile.BadZipFile as e:
        raise ArtifactFetchError(
            f"Artifact archive is not a zip file: {archive_name}", code="bad_archive"
        ) from e
    finally:
        archive_path.unlink(missing_ok=True)
    return members


def sha256_of(path: Path) -> str:
    """Return the hex SHA-256 digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def describe_artifacts(directory: Path, paths: Iterable[Path]) -> list[ArtifactInfo]:
    """Describe fetched files relative to the artifact directory.

    Args:
        directory: Artifact directory.
        paths: Files written by the current fetch.

    Returns:
        ArtifactInfo per file, sorted by relative path. Other files that
        already sit in the directory are not reported.
    """
    root = directory.resolve()
    artifacts = [
        ArtifactInfo(
            filename=path.name,
            relative_path=path.resolve().relative_to(root).as_posix(),
            size_bytes=path.stat().st_size,
            sha256=sha256_of(path),
        )
        for path in {p.resolve() for p in paths}
        if path.is_file()
    ]
    artifacts.sort(key=lambda a: a.relative_path)
    logger.info("Fetched %d artifact(s) into %s", len(artifacts), directory)
    return artifacts


def fetch_artifact(
    service: CodeBuildService,
    location: ArtifactLocation,
    packaging: str,
    destination: Path,
) -> list[ArtifactInfo]:
    """Fetch build artifacts into a local directory.

    Args:
        service: Remote service.
        location: Artifact bucket and key.
        packaging: ``ZIP`` or ``NONE`` (case-insensitive).
        destination: Local directory; created if needed.

    Returns:
        The files written by this fetch.

    Raises:
        ArtifactFetchError: If the packaging mode is unsupported or the
            artifacts cannot be fetched.
    """
    try:
        mode = PackagingMode(packaging.upper())
    except ValueError:
        raise ArtifactFetchError(
            f"Unsupported artifact packaging: {packaging}",
            code="unsupported_packaging",
        ) from None

    destination.mkdir(parents=True, exist_ok=True)
    logger.info(
        "Fetching artifacts from s3://%s/%s (%s) into %s",
        location.bucket,
        location.key,
        mode.value,
        destination,
    )

    if mode is PackagingMode.NONE:
        written = _sync_directory(service, location, destination)
    else:
        written = _fetch_zip(service, location, destination)

    return describe_artifacts(destination, written)


__all__ = [
    "ArtifactFetchError",
    "ArtifactLocation",
    "describe_artifacts",
    "fetch_artifact",
    "parse_artifact_location",
    "sha256_of",
]
