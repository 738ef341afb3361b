"""CI platform detection.

Each supported platform is recognised by a marker variable and
contributes an environment name pattern plus the variables that identify
the project and commit being built.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class CIPlatform:
    """A CI platform the bridge knows how to read.

    Attributes:
        name: Short platform identifier.
        marker: Variable whose presence identifies the platform.
        env_pattern: Regular expression matched against variable names.
        project_var: Variable holding the repository or project name.
        commit_var: Variable holding the commit being built.
    """

    name: str
    marker: str | None = None
    env_pattern: str | None = None
    project_var: str | None = None
    commit_var: str | None = None


# Order matters: the first platform whose marker is set wins.
PLATFORMS: tuple[CIPlatform, ...] = (
    CIPlatform(
        name="github",
        marker="GITHUB_ACTIONS",
        env_pattern=r"GITHUB_",
        project_var="GITHUB_REPOSITORY",
        commit_var="GITHUB_SHA",
    ),
    CIPlatform(
        name="gitlab",
        marker="GITLAB_CI",
        env_pattern=r"CI_",
        project_var="CI_PROJECT_PATH",
        commit_var="CI_COMMIT_SHA",
    ),
    CIPlatform(
        name="bitbucket",
        marker="BITBUCKET_BUILD_NUMBER",
        env_pattern=r"BITBUCKET_",
        project_var="BITBUCKET_REPO_FULL_NAME",
        commit_var="BITBUCKET_COMMIT",
    ),
    CIPlatform(
        name="circleci",
        marker="CIRCLECI",
        env_pattern=r"CIRCLE_",
        project_var="CIRCLE_PROJECT_REPONAME",
        commit_var="CIRCLE_SHA1",
    ),
    CIPlatform(
        name="travis",
        marker="TRAVIS",
        env_pattern=r"TRAVIS_",
        project_var="TRAVIS_REPO_SLUG",
        commit_var="TRAVIS_COMMIT",
    ),
    CIPlatform(
        name="buildkite",
        marker="BUILDKITE",
        env_pattern=r"BUILDKITE_",
        project_var="BUILDKITE_PIPELINE_SLUG",
        commit_var="BUILDKITE_COMMIT",
    ),
    CIPlatform(
        name="jenkins",
        marker="JENKINS_URL",
        env_pattern=r"(JENKINS_|BUILD_|JOB_|GIT_)",
        project_var="JOB_NAME",
        commit_var="GIT_COMMIT",
    ),
)

LOCAL_PLATFORM = CIPlatform(name="local")


def detect_platform(environ: Mapping[str, str] | None = None) -> CIPlatform:
    """Detect the CI platform from the environment.

    Args:
        environ: Environment to inspect (defaults to os.environ).

    Returns:
        The matching platform, or LOCAL_PLATFORM when none matches.
    """
    if environ is None:
        environ = os.environ

    for platform in PLATFORMS:
        if platform.marker and environ.get(platform.marker):
            logger.debug("Detected CI platform: %s", platform.name)
            return platform

    logger.debug("No CI platform detected")
    return LOCAL_PLATFORM


def env_patterns(platform: CIPlatform, extra_pattern: str | None = None) -> list[str]:
    """Union the platform pattern with a caller-supplied pattern."""
    patterns: list[str] = []
    if platform.env_pattern:
        patterns.append(platform.env_pattern)
    if extra_pattern and extra_pattern not in patterns:
        patterns.append(extra_pattern)
    return patterns


def result_filename(
    platform: CIPlatform,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Compose the archival filename for a build record.

    The name is ``<platform>-<project>-<commit>.json`` so reruns of the
    same commit overwrite the same object.

    Args:
        platform: Detected platform.
        environ: Environment to read identifiers from.

    Returns:
        A filename safe for use as an S3 key component.
    """
    if environ is None:
        environ = os.environ

    project = environ.get(platform.project_var or "", "") or "unknown"
    commit = environ.get(platform.commit_var or "", "") or "unknown"
    parts = [platform.name, project, commit]
    return "-".join(_UNSAFE_FILENAME_CHARS.sub("_", p) for p in parts) + ".json"


__all__ = [
    "LOCAL_PLATFORM",
    "PLATFORMS",
    "CIPlatform",
    "detect_platform",
    "env_patterns",
    "result_filename",
]
