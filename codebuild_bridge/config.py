"""Configuration settings for codebuild_bridge.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ARTIFACT_DIR = Path(".codebuild_artifacts")


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the
    CODEBUILD_BRIDGE_ prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODEBUILD_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote build
    project_name: str | None = Field(
        default=None,
        description="CodeBuild project (service default if unset)",
    )
    region: str | None = Field(
        default=None,
        description="AWS region (boto3 default chain if unset)",
    )
    role_arn: str | None = Field(
        default=None,
        description="IAM role to assume before calling AWS",
    )

    # Source upload (required)
    source_bucket: str | None = Field(
        default=None,
        description="S3 bucket receiving the source archive",
    )
    source_key: str | None = Field(
        default=None,
        description="S3 key of the source archive",
    )

    # Request composition
    env_pattern: str | None = Field(
        default=None,
        description="Extra environment name pattern, unioned with the CI platform's",
    )
    override_conflicts: Literal["last-wins", "keep"] = Field(
        default="last-wins",
        description="How to treat overrides sharing a name with different values",
    )

    # Completion
    wait: bool = Field(
        default=True,
        description="Wait for the build to finish and relay its log",
    )
    poll_interval: float = Field(
        default=10,
        gt=0,
        description="Seconds between completion checks",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Stop waiting after this many seconds (no limit if unset)",
    )
    stop_on_cancel: bool = Field(
        default=False,
        description="Stop the remote build when waiting is interrupted",
    )

    # Results
    result_archive: str | None = Field(
        default=None,
        description="s3://bucket/prefix receiving the final build record",
    )
    artifact_packaging: str = Field(
        default="ZIP",
        description="Artifact packaging of the project: ZIP or NONE",
    )
    artifact_dir: Path = Field(
        default=DEFAULT_ARTIFACT_DIR,
        description="Local directory receiving build artifacts",
    )

    # Diagnostics
    verbose: bool = Field(default=False, description="Trace every AWS call")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )

    def missing_required(self) -> list[str]:
        """Return the names of required settings that are not set."""
        required = {
            "source_bucket": self.source_bucket,
            "source_key": self.source_key,
        }
        return [name for name, value in required.items() if not value]


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_ARTIFACT_DIR", "Settings", "get_settings", "print_settings_json"]
