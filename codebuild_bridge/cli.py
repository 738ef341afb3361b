"""Thin CLI wrapper for codebuild_bridge.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
import threading
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape

from codebuild_bridge import __version__
from codebuild_bridge.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="codebuild-bridge",
    help="CodeBuild Bridge - run an AWS CodeBuild build from a CI step",
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger(__name__)

# Where each required setting can be supplied, for error listings.
REQUIRED_HINTS = {
    "source_bucket": "--bucket / CODEBUILD_BRIDGE_SOURCE_BUCKET",
    "source_key": "--key / CODEBUILD_BRIDGE_SOURCE_KEY",
    "source_version": "a versioned source bucket (upload returned no VersionId)",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"codebuild-bridge version {__version__}")
        raise typer.Exit()


def configure_logging(settings: Settings) -> None:
    """Configure the root logger once for the process."""
    level = logging.DEBUG if settings.verbose else getattr(logging, settings.log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(level)


def emit_line(line: str) -> None:
    """Print a build log line verbatim."""
    console.print(line, markup=False, highlight=False, soft_wrap=True)


def fail(message: str) -> typer.Exit:
    """Print an error and return the exit to raise."""
    console.print(f"[red]{escape(message)}[/red]")
    return typer.Exit(code=1)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """CodeBuild Bridge - run an AWS CodeBuild build from a CI step."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, highlight=False)
        return

    def show(value: Any) -> str:
        return escape(str(value)) if value not in (None, "") else "(not set)"

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Project:             {show(settings.project_name)}")
    console.print(f"  Region:              {show(settings.region)}")
    console.print(f"  Role ARN:            {show(settings.role_arn)}")
    console.print()
    console.print("[bold]Source:[/bold]")
    console.print(f"  Source bucket:       {show(settings.source_bucket)}")
    console.print(f"  Source key:          {show(settings.source_key)}")
    console.print(f"  Env pattern:         {show(settings.env_pattern)}")
    console.print(f"  Override conflicts:  {settings.override_conflicts}")
    console.print()
    console.print("[bold]Waiting:[/bold]")
    console.print(f"  Wait:                {settings.wait}")
    console.print(f"  Poll interval:       {settings.poll_interval}")
    console.print(f"  Build timeout:       {show(settings.build_timeout)}")
    console.print(f"  Stop on cancel:      {settings.stop_on_cancel}")
    console.print()
    console.print("[bold]Results:[/bold]")
    console.print(f"  Result archive:      {show(settings.result_archive)}")
    console.print(f"  Artifact packaging:  {settings.artifact_packaging}")
    console.print(f"  Artifact directory:  {settings.artifact_dir}")
    console.print()
    console.print("[bold]Diagnostics:[/bold]")
    console.print(f"  Verbose:             {settings.verbose}")
    console.print(f"  Log level:           {settings.log_level}")


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run(
    ctx: typer.Context,
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="CodeBuild project name"),
    ] = None,
    bucket: Annotated[
        str | None,
        typer.Option("--bucket", "-b", help="S3 bucket for the source archive"),
    ] = None,
    key: Annotated[
        str | None,
        typer.Option("--key", "-k", help="S3 key for the source archive"),
    ] = None,
    region: Annotated[
        str | None,
        typer.Option("--region", help="AWS region"),
    ] = None,
    role_arn: Annotated[
        str | None,
        typer.Option("--role-arn", help="IAM role to assume"),
    ] = None,
    wait: Annotated[
        bool | None,
        typer.Option("--wait/--no-wait", help="Wait for the build and relay its log"),
    ] = None,
    archive: Annotated[
        str | None,
        typer.Option("--archive", help="s3://bucket/prefix for the build record"),
    ] = None,
    packaging: Annotated[
        str | None,
        typer.Option("--packaging", help="Artifact packaging: ZIP or NONE"),
    ] = None,
    artifact_dir: Annotated[
        Path | None,
        typer.Option("--artifact-dir", help="Local directory for artifacts"),
    ] = None,
    env_pattern: Annotated[
        str | None,
        typer.Option("--env-pattern", "-e", help="Extra environment name pattern"),
    ] = None,
    cli_input: Annotated[
        Path | None,
        typer.Option("--cli-input", help="StartBuild request template (JSON/YAML)"),
    ] = None,
    env_files: Annotated[
        list[Path] | None,
        typer.Option("--env-file", help="NAME=value file of extra overrides"),
    ] = None,
    poll_interval: Annotated[
        float | None,
        typer.Option("--poll-interval", help="Seconds between status checks"),
    ] = None,
    timeout: Annotated[
        int | None,
        typer.Option("--timeout", help="Give up waiting after N seconds"),
    ] = None,
    stop_on_cancel: Annotated[
        bool | None,
        typer.Option(
            "--stop-on-cancel/--no-stop-on-cancel",
            help="Stop the build if interrupted",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Trace every AWS call"),
    ] = False,
) -> None:
    """Package the working tree, run the build and relay its log.

    Unrecognised trailing options (e.g. --timeout-in-minutes-override 30)
    are forwarded to StartBuild.
    """
    from pydantic import ValidationError

    from codebuild_bridge.builds.poller import PollingCancelled
    from codebuild_bridge.builds.request import (
        PreconditionError,
        TemplateError,
        load_template,
        parse_extra_options,
    )
    from codebuild_bridge.builds.service import (
        CodeBuildService,
        RemoteCallError,
        SubmissionError,
        create_session,
    )
    from codebuild_bridge.ci.environment import load_env_file
    from codebuild_bridge.lifecycle import cancel_on_signals, run_build_lifecycle
    from codebuild_bridge.types import Severity

    cli_values = {
        "project_name": project,
        "source_bucket": bucket,
        "source_key": key,
        "region": region,
        "role_arn": role_arn,
        "wait": wait,
        "result_archive": archive,
        "artifact_packaging": packaging,
        "artifact_dir": artifact_dir,
        "env_pattern": env_pattern,
        "poll_interval": poll_interval,
        "build_timeout": timeout,
        "stop_on_cancel": stop_on_cancel,
        "verbose": verbose or None,
    }
    try:
        settings = Settings(**{k: v for k, v in cli_values.items() if v is not None})
    except ValidationError as e:
        console.print("[red]Invalid configuration:[/red]")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None

    configure_logging(settings)

    missing = settings.missing_required()
    if missing:
        console.print("[red]Missing required configuration:[/red]")
        for name in missing:
            console.print(f"  - {name} ({REQUIRED_HINTS.get(name, name)})")
        raise typer.Exit(code=1)

    try:
        templates = [load_template(cli_input) if cli_input else None]
        templates.append(parse_extra_options(ctx.args))
        extra_overrides = [o for path in env_files or [] for o in load_env_file(path)]
    except TemplateError as e:
        raise fail(str(e)) from None
    except OSError as e:
        raise fail(f"Cannot read env file: {e}") from None

    try:
        service = CodeBuildService.from_session(
            create_session(region=settings.region, role_arn=settings.role_arn)
        )
        with cancel_on_signals(threading.Event()) as cancel:
            result = run_build_lifecycle(
                settings,
                service,
                emit_line,
                templates=templates,
                extra_overrides=extra_overrides,
                cancel=cancel,
            )
    except PreconditionError as e:
        console.print("[red]Missing required configuration:[/red]")
        for name in e.missing:
            console.print(f"  - {name} ({REQUIRED_HINTS.get(name, name)})")
        raise typer.Exit(code=1) from None
    except (TemplateError, SubmissionError, RemoteCallError, PollingCancelled) as e:
        logger.debug("Build lifecycle aborted", exc_info=True)
        raise fail(str(e)) from None

    if result.resolved is None:
        console.print(
            f"[green]Submitted build {escape(result.handle.build_id)} (not waiting)[/green]"
        )
        raise typer.Exit(code=0)

    for outcome in result.resolved.outcomes:
        if outcome.severity is Severity.WARNING:
            console.print(f"[yellow]Warning: {escape(outcome.message)}[/yellow]")
        elif outcome.severity is Severity.INFO and outcome.code != "build_succeeded":
            console.print(escape(outcome.message))

    status = result.resolved.record.status.value
    if result.exit_code == 0:
        console.print(f"[green]✓ Build {status}[/green]")
    else:
        console.print(f"[red]✗ Build {status}[/red]")
    raise typer.Exit(code=result.exit_code)


__all__ = ["app"]
