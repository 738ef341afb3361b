"""Build-start request composition.

This module handles:
- Merging collected overrides with a request template
- Deduplicating environment overrides
- Turning trailing CLI options into request fields
- Precondition checks before anything is sent to AWS
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

import yaml

from codebuild_bridge.types import BuildRequest, EnvOverride

logger = logging.getLogger(__name__)

OVERRIDES_FIELD = "environmentVariablesOverride"

ConflictPolicy = Literal["last-wins", "keep"]

_KEBAB_WORD = re.compile(r"-([a-z0-9])")


class PreconditionError(Exception):
    """Raised when required configuration is missing."""

    def __init__(self, missing: Sequence[str], code: str = "precondition_error") -> None:
        super().__init__(f"Missing required configuration: {', '.join(missing)}")
        self.missing = list(missing)
        self.code = code


class TemplateError(Exception):
    """Raised when a request template or trailing option is malformed."""

    def __init__(self, message: str, code: str = "template_error") -> None:
        super().__init__(message)
        self.code = code


def load_template(path: Path) -> dict[str, Any]:
    """Load a StartBuild request template from JSON or YAML.

    Args:
        path: Template file; ``.yaml``/``.yml`` are read as YAML, anything
            else as JSON.

    Returns:
        Template contents as a dictionary.

    Raises:
        TemplateError: If the file cannot be parsed or is not a mapping.
    """
    try:
        with path.open(encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise TemplateError(f"Cannot read request template {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TemplateError(
            f"Request template must be a mapping, got {type(data).__name__}"
        )
    return data


def _decode_option_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def parse_extra_options(args: Sequence[str]) -> dict[str, Any]:
    """Turn trailing ``--kebab-case value`` tokens into request fields.

    ``--timeout-in-minutes-override 30`` becomes
    ``{"timeoutInMinutesOverride": 30}``. Values that parse as JSON are
    decoded; a flag with no value is ``True``.

    Args:
        args: Tokens left over after the CLI's own options.

    Returns:
        Request fields keyed by StartBuild parameter name.

    Raises:
        TemplateError: If a token is not an option.
    """
    fields: dict[str, Any] = {}
    i = 0
    while i < len(args):
        token = args[i]
        if not token.startswith("--") or token == "--":
            raise TemplateError(f"Unexpected argument: {token}")

        name, sep, inline = token[2:].partition("=")
        if sep:
            raw: str | None = inline
            i += 1
        elif i + 1 < len(args) and not args[i + 1].startswith("--"):
            raw = args[i + 1]
            i += 2
        else:
            raw = None
            i += 1

        key = _KEBAB_WORD.sub(lambda m: m.group(1).upper(), name.lower())
        fields[key] = True if raw is None else _decode_option_value(raw)

    return fields


def merge_documents(
    base: Mapping[str, Any],
    template: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge a template into a request document, top level only.

    Lists present on both sides are concatenated (base first); any other
    value from the template replaces the base value.

    Args:
        base: Collected document.
        template: Template document.

    Returns:
        New merged document.
    """
    merged = dict(base)
    for key, value in template.items():
        current = merged.get(key)
        if isinstance(current, list) and isinstance(value, list):
            merged[key] = current + value
        else:
            merged[key] = value
    return merged


def merge_request_document(
    overrides: Iterable[EnvOverride],
    *templates: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Build the request document from collected overrides and templates.

    Args:
        overrides: Collected environment overrides.
        templates: Templates merged in order; None entries are skipped.

    Returns:
        Merged document with overrides in API form.
    """
    document: dict[str, Any] = {OVERRIDES_FIELD: [o.to_api() for o in overrides]}
    for template in templates:
        if template:
            document = merge_documents(document, template)
    return document


def _parse_override_entries(entries: Any) -> list[EnvOverride]:
    if not isinstance(entries, list):
        raise TemplateError(f"{OVERRIDES_FIELD} must be a list")

    parsed: list[EnvOverride] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping) or not entry.get("name"):
            raise TemplateError(f"{OVERRIDES_FIELD}[{index}] needs a name")
        parsed.append(
            EnvOverride(
                name=str(entry["name"]),
                value=str(entry.get("value", "")),
                type=str(entry.get("type", "PLAINTEXT")),
            )
        )
    return parsed


def find_conflicts(overrides: Iterable[EnvOverride]) -> list[str]:
    """Return names that appear with more than one distinct value or type."""
    values: dict[str, set[tuple[str, str]]] = {}
    for o in overrides:
        values.setdefault(o.name, set()).add((o.value, o.type))
    return [name for name, vals in values.items() if len(vals) > 1]


def dedupe_overrides(
    overrides: Iterable[EnvOverride],
    on_conflict: ConflictPolicy = "keep",
) -> list[EnvOverride]:
    """Remove duplicate overrides.

    Exact duplicates (same name, value and type) are always dropped,
    keeping the first occurrence. Names that still appear with different
    values or types are logged; with ``last-wins`` only one entry per name
    is kept, at the position of the first occurrence and carrying the
    last entry.

    Args:
        overrides: Overrides in merge order.
        on_conflict: ``last-wins`` or ``keep``.

    Returns:
        Deduplicated overrides.
    """
    seen: set[EnvOverride] = set()
    unique: list[EnvOverride] = []
    for o in overrides:
        if o in seen:
            continue
        seen.add(o)
        unique.append(o)

    conflicts = find_conflicts(unique)
    if not conflicts:
        return unique

    if on_conflict == "keep":
        logger.warning(
            "Submitting conflicting values for override(s): %s",
            ", ".join(conflicts),
        )
        return unique

    logger.warning(
        "Conflicting values for override(s) %s; the last value wins",
        ", ".join(conflicts),
    )
    positions: dict[str, int] = {}
    resolved: list[EnvOverride] = []
    for o in unique:
        if o.name in positions:
            resolved[positions[o.name]] = o
        else:
            positions[o.name] = len(resolved)
            resolved.append(o)
    return resolved


def build_request(
    overrides: Iterable[EnvOverride],
    *templates: Mapping[str, Any] | None,
    source_version: str | None,
    source_bucket: str | None,
    source_key: str | None,
    project_name: str | None = None,
    on_conflict: ConflictPolicy = "keep",
) -> BuildRequest:
    """Compose the build-start request.

    Args:
        overrides: Collected environment overrides.
        templates: Request templates, merged in order.
        source_version: S3 version of the uploaded source archive.
        source_bucket: Bucket holding the source archive.
        source_key: Key of the source archive.
        project_name: Configured CodeBuild project, if any.
        on_conflict: Policy for same-name overrides with different values.

    Returns:
        Immutable BuildRequest.

    Raises:
        PreconditionError: If source identifiers are missing.
        TemplateError: If the merged overrides are malformed.
    """
    required = {
        "source_version": source_version,
        "source_bucket": source_bucket,
        "source_key": source_key,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise PreconditionError(missing)

    document = merge_request_document(overrides, *templates)
    merged_overrides = _parse_override_entries(document.pop(OVERRIDES_FIELD, []))
    final_overrides = dedupe_overrides(merged_overrides, on_conflict=on_conflict)

    # The uploaded snapshot always wins over any template source fields.
    document.pop("sourceVersion", None)
    document["sourceTypeOverride"] = "S3"
    document["sourceLocationOverride"] = f"{source_bucket}/{source_key}"

    if project_name:
        document.pop("projectName", None)

    logger.info(
        "Composed build request with %d override(s) and %d extra field(s)",
        len(final_overrides),
        len(document),
    )
    return BuildRequest(
        source_version=str(source_version),
        overrides=tuple(final_overrides),
        project_name=project_name,
        extra_fields=document,
    )


__all__ = [
    "OVERRIDES_FIELD",
    "PreconditionError",
    "TemplateError",
    "build_request",
    "dedupe_overrides",
    "find_conflicts",
    "load_template",
    "merge_documents",
    "merge_request_document",
    "parse_extra_options",
]
