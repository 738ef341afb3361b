"""Source archive creation.

Zips the working tree into memory for upload as the build's S3 source.
"""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterable, Iterator
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES = (".git",)


def iter_source_files(
    root: Path,
    exclude: Iterable[str] = DEFAULT_EXCLUDES,
) -> Iterator[Path]:
    """Yield files under root, skipping excluded relative paths.

    Args:
        root: Working tree root.
        exclude: Paths relative to root to skip, e.g. ``.git``.

    Yields:
        File paths in sorted order.
    """
    excluded = {Path(e).as_posix().strip("/") for e in exclude if e}
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root)
        prefixes = {
            PurePosixPath(*relative.parts[: i + 1]).as_posix()
            for i in range(len(relative.parts))
        }
        if excluded & prefixes:
            continue
        yield path


def package_source(root: Path, exclude: Iterable[str] = DEFAULT_EXCLUDES) -> bytes:
    """Zip the working tree.

    Args:
        root: Working tree root.
        exclude: Relative paths to leave out.

    Returns:
        Zip archive bytes.
    """
    buffer = io.BytesIO()
    count = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in iter_source_files(root, exclude):
            archive.write(path, arcname=path.relative_to(root).as_posix())
            count += 1

    data = buffer.getvalue()
    logger.info("Packaged %d file(s) from %s (%d bytes)", count, root, len(data))
    return data


__all__ = ["DEFAULT_EXCLUDES", "iter_source_files", "package_source"]
