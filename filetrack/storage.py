"""On-disk layout for the tasks root.

Layout::

    <root>/config.yml           workspace config (optional)
    <root>/@sprints/<id>.yml    one file per sprint
    <root>/<PROJECT>/<n>.yml    one file per task, id PROJECT-n

Older workspaces kept sprints in ``<root>/sprints``. ``migrate_legacy_layout``
moves that directory into place; it is idempotent and runs before the first
sprint read.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import PersistenceError

logger = logging.getLogger(__name__)

SPRINTS_DIRNAME = "@sprints"
LEGACY_SPRINTS_DIRNAME = "sprints"
RECORD_SUFFIX = ".yml"


@dataclass(frozen=True)
class MigrationResult:
    """What ``migrate_legacy_layout`` did."""

    sprints_dir: Path
    migrated: bool = False
    legacy_in_use: bool = False


def sprints_dir(root: Path) -> Path:
    return root / SPRINTS_DIRNAME


def migrate_legacy_layout(root: Path) -> MigrationResult:
    """Rename ``<root>/sprints`` to ``<root>/@sprints`` if needed.

    Nothing happens when the new directory already exists or there is no
    legacy directory. File contents are never touched.

    Returns:
        MigrationResult. When the rename fails the legacy directory is
        reported as still in use and its path is returned as ``sprints_dir``.
    """
    current = sprints_dir(root)
    legacy = root / LEGACY_SPRINTS_DIRNAME
    if current.exists() or not legacy.is_dir():
        return MigrationResult(sprints_dir=current)
    try:
        legacy.rename(current)
    except OSError as e:
        logger.warning("Could not migrate %s to %s: %s", legacy, current, e)
        return MigrationResult(sprints_dir=legacy, legacy_in_use=True)
    logger.info("Migrated legacy sprint directory %s -> %s", legacy, current)
    return MigrationResult(sprints_dir=current, migrated=True)


def read_text(path: Path) -> str:
    """Read a record file.

    Raises:
        PersistenceError: If the file cannot be read.
    """
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Failed to read {path}: {e}"
        raise PersistenceError(msg) from e


def write_text_atomic(path: Path, text: str) -> None:
    """Replace a record file in one step.

    The text is written to a temp file beside ``path`` and moved over it,
    so readers never see a half-written record.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        msg = f"Failed to write {path}: {e}"
        raise PersistenceError(msg) from e


def numeric_stems(directory: Path) -> list[int]:
    """Sorted integer ids of ``<n>.yml`` files in a directory."""
    if not directory.is_dir():
        return []
    ids = []
    for path in directory.glob(f"*{RECORD_SUFFIX}"):
        if path.stem.isdigit():
            ids.append(int(path.stem))
    return sorted(ids)
