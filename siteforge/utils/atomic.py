"""Atomic file operations for the project documents and the allocation ledger.

Both files are rewritten in place on every commit. A crash halfway through
a write must leave either the old document or the new one on disk, never a
truncated JSON file.
"""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, TextIO

from siteforge.utils.logging import get_logger

logger = get_logger("utils.atomic")

TEMP_SUFFIX = ".tmp"


class AtomicWriteError(Exception):
    """Raised when a document could not be replaced atomically."""

    pass


@contextmanager
def atomic_write(path: Path, encoding: str = "utf-8") -> Generator[TextIO, None, None]:
    """
    Open a temporary sibling of ``path`` for writing and swap it in on success.

    The data is flushed and fsynced before ``os.replace``, so the rename
    never exposes a file whose contents are still in the page cache only.

    Args:
        path: Target file path
        encoding: Text encoding

    Yields:
        Text file handle for writing

    Raises:
        AtomicWriteError: If writing or renaming fails
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target so the rename stays on one filesystem
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=TEMP_SUFFIX)
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except Exception as e:
        logger.error("atomic_write_failed", path=str(path), error=str(e))
        _discard(temp_path)
        raise AtomicWriteError(f"Failed to atomically write {path}: {e}") from e

    logger.debug("atomic_write_success", path=str(path))


def _discard(temp_path: Path) -> None:
    try:
        temp_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("atomic_temp_cleanup_failed", path=str(temp_path), error=str(e))


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Atomically replace ``path`` with ``content``."""
    with atomic_write(path, encoding=encoding) as f:
        f.write(content)


def atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """
    Atomically replace ``path`` with ``data`` serialized as JSON.

    The document is serialized before the temporary file is created, so
    unserializable data never touches the disk. Datetimes and paths fall
    back to ``str``.

    Raises:
        AtomicWriteError: If serialization, writing or renaming fails
    """
    try:
        content = json.dumps(data, indent=indent, default=str)
    except (TypeError, ValueError) as e:
        logger.error("atomic_serialize_failed", path=str(path), error=str(e))
        raise AtomicWriteError(f"Cannot serialize document for {path}: {e}") from e

    atomic_write_text(path, content + "\n")
