"""File I/O helpers.

Compiled output must never be left half-written: a crash during a write has
to leave the previous file intact. atomic_write writes to a temporary file in
the destination directory and renames it over the target.
"""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write(path: Path, content: str) -> None:
    """Write content to path atomically.

    The temporary file lives in the same directory as the target so the
    final os.replace() stays on one filesystem.

    Args:
        path: Destination file.
        content: Text to write (UTF-8).

    Raises:
        OSError: If the write or rename fails. The temporary file is removed.

    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path_str: str | None = None

    try:
        fd, tmp_path_str = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}-",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                fd = None  # os.fdopen takes ownership
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        finally:
            if fd is not None:
                os.close(fd)

        os.replace(tmp_path_str, path)
        logger.debug("Atomic write completed: %s -> %s", tmp_path_str, path)
        tmp_path_str = None
    finally:
        if tmp_path_str is not None:
            try:
                os.unlink(tmp_path_str)
            except OSError:
                logger.warning("Failed to remove temp file: %s", tmp_path_str)
