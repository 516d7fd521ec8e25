"""Filesystem helpers for moving trees into place."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def rename_with_fallback(src: str | Path, dst: str | Path) -> None:
    """Rename ``src`` to ``dst``, copying instead when they live on different filesystems.

    An existing file at ``dst`` is replaced. An existing directory at ``dst`` must be empty, as with
    :func:`os.replace`.

    Raises:
        OSError: If neither the rename nor the copy succeeds

    """
    try:
        os.replace(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.debug("Cross-device rename of %s to %s, copying instead", src, dst)
        _copy_then_remove(Path(src), Path(dst))


def _copy_then_remove(src: Path, dst: Path) -> None:
    if src.is_dir() and not src.is_symlink():
        shutil.copytree(src, dst, symlinks=True)
        shutil.rmtree(src)
    else:
        if dst.is_dir() and not dst.is_symlink():
            msg = f"Cannot replace directory {dst} with file {src}"
            raise IsADirectoryError(msg)
        shutil.copy2(src, dst, follow_symlinks=False)
        src.unlink()


def has_dot_git(path: str | Path) -> bool:
    """Check if a given path has a .git file or directory in it."""
    return os.path.lexists(Path(path) / ".git")
