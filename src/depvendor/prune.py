"""Pruning of exported project trees."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from .models import PruneOptions

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = frozenset(
    {
        ".go",
        ".s",
        ".S",
        ".c",
        ".cc",
        ".cpp",
        ".cxx",
        ".h",
        ".hh",
        ".hpp",
        ".hxx",
        ".m",
        ".swig",
        ".swigcxx",
        ".syso",
    }
)

# Files whose names start with one of these (case-insensitively) are never pruned.
LEGAL_FILE_PREFIXES = (
    "licen",
    "copying",
    "copyright",
    "copyleft",
    "unlicense",
    "legal",
    "notice",
    "disclaimer",
    "patent",
    "third-party",
    "thirdparty",
)

NESTED_VENDOR_DIRS = ("vendor", os.path.join("Godeps", "_workspace"))


def is_legal_file(name: str) -> bool:
    """Check if a file name looks like a license or other legal notice."""
    lowered = name.lower()
    return lowered.startswith(LEGAL_FILE_PREFIXES)


def is_source_file(name: str) -> bool:
    """Check if a file is Go source or something the Go toolchain compiles alongside it."""
    return Path(name).suffix in SOURCE_SUFFIXES


def is_test_file(name: str) -> bool:
    return name.endswith("_test.go")


def _prune_nested_vendor_dirs(root: Path) -> None:
    for dirpath, dirnames, _ in os.walk(root):
        current = Path(dirpath)
        for nested in NESTED_VENDOR_DIRS:
            candidate = current / nested
            if candidate.is_dir() and not candidate.is_symlink():
                logger.debug("Pruning nested vendor directory %s", candidate)
                shutil.rmtree(candidate)
                head = Path(nested).parts[0]
                if head in dirnames and not (current / head).exists():
                    dirnames.remove(head)


def _relative_package(root: Path, directory: Path) -> str:
    rel = directory.relative_to(root).as_posix()
    return "." if rel in ("", ".") else rel


def _prune_files(root: Path, packages: frozenset[str], options: PruneOptions) -> None:
    for dirpath, _, filenames in os.walk(root):
        current = Path(dirpath)
        unused = bool(options & PruneOptions.UNUSED_PACKAGES) and _relative_package(root, current) not in packages
        for name in filenames:
            if is_legal_file(name):
                continue
            path = current / name
            if (
                unused
                or (options & PruneOptions.NON_GO and not is_source_file(name))
                or (options & PruneOptions.GO_TESTS and is_test_file(name))
            ):
                path.unlink()


def _remove_empty_dirs(root: Path) -> None:
    for dirpath, _, _ in sorted(os.walk(root), key=lambda entry: len(entry[0]), reverse=True):
        current = Path(dirpath)
        if current != root and not any(current.iterdir()):
            current.rmdir()


def prune_project(path: str | Path, packages: Iterable[str], options: PruneOptions) -> None:
    """Apply prune options to an exported project tree, in place.

    Args:
        path: Root of the exported project
        packages: Packages used from the project, relative to its root (``"."`` is the root package)
        options: Which kinds of content to drop

    """
    root = Path(path)
    if options & PruneOptions.NESTED_VENDOR_DIRS:
        _prune_nested_vendor_dirs(root)
    if options & (PruneOptions.UNUSED_PACKAGES | PruneOptions.NON_GO | PruneOptions.GO_TESTS):
        _prune_files(root, frozenset(packages), options)
        _remove_empty_dirs(root)
