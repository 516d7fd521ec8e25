"""Verification of vendored trees against the digests recorded in a lock, and structural lock diffs."""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from enum import Enum, IntFlag
from pathlib import Path
from typing import TYPE_CHECKING

from .models import PruneOptions, VersionedDigest

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .models import Lock, LockedProject

logger = logging.getLogger(__name__)

HASH_VERSION = 1
"""Version of the directory hashing algorithm implemented by :func:`digest_from_directory`."""

VCS_DIRS = frozenset({".git", ".bzr", ".hg", ".svn"})

_CHUNK_SIZE = 1 << 16


class VendorStatus(Enum):
    """On-disk state of one vendored project relative to the lock."""

    NO_MISMATCH = "no mismatch"
    NOT_IN_TREE = "not in tree"
    NOT_IN_LOCK = "not in lock"
    DIGEST_MISMATCH_IN_LOCK = "digest mismatch in lock"
    HASH_VERSION_MISMATCH = "hash version mismatch"
    EMPTY_DIGEST_IN_LOCK = "empty digest in lock"


def _hash_file(path: Path, hasher: hashlib._Hash) -> None:
    # Line endings are normalized so a checkout with autocrlf hashes the same.
    pending_cr = False
    with path.open("rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            if pending_cr:
                chunk = b"\r" + chunk
                pending_cr = False
            if chunk.endswith(b"\r"):
                chunk = chunk[:-1]
                pending_cr = True
            hasher.update(chunk.replace(b"\r\n", b"\n"))
    if pending_cr:
        hasher.update(b"\r")


def digest_from_directory(path: str | Path) -> VersionedDigest:
    """Compute a deterministic content digest for the tree rooted at ``path``.

    Entries are visited in sorted order. Each contributes its slash-separated relative path, its kind, and
    either its symlink target or its (line-ending normalized) content. VCS metadata directories are skipped.

    Args:
        path: Root of the tree to hash

    Returns:
        The digest, tagged with :data:`HASH_VERSION`

    Raises:
        OSError: If the tree cannot be read

    """
    root = Path(path)
    if not root.is_dir():
        msg = f"{root} is not a directory"
        raise NotADirectoryError(msg)
    hasher = hashlib.sha256()
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        names = sorted(name for name in dirnames + filenames if name not in VCS_DIRS)
        # os.walk lists symlinked directories with dirnames but never descends into them
        dirnames[:] = [name for name in names if name in dirnames and not (current / name).is_symlink()]
        for name in names:
            child = current / name
            rel = child.relative_to(root).as_posix()
            if child.is_symlink():
                hasher.update(f"{rel}\0link\0{os.readlink(child)}\0".encode())
            elif child.is_dir():
                hasher.update(f"{rel}\0dir\0".encode())
            else:
                hasher.update(f"{rel}\0file\0".encode())
                _hash_file(child, hasher)
                hasher.update(b"\0")
    return VersionedDigest(hash_version=HASH_VERSION, digest=hasher.hexdigest())


def check_vendor(vendor_dir: str | Path, wanted: Mapping[str, VersionedDigest | None]) -> dict[str, VendorStatus]:
    """Compare a vendor directory against the digests a lock expects.

    Every root in ``wanted`` gets a status. Entries on disk that are neither a locked root nor an ancestor
    directory of one are reported as :attr:`VendorStatus.NOT_IN_LOCK`, keyed by their slash-separated path.
    A missing vendor directory yields ``NOT_IN_TREE`` for every wanted root.
    """
    vendor = Path(vendor_dir)
    status: dict[str, VendorStatus] = {}
    for root, digest in wanted.items():
        project_dir = vendor / root
        if not project_dir.is_dir():
            status[root] = VendorStatus.NOT_IN_TREE
        elif digest is None or not digest.digest:
            status[root] = VendorStatus.EMPTY_DIGEST_IN_LOCK
        elif digest.hash_version != HASH_VERSION:
            status[root] = VendorStatus.HASH_VERSION_MISMATCH
        elif digest_from_directory(project_dir) != digest:
            status[root] = VendorStatus.DIGEST_MISMATCH_IN_LOCK
        else:
            status[root] = VendorStatus.NO_MISMATCH

    if not vendor.is_dir():
        return status

    ancestors = {"/".join(root.split("/")[:i]) for root in wanted for i in range(1, root.count("/") + 1)}
    stack: list[Path] = [vendor]
    while stack:
        current = stack.pop()
        for child in sorted(current.iterdir()):
            rel = child.relative_to(vendor).as_posix()
            if current == vendor and child.name in VCS_DIRS:
                continue
            if rel in wanted:
                continue
            if rel in ancestors and child.is_dir() and not child.is_symlink():
                stack.append(child)
            else:
                logger.debug("%s is in the vendor tree but not in the lock", rel)
                status[rel] = VendorStatus.NOT_IN_LOCK
    return status


class DeltaDimension(IntFlag):
    """The properties along which two locks, or two locked projects, can differ."""

    SOURCE_CHANGED = 1 << 0
    VERSION_CHANGED = 1 << 1
    REVISION_CHANGED = 1 << 2
    PACKAGES_CHANGED = 1 << 3
    PRUNE_OPTS_CHANGED = 1 << 4
    HASH_VERSION_CHANGED = 1 << 5
    HASH_CHANGED = 1 << 6
    INPUT_IMPORTS_CHANGED = 1 << 7
    PROJECT_ADDED = 1 << 8
    PROJECT_REMOVED = 1 << 9
    ANY_CHANGED = (1 << 10) - 1


ANY_EXCEPT_HASH = DeltaDimension.ANY_CHANGED & ~DeltaDimension.HASH_VERSION_CHANGED & ~DeltaDimension.HASH_CHANGED


@dataclass
class LockedProjectDelta:
    """The differences between two versions of the same locked project.

    For an added project only the ``*_after`` fields are meaningful; for a removed one only ``*_before``.
    """

    root: str
    project_added: bool = False
    project_removed: bool = False
    source_before: str = ""
    source_after: str = ""
    version_before: str | None = None
    version_after: str | None = None
    revision_before: str = ""
    revision_after: str = ""
    packages_added: list[str] = field(default_factory=list)
    packages_removed: list[str] = field(default_factory=list)
    prune_opts_before: PruneOptions = PruneOptions.NONE
    prune_opts_after: PruneOptions = PruneOptions.NONE
    hash_version_before: int = 0
    hash_version_after: int = 0
    hash_changed: bool = False

    def was_added(self) -> bool:
        """True if the project only exists in the new lock."""
        return self.project_added

    def was_removed(self) -> bool:
        """True if the project only exists in the old lock."""
        return self.project_removed

    def source_changed(self) -> bool:
        return self.source_before != self.source_after

    def version_changed(self) -> bool:
        return self.version_before != self.version_after

    def revision_changed(self) -> bool:
        return self.revision_before != self.revision_after

    def packages_changed(self) -> bool:
        return bool(self.packages_added or self.packages_removed)

    def prune_opts_changed(self) -> bool:
        return self.prune_opts_before != self.prune_opts_after

    def hash_version_changed(self) -> bool:
        return self.hash_version_before != self.hash_version_after

    def dimensions(self) -> DeltaDimension:
        """Return the set of dimensions along which the project changed."""
        dims = DeltaDimension(0)
        if self.project_added:
            dims |= DeltaDimension.PROJECT_ADDED
        if self.project_removed:
            dims |= DeltaDimension.PROJECT_REMOVED
        if self.source_changed():
            dims |= DeltaDimension.SOURCE_CHANGED
        if self.version_changed():
            dims |= DeltaDimension.VERSION_CHANGED
        if self.revision_changed():
            dims |= DeltaDimension.REVISION_CHANGED
        if self.packages_changed():
            dims |= DeltaDimension.PACKAGES_CHANGED
        if self.prune_opts_changed():
            dims |= DeltaDimension.PRUNE_OPTS_CHANGED
        if self.hash_version_changed():
            dims |= DeltaDimension.HASH_VERSION_CHANGED
        if self.hash_changed:
            dims |= DeltaDimension.HASH_CHANGED
        return dims

    def changed(self, dims: DeltaDimension) -> bool:
        """True if the project changed along any of ``dims``."""
        return bool(self.dimensions() & dims)


@dataclass
class LockDelta:
    """A structural diff between two locks.

    ``project_deltas`` has one entry for every root present in either lock, including unchanged ones.
    """

    added_imports: list[str] = field(default_factory=list)
    removed_imports: list[str] = field(default_factory=list)
    project_deltas: dict[str, LockedProjectDelta] = field(default_factory=dict)

    def changed(self, dims: DeltaDimension) -> bool:
        """True if anything in the lock changed along any of ``dims``."""
        if dims & DeltaDimension.INPUT_IMPORTS_CHANGED and (self.added_imports or self.removed_imports):
            return True
        return any(lpd.changed(dims) for lpd in self.project_deltas.values())


def _digest_fields(digest: VersionedDigest | None) -> tuple[int, str]:
    if digest is None:
        return 0, ""
    return digest.hash_version, digest.digest


def diff_projects(before: LockedProject | None, after: LockedProject | None) -> LockedProjectDelta:
    """Diff two versions of one locked project; either side may be absent, but not both."""
    if before is None and after is None:
        msg = "Cannot diff two absent projects"
        raise ValueError(msg)
    root = after.root if after is not None else before.root  # type: ignore[union-attr]
    delta = LockedProjectDelta(root=root, project_added=before is None, project_removed=after is None)
    if before is not None:
        delta.source_before = before.source
        delta.version_before = before.version
        delta.revision_before = before.revision
        delta.prune_opts_before = before.prune_opts
        delta.hash_version_before = _digest_fields(before.digest)[0]
    if after is not None:
        delta.source_after = after.source
        delta.version_after = after.version
        delta.revision_after = after.revision
        delta.prune_opts_after = after.prune_opts
        delta.hash_version_after = _digest_fields(after.digest)[0]
    if before is not None and after is not None:
        delta.packages_added = sorted(set(after.packages) - set(before.packages))
        delta.packages_removed = sorted(set(before.packages) - set(after.packages))
        delta.hash_changed = _digest_fields(before.digest)[1] != _digest_fields(after.digest)[1]
    return delta


def diff_locks(old: Lock | None, new: Lock | None) -> LockDelta:
    """Compute the structural diff between two locks. A missing lock is treated as empty."""
    old_projects = {lp.root: lp for lp in old} if old is not None else {}
    new_projects = {lp.root: lp for lp in new} if new is not None else {}
    old_imports = set(old.input_imports) if old is not None else set()
    new_imports = set(new.input_imports) if new is not None else set()

    delta = LockDelta(
        added_imports=sorted(new_imports - old_imports),
        removed_imports=sorted(old_imports - new_imports),
    )
    for root in sorted(old_projects.keys() | new_projects.keys()):
        delta.project_deltas[root] = diff_projects(old_projects.get(root), new_projects.get(root))
    return delta
