"""Classification of why each vendored project has to be rewritten."""

from __future__ import annotations

import string
from enum import IntEnum
from typing import TYPE_CHECKING

from .models import LOCK_NAME, PruneOptions
from .verify import ANY_EXCEPT_HASH, LockDelta, LockedProjectDelta, VendorStatus, diff_locks

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .models import Lock


class ChangeReason(IntEnum):
    """Why a project is scheduled for rewrite, in increasing order of authority.

    Opting a project out of verification suppresses only the reasons ranked below :attr:`NO_VERIFY`.
    """

    HASH_MISMATCH = 1
    HASH_VERSION_MISMATCH = 2
    HASH_ABSENT = 3
    NO_VERIFY = 4
    SOLVE_CHANGED = 5
    PRUNE_OPTS_CHANGED = 6
    MISSING_FROM_TREE = 7
    PROJECT_ADDED = 8
    PROJECT_REMOVED = 9


_STATUS_REASONS: dict[VendorStatus, ChangeReason] = {
    VendorStatus.NOT_IN_TREE: ChangeReason.MISSING_FROM_TREE,
    VendorStatus.NOT_IN_LOCK: ChangeReason.PROJECT_REMOVED,
    VendorStatus.DIGEST_MISMATCH_IN_LOCK: ChangeReason.HASH_MISMATCH,
    VendorStatus.HASH_VERSION_MISMATCH: ChangeReason.HASH_VERSION_MISMATCH,
    VendorStatus.EMPTY_DIGEST_IN_LOCK: ChangeReason.HASH_ABSENT,
}


def classify_changes(
    old_lock: Lock | None,
    new_lock: Lock,
    status: Mapping[str, VendorStatus],
    no_verify: Iterable[str] = (),
    lock_diff: LockDelta | None = None,
) -> dict[str, ChangeReason]:
    """Work out which projects have to be written, and why.

    Structural changes between the locks take precedence over what verification found on disk; opting out of
    verification is applied last and only ever removes a reason.

    Args:
        old_lock: The lock currently on disk, if any
        new_lock: The freshly resolved lock
        status: Per-root verification status of the current vendor tree
        no_verify: Roots the user has opted out of verification
        lock_diff: A precomputed ``diff_locks(old_lock, new_lock)``

    Returns:
        A mapping from project root to its single change reason; unchanged projects are absent

    """
    if lock_diff is None:
        lock_diff = diff_locks(old_lock, new_lock)
    changed: dict[str, ChangeReason] = {}

    for root, lpd in lock_diff.project_deltas.items():
        # Digests may be missing from a freshly solved lock, so hash differences alone mean nothing here.
        if not lpd.changed(ANY_EXCEPT_HASH):
            continue
        if lpd.was_added():
            changed[root] = ChangeReason.PROJECT_ADDED
        elif lpd.was_removed():
            changed[root] = ChangeReason.PROJECT_REMOVED
        elif lpd.prune_opts_changed():
            changed[root] = ChangeReason.PRUNE_OPTS_CHANGED
        else:
            changed[root] = ChangeReason.SOLVE_CHANGED

    for root, stat in status.items():
        if root not in changed and stat in _STATUS_REASONS:
            changed[root] = _STATUS_REASONS[stat]

    for root in no_verify:
        # Only roots known to either lock are eligible; orphans found on disk are still cleaned up.
        if root in lock_diff.project_deltas and root in changed and changed[root] < ChangeReason.NO_VERIFY:
            del changed[root]

    return changed


def trim_sha(revision: str) -> str:
    """Shorten a full 40-character hex SHA1 revision to 10 characters; leave anything else alone."""
    if len(revision) == 40 and all(c in string.hexdigits for c in revision):  # noqa: PLR2004
        return revision[:10]
    return revision


def _solve_change_explanation(lpd: LockedProjectDelta) -> str:
    if lpd.source_changed():
        return f"source changed ({lpd.source_before} -> {lpd.source_after})"
    if lpd.version_changed():
        if lpd.version_before is None:
            return "version changed (was a bare revision)"
        return f"version changed (was {lpd.version_before})"
    if lpd.revision_changed():
        return f"revision changed ({trim_sha(lpd.revision_before)} -> {trim_sha(lpd.revision_after)})"
    if lpd.packages_changed():
        added, removed = len(lpd.packages_added), len(lpd.packages_removed)
        if added and removed:
            return f"packages changed ({added} added, {removed} removed)"
        if added:
            return f"packages changed ({added} added)"
        return f"packages changed ({removed} removed)"
    return "resolution changed"


def change_explanation(reason: ChangeReason, lpd: LockedProjectDelta | None) -> str:
    """Explain in one line why a project is being written.

    Raises:
        AssertionError: If ``reason`` is not a :class:`ChangeReason`

    """
    if lpd is None:
        lpd = LockedProjectDelta(root="")
    if reason == ChangeReason.HASH_MISMATCH:
        return f"hash of vendored tree didn't match digest in {LOCK_NAME}"
    if reason == ChangeReason.HASH_VERSION_MISMATCH:
        return "hashing algorithm mismatch"
    if reason == ChangeReason.HASH_ABSENT:
        return "hash digest absent from lock"
    if reason == ChangeReason.NO_VERIFY:
        return "verification is disabled"
    if reason == ChangeReason.SOLVE_CHANGED:
        return _solve_change_explanation(lpd)
    if reason == ChangeReason.PRUNE_OPTS_CHANGED:
        # Nested vendor dirs are always pruned, so that flag says nothing to the user.
        before = (lpd.prune_opts_before & ~PruneOptions.NESTED_VENDOR_DIRS).to_string()
        after = (lpd.prune_opts_after & ~PruneOptions.NESTED_VENDOR_DIRS).to_string()
        return f"prune options changed ({before or '-'} -> {after or '-'})"
    if reason == ChangeReason.MISSING_FROM_TREE:
        return "missing from vendor"
    if reason == ChangeReason.PROJECT_ADDED:
        return "new project"
    if reason == ChangeReason.PROJECT_REMOVED:
        return "project removed"
    msg = f"Unrecognized change reason {reason!r}"
    raise AssertionError(msg)
