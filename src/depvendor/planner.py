"""Deciding which of manifest, lock and vendor tree a run has to write."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .verify import ANY_EXCEPT_HASH, DeltaDimension, LockDelta, VendorStatus, diff_locks

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .models import Lock


class WritePlanError(ValueError):
    """Raised when a write is requested with inputs that cannot produce a consistent tree."""


class VendorBehavior(Enum):
    """When the vendor directory should be written."""

    ON_CHANGED = "on-changed"
    """Write it when the lock is new or changed, or a vendored project differs from its intended state."""
    ALWAYS = "always"
    """Always write it."""
    NEVER = "never"
    """Never write it."""


@dataclass(frozen=True)
class WritePlan:
    """The outcome of :func:`plan_write`."""

    lock_diff: LockDelta | None
    write_lock: bool
    write_vendor: bool


def plan_write(
    old_lock: Lock | None,
    new_lock: Lock | None,
    behavior: VendorBehavior,
    status: Mapping[str, VendorStatus] | None = None,
) -> WritePlan:
    """Decide whether the lock and the vendor tree need to be written.

    - If ``new_lock`` is given and there is no ``old_lock``, or the two differ in anything but their digests,
      the lock is written.
    - The vendor tree is written if ``behavior`` is :attr:`VendorBehavior.ALWAYS`, or it is
      :attr:`VendorBehavior.ON_CHANGED` and the lock is new, changed in anything but digests and input imports,
      or some vendored project does not match its digest.

    Raises:
        WritePlanError: If ``old_lock`` is given without ``new_lock``, or the vendor tree would be written
            without a ``new_lock`` to write it from

    """
    lock_diff: LockDelta | None = None
    write_lock = False
    if old_lock is not None:
        if new_lock is None:
            msg = "Must provide a new lock when an old lock is specified"
            raise WritePlanError(msg)
        lock_diff = diff_locks(old_lock, new_lock)
        write_lock = lock_diff.changed(ANY_EXCEPT_HASH)
    elif new_lock is not None:
        write_lock = True

    write_vendor = False
    if behavior is VendorBehavior.ALWAYS:
        write_vendor = True
    elif behavior is VendorBehavior.ON_CHANGED:
        if new_lock is not None and old_lock is None:
            write_vendor = True
        elif lock_diff is not None and lock_diff.changed(ANY_EXCEPT_HASH & ~DeltaDimension.INPUT_IMPORTS_CHANGED):
            write_vendor = True
        else:
            write_vendor = any(stat is not VendorStatus.NO_MISMATCH for stat in (status or {}).values())

    if write_vendor and new_lock is None:
        msg = "Must provide a new lock in order to write out the vendor directory"
        raise WritePlanError(msg)

    return WritePlan(lock_diff=lock_diff, write_lock=write_lock, write_vendor=write_vendor)
