"""Transactional writers that bring manifest, lock and vendor tree in line with a new resolution."""

from __future__ import annotations

import io
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from tomlkit.exceptions import TOMLKitError

from .changes import ChangeReason, change_explanation, classify_changes
from .fs import has_dot_git, rename_with_fallback
from .models import LOCK_NAME, MANIFEST_NAME, VENDOR_DIR, CascadingPruneOptions
from .planner import VendorBehavior, WritePlanError, plan_write
from .source import ExportError, write_dep_tree
from .toml import lock_to_toml, manifest_to_toml
from .verify import ANY_EXCEPT_HASH, diff_locks, digest_from_directory

if TYPE_CHECKING:
    import threading
    from collections.abc import Mapping

    from .models import Lock, Manifest
    from .project import Project
    from .source import SourceProvider, WriteProgress
    from .verify import LockDelta, VendorStatus

logger = logging.getLogger(__name__)

SCRATCH_VENDOR_DIR = ".vendor-new"

EXAMPLE_MANIFEST = f"""# {MANIFEST_NAME} example
#
# required = ["github.com/user/thing/cmd/thing"]
# ignored = ["github.com/user/project/pkgX", "bitbucket.org/user/project/pkgA/pkgY"]
#
# [[constraint]]
#   name = "github.com/user/project"
#   version = "1.0.0"
#
# [[constraint]]
#   name = "github.com/user/project2"
#   branch = "dev"
#   source = "github.com/myfork/project2"
#
# [[override]]
#   name = "github.com/x/y"
#   version = "2.4.0"
#
# [prune]
#   non-go = false
#   go-tests = true
#   unused-packages = true

"""

LOCK_FILE_HEADER = "# This file is autogenerated, do not edit; changes may be undone by the next 'depvendor' run.\n\n"


class WriteError(RuntimeError):
    """Raised when writing manifest, lock or vendor tree fails part way through."""


class TreeWriter(ABC):
    """Something that can report on, and then perform, a write of a project's dependency state."""

    @abstractmethod
    def print_prepared_actions(self, output: TextIO | None = None, *, verbose: bool = False) -> None:
        """Describe what :meth:`write` would do, without touching the filesystem."""
        raise NotImplementedError

    @abstractmethod
    def write(
        self,
        root: str | Path,
        provider: SourceProvider | None,
        examples: bool = False,  # noqa: FBT001, FBT002
        logger: logging.Logger | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Write the prepared changes beneath ``root``.

        Raises:
            WritePlanError: If the inputs are invalid; nothing has been changed
            WriteError: If a filesystem operation or export fails

        """
        raise NotImplementedError


def _progress(log: logging.Logger | None, msg: str, *args: object) -> None:
    if log is not None:
        log.info(msg, *args)
    else:
        logger.debug(msg, *args)


def _carry_over_digests(old_lock: Lock | None, new_lock: Lock, skip: Mapping[str, object] | None = None) -> None:
    """Copy digests from ``old_lock`` onto projects of ``new_lock`` that are otherwise identical."""
    if old_lock is None:
        return
    deltas = diff_locks(old_lock, new_lock).project_deltas
    for lp in list(new_lock):
        if skip is not None and lp.root in skip:
            continue
        old = old_lock.project(lp.root)
        if old is None or old.digest is None or old.digest == lp.digest:
            continue
        if not deltas[lp.root].changed(ANY_EXCEPT_HASH):
            new_lock.replace_project(lp.with_digest(old.digest))


class _CommitStep(ABC):
    name: str

    @abstractmethod
    def apply(self) -> None: ...

    @abstractmethod
    def undo(self) -> None: ...

    @property
    @abstractmethod
    def pending(self) -> bool:
        """Whether an original is still displaced and waiting to be either restored or discarded."""


class _Relocate(_CommitStep):
    """Move ``src`` to ``dst``; undo moves it back."""

    def __init__(self, name: str, src: Path, dst: Path) -> None:
        self.name = name
        self.src = src
        self.dst = dst
        self.moved = False

    def apply(self) -> None:
        rename_with_fallback(self.src, self.dst)
        self.moved = True

    def undo(self) -> None:
        if self.moved and os.path.lexists(self.dst):
            rename_with_fallback(self.dst, self.src)
        self.moved = False

    @property
    def pending(self) -> bool:
        return self.moved


class _Swap(_CommitStep):
    """Displace ``target`` into ``backup`` if it exists, then move ``staged`` into ``target``."""

    def __init__(self, name: str, staged: Path, target: Path, backup: Path) -> None:
        self.name = name
        self.staged = staged
        self.target = target
        self.backup = backup
        self.displaced = False
        self.installed = False

    def apply(self) -> None:
        if os.path.lexists(self.target):
            rename_with_fallback(self.target, self.backup)
            self.displaced = True
        rename_with_fallback(self.staged, self.target)
        self.installed = True

    def undo(self) -> None:
        # The installed tree may hold vendor/.git from an earlier step, so it goes back to staging.
        if self.installed and os.path.lexists(self.target):
            rename_with_fallback(self.target, self.staged)
        self.installed = False
        if self.displaced:
            rename_with_fallback(self.backup, self.target)
            self.displaced = False

    @property
    def pending(self) -> bool:
        return self.displaced


class SafeWriter(TreeWriter):
    """Writes manifest, lock and vendor tree as one unit, rolling back on failure.

    Everything is first written to a temporary staging directory. Only once staging has succeeded are the
    originals moved aside and the new artifacts moved into place; if any of those moves fails or is interrupted,
    the ones already done are reverted in reverse order.
    """

    def __init__(
        self,
        manifest: Manifest | None,
        old_lock: Lock | None,
        new_lock: Lock | None,
        vendor: VendorBehavior,
        prune: CascadingPruneOptions | None = None,
        status: Mapping[str, VendorStatus] | None = None,
        *,
        max_workers: int | None = None,
    ) -> None:
        """Plan a write.

        Args:
            manifest: The manifest to write, or None to leave it alone
            old_lock: The lock currently on disk, if any
            new_lock: The freshly resolved lock, if any; owned by the writer from here on
            vendor: When to write the vendor tree
            prune: Prune options used when exporting projects
            status: Verification status of the current vendor tree
            max_workers: Maximum number of concurrent exports

        Raises:
            WritePlanError: If the combination of inputs cannot be written

        """
        plan = plan_write(old_lock, new_lock, vendor, status)
        self.manifest = manifest
        self.lock = new_lock
        self.lock_diff: LockDelta | None = plan.lock_diff
        self.write_lock = plan.write_lock
        self.write_vendor = plan.write_vendor
        self.prune_options = prune if prune is not None else CascadingPruneOptions()
        self.max_workers = max_workers
        if new_lock is not None and not self.write_vendor:
            _carry_over_digests(old_lock, new_lock)

    def has_lock(self) -> bool:
        return self.lock is not None

    def has_manifest(self) -> bool:
        return self.manifest is not None

    def _manifest_text(self, examples: bool) -> str:  # noqa: FBT001
        assert self.manifest is not None  # noqa: S101
        try:
            text = manifest_to_toml(self.manifest)
        except (TOMLKitError, ValueError) as e:
            msg = f"Failed to serialize {MANIFEST_NAME}"
            raise WriteError(msg) from e
        if examples and EXAMPLE_MANIFEST not in text:
            text = EXAMPLE_MANIFEST + text
        return text

    def _lock_text(self) -> str:
        assert self.lock is not None  # noqa: S101
        try:
            return lock_to_toml(self.lock)
        except (TOMLKitError, ValueError) as e:
            msg = f"Failed to serialize {LOCK_NAME}"
            raise WriteError(msg) from e

    def _validate(self, root: str | Path, provider: SourceProvider | None) -> Path:
        if not str(root):
            msg = "Root path must be non-empty"
            raise WritePlanError(msg)
        path = Path(root)
        if not path.is_dir():
            msg = f"Root path {root} does not exist"
            raise WritePlanError(msg)
        if self.write_vendor and provider is None:
            msg = "A source provider is required to write the vendor directory"
            raise WritePlanError(msg)
        return path

    def write(
        self,
        root: str | Path,
        provider: SourceProvider | None,
        examples: bool = False,  # noqa: FBT001, FBT002
        logger: logging.Logger | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Write the manifest, lock and vendor tree beneath ``root`` as planned."""
        root_path = self._validate(root, provider)
        if not self.has_manifest() and not self.write_lock and not self.write_vendor:
            return

        staging = Path(tempfile.mkdtemp(prefix="depvendor"))
        steps: list[_CommitStep] = []
        committed = False
        try:
            steps = self._stage(root_path, staging, provider, examples, logger, cancel)
            self._commit(steps, staging)
            committed = True
            for step in steps:
                if isinstance(step, _Swap) and step.name == VENDOR_DIR and step.displaced:
                    shutil.rmtree(step.backup, ignore_errors=True)
        finally:
            # Staging may still hold originals that could not be put back.
            if committed or not any(step.pending for step in steps):
                shutil.rmtree(staging, ignore_errors=True)

    def _stage(
        self,
        root: Path,
        staging: Path,
        provider: SourceProvider | None,
        examples: bool,  # noqa: FBT001
        log: logging.Logger | None,
        cancel: threading.Event | None,
    ) -> list[_CommitStep]:
        steps: list[_CommitStep] = []
        manifest_steps: list[_CommitStep] = []
        try:
            if self.has_manifest():
                (staging / MANIFEST_NAME).write_text(self._manifest_text(examples), encoding="utf-8")
                manifest_steps.append(
                    _Swap(MANIFEST_NAME, staging / MANIFEST_NAME, root / MANIFEST_NAME, staging / f"{MANIFEST_NAME}.orig")
                )
        except OSError as e:
            msg = f"Failed to write {MANIFEST_NAME} to the staging directory"
            raise WriteError(msg) from e

        vendor_path = root / VENDOR_DIR
        staged_vendor = staging / VENDOR_DIR
        if self.write_vendor:
            assert self.lock is not None and provider is not None  # noqa: S101

            def on_write(progress: WriteProgress) -> None:
                _progress(log, "%s", progress)

            try:
                write_dep_tree(
                    staged_vendor,
                    self.lock,
                    provider,
                    self.prune_options,
                    on_write,
                    cancel=cancel,
                    max_workers=self.max_workers,
                )
            except ExportError as e:
                msg = "Error while writing out vendor tree"
                raise WriteError(msg) from e
            for lp in list(self.lock):
                try:
                    digest = digest_from_directory(staged_vendor / lp.root)
                except OSError as e:
                    msg = f"Failed to compute digest of {lp.root}"
                    raise WriteError(msg) from e
                self.lock.replace_project(lp.with_digest(digest))

        if self.write_lock:
            try:
                (staging / LOCK_NAME).write_text(LOCK_FILE_HEADER + self._lock_text(), encoding="utf-8")
            except OSError as e:
                msg = f"Failed to write {LOCK_NAME} to the staging directory"
                raise WriteError(msg) from e

        if self.write_vendor and has_dot_git(vendor_path):
            steps.append(_Relocate(f"{VENDOR_DIR}/.git", vendor_path / ".git", staged_vendor / ".git"))
        steps.extend(manifest_steps)
        if self.write_lock:
            steps.append(_Swap(LOCK_NAME, staging / LOCK_NAME, root / LOCK_NAME, staging / f"{LOCK_NAME}.orig"))
        if self.write_vendor:
            backup = root / f"{VENDOR_DIR}.orig"
            if os.path.lexists(backup):
                backup = staging / f".{VENDOR_DIR}.orig"
            steps.append(_Swap(VENDOR_DIR, staged_vendor, vendor_path, backup))
        return steps

    def _commit(self, steps: list[_CommitStep], staging: Path) -> None:
        done: list[_CommitStep] = []
        try:
            for step in steps:
                done.append(step)
                step.apply()
        except BaseException as e:
            for step in reversed(done):
                try:
                    step.undo()
                except OSError:
                    logger.warning("Failed to roll back %s", step.name, exc_info=True)
            stranded = [step.name for step in done if step.pending]
            if stranded:
                logger.error("Could not restore %s; the originals were left in %s", ", ".join(stranded), staging)
            if not isinstance(e, OSError):
                raise
            msg = f"Failed to move {done[-1].name} into place"
            raise WriteError(msg) from e

    def print_prepared_actions(self, output: TextIO | None = None, *, verbose: bool = False) -> None:
        """Print what :meth:`write` would do to ``output``."""
        if output is None:
            output = io.StringIO()
        if self.has_manifest():
            if verbose:
                print(f"Would have written the following {MANIFEST_NAME}:", file=output)
                print(self._manifest_text(examples=False), file=output)
            else:
                print(f"Would have written {MANIFEST_NAME}.", file=output)

        if self.write_lock:
            if verbose:
                print(f"Would have written the following {LOCK_NAME}:", file=output)
                print(self._lock_text(), file=output)
            else:
                print(f"Would have written {LOCK_NAME}.", file=output)

        if self.write_vendor:
            assert self.lock is not None  # noqa: S101
            total = len(self.lock)
            if verbose:
                print(f"Would have written the following {total} projects to the vendor directory:", file=output)
                for i, lp in enumerate(self.lock, start=1):
                    print(f"({i}/{total}) {lp}", file=output)
            else:
                print(f"Would have written {total} projects to the vendor directory.", file=output)


class DeltaWriter(TreeWriter):
    """Rewrites only the vendored projects that changed, moving the rest over untouched."""

    def __init__(
        self,
        project: Project,
        new_lock: Lock,
        behavior: VendorBehavior,
        status: Mapping[str, VendorStatus],
    ) -> None:
        """Classify the changes between the project's state and ``new_lock``.

        Args:
            project: The project being written; its vendor directory exists
            new_lock: The freshly resolved lock; owned by the writer from here on
            behavior: When to write the vendor tree
            status: Verification status of the current vendor tree

        """
        self.lock = new_lock
        self.vendor_dir = project.vendor_dir
        self.behavior = behavior
        self.lock_diff = diff_locks(project.lock, new_lock)
        no_verify = project.manifest.no_verify if project.manifest is not None else ()
        self.changed: dict[str, ChangeReason] = classify_changes(
            project.lock, new_lock, status, no_verify, self.lock_diff
        )
        _carry_over_digests(project.lock, new_lock, skip=self.changed)

    def _lock_text(self) -> str:
        try:
            return lock_to_toml(self.lock)
        except (TOMLKitError, ValueError) as e:
            msg = f"Failed to serialize {LOCK_NAME}"
            raise WriteError(msg) from e

    def _needs_export(self) -> bool:
        return any(reason is not ChangeReason.PROJECT_REMOVED for reason in self.changed.values())

    def write(
        self,
        root: str | Path,
        provider: SourceProvider | None,
        examples: bool = False,  # noqa: FBT001, FBT002, ARG002
        logger: logging.Logger | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Write the changed projects and the new lock beneath ``root``.

        No rollback is attempted; a failure leaves the scratch directory behind, which makes the next run
        refuse to start until it is removed.
        """
        root_path = Path(root).absolute()
        if root_path != self.vendor_dir.parent:
            msg = f"Target path ({root}) must be the parent of the original vendor path ({self.vendor_dir})"
            raise WritePlanError(msg)
        if provider is None and self._needs_export():
            msg = "A source provider is required to write the vendor directory"
            raise WritePlanError(msg)
        scratch = root_path / SCRATCH_VENDOR_DIR
        if os.path.lexists(scratch):
            msg = f"Scratch directory {scratch} already exists, please remove it"
            raise WritePlanError(msg)
        try:
            scratch.mkdir(parents=True)
        except OSError as e:
            msg = f"Failed to create scratch directory {scratch}"
            raise WriteError(msg) from e

        dropped = self._export_changed(scratch, provider, logger, cancel)
        lock_text = LOCK_FILE_HEADER + self._lock_text()

        if self.behavior is VendorBehavior.NEVER:
            try:
                shutil.rmtree(scratch)
            except OSError as e:
                msg = f"Failed to remove scratch directory {scratch}"
                raise WriteError(msg) from e
            self._write_lock(root_path / LOCK_NAME, lock_text)
            return

        self._swap_vendor(scratch, dropped, logger)
        self._write_lock(root_path / LOCK_NAME, lock_text)

    def _export_changed(
        self,
        scratch: Path,
        provider: SourceProvider | None,
        log: logging.Logger | None,
        cancel: threading.Event | None,
    ) -> list[str]:
        dropped: list[str] = []
        total = len(self.changed)
        if total and self.behavior is not VendorBehavior.NEVER:
            _progress(log, "# Bringing vendor into sync")
        written = 0
        for root in sorted(self.changed):
            reason = self.changed[root]
            if reason is ChangeReason.PROJECT_REMOVED:
                dropped.append(root)
                continue
            lp = self.lock.project(root)
            if lp is None:
                logger.error(
                    "Internal error: %s had change reason %r but is not in the new %s; re-running should fix this",
                    root,
                    reason,
                    LOCK_NAME,
                )
                continue
            assert provider is not None  # noqa: S101
            target = scratch / root
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                provider.export_project(lp, lp.prune_opts, target, cancel)
            except (ExportError, OSError) as e:
                msg = f"Failed to export {root}"
                raise WriteError(msg) from e
            written += 1
            if self.behavior is not VendorBehavior.NEVER:
                explanation = change_explanation(reason, self.lock_diff.project_deltas.get(root))
                _progress(log, "(%d/%d) Wrote %s: %s", written, total, lp, explanation)
            try:
                digest = digest_from_directory(target)
            except OSError as e:
                msg = f"Failed to compute digest of {root}"
                raise WriteError(msg) from e
            self.lock.replace_project(lp.with_digest(digest))
        return dropped

    def _swap_vendor(self, scratch: Path, dropped: list[str], log: logging.Logger | None) -> None:
        vendor = self.vendor_dir
        for lp in self.lock:
            if lp.root in self.changed:
                continue
            target = scratch / lp.root
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                rename_with_fallback(vendor / lp.root, target)
            except OSError as e:
                msg = f"Error moving unchanged project {lp.root} into scratch vendor dir"
                raise WriteError(msg) from e

        total = len(self.changed)
        for i, root in enumerate(dropped, start=1):
            path = vendor / root
            number = total - len(dropped) + i
            if path.is_dir():
                _progress(log, "(%d/%d) Removed unused project %s", number, total, root)
            elif os.path.lexists(path):
                _progress(log, "(%d/%d) Removed orphaned file %s", number, total, root)
            else:
                logger.debug("Dropped project %s was already absent from %s", root, vendor)

        if has_dot_git(vendor):
            try:
                rename_with_fallback(vendor / ".git", scratch / ".git")
            except OSError as e:
                msg = f"Failed to preserve {VENDOR_DIR}/.git"
                raise WriteError(msg) from e
        try:
            shutil.rmtree(vendor)
        except OSError as e:
            msg = f"Failed to remove original vendor directory {vendor}"
            raise WriteError(msg) from e
        try:
            rename_with_fallback(scratch, vendor)
        except OSError as e:
            msg = "Failed to put new vendor directory into place"
            raise WriteError(msg) from e

    @staticmethod
    def _write_lock(path: Path, text: str) -> None:
        tmp = path.with_name(f".{path.name}.new")
        try:
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            msg = f"Failed to write new {LOCK_NAME}"
            raise WriteError(msg) from e

    def print_prepared_actions(self, output: TextIO | None = None, *, verbose: bool = False) -> None:
        """Print what :meth:`write` would do to ``output``."""
        if output is None:
            output = io.StringIO()
        if verbose:
            print(f"Would have written the following {LOCK_NAME} (hash digests may be incorrect):", file=output)
            print(self._lock_text(), file=output)
        else:
            print(f"Would have written {LOCK_NAME}.", file=output)

        if self.behavior is VendorBehavior.NEVER or not self.changed:
            return
        print("Would have updated the following projects in the vendor directory:", file=output)
        total = len(self.changed)
        for i, root in enumerate(sorted(self.changed), start=1):
            reason = self.changed[root]
            if reason is ChangeReason.PROJECT_REMOVED:
                print(f"({i}/{total}) Would have removed {root}", file=output)
                continue
            lp = self.lock.project(root)
            if lp is None:
                continue
            explanation = change_explanation(reason, self.lock_diff.project_deltas.get(root))
            print(f"({i}/{total}) Would have written {lp}: {explanation}", file=output)


def new_delta_writer(
    project: Project,
    new_lock: Lock | None,
    behavior: VendorBehavior,
    *,
    max_workers: int | None = None,
) -> TreeWriter:
    """Build the writer that brings ``project`` in line with ``new_lock`` with as little rewriting as possible.

    If the project has no vendor directory yet there is nothing to keep, so a :class:`SafeWriter` is returned
    that leaves the manifest alone.

    Raises:
        WritePlanError: If ``new_lock`` is missing

    """
    if new_lock is None:
        msg = "Must provide a new lock"
        raise WritePlanError(msg)
    status = project.verify_vendor()
    if not os.path.lexists(project.vendor_dir):
        prune = project.manifest.prune if project.manifest is not None else None
        return SafeWriter(None, project.lock, new_lock, behavior, prune, status, max_workers=max_workers)
    return DeltaWriter(project, new_lock, behavior, status)
