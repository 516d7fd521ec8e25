"""Source providers: export locked projects into a vendor tree."""

from __future__ import annotations

import io
import logging
import re
import shutil
import subprocess
import tarfile
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tqdm import tqdm

from .depvendor import APP_DIRS
from .prune import prune_project
from .vcs import VCSResolutionError, repo_url
from .verify import VCS_DIRS

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import CascadingPruneOptions, Lock, LockedProject, PruneOptions

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path(APP_DIRS.user_cache_dir) / "sources"


class ExportError(RuntimeError):
    """Raised when a project cannot be exported."""


class ExportCancelledError(ExportError):
    """Raised when an export is abandoned because its cancel token was set."""


def check_cancelled(cancel: threading.Event | None, project: LockedProject) -> None:
    """Raise :class:`ExportCancelledError` if ``cancel`` has been set."""
    if cancel is not None and cancel.is_set():
        msg = f"Export of {project.root} was cancelled"
        raise ExportCancelledError(msg)


@dataclass(frozen=True)
class WriteProgress:
    """Progress report for one project written by :func:`write_dep_tree`."""

    count: int
    total: int
    project: LockedProject

    def __str__(self) -> str:
        return f"({self.count}/{self.total}) Wrote {self.project}"


class SourceProvider(ABC):
    """Something that can materialize the pinned source tree of a locked project."""

    @abstractmethod
    def export_project(
        self,
        project: LockedProject,
        prune: PruneOptions,
        target: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        """Write the pruned source tree of ``project`` at ``target``.

        Implementations must produce identical content for identical input so that digests of the exported tree
        are meaningful. ``target`` does not exist yet; its parent does.

        Raises:
            ExportError: If the project cannot be exported
            ExportCancelledError: If ``cancel`` is set before the export completes

        """
        raise NotImplementedError


class DirectorySourceProvider(SourceProvider):
    """Exports projects from a local directory laid out as ``<base>/<project root>``."""

    def __init__(self, base: str | Path) -> None:
        """Initialize the provider.

        Args:
            base: Directory holding one checked-out tree per project root

        """
        self.base = Path(base)

    def export_project(
        self,
        project: LockedProject,
        prune: PruneOptions,
        target: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        """Copy the project's tree from the base directory and prune it."""
        check_cancelled(cancel, project)
        src = self.base / project.root
        if not src.is_dir():
            msg = f"No source tree for {project.root} under {self.base}"
            raise ExportError(msg)
        try:
            shutil.copytree(src, target, symlinks=True, ignore=shutil.ignore_patterns(*VCS_DIRS))
            prune_project(target, project.packages, prune)
        except OSError as e:
            msg = f"Failed to copy {project.root} from {src}"
            raise ExportError(msg) from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self.base)!r})"


class GitSourceProvider(SourceProvider):
    """Exports projects from bare git mirrors kept in a local cache directory.

    A mirror is cloned the first time a repository is needed and fetched again only when a pinned revision is
    missing from it. Access to each mirror is serialized so concurrent exports of the same repository are safe.
    """

    def __init__(self, cache_dir: str | Path | None = None) -> None:
        """Initialize the provider.

        Args:
            cache_dir: Where to keep mirrors; defaults to the user cache directory

        """
        self.cache_dir = Path(cache_dir) if cache_dir is not None else DEFAULT_CACHE_DIR
        self._locks: dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, mirror: Path) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(mirror, threading.Lock())

    def mirror_path(self, url: str) -> Path:
        """Return the cache location of the mirror for ``url``."""
        return self.cache_dir / re.sub(r"[^A-Za-z0-9_.\-]", "_", url)

    def _git(self, *args: str) -> bytes:
        git_path = shutil.which("git")
        if git_path is None:
            msg = "git executable not found in PATH"
            raise ExportError(msg)
        try:
            result = subprocess.run([git_path, *args], check=True, capture_output=True)  # noqa: S603
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode("utf-8", errors="replace").strip() if e.stderr else ""
            msg = f"`git {' '.join(args)}` failed: {stderr}"
            raise ExportError(msg) from e
        return result.stdout

    def _has_revision(self, mirror: Path, revision: str) -> bool:
        try:
            self._git("--git-dir", str(mirror), "cat-file", "-e", f"{revision}^{{commit}}")
        except ExportError:
            return False
        return True

    def ensure_revision(self, url: str, revision: str) -> Path:
        """Make sure the mirror for ``url`` contains ``revision``, cloning or fetching as needed."""
        mirror = self.mirror_path(url)
        with self._lock_for(mirror):
            if not mirror.exists():
                logger.info("Cloning %s", url)
                mirror.parent.mkdir(parents=True, exist_ok=True)
                self._git("clone", "--mirror", "--quiet", url, str(mirror))
            elif not self._has_revision(mirror, revision):
                logger.info("Fetching %s", url)
                self._git("--git-dir", str(mirror), "fetch", "--prune", "--quiet", "origin")
            if not self._has_revision(mirror, revision):
                msg = f"Revision {revision} does not exist in {url}"
                raise ExportError(msg)
        return mirror

    def export_project(
        self,
        project: LockedProject,
        prune: PruneOptions,
        target: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        """Extract the pinned revision from the project's mirror and prune it."""
        check_cancelled(cancel, project)
        try:
            url = repo_url(project.root, project.source)
        except VCSResolutionError as e:
            raise ExportError(str(e)) from e
        mirror = self.ensure_revision(url, project.revision)
        check_cancelled(cancel, project)
        archive = self._git("--git-dir", str(mirror), "archive", "--format=tar", project.revision)
        try:
            target.mkdir(parents=True)
            with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
                tar.extractall(target, filter="data")
            prune_project(target, project.packages, prune)
        except (OSError, tarfile.TarError) as e:
            msg = f"Failed to extract {project.root}@{project.revision}"
            raise ExportError(msg) from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self.cache_dir)!r})"


def write_dep_tree(
    basedir: str | Path,
    lock: Lock,
    provider: SourceProvider,
    prune: CascadingPruneOptions,
    on_write: Callable[[WriteProgress], None] | None = None,
    *,
    cancel: threading.Event | None = None,
    max_workers: int | None = None,
) -> None:
    """Export every project in ``lock`` beneath ``basedir``, one subdirectory per project root.

    Exports run concurrently; the call returns only once all of them have finished. The first failure cancels
    the exports that have not started yet and is re-raised with the failing project's root.

    Args:
        basedir: Directory to populate; created if missing
        lock: Projects to export
        provider: Where the sources come from
        prune: Prune options, resolved per project root
        on_write: Called after each project is written
        cancel: Token forwarded to the provider
        max_workers: Maximum number of concurrent exports

    Raises:
        ExportError: If any project fails to export

    """
    base = Path(basedir)
    base.mkdir(parents=True, exist_ok=True)
    projects = list(lock)
    total = len(projects)

    def _export(project: LockedProject) -> LockedProject:
        target = base / project.root
        target.parent.mkdir(parents=True, exist_ok=True)
        provider.export_project(project, prune.options_for(project.root), target, cancel)
        return project

    executor = ThreadPoolExecutor(max_workers=max_workers)
    try:
        with tqdm(desc="Writing vendor tree", total=total, leave=False, unit=" projects") as t:
            futures = {executor.submit(_export, project): project for project in projects}
            for count, future in enumerate(as_completed(futures), start=1):
                project = futures[future]
                try:
                    future.result()
                except ExportCancelledError:
                    raise
                except Exception as e:  # noqa: BLE001
                    msg = f"Failed to export {project.root}"
                    raise ExportError(msg) from e
                t.update(1)
                if on_write is not None:
                    on_write(WriteProgress(count=count, total=total, project=project))
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
