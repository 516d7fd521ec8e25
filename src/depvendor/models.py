"""Core data models for manifests, locks and prune policy."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntFlag
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

MANIFEST_NAME = "deps.toml"
LOCK_NAME = "deps.lock"
VENDOR_DIR = "vendor"


class PruneOptions(IntFlag):
    """Which files and subtrees are dropped when a project is exported."""

    NONE = 0
    NESTED_VENDOR_DIRS = 1
    UNUSED_PACKAGES = 2
    NON_GO = 4
    GO_TESTS = 8

    def to_string(self) -> str:
        """Render the options as the letter string stored in the lock, e.g. ``"NUT"``."""
        return "".join(letter for letter, flag in _PRUNE_LETTERS if self & flag)

    @classmethod
    def from_string(cls, letters: str) -> PruneOptions:
        """Parse a letter string produced by :meth:`to_string`."""
        flags = cls.NONE
        lookup = dict(_PRUNE_LETTERS)
        for letter in letters:
            if letter not in lookup:
                msg = f"Unknown prune option {letter!r} in {letters!r}"
                raise ValueError(msg)
            flags |= lookup[letter]
        return flags


_PRUNE_LETTERS: tuple[tuple[str, PruneOptions], ...] = (
    ("N", PruneOptions.NESTED_VENDOR_DIRS),
    ("U", PruneOptions.UNUSED_PACKAGES),
    ("G", PruneOptions.NON_GO),
    ("T", PruneOptions.GO_TESTS),
)


@dataclass(frozen=True)
class CascadingPruneOptions:
    """Project-wide prune options with per-project overrides.

    Nested vendor directories are always pruned; a vendored project never carries its own vendor tree.
    """

    default: PruneOptions = PruneOptions.NESTED_VENDOR_DIRS
    per_project: Mapping[str, PruneOptions] = field(default_factory=dict)

    def options_for(self, root: str) -> PruneOptions:
        """Return the effective prune options for the project at ``root``."""
        return self.per_project.get(root, self.default) | PruneOptions.NESTED_VENDOR_DIRS


@dataclass(frozen=True)
class VersionedDigest:
    """A content digest tagged with the version of the hashing algorithm that produced it."""

    hash_version: int
    digest: str

    def __str__(self) -> str:
        return f"{self.hash_version}:{self.digest}"

    @classmethod
    def parse(cls, text: str) -> VersionedDigest:
        """Parse the ``"<version>:<hex>"`` form used in the lock file."""
        version, sep, digest = text.partition(":")
        if not sep or not version.isdigit():
            msg = f"Malformed digest {text!r}"
            raise ValueError(msg)
        return cls(hash_version=int(version), digest=digest)


@dataclass(frozen=True)
class LockedProject:
    """A single project pinned by the resolver."""

    root: str
    revision: str
    version: str | None = None
    source: str = ""
    packages: tuple[str, ...] = (".",)
    prune_opts: PruneOptions = PruneOptions.NONE
    digest: VersionedDigest | None = None

    @property
    def ident(self) -> str:
        """The project root, annotated with its alternate source if it has one."""
        if self.source:
            return f"{self.root} (from {self.source})"
        return self.root

    @property
    def display_version(self) -> str:
        """The version if the project is pinned to one, otherwise the bare revision."""
        return self.version if self.version is not None else self.revision

    def with_digest(self, digest: VersionedDigest, prune_opts: PruneOptions | None = None) -> LockedProject:
        """Return a copy carrying a freshly computed digest."""
        if prune_opts is None:
            prune_opts = self.prune_opts
        return replace(self, digest=digest, prune_opts=prune_opts)

    def __str__(self) -> str:
        return f"{self.ident}@{self.display_version}"


class Lock:
    """The resolved dependency set, in resolver order.

    A lock is mutated only to back-fill digests while a tree writer owns it.
    """

    def __init__(self, projects: Iterable[LockedProject] = (), input_imports: Iterable[str] = ()) -> None:
        """Initialize a lock.

        Args:
            projects: The locked projects; roots must be unique
            input_imports: The import paths the resolution was computed from

        """
        self.projects: list[LockedProject] = list(projects)
        self.input_imports: tuple[str, ...] = tuple(sorted(set(input_imports)))
        seen: set[str] = set()
        for lp in self.projects:
            if lp.root in seen:
                msg = f"Duplicate project root {lp.root!r} in lock"
                raise ValueError(msg)
            seen.add(lp.root)

    def __len__(self) -> int:
        return len(self.projects)

    def __iter__(self) -> Iterator[LockedProject]:
        return iter(self.projects)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Lock)
            and self.projects == other.projects
            and self.input_imports == other.input_imports
        )

    __hash__ = None  # type: ignore[assignment]

    def roots(self) -> list[str]:
        """Return the project roots in lock order."""
        return [lp.root for lp in self.projects]

    def project(self, root: str) -> LockedProject | None:
        """Return the locked project at ``root``, if any."""
        for lp in self.projects:
            if lp.root == root:
                return lp
        return None

    def replace_project(self, project: LockedProject) -> None:
        """Replace the entry sharing ``project.root`` in place."""
        for i, lp in enumerate(self.projects):
            if lp.root == project.root:
                self.projects[i] = project
                return
        msg = f"{project.root} is not in the lock"
        raise KeyError(msg)

    def digests(self) -> dict[str, VersionedDigest | None]:
        """Map each root to the digest recorded for it."""
        return {lp.root: lp.digest for lp in self.projects}

    def copy(self) -> Lock:
        """Return a shallow copy; entries are immutable so this is enough to isolate mutation."""
        return Lock(self.projects, self.input_imports)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.roots()!r})"


@dataclass(frozen=True)
class ProjectConstraint:
    """A user-authored constraint or override on one project."""

    name: str
    version: str | None = None
    branch: str | None = None
    revision: str | None = None
    source: str = ""


@dataclass(frozen=True)
class Manifest:
    """The user-authored constraint file."""

    constraints: tuple[ProjectConstraint, ...] = ()
    overrides: tuple[ProjectConstraint, ...] = ()
    required: tuple[str, ...] = ()
    ignored: tuple[str, ...] = ()
    no_verify: tuple[str, ...] = ()
    prune: CascadingPruneOptions = field(default_factory=CascadingPruneOptions)

    @property
    def is_empty(self) -> bool:
        """True if the manifest carries no user content at all."""
        return not (self.constraints or self.overrides or self.required or self.ignored or self.no_verify)
