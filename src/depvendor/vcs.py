"""Mapping of project roots to the repositories they are fetched from.

Logic loosely follows the import path rules of `go get`:

    https://golang.org/src/cmd/go/internal/vcs/vcs.go
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from re import Pattern


class VCSResolutionError(ValueError):
    """Raised when a project root cannot be mapped to a repository."""


@dataclass(frozen=True)
class RootPattern:
    """A known hosting layout for project roots."""

    regexp: Pattern[str]
    path_prefix: str = ""
    repo: str = "https://{root}"


ROOT_PATTERNS: list[RootPattern] = []


def _register(pattern: RootPattern) -> RootPattern:
    ROOT_PATTERNS.append(pattern)
    return pattern


GITHUB = _register(
    RootPattern(
        path_prefix="github.com",
        regexp=re.compile(r"^(?P<root>github\.com/[A-Za-z0-9_.\-]+/[A-Za-z0-9_.\-]+)$"),
    )
)

GITLAB = _register(
    RootPattern(
        path_prefix="gitlab.com",
        regexp=re.compile(r"^(?P<root>gitlab\.com/[A-Za-z0-9_.\-]+/[A-Za-z0-9_.\-]+)$"),
    )
)

BITBUCKET = _register(
    RootPattern(
        path_prefix="bitbucket.org",
        regexp=re.compile(r"^(?P<root>bitbucket\.org/[A-Za-z0-9_.\-]+/[A-Za-z0-9_.\-]+)$"),
    )
)

# Roots such as example.org/repo.git name their version control system explicitly.
GENERAL_REPO = _register(
    RootPattern(
        regexp=re.compile(
            r"^(?P<root>(?P<repo>([a-z0-9\-]+\.)+[a-z0-9.\-]+(:[0-9]+)?(/~?[A-Za-z0-9_.\-]+)+?)\.(?P<vcs>git))$"
        ),
    )
)


def repo_url(root: str, source: str = "") -> str:
    """Return the URL of the git repository holding the project at ``root``.

    Args:
        root: The project root, e.g. ``github.com/owner/repo``
        source: An alternate location recorded in the lock; takes precedence over ``root``

    Raises:
        VCSResolutionError: If ``root`` matches no known layout and no source is given

    """
    if source:
        if "://" in source or source.startswith("git@") or source.startswith("/"):
            return source
        return f"https://{source}"
    for pattern in ROOT_PATTERNS:
        if pattern.path_prefix and not root.startswith(f"{pattern.path_prefix}/"):
            continue
        m = pattern.regexp.match(root)
        if m is None:
            if pattern.path_prefix:
                msg = f"Invalid {pattern.path_prefix} project root {root!r}"
                raise VCSResolutionError(msg)
            continue
        groups = {name: value for name, value in m.groupdict().items() if value}
        return pattern.repo.format(**groups)
    msg = f"Unable to resolve repository for {root!r}; record a `source` for it in the lock"
    raise VCSResolutionError(msg)
