"""TOML reading and writing for the manifest and lock files.

Uses tomlkit so that the emitted documents stay stable and diff-friendly from one run to the next.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from .models import (
    CascadingPruneOptions,
    Lock,
    LockedProject,
    Manifest,
    ProjectConstraint,
    PruneOptions,
    VersionedDigest,
)


class TOMLFormatError(ValueError):
    """Raised when a manifest or lock document cannot be understood."""


_PRUNE_KEYS: tuple[tuple[str, PruneOptions], ...] = (
    ("non-go", PruneOptions.NON_GO),
    ("go-tests", PruneOptions.GO_TESTS),
    ("unused-packages", PruneOptions.UNUSED_PACKAGES),
)


def _parse(text: str, what: str) -> dict[str, Any]:
    try:
        return tomlkit.parse(text).unwrap()
    except TOMLKitError as e:
        msg = f"Unable to parse {what}: {e}"
        raise TOMLFormatError(msg) from e


def _str_list(data: dict[str, Any], key: str, what: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"Invalid `{key}` in {what}: expected a list of strings"
        raise TOMLFormatError(msg)
    return tuple(value)


def _optional_str(data: dict[str, Any], key: str, what: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        msg = f"Invalid `{key}` in {what}: expected a string"
        raise TOMLFormatError(msg)
    return value


def _required_str(data: dict[str, Any], key: str, what: str) -> str:
    value = _optional_str(data, key, what)
    if not value:
        msg = f"Missing `{key}` in {what}"
        raise TOMLFormatError(msg)
    return value


def _table_list(data: dict[str, Any], key: str, what: str) -> list[dict[str, Any]]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        msg = f"Invalid `{key}` in {what}: expected an array of tables"
        raise TOMLFormatError(msg)
    return value


def lock_to_toml(lock: Lock) -> str:
    """Serialize a lock, preserving project order."""
    doc = tomlkit.document()
    projects = tomlkit.aot()
    for lp in lock:
        table = tomlkit.table()
        if lp.digest is not None:
            table.add("digest", str(lp.digest))
        table.add("name", lp.root)
        table.add("packages", sorted(lp.packages))
        table.add("pruneopts", lp.prune_opts.to_string())
        table.add("revision", lp.revision)
        if lp.source:
            table.add("source", lp.source)
        if lp.version is not None:
            table.add("version", lp.version)
        projects.append(table)
    if len(projects) > 0:
        doc.add("projects", projects)
    meta = tomlkit.table()
    meta.add("input-imports", list(lock.input_imports))
    doc.add("solve-meta", meta)
    return tomlkit.dumps(doc)


def lock_from_toml(text: str) -> Lock:
    """Parse a lock document produced by :func:`lock_to_toml`."""
    data = _parse(text, "lock")
    projects: list[LockedProject] = []
    for entry in _table_list(data, "projects", "lock"):
        what = f"lock project {entry.get('name', '<unnamed>')!r}"
        digest_text = _optional_str(entry, "digest", what)
        try:
            digest = VersionedDigest.parse(digest_text) if digest_text else None
            prune_opts = PruneOptions.from_string(_optional_str(entry, "pruneopts", what) or "")
        except ValueError as e:
            msg = f"Invalid {what}: {e}"
            raise TOMLFormatError(msg) from e
        projects.append(
            LockedProject(
                root=_required_str(entry, "name", what),
                revision=_required_str(entry, "revision", what),
                version=_optional_str(entry, "version", what),
                source=_optional_str(entry, "source", what) or "",
                packages=_str_list(entry, "packages", what),
                prune_opts=prune_opts,
                digest=digest,
            )
        )
    meta = data.get("solve-meta", {})
    if not isinstance(meta, dict):
        msg = "Invalid `solve-meta` in lock: expected a table"
        raise TOMLFormatError(msg)
    try:
        return Lock(projects, _str_list(meta, "input-imports", "lock solve-meta"))
    except ValueError as e:
        raise TOMLFormatError(str(e)) from e


def _constraint_table(constraint: ProjectConstraint) -> tomlkit.items.Table:
    table = tomlkit.table()
    table.add("name", constraint.name)
    for key in ("version", "branch", "revision"):
        value = getattr(constraint, key)
        if value is not None:
            table.add(key, value)
    if constraint.source:
        table.add("source", constraint.source)
    return table


def _parse_constraints(data: dict[str, Any], key: str) -> tuple[ProjectConstraint, ...]:
    constraints = []
    for entry in _table_list(data, key, "manifest"):
        what = f"manifest {key} {entry.get('name', '<unnamed>')!r}"
        constraints.append(
            ProjectConstraint(
                name=_required_str(entry, "name", what),
                version=_optional_str(entry, "version", what),
                branch=_optional_str(entry, "branch", what),
                revision=_optional_str(entry, "revision", what),
                source=_optional_str(entry, "source", what) or "",
            )
        )
    return tuple(constraints)


def _apply_prune_keys(entry: dict[str, Any], base: PruneOptions, what: str) -> PruneOptions:
    options = base
    for key, flag in _PRUNE_KEYS:
        if key not in entry:
            continue
        if not isinstance(entry[key], bool):
            msg = f"Invalid `{key}` in {what}: expected a boolean"
            raise TOMLFormatError(msg)
        options = options | flag if entry[key] else options & ~flag
    return options


def manifest_to_toml(manifest: Manifest) -> str:
    """Serialize a manifest."""
    doc = tomlkit.document()
    for key, values in (("required", manifest.required), ("ignored", manifest.ignored), ("noverify", manifest.no_verify)):
        if values:
            doc.add(key, list(values))
    for key, constraints in (("constraint", manifest.constraints), ("override", manifest.overrides)):
        if constraints:
            aot = tomlkit.aot()
            for constraint in constraints:
                aot.append(_constraint_table(constraint))
            doc.add(key, aot)

    prune = tomlkit.table()
    default = manifest.prune.default
    for key, flag in _PRUNE_KEYS:
        if default & flag:
            prune.add(key, True)
    if manifest.prune.per_project:
        per_project = tomlkit.aot()
        for name, options in sorted(manifest.prune.per_project.items()):
            table = tomlkit.table()
            table.add("name", name)
            for key, flag in _PRUNE_KEYS:
                if bool(options & flag) != bool(default & flag):
                    table.add(key, bool(options & flag))
            per_project.append(table)
        prune.add("project", per_project)
    if len(prune) > 0:
        doc.add("prune", prune)
    return tomlkit.dumps(doc)


def manifest_from_toml(text: str) -> Manifest:
    """Parse a manifest document. Per-project prune settings cascade from the project-wide ones."""
    data = _parse(text, "manifest")
    prune_data = data.get("prune", {})
    if not isinstance(prune_data, dict):
        msg = "Invalid `prune` in manifest: expected a table"
        raise TOMLFormatError(msg)
    default = _apply_prune_keys(prune_data, PruneOptions.NESTED_VENDOR_DIRS, "manifest prune")
    per_project = {}
    for entry in _table_list(prune_data, "project", "manifest prune"):
        name = _required_str(entry, "name", "manifest prune project")
        per_project[name] = _apply_prune_keys(entry, default, f"manifest prune project {name!r}")
    return Manifest(
        constraints=_parse_constraints(data, "constraint"),
        overrides=_parse_constraints(data, "override"),
        required=_str_list(data, "required", "manifest"),
        ignored=_str_list(data, "ignored", "manifest"),
        no_verify=_str_list(data, "noverify", "manifest"),
        prune=CascadingPruneOptions(default=default, per_project=per_project),
    )


def read_lock(path: str | Path) -> Lock:
    """Load a lock file from disk."""
    return lock_from_toml(Path(path).read_text(encoding="utf-8"))


def read_manifest(path: str | Path) -> Manifest:
    """Load a manifest file from disk."""
    return manifest_from_toml(Path(path).read_text(encoding="utf-8"))
