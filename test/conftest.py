from __future__ import annotations

import threading
from pathlib import Path

import pytest

from depvendor.models import Lock, LockedProject, PruneOptions
from depvendor.source import DirectorySourceProvider

SOURCE_TREES: dict[str, dict[str, str]] = {
    "github.com/a/one": {
        "one.go": "package one\n",
        "one_test.go": "package one\n\nimport \"testing\"\n",
        "LICENSE": "MIT\n",
        "README.md": "# one\n",
        "sub/sub.go": "package sub\n",
        "vendor/github.com/x/y/y.go": "package y\n",
    },
    "github.com/b/two": {
        "two.go": "package two\n",
        "doc.txt": "docs\n",
    },
    "github.com/c/three": {
        "three.go": "package three\n",
    },
}

REVISIONS = {
    "github.com/a/one": "1111111111111111111111111111111111111111",
    "github.com/b/two": "2222222222222222222222222222222222222222",
    "github.com/c/three": "3333333333333333333333333333333333333333",
}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--runintegration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: mark test as an integration test")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--runintegration"):
        # --runintegration given in cli: do not skip integration tests
        return
    skip_integration = pytest.mark.skip(reason="need --runintegration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class RecordingProvider(DirectorySourceProvider):
    """A directory provider that remembers which projects it exported."""

    def __init__(self, base: Path) -> None:
        super().__init__(base)
        self.exported: list[str] = []
        self._guard = threading.Lock()

    def export_project(self, project, prune, target, cancel=None) -> None:  # noqa: ANN001
        super().export_project(project, prune, target, cancel)
        with self._guard:
            self.exported.append(project.root)


def write_tree(base: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    base = tmp_path / "sources"
    for root, files in SOURCE_TREES.items():
        write_tree(base / root, files)
    return base


@pytest.fixture
def provider(source_dir: Path) -> RecordingProvider:
    return RecordingProvider(source_dir)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def make_lock():
    """Build a lock over some of the roots in ``SOURCE_TREES``, with per-root field overrides."""

    def _make_lock(*roots: str, input_imports: tuple[str, ...] = (), **overrides: dict) -> Lock:
        projects = []
        for root in roots:
            fields = {
                "root": root,
                "revision": REVISIONS[root],
                "version": "v1.0.0",
                "prune_opts": PruneOptions.NESTED_VENDOR_DIRS,
            }
            fields.update(overrides.get(root.rsplit("/", 1)[-1], {}))
            projects.append(LockedProject(**fields))
        return Lock(projects, input_imports or roots)

    return _make_lock
