from __future__ import annotations

import io
import shutil
import subprocess
import tarfile
import threading
from pathlib import Path
from unittest import TestCase
from unittest.mock import patch

import pytest

from depvendor.models import CascadingPruneOptions, Lock, LockedProject, PruneOptions
from depvendor.source import (
    DirectorySourceProvider,
    ExportCancelledError,
    ExportError,
    GitSourceProvider,
    WriteProgress,
    write_dep_tree,
)
from depvendor.vcs import VCSResolutionError, repo_url


class TestRepoURL(TestCase):
    def test_hosted_roots(self) -> None:
        assert repo_url("github.com/trailofbits/graphtage") == "https://github.com/trailofbits/graphtage"
        assert repo_url("gitlab.com/a/b") == "https://gitlab.com/a/b"
        assert repo_url("bitbucket.org/a/b") == "https://bitbucket.org/a/b"

    def test_explicit_vcs_suffix(self) -> None:
        assert repo_url("example.org/group/repo.git") == "https://example.org/group/repo.git"

    def test_source_wins(self) -> None:
        assert repo_url("github.com/a/b", "github.com/fork/b") == "https://github.com/fork/b"
        assert repo_url("github.com/a/b", "git@github.com:fork/b.git") == "git@github.com:fork/b.git"
        assert repo_url("github.com/a/b", "/srv/git/b") == "/srv/git/b"

    def test_unresolvable(self) -> None:
        with pytest.raises(VCSResolutionError):
            repo_url("github.com/only-owner")
        with pytest.raises(VCSResolutionError):
            repo_url("example.org/no/vcs")


class TestDirectorySourceProvider:
    def test_export_prunes(self, source_dir: Path, tmp_path: Path) -> None:
        target = tmp_path / "out" / "one"
        target.parent.mkdir()
        project = LockedProject("github.com/a/one", "1")
        DirectorySourceProvider(source_dir).export_project(
            project, PruneOptions.NESTED_VENDOR_DIRS | PruneOptions.GO_TESTS, target
        )
        assert (target / "one.go").exists()
        assert not (target / "one_test.go").exists()
        assert not (target / "vendor").exists()

    def test_skips_vcs_dirs(self, source_dir: Path, tmp_path: Path) -> None:
        (source_dir / "github.com/b/two/.git").mkdir()
        (source_dir / "github.com/b/two/.git/HEAD").write_text("ref\n")
        target = tmp_path / "two"
        DirectorySourceProvider(source_dir).export_project(LockedProject("github.com/b/two", "2"), PruneOptions.NONE, target)
        assert not (target / ".git").exists()

    def test_missing_source(self, source_dir: Path, tmp_path: Path) -> None:
        with pytest.raises(ExportError, match="No source tree"):
            DirectorySourceProvider(source_dir).export_project(
                LockedProject("github.com/x/missing", "1"), PruneOptions.NONE, tmp_path / "x"
            )

    def test_cancelled(self, source_dir: Path, tmp_path: Path) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ExportCancelledError):
            DirectorySourceProvider(source_dir).export_project(
                LockedProject("github.com/a/one", "1"), PruneOptions.NONE, tmp_path / "one", cancel
            )
        assert not (tmp_path / "one").exists()


class TestWriteDepTree:
    def test_writes_every_project(self, source_dir: Path, tmp_path: Path) -> None:
        lock = Lock([LockedProject("github.com/a/one", "1"), LockedProject("github.com/b/two", "2")])
        reports: list[WriteProgress] = []
        write_dep_tree(
            tmp_path / "vendor",
            lock,
            DirectorySourceProvider(source_dir),
            CascadingPruneOptions(),
            reports.append,
            max_workers=2,
        )
        assert (tmp_path / "vendor/github.com/a/one/one.go").exists()
        assert (tmp_path / "vendor/github.com/b/two/two.go").exists()
        assert sorted(r.count for r in reports) == [1, 2]
        assert {r.total for r in reports} == {2}
        assert str(reports[0]).startswith("(1/2) Wrote github.com/")

    def test_failure_names_project(self, source_dir: Path, tmp_path: Path) -> None:
        lock = Lock([LockedProject("github.com/a/one", "1"), LockedProject("github.com/x/missing", "2")])
        with pytest.raises(ExportError, match="github.com/x/missing"):
            write_dep_tree(tmp_path / "vendor", lock, DirectorySourceProvider(source_dir), CascadingPruneOptions())


def _archive(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class TestGitSourceProvider:
    REVISION = "0123456789abcdef0123456789abcdef01234567"

    def _fake_git(self, calls: list[tuple[str, ...]], *, has_revision: bool = True):  # noqa: ANN202
        def fake_git(*args: str) -> bytes:
            calls.append(args)
            if args[0] == "clone":
                Path(args[-1]).mkdir(parents=True)
                return b""
            if "cat-file" in args:
                if not has_revision:
                    msg = "missing"
                    raise ExportError(msg)
                return b""
            if "archive" in args:
                return _archive({"a.go": "package a\n", "a_test.go": "package a\n", "LICENSE": "MIT\n"})
            return b""

        return fake_git

    def test_export_clones_then_extracts(self, tmp_path: Path) -> None:
        provider = GitSourceProvider(tmp_path / "cache")
        calls: list[tuple[str, ...]] = []
        project = LockedProject("github.com/a/one", self.REVISION)
        with patch.object(provider, "_git", side_effect=self._fake_git(calls)):
            provider.export_project(project, PruneOptions.GO_TESTS, tmp_path / "out")
        assert calls[0][:3] == ("clone", "--mirror", "--quiet")
        assert calls[0][3] == "https://github.com/a/one"
        assert any("archive" in call and self.REVISION in call for call in calls)
        assert (tmp_path / "out" / "a.go").read_text() == "package a\n"
        assert (tmp_path / "out" / "LICENSE").exists()
        assert not (tmp_path / "out" / "a_test.go").exists()

    def test_existing_mirror_is_fetched_only_when_needed(self, tmp_path: Path) -> None:
        provider = GitSourceProvider(tmp_path / "cache")
        provider.mirror_path("https://github.com/a/one").mkdir(parents=True)
        calls: list[tuple[str, ...]] = []
        with patch.object(provider, "_git", side_effect=self._fake_git(calls)):
            provider.ensure_revision("https://github.com/a/one", self.REVISION)
        assert not any("fetch" in call or "clone" in call for call in calls)

    def test_missing_revision(self, tmp_path: Path) -> None:
        provider = GitSourceProvider(tmp_path / "cache")
        provider.mirror_path("https://github.com/a/one").mkdir(parents=True)
        calls: list[tuple[str, ...]] = []
        with patch.object(provider, "_git", side_effect=self._fake_git(calls, has_revision=False)):
            with pytest.raises(ExportError, match="does not exist"):
                provider.ensure_revision("https://github.com/a/one", self.REVISION)
        assert any("fetch" in call for call in calls)

    def test_unresolvable_root(self, tmp_path: Path) -> None:
        provider = GitSourceProvider(tmp_path / "cache")
        with pytest.raises(ExportError, match="Unable to resolve"):
            provider.export_project(LockedProject("example.org/thing", "1"), PruneOptions.NONE, tmp_path / "out")

    @pytest.mark.integration
    @pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
    def test_local_repository(self, tmp_path: Path) -> None:
        repo = tmp_path / "repo"
        repo.mkdir()

        def git(*args: str) -> str:
            result = subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True)  # noqa: S603, S607
            return result.stdout.strip()

        git("init", "--quiet")
        (repo / "a.go").write_text("package a\n")
        git("add", "a.go")
        git("-c", "user.name=test", "-c", "user.email=test@example.com", "commit", "--quiet", "-m", "initial")
        revision = git("rev-parse", "HEAD")

        provider = GitSourceProvider(tmp_path / "cache")
        project = LockedProject("example.org/a.git", revision, source=str(repo))
        provider.export_project(project, PruneOptions.NONE, tmp_path / "out")
        assert (tmp_path / "out" / "a.go").read_text() == "package a\n"
