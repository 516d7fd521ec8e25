import errno
from pathlib import Path
from unittest.mock import patch

import pytest

from depvendor.fs import has_dot_git, rename_with_fallback
from depvendor.models import LOCK_NAME, MANIFEST_NAME
from depvendor.project import Project
from depvendor.toml import TOMLFormatError, lock_to_toml
from depvendor.verify import VendorStatus


def _cross_device(src, dst) -> None:  # noqa: ANN001
    raise OSError(errno.EXDEV, "Invalid cross-device link")


class TestRenameWithFallback:
    def test_directory_across_devices(self, tmp_path: Path) -> None:
        src = tmp_path / "src"
        (src / "sub").mkdir(parents=True)
        (src / "sub" / "a.go").write_text("package a\n")
        with patch("depvendor.fs.os.replace", side_effect=_cross_device):
            rename_with_fallback(src, tmp_path / "dst")
        assert not src.exists()
        assert (tmp_path / "dst" / "sub" / "a.go").read_text() == "package a\n"

    def test_file_across_devices_replaces(self, tmp_path: Path) -> None:
        (tmp_path / "new").write_text("new\n")
        (tmp_path / "old").write_text("old\n")
        with patch("depvendor.fs.os.replace", side_effect=_cross_device):
            rename_with_fallback(tmp_path / "new", tmp_path / "old")
        assert (tmp_path / "old").read_text() == "new\n"
        assert not (tmp_path / "new").exists()

    def test_other_errors_propagate(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            rename_with_fallback(tmp_path / "missing", tmp_path / "dst")

    def test_has_dot_git(self, tmp_path: Path) -> None:
        assert not has_dot_git(tmp_path)
        (tmp_path / ".git").write_text("gitdir: elsewhere\n")
        assert has_dot_git(tmp_path)


class TestProject:
    def test_load_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Project.load(tmp_path / "missing")

    def test_load_empty(self, project_dir: Path) -> None:
        project = Project.load(project_dir)
        assert project.lock is None
        assert project.manifest is None
        assert project.vendor_dir == project_dir.absolute() / "vendor"
        assert project.verify_vendor() == {}

    def test_load_and_verify(self, project_dir: Path, make_lock) -> None:  # noqa: ANN001
        (project_dir / LOCK_NAME).write_text(lock_to_toml(make_lock("github.com/a/one")))
        (project_dir / MANIFEST_NAME).write_text('required = ["github.com/a/one"]\n')
        project = Project.load(project_dir)
        assert project.lock.roots() == ["github.com/a/one"]
        assert project.manifest.required == ("github.com/a/one",)
        assert project.verify_vendor() == {"github.com/a/one": VendorStatus.NOT_IN_TREE}

    def test_load_bad_manifest(self, project_dir: Path) -> None:
        (project_dir / MANIFEST_NAME).write_text("required = 3\n")
        with pytest.raises(TOMLFormatError):
            Project.load(project_dir)
