from __future__ import annotations

import io
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from depvendor import __version__
from depvendor._cli import main
from depvendor.logger import PROGRESS_LOGGER_NAME, setup_logger
from depvendor.models import LOCK_NAME, MANIFEST_NAME
from depvendor.toml import lock_to_toml, read_lock, read_manifest
from depvendor.writer import EXAMPLE_MANIFEST

ROOTS = ("github.com/a/one", "github.com/b/two")


@pytest.fixture(autouse=True)
def _quiet_logging():  # noqa: ANN202
    with patch("depvendor._cli.setup_logger"):
        yield


@pytest.fixture
def new_lock_file(tmp_path: Path, make_lock) -> Path:  # noqa: ANN001
    path = tmp_path / "new.lock"
    path.write_text(lock_to_toml(make_lock(*ROOTS)))
    return path


def test_version() -> None:
    with patch("depvendor._cli.logger") as logger:
        assert main(["--version"]) == 0
    logger.info.assert_called_once_with("depvendor version %s", __version__)


def test_write(project_dir: Path, source_dir: Path, new_lock_file: Path) -> None:
    argv = ["--target", str(project_dir), "--lock", str(new_lock_file), "--source-dir", str(source_dir)]
    assert main(argv) == 0
    assert read_lock(project_dir / LOCK_NAME).roots() == list(ROOTS)
    assert (project_dir / "vendor/github.com/b/two/two.go").exists()
    assert not (project_dir / MANIFEST_NAME).exists()

    # the project's own lock now agrees with vendor, so a second run has nothing to do
    (source_dir / "github.com/a/one/one.go").write_text("package changed\n")
    assert main(["--target", str(project_dir), "--source-dir", str(source_dir)]) == 0
    assert (project_dir / "vendor/github.com/a/one/one.go").read_text() == "package one\n"


def test_dry_run(
    project_dir: Path, source_dir: Path, new_lock_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    argv = ["--target", str(project_dir), "--lock", str(new_lock_file), "--source-dir", str(source_dir), "--dry-run"]
    assert main(argv) == 0
    out = capsys.readouterr().out
    assert f"Would have written {LOCK_NAME}." in out
    assert "Would have written 2 projects to the vendor directory." in out
    assert list(project_dir.iterdir()) == []


def test_full_strategy_with_examples(project_dir: Path, source_dir: Path, new_lock_file: Path) -> None:
    (project_dir / MANIFEST_NAME).write_text('required = ["github.com/a/one"]\n')
    argv = [
        "--target",
        str(project_dir),
        "--lock",
        str(new_lock_file),
        "--source-dir",
        str(source_dir),
        "--strategy",
        "full",
        "--vendor-behavior",
        "never",
        "--examples",
    ]
    assert main(argv) == 0
    assert (project_dir / MANIFEST_NAME).read_text().startswith(EXAMPLE_MANIFEST)
    assert read_manifest(project_dir / MANIFEST_NAME).required == ("github.com/a/one",)
    assert (project_dir / LOCK_NAME).exists()
    assert not (project_dir / "vendor").exists()


def test_full_strategy_leaves_missing_manifest_alone(project_dir: Path, source_dir: Path, new_lock_file: Path) -> None:
    argv = ["--target", str(project_dir), "--source-dir", str(source_dir), "--strategy", "full"]
    assert main([*argv, "--lock", str(new_lock_file)]) == 0
    assert (project_dir / LOCK_NAME).exists()
    assert not (project_dir / MANIFEST_NAME).exists()

    # lock and vendor already agree, so there is nothing left to write
    with patch("depvendor.writer.tempfile.mkdtemp") as mkdtemp:
        assert main(argv) == 0
    mkdtemp.assert_not_called()
    assert not (project_dir / MANIFEST_NAME).exists()


def test_no_lock(project_dir: Path) -> None:
    assert main(["--target", str(project_dir)]) == 1


def test_unparseable_lock(project_dir: Path, tmp_path: Path) -> None:
    bad = tmp_path / "bad.lock"
    bad.write_text("[[projects")
    assert main(["--target", str(project_dir), "--lock", str(bad)]) == 1


def test_export_failure(project_dir: Path, tmp_path: Path, new_lock_file: Path) -> None:
    argv = ["--target", str(project_dir), "--lock", str(new_lock_file), "--source-dir", str(tmp_path / "nowhere")]
    assert main(argv) == 1
    assert list(project_dir.iterdir()) == []


class TestLogger:
    def test_progress_lines_are_bare(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        progress = logging.getLogger(PROGRESS_LOGGER_NAME)
        try:
            stream = io.StringIO()
            setup_logger("debug", stream)
            progress.info("(1/1) Wrote %s", "github.com/a/one@v1.0.0")
            logging.getLogger("depvendor.test").warning("careful")
            lines = stream.getvalue().splitlines()
            assert lines[0] == "(1/1) Wrote github.com/a/one@v1.0.0"
            assert lines[1].endswith("depvendor.test - WARNING - careful")
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            progress.handlers.clear()
            progress.propagate = True
