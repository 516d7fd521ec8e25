"""Command-line interface for depvendor."""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

from . import __version__ as depvendor_version
from .config import Settings, Strategy
from .logger import progress_logger, setup_logger
from .planner import VendorBehavior, WritePlanError
from .project import Project
from .source import DirectorySourceProvider, ExportCancelledError, GitSourceProvider, SourceProvider
from .toml import TOMLFormatError, read_lock
from .writer import SafeWriter, TreeWriter, WriteError, new_delta_writer

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def build_provider(settings: Settings) -> SourceProvider:
    if settings.source_dir is not None:
        return DirectorySourceProvider(settings.source_dir)
    return GitSourceProvider(settings.cache_dir)


def build_writer(settings: Settings, project: Project) -> TreeWriter:
    """Load the new lock and build the writer the settings ask for.

    Raises:
        FileNotFoundError: If there is no lock to write from
        TOMLFormatError: If the new lock cannot be parsed
        WritePlanError: If the writer cannot be planned

    """
    if settings.lock is not None:
        new_lock = read_lock(settings.lock)
    elif project.lock is not None:
        new_lock = project.lock.copy()
    else:
        msg = f"No lock to write: {project.lock_path} does not exist and --lock was not given"
        raise FileNotFoundError(msg)

    max_workers = settings.max_workers if settings.max_workers > 0 else None
    if settings.strategy is Strategy.full:
        return SafeWriter(
            project.manifest,
            project.lock,
            new_lock,
            VendorBehavior(settings.vendor_behavior),
            project.manifest.prune if project.manifest is not None else None,
            project.verify_vendor(),
            max_workers=max_workers,
        )
    return new_delta_writer(project, new_lock, VendorBehavior(settings.vendor_behavior), max_workers=max_workers)


def main(argv: Sequence[str] | None = None) -> int:
    """Run depvendor and return its exit code."""
    settings = Settings(_cli_parse_args=list(argv) if argv is not None else True, _cli_prog_name="depvendor")
    setup_logger(settings.log_level)

    # If max_workers isn't provided, use the number of CPUs.
    # If that fails, use 1.
    if settings.max_workers == -1:
        settings.max_workers = os.cpu_count() or 1

    logger.debug("Starting depvendor with settings: %s", settings)

    if settings.version:
        logger.info("depvendor version %s", depvendor_version)
        return 0

    try:
        project = Project.load(settings.target)
        writer = build_writer(settings, project)
    except (FileNotFoundError, TOMLFormatError, WritePlanError) as e:
        logger.error("%s", e)  # noqa: TRY400
        return 1

    if settings.dry_run:
        try:
            writer.print_prepared_actions(sys.stdout, verbose=settings.verbose)
        except WriteError as e:
            logger.error("%s", e)  # noqa: TRY400
            return 1
        return 0

    try:
        writer.write(
            project.abs_root,
            build_provider(settings),
            examples=settings.examples,
            logger=progress_logger(),
        )
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except (WritePlanError, WriteError) as e:
        if isinstance(e.__cause__, ExportCancelledError):
            logger.warning("Write cancelled: %s", e.__cause__)
        else:
            logger.exception("%s", e)
        return 1
    return 0
