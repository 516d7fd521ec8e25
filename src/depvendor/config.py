"""Configuration settings for depvendor."""

from __future__ import annotations

from enum import Enum
from pathlib import Path  # noqa: TC003
from typing import Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    CliImplicitFlag,
    SettingsConfigDict,
)

from .planner import VendorBehavior
from .source import DEFAULT_CACHE_DIR


class Strategy(str, Enum):
    """How the vendor tree is brought up to date."""

    delta = "delta"
    full = "full"


class Settings(BaseSettings):
    """Settings for depvendor."""

    target: Path = Field(
        default=Path(),
        description="""Project root holding deps.toml, deps.lock and the
            vendor directory.""",
    )
    lock: Path | None = Field(
        default=None,
        description="""Path to the freshly resolved lock to write. Defaults to
            the project's own deps.lock, which re-syncs vendor with it.""",
    )
    vendor_behavior: Literal["on-changed", "always", "never"] = Field(
        default=VendorBehavior.ON_CHANGED.value,
        description="""When to write the vendor directory: `on-changed`,
            `always` or `never`.""",
    )
    strategy: Strategy = Field(
        default=Strategy.delta,
        description="""`delta` rewrites only the vendored projects that
            changed; `full` rewrites manifest, lock and vendor as one unit.""",
    )
    dry_run: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Print what would be written without touching the
            filesystem.""",
    )
    verbose: CliImplicitFlag[bool] = Field(
        default=False,
        description="""With `--dry-run`, print the full content that would be
            written.""",
    )
    examples: CliImplicitFlag[bool] = Field(
        default=False,
        description="""With `--strategy full`, prepend a commented example to
            the written deps.toml.""",
    )
    source_dir: Path | None = Field(
        default=None,
        description="""Export projects from `<source-dir>/<project root>`
            instead of fetching them with git.""",
    )
    cache_dir: Path = Field(
        default=DEFAULT_CACHE_DIR,
        description="""Where git mirrors of vendored repositories are kept.""",
    )
    log_level: str = Field(default="info", description="Log level")
    max_workers: int = Field(
        default=-1,
        description="""Maximum number of projects to export concurrently. If
            not provided, the maximum number of logical CPUs will be used.""",
    )
    version: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Show the version of depvendor and exit.""",
    )

    model_config = SettingsConfigDict(
        env_prefix="DEPVENDOR_",
        cli_kebab_case=True,
        nested_model_default_partial_update=True,
    )
