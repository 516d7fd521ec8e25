"""The on-disk project whose manifest, lock and vendor tree are being written."""

from __future__ import annotations

import logging
from pathlib import Path

from .models import LOCK_NAME, MANIFEST_NAME, VENDOR_DIR, Lock, Manifest
from .toml import read_lock, read_manifest
from .verify import VendorStatus, check_vendor

logger = logging.getLogger(__name__)


class Project:
    """A project root together with the manifest and lock currently committed in it."""

    def __init__(self, abs_root: str | Path, manifest: Manifest | None = None, lock: Lock | None = None) -> None:
        """Initialize a project.

        Args:
            abs_root: Absolute path of the project root
            manifest: The committed manifest, if any
            lock: The committed lock, if any

        """
        self.abs_root: Path = Path(abs_root).absolute()
        self.manifest: Manifest | None = manifest
        self.lock: Lock | None = lock

    @classmethod
    def load(cls, root: str | Path) -> Project:
        """Load the manifest and lock found beneath ``root``; either may be missing.

        Raises:
            FileNotFoundError: If ``root`` is not a directory
            TOMLFormatError: If the manifest or lock cannot be parsed

        """
        abs_root = Path(root).absolute()
        if not abs_root.is_dir():
            msg = f"Project root {abs_root} does not exist"
            raise FileNotFoundError(msg)
        manifest_path = abs_root / MANIFEST_NAME
        lock_path = abs_root / LOCK_NAME
        manifest = read_manifest(manifest_path) if manifest_path.is_file() else None
        lock = read_lock(lock_path) if lock_path.is_file() else None
        logger.debug("Loaded project at %s (manifest: %s, lock: %s)", abs_root, manifest is not None, lock is not None)
        return cls(abs_root, manifest, lock)

    @property
    def manifest_path(self) -> Path:
        return self.abs_root / MANIFEST_NAME

    @property
    def lock_path(self) -> Path:
        return self.abs_root / LOCK_NAME

    @property
    def vendor_dir(self) -> Path:
        return self.abs_root / VENDOR_DIR

    def verify_vendor(self) -> dict[str, VendorStatus]:
        """Check the vendor tree against the digests in the committed lock."""
        wanted = self.lock.digests() if self.lock is not None else {}
        return check_vendor(self.vendor_dir, wanted)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self.abs_root)!r})"
