"""The `depvendor` APIs."""

__version__ = "0.1.0"

from .models import (
    LOCK_NAME,
    MANIFEST_NAME,
    VENDOR_DIR,
    CascadingPruneOptions,
    Lock,
    LockedProject,
    Manifest,
    ProjectConstraint,
    PruneOptions,
    VersionedDigest,
)
from .planner import VendorBehavior, WritePlan, WritePlanError, plan_write
from .changes import ChangeReason, change_explanation, classify_changes
from .project import Project
from .source import DirectorySourceProvider, ExportCancelledError, ExportError, GitSourceProvider, SourceProvider
from .writer import DeltaWriter, SafeWriter, TreeWriter, WriteError, new_delta_writer

__all__ = [
    "LOCK_NAME",
    "MANIFEST_NAME",
    "VENDOR_DIR",
    "CascadingPruneOptions",
    "ChangeReason",
    "DeltaWriter",
    "DirectorySourceProvider",
    "ExportCancelledError",
    "ExportError",
    "GitSourceProvider",
    "Lock",
    "LockedProject",
    "Manifest",
    "Project",
    "ProjectConstraint",
    "PruneOptions",
    "SafeWriter",
    "SourceProvider",
    "TreeWriter",
    "VendorBehavior",
    "VersionedDigest",
    "WriteError",
    "WritePlan",
    "WritePlanError",
    "change_explanation",
    "classify_changes",
    "new_delta_writer",
    "plan_write",
]
