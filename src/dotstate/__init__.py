"""Core package for the dotstate project."""

from .cli import app, run
from .config import Config, RepoMode
from .doctor import Doctor, DoctorReport, ValidationResult, ValidationStatus
from .exceptions import (
    ConfigError,
    DotstateError,
    DuplicateProfileError,
    GitSyncError,
    LedgerCorruptError,
    ManifestCorruptError,
    ManifestError,
    ManifestNotFoundError,
    MoveConflictError,
    ProfileActiveError,
    UnknownProfileError,
)
from .ledger import SymlinkLedger
from .manager import DotstateManager
from .manifest import Profile, ProfileManifest
from .models import Operation, OperationStatus, SymlinkRecord, SymlinkScope
from .symlinks import SymlinkManager
from .validation import MoveToCommonValidation, validate_move_to_common

__all__ = [
    "Config",
    "RepoMode",
    "Doctor",
    "DoctorReport",
    "ValidationResult",
    "ValidationStatus",
    "ConfigError",
    "DotstateError",
    "DuplicateProfileError",
    "GitSyncError",
    "LedgerCorruptError",
    "ManifestCorruptError",
    "ManifestError",
    "ManifestNotFoundError",
    "MoveConflictError",
    "ProfileActiveError",
    "UnknownProfileError",
    "SymlinkLedger",
    "DotstateManager",
    "Profile",
    "ProfileManifest",
    "Operation",
    "OperationStatus",
    "SymlinkRecord",
    "SymlinkScope",
    "SymlinkManager",
    "MoveToCommonValidation",
    "validate_move_to_common",
    "app",
    "run",
]
