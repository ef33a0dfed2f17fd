"""Exception hierarchy for dotstate."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import MoveToCommonValidation


class DotstateError(RuntimeError):
    """Base class for every error raised by dotstate."""


class ConfigError(DotstateError):
    """Raised when the configuration file cannot be parsed or validated."""


class ManifestError(DotstateError):
    """Errors related to the profile manifest."""


class ManifestNotFoundError(ManifestError):
    """Raised when the repository has no manifest file."""


class ManifestCorruptError(ManifestError):
    """Raised when the manifest exists but cannot be parsed."""


class DuplicateProfileError(ManifestError):
    """Raised when creating a profile whose name is already taken."""


class UnknownProfileError(ManifestError):
    """Raised when a profile name is not present in the manifest."""


class InvalidProfileNameError(ManifestError):
    """Raised when a profile name cannot be used as a storage directory."""


class LedgerCorruptError(DotstateError):
    """Raised when the symlink tracking file exists but cannot be parsed."""


class ProfileActiveError(DotstateError):
    """Raised when an operation is not allowed on the active profile."""


class GitSyncError(DotstateError):
    """Raised when a git operation fails."""


class MoveConflictError(DotstateError):
    """Raised when moving a file to common is blocked by conflicts."""

    def __init__(self, message: str, validation: "MoveToCommonValidation") -> None:
        super().__init__(message)
        self.validation = validation
