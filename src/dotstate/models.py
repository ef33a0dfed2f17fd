"""Shared models and enums for dotstate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

COMMON_SCOPE = "common"


class EntryType(str, Enum):
    """Kinds of filesystem objects found at a managed location."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    MISSING = "missing"


@dataclass(frozen=True, slots=True)
class SymlinkScope:
    """Owner of a symlink: a named profile, or the shared common bucket."""

    profile: str | None = None

    @classmethod
    def common(cls) -> "SymlinkScope":
        return cls(profile=None)

    @classmethod
    def for_profile(cls, name: str) -> "SymlinkScope":
        return cls(profile=name)

    @classmethod
    def parse(cls, raw: str) -> "SymlinkScope":
        if raw == COMMON_SCOPE:
            return cls.common()
        prefix = "profile:"
        if not raw.startswith(prefix) or len(raw) == len(prefix):
            raise ValueError(f"Invalid symlink scope '{raw}'")
        return cls.for_profile(raw[len(prefix) :])

    @property
    def is_common(self) -> bool:
        return self.profile is None

    def storage_name(self) -> str:
        """Directory name inside the repository holding this scope's files."""

        return COMMON_SCOPE if self.profile is None else self.profile

    def matches(self, profile_name: str) -> bool:
        return self.profile is None or self.profile == profile_name

    def __str__(self) -> str:
        return COMMON_SCOPE if self.profile is None else f"profile:{self.profile}"


@dataclass(frozen=True, slots=True)
class SymlinkRecord:
    """A symlink created by dotstate, identified by its target in the home directory."""

    source: Path
    target: Path
    scope: SymlinkScope
    backup: Path | None = None


class OperationStatus(str, Enum):
    """Outcome of a single activation or deactivation step."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


# Reasons reported alongside skipped and failed operations.
ALREADY_CORRECT = "already correct"
ALREADY_ABSENT = "already absent"
NOT_OUR_SYMLINK = "not our symlink"
SOURCE_MISSING = "source missing in repository"
WOULD_OVERWRITE = "would overwrite existing file"
NOT_TRACKED = "not tracked"


@dataclass(frozen=True, slots=True)
class Operation:
    """Per-file result emitted by the activation engine."""

    target: Path
    source: Path
    status: OperationStatus
    detail: str | None = None

    @classmethod
    def success(cls, target: Path, source: Path, detail: str | None = None) -> "Operation":
        return cls(target=target, source=source, status=OperationStatus.SUCCESS, detail=detail)

    @classmethod
    def skipped(cls, target: Path, source: Path, reason: str) -> "Operation":
        return cls(target=target, source=source, status=OperationStatus.SKIPPED, detail=reason)

    @classmethod
    def failed(cls, target: Path, source: Path, message: str) -> "Operation":
        return cls(target=target, source=source, status=OperationStatus.FAILED, detail=message)

    @property
    def ok(self) -> bool:
        return self.status is not OperationStatus.FAILED


@dataclass(frozen=True, slots=True)
class OperationSummary:
    """Aggregate counts computed from a list of operations."""

    succeeded: int
    skipped: int
    failed: int

    @classmethod
    def from_operations(cls, operations: list[Operation]) -> "OperationSummary":
        succeeded = sum(1 for op in operations if op.status is OperationStatus.SUCCESS)
        skipped = sum(1 for op in operations if op.status is OperationStatus.SKIPPED)
        return cls(succeeded=succeeded, skipped=skipped, failed=len(operations) - succeeded - skipped)
