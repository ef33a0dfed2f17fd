"""Conflict detection for moving a profile file into common storage.

Before a file leaves a profile for the shared ``common`` bucket every other
profile is inspected:

* a profile that syncs the very same relative path is a *content* conflict.
  Identical content can be cleaned up automatically; different content blocks
  the move until a user explicitly overrides it.
* a profile that syncs a parent or child of the path is a *hierarchy*
  conflict. Those always block, because the move would change which concrete
  files the other profile covers.

Directory content is compared by immediate entry names only; files nested
below identically named entries are not compared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath

from .filesystem import same_content
from .manifest import ProfileManifest, normalize_relative

logger = logging.getLogger(__name__)


class ConflictKind(str, Enum):
    SAME_CONTENT = "same_content"
    DIFFERENT_CONTENT = "different_content"
    PATH_HIERARCHY = "path_hierarchy"


@dataclass(frozen=True, slots=True)
class MoveToCommonConflict:
    """A single reason why another profile is affected by the move."""

    kind: ConflictKind
    profile_name: str
    conflicting_path: str | None = None
    is_parent: bool = False
    size_diff: tuple[int, int] | None = None

    @property
    def blocking(self) -> bool:
        return self.kind is not ConflictKind.SAME_CONTENT

    def describe(self) -> str:
        if self.kind is ConflictKind.SAME_CONTENT:
            return f"Profile '{self.profile_name}' has an identical copy (will be cleaned up)"
        if self.kind is ConflictKind.DIFFERENT_CONTENT:
            if self.size_diff is not None:
                ours, theirs = self.size_diff
                return f"Profile '{self.profile_name}' has a different version ({ours} bytes vs {theirs} bytes)"
            return f"Profile '{self.profile_name}' has a different version"
        relation = "parent directory" if self.is_parent else "child path"
        return f"Profile '{self.profile_name}' syncs {relation} '{self.conflicting_path}'"


@dataclass(slots=True)
class MoveToCommonValidation:
    """Outcome of validating a move to common."""

    can_proceed: bool = True
    conflicts: list[MoveToCommonConflict] = field(default_factory=list)
    all_auto_resolvable: bool = True
    profiles_to_cleanup: list[str] = field(default_factory=list)

    @classmethod
    def safe(cls) -> "MoveToCommonValidation":
        return cls()

    @property
    def blocking_conflicts(self) -> list[MoveToCommonConflict]:
        return [conflict for conflict in self.conflicts if conflict.blocking]

    @property
    def requires_confirmation(self) -> bool:
        """True when every blocking conflict is a content difference a user may override."""

        blocking = self.blocking_conflicts
        return bool(blocking) and all(c.kind is ConflictKind.DIFFERENT_CONTENT for c in blocking)

    @property
    def overwritten_profiles(self) -> list[str]:
        """Profiles whose differing copy is discarded if the user overrides."""

        return [c.profile_name for c in self.conflicts if c.kind is ConflictKind.DIFFERENT_CONTENT]


def validate_move_to_common(
    repo_root: Path,
    source_profile: str,
    relative_path: str,
    manifest: ProfileManifest | None = None,
) -> MoveToCommonValidation:
    """Check whether ``relative_path`` can move from ``source_profile`` to common."""

    relative = normalize_relative(relative_path)
    source_file = repo_root / source_profile / relative
    if not source_file.exists() and not source_file.is_symlink():
        return MoveToCommonValidation.safe()

    if manifest is None:
        manifest = ProfileManifest.load_or_backfill(repo_root)

    conflicts: list[MoveToCommonConflict] = []
    profiles_to_cleanup: list[str] = []

    for profile in manifest.profiles:
        if profile.name == source_profile:
            continue

        if relative in profile.synced_files:
            conflict = _compare_copies(source_file, repo_root / profile.name / relative, profile.name)
            if conflict.kind is ConflictKind.SAME_CONTENT:
                profiles_to_cleanup.append(profile.name)
            conflicts.append(conflict)

        conflicts.extend(find_hierarchy_conflicts(relative, profile.name, profile.synced_files))

    if not conflicts:
        return MoveToCommonValidation.safe()

    has_blocking = any(conflict.blocking for conflict in conflicts)
    return MoveToCommonValidation(
        can_proceed=not has_blocking,
        conflicts=conflicts,
        all_auto_resolvable=not has_blocking,
        profiles_to_cleanup=profiles_to_cleanup,
    )


def find_hierarchy_conflicts(
    relative_path: str,
    profile_name: str,
    synced_files: list[str],
) -> list[MoveToCommonConflict]:
    """Return conflicts for synced paths that are ancestors or descendants of ``relative_path``."""

    moved = PurePosixPath(relative_path)
    conflicts: list[MoveToCommonConflict] = []
    for synced in synced_files:
        other = PurePosixPath(synced)
        if other == moved:
            continue
        if is_ancestor(other, moved):
            conflicts.append(
                MoveToCommonConflict(
                    kind=ConflictKind.PATH_HIERARCHY,
                    profile_name=profile_name,
                    conflicting_path=synced,
                    is_parent=True,
                )
            )
        elif is_ancestor(moved, other):
            conflicts.append(
                MoveToCommonConflict(
                    kind=ConflictKind.PATH_HIERARCHY,
                    profile_name=profile_name,
                    conflicting_path=synced,
                    is_parent=False,
                )
            )
    return conflicts


def is_ancestor(parent: PurePosixPath, child: PurePosixPath) -> bool:
    """Return ``True`` if ``parent`` is a strict path-component prefix of ``child``."""

    return len(parent.parts) < len(child.parts) and child.parts[: len(parent.parts)] == parent.parts


def _compare_copies(source_file: Path, other_file: Path, profile_name: str) -> MoveToCommonConflict:
    if not other_file.exists():
        # Listed but absent locally, typically synced from another machine.
        return MoveToCommonConflict(kind=ConflictKind.SAME_CONTENT, profile_name=profile_name)

    try:
        identical = same_content(source_file, other_file)
    except OSError as exc:
        logger.warning("Failed to compare %s and %s: %s", source_file, other_file, exc)
        return MoveToCommonConflict(kind=ConflictKind.DIFFERENT_CONTENT, profile_name=profile_name)

    if identical:
        return MoveToCommonConflict(kind=ConflictKind.SAME_CONTENT, profile_name=profile_name)

    size_diff: tuple[int, int] | None
    try:
        size_diff = (source_file.stat().st_size, other_file.stat().st_size)
    except OSError:
        size_diff = None
    return MoveToCommonConflict(
        kind=ConflictKind.DIFFERENT_CONTENT,
        profile_name=profile_name,
        size_diff=size_diff,
    )
