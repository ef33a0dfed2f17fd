"""High level orchestration for dotstate operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Sequence

from .config import Config, RepoMode, default_config_path
from .exceptions import DotstateError, GitSyncError, MoveConflictError, ProfileActiveError
from .filesystem import copy_entry, lexists, move_path, remove_path, symlink_points_to
from .git import GitManager
from .ledger import LEDGER_FILENAME
from .manifest import Profile, ProfileManifest, normalize_relative, validate_profile_name
from .models import COMMON_SCOPE, Operation, OperationStatus, SymlinkScope
from .symlinks import SymlinkManager
from .validation import MoveToCommonValidation, find_hierarchy_conflicts, is_ancestor, validate_move_to_common

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"
DEFAULT_COMMIT_MESSAGE = "Update dotfiles"

# Well-known dotfiles; anything else a user adds is tracked in ``custom_files``.
DEFAULT_DOTFILE_CANDIDATES: tuple[str, ...] = (
    ".bashrc",
    ".bash_profile",
    ".profile",
    ".zshrc",
    ".zprofile",
    ".gitconfig",
    ".vimrc",
    ".tmux.conf",
    ".inputrc",
    ".config/nvim",
    ".config/fish",
    ".config/starship.toml",
    ".config/alacritty",
    ".ssh/config",
)


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of a commit/pull/push round-trip."""

    committed: bool
    pulled: int
    operations: list[Operation] = field(default_factory=list)


def tally(operations: Sequence[Operation]) -> tuple[int, int, list[str]]:
    """Return ``(created, skipped, errors)`` for a batch of operations."""

    created = sum(1 for op in operations if op.status is OperationStatus.SUCCESS)
    skipped = sum(1 for op in operations if op.status is OperationStatus.SKIPPED)
    errors = [f"{op.target}: {op.detail}" for op in operations if op.status is OperationStatus.FAILED]
    return created, skipped, errors


class DotstateManager:
    """Coordinates profiles, activation, file management and sync for one repository."""

    def __init__(
        self,
        config: Config,
        *,
        config_path: Path | None = None,
        home: Path | None = None,
    ) -> None:
        self.config = config
        self.config_path = config_path if config_path is not None else default_config_path()
        self.home = home if home is not None else Path.home()
        self._manifest: ProfileManifest | None = None
        self._symlinks: SymlinkManager | None = None

    @property
    def repo_root(self) -> Path:
        return self.config.repo_path

    @property
    def manifest(self) -> ProfileManifest:
        if self._manifest is None:
            self._manifest = ProfileManifest.load_or_backfill(self.repo_root)
        return self._manifest

    @property
    def symlinks(self) -> SymlinkManager:
        if self._symlinks is None:
            self._symlinks = SymlinkManager(
                self.repo_root,
                self.home,
                backup_enabled=self.config.backup_enabled,
            )
        return self._symlinks

    def reload(self) -> None:
        """Drop cached manifest and ledger state so the next access rereads disk."""

        self._manifest = None
        self._symlinks = None

    def update_config(self, **changes: object) -> Config:
        self.config = self.config.model_copy(update=changes)
        self.config.save(self.config_path)
        return self.config

    def save_manifest(self) -> None:
        self.manifest.save(self.repo_root)

    # ------------------------------------------------------------------
    # Profiles

    def list_profiles(self) -> list[Profile]:
        return list(self.manifest.profiles)

    def create_profile(
        self,
        name: str,
        description: str | None = None,
        *,
        copy_from: str | None = None,
    ) -> Profile:
        """Create a profile, optionally seeding it with another profile's files."""

        validate_profile_name(name)
        source = self.manifest.require_profile(copy_from) if copy_from else None
        profile = self.manifest.add_profile(name, description)

        storage = self.repo_root / name
        storage.mkdir(parents=True, exist_ok=True)
        if source is not None:
            for relative in source.synced_files:
                origin = self.repo_root / source.name / relative
                if lexists(origin):
                    copy_entry(origin, storage / relative)
            self.manifest.update_synced_files(name, source.synced_files)

        self.save_manifest()
        logger.info("Created profile %s", name)
        return profile

    def delete_profile(self, name: str) -> None:
        if self.config.profile_activated and self.config.active_profile == name:
            raise ProfileActiveError(f"Profile '{name}' is active; deactivate or switch profiles first")

        self.manifest.remove_profile(name)
        storage = self.repo_root / name
        if lexists(storage):
            remove_path(storage)
        self.save_manifest()

        if self.config.active_profile == name:
            self.update_config(active_profile="")
        logger.info("Deleted profile %s", name)

    # ------------------------------------------------------------------
    # Activation

    def activate(self, profile_name: str | None = None) -> list[Operation]:
        """Symlink the profile's and common files into the home directory."""

        name = profile_name or self.config.active_profile
        if not name:
            raise DotstateError("No profile selected; pass a profile name or switch to one first")
        profile = self.manifest.require_profile(name)

        operations = self.symlinks.activate(name, profile.synced_files, self.manifest.get_common_files())
        if all(op.ok for op in operations):
            self.update_config(active_profile=name, profile_activated=True)
        else:
            logger.warning("Activation of %s finished with failures; configuration left unchanged", name)
        return operations

    def deactivate(self, *, restore: bool = True) -> list[Operation]:
        name = self.config.active_profile or self.symlinks.ledger.active_profile
        if not name:
            raise DotstateError("No profile is active")

        operations = self.symlinks.deactivate(name, restore=restore)
        if all(op.ok for op in operations):
            self.update_config(profile_activated=False)
        return operations

    def switch_profile(self, name: str) -> list[Operation]:
        """Select ``name``; when a profile is active its links are swapped over."""

        self.manifest.require_profile(name)
        if not self.config.profile_activated:
            self.update_config(active_profile=name)
            return []

        operations: list[Operation] = []
        current = self.config.active_profile
        if current and current != name:
            operations.extend(self.symlinks.deactivate(current, restore=False))
            if not all(op.ok for op in operations):
                return operations
        operations.extend(self.activate(name))
        return operations

    def ensure_profile_symlinks(self, profile_name: str | None = None) -> tuple[int, int, list[str]]:
        """Make sure every file of the profile is linked; returns ``(created, skipped, errors)``."""

        name = profile_name or self.config.active_profile
        profile = self.manifest.require_profile(name)
        operations = self.symlinks.link_files(SymlinkScope.for_profile(name), profile.synced_files)
        return tally(operations)

    def ensure_common_symlinks(self) -> tuple[int, int, list[str]]:
        operations = self.symlinks.activate_common(self.manifest.get_common_files())
        return tally(operations)

    # ------------------------------------------------------------------
    # Files

    def add_file(self, path: Path, *, common: bool = False) -> Operation:
        """Move a file from the home directory into storage and link it back."""

        target = self._absolute(path)
        relative = self._home_relative(target)
        scope = self._scope(common)

        if relative in self._bucket_files(scope):
            return Operation.skipped(target, self.repo_root / scope.storage_name() / relative, "already synced")
        if not lexists(target):
            raise DotstateError(f"'{target}' does not exist")
        if target.is_dir() and not target.is_symlink() and (target / ".git").exists():
            raise DotstateError(f"'{target}' is a git repository and cannot be synced")
        self._check_overlap(relative, scope)

        storage = self.repo_root / scope.storage_name() / relative
        if lexists(storage):
            raise DotstateError(f"'{storage}' already exists in the repository")

        move_path(target, storage)
        [operation] = self.symlinks.link_files(scope, [relative])
        if not operation.ok:
            move_path(storage, target)
            logger.warning("Rolled back adding %s: %s", relative, operation.detail)
            return operation

        if scope.is_common:
            self.manifest.add_common_file(relative)
        else:
            self.manifest.add_synced_file(scope.storage_name(), relative)
        self.save_manifest()

        if relative not in DEFAULT_DOTFILE_CANDIDATES and relative not in self.config.custom_files:
            self.update_config(custom_files=(*self.config.custom_files, relative))
        logger.info("Added %s to %s", relative, scope)
        return operation

    def remove_file(self, path: Path | str, *, common: bool = False) -> bool:
        """Stop syncing a file and move its content back into the home directory.

        Returns ``False`` when the file was not synced.
        """

        relative = self._relative_argument(path)
        scope = self._scope(common)
        if relative not in self._bucket_files(scope):
            return False

        target = self.home / relative
        storage = self.repo_root / scope.storage_name() / relative
        self.symlinks.deactivate_targets([target], restore=False)
        if symlink_points_to(target, storage):
            target.unlink()
        if lexists(target):
            raise DotstateError(f"'{target}' exists and is not managed by dotstate; refusing to overwrite it")
        if lexists(storage):
            move_path(storage, target)

        if scope.is_common:
            self.manifest.remove_common_file(relative)
        else:
            self.manifest.remove_synced_file(scope.storage_name(), relative)
        self.save_manifest()

        if relative in self.config.custom_files:
            self.update_config(custom_files=tuple(item for item in self.config.custom_files if item != relative))
        logger.info("Removed %s from %s", relative, scope)
        return True

    def move_to_common(self, profile_name: str, path: Path | str, *, force: bool = False) -> MoveToCommonValidation:
        """Move a profile's file into common storage.

        Identical copies in other profiles are cleaned up. Differing copies
        block the move unless ``force`` is set, in which case they are
        discarded. Hierarchy conflicts always block.

        Raises:
            MoveConflictError: when the move is blocked.
        """

        relative = self._relative_argument(path)
        profile = self.manifest.require_profile(profile_name)
        if relative not in profile.synced_files:
            raise DotstateError(f"'{relative}' is not synced by profile '{profile_name}'")
        if relative in self.manifest.get_common_files():
            raise DotstateError(f"'{relative}' is already a common file")
        if find_hierarchy_conflicts(relative, COMMON_SCOPE, self.manifest.get_common_files()):
            raise DotstateError(f"'{relative}' overlaps a path already in common")

        validation = validate_move_to_common(self.repo_root, profile_name, relative, self.manifest)
        if not validation.can_proceed and not (force and validation.requires_confirmation):
            details = "; ".join(conflict.describe() for conflict in validation.blocking_conflicts)
            raise MoveConflictError(f"Cannot move '{relative}' to common: {details}", validation)

        source = self.repo_root / profile_name / relative
        destination = self.repo_root / COMMON_SCOPE / relative
        if lexists(destination):
            raise DotstateError(f"'{destination}' already exists in the repository")
        if lexists(source):
            move_path(source, destination)

        cleaned = list(validation.profiles_to_cleanup)
        if force:
            cleaned.extend(name for name in validation.overwritten_profiles if name not in cleaned)
        for other in cleaned:
            self.manifest.remove_synced_file(other, relative)
            copy = self.repo_root / other / relative
            if lexists(copy):
                remove_path(copy)
            logger.info("Removed %s from profile %s", relative, other)

        self.manifest.remove_synced_file(profile_name, relative)
        self.manifest.add_common_file(relative)
        self.save_manifest()

        owners = {profile_name, *cleaned}
        record = self.symlinks.ledger.get(self.home / relative)
        if record is not None and record.scope.profile in owners:
            self.symlinks.relink(record, destination, SymlinkScope.common())
        logger.info("Moved %s from %s to common", relative, profile_name)
        return validation

    # ------------------------------------------------------------------
    # Sync

    def sync(self, message: str | None = None, *, git: GitManager | None = None) -> SyncResult:
        """Commit local changes, pull with rebase, push, and relink pulled files."""

        git = git if git is not None else GitManager.open(self.repo_root)
        token: str | None = None
        if self.config.repo_mode is RepoMode.GITHUB:
            token = self.config.get_github_token()
            if not token:
                raise GitSyncError("No GitHub token configured; set DOTSTATE_GITHUB_TOKEN or github_token")

        ensure_gitignored(self.repo_root, LEDGER_FILENAME)
        branch = git.get_current_branch() or self.config.default_branch
        committed = git.commit_all(message or DEFAULT_COMMIT_MESSAGE)
        pulled = git.pull_with_rebase(DEFAULT_REMOTE, branch, token)
        git.push(DEFAULT_REMOTE, branch, token)

        operations: list[Operation] = []
        if pulled:
            self.reload()
            if self.config.profile_activated and self.manifest.has_profile(self.config.active_profile):
                profile = self.manifest.require_profile(self.config.active_profile)
                scope = SymlinkScope.for_profile(profile.name)
                operations.extend(self.symlinks.link_files(scope, profile.synced_files))
                operations.extend(self.symlinks.activate_common(self.manifest.get_common_files()))
        logger.info("Synced %s: committed=%s pulled=%d", branch, committed, pulled)
        return SyncResult(committed=committed, pulled=pulled, operations=operations)

    # ------------------------------------------------------------------
    # Internal helpers

    def _scope(self, common: bool) -> SymlinkScope:
        if common:
            return SymlinkScope.common()
        if not self.config.active_profile:
            raise DotstateError("No profile selected; switch to a profile or use --common")
        self.manifest.require_profile(self.config.active_profile)
        return SymlinkScope.for_profile(self.config.active_profile)

    def _bucket_files(self, scope: SymlinkScope) -> list[str]:
        if scope.is_common:
            return self.manifest.get_common_files()
        return list(self.manifest.require_profile(scope.storage_name()).synced_files)

    def _check_overlap(self, relative: str, scope: SymlinkScope) -> None:
        common_files = self.manifest.get_common_files()
        if not scope.is_common and relative in common_files:
            raise DotstateError(f"'{relative}' is already a common file")
        if scope.is_common:
            for profile in self.manifest.profiles:
                if relative in profile.synced_files:
                    raise DotstateError(
                        f"'{relative}' is synced by profile '{profile.name}'; use move-to-common instead"
                    )

        candidates = list(common_files)
        if not scope.is_common:
            candidates.extend(self._bucket_files(scope))
        else:
            for profile in self.manifest.profiles:
                candidates.extend(profile.synced_files)
        moved = PurePosixPath(relative)
        for other in candidates:
            other_path = PurePosixPath(other)
            if is_ancestor(other_path, moved) or is_ancestor(moved, other_path):
                raise DotstateError(f"'{relative}' overlaps already synced path '{other}'")

    def _absolute(self, path: Path) -> Path:
        expanded = Path(path).expanduser()
        if not expanded.is_absolute():
            expanded = Path.cwd() / expanded
        # Resolve the parent only so a symlink at the target itself is kept.
        return expanded.parent.resolve(strict=False) / expanded.name

    def _home_relative(self, target: Path) -> str:
        home = self.home.resolve(strict=False)
        try:
            relative = target.relative_to(home)
        except ValueError as exc:
            raise DotstateError(f"'{target}' is not inside the home directory '{home}'") from exc
        try:
            return normalize_relative(relative)
        except ValueError as exc:
            raise DotstateError(str(exc)) from exc

    def _relative_argument(self, path: Path | str) -> str:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return self._home_relative(self._absolute(candidate))
        try:
            return normalize_relative(candidate)
        except ValueError as exc:
            raise DotstateError(str(exc)) from exc


def ensure_gitignored(repo_root: Path, entry: str) -> bool:
    """Append ``entry`` to the repository's ``.gitignore``; returns ``True`` if it was added."""

    gitignore = repo_root / ".gitignore"
    lines = gitignore.read_text().splitlines() if gitignore.exists() else []
    if entry in lines or f"/{entry}" in lines:
        return False
    lines.append(f"/{entry}")
    gitignore.write_text("\n".join(lines) + "\n")
    return True
