"""Consistency auditor for the configuration, repository, manifest and symlinks.

The doctor runs a fixed list of checks grouped into ordered categories. A check
never aborts the audit: unexpected exceptions become an ``error`` result for
that check. With ``fix=True`` every distinct fix action attached to a failing,
fixable result runs once after the audit finishes.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from git import Git, GitCommandError
from pydantic import BaseModel, ConfigDict

from .config import Config, default_config_path
from .exceptions import DotstateError, LedgerCorruptError, ManifestCorruptError, ManifestNotFoundError
from .filesystem import dir_size, format_size, lexists, symlink_points_to
from .git import GitManager, is_git_repo, redact_credentials
from .ledger import SymlinkLedger
from .manager import DotstateManager
from .manifest import ProfileManifest
from .models import COMMON_SCOPE
from .symlinks import default_backup_root
from .validation import find_hierarchy_conflicts

logger = logging.getLogger(__name__)

FIX_REBUILD_MANIFEST = "Rebuild manifest"
FIX_SYNC_ACTIVATION = "Sync activation state"
FIX_REACTIVATE = "Re-activate profile"
FIX_CLEANUP_MISSING = "Clean up missing symlinks"

BACKUP_WARNING_BYTES = 100 * 1024 * 1024
DISK_WARNING_PERCENT = 80.0
DISK_ERROR_PERCENT = 90.0
DETAIL_LIMIT = 5


class CheckCategory(str, Enum):
    ENVIRONMENT = "Environment"
    CONFIGURATION = "Configuration"
    REPOSITORY = "Repository"
    PROFILES = "Profiles"
    SYMLINKS = "Symlinks"
    BACKUPS = "Backups"
    FILESYSTEM = "Filesystem"


class ValidationStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    ERROR = "error"


class ValidationResult(BaseModel):
    """Outcome of a single doctor check."""

    model_config = ConfigDict(frozen=True)

    category: CheckCategory
    check_name: str
    message: str
    status: ValidationStatus
    fixable: bool = False
    fix_action: str | None = None
    details: str | None = None
    duration_ms: float = 0.0


class FixOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str
    success: bool
    message: str


class DoctorSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    passed: int
    warnings: int
    errors: int
    fixable: int
    fixed: int
    duration_ms: float


class DoctorReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[ValidationResult]
    fixes: list[FixOutcome]
    summary: DoctorSummary

    @property
    def has_errors(self) -> bool:
        return self.summary.errors > 0


@dataclass(frozen=True, slots=True)
class _Finding:
    status: ValidationStatus
    message: str
    fix_action: str | None = None
    details: str | None = None
    name: str | None = None


def _ok(message: str, details: str | None = None) -> _Finding:
    return _Finding(ValidationStatus.PASS, message, details=details)


def _warn(
    message: str, fix_action: str | None = None, details: str | None = None, *, name: str | None = None
) -> _Finding:
    return _Finding(ValidationStatus.WARNING, message, fix_action, details, name)


def _error(
    message: str, fix_action: str | None = None, details: str | None = None, *, name: str | None = None
) -> _Finding:
    return _Finding(ValidationStatus.ERROR, message, fix_action, details, name)


CheckFn = Callable[[], list[_Finding]]


class Doctor:
    """Runs every check and optionally repairs what it can."""

    def __init__(
        self,
        config: Config,
        *,
        config_path: Path | None = None,
        fix: bool = False,
        verbose: bool = False,
        home: Path | None = None,
    ) -> None:
        self.config = config
        self.config_path = config_path if config_path is not None else default_config_path()
        self.fix = fix
        self.verbose = verbose
        self.home = home if home is not None else Path.home()
        self._manifest: ProfileManifest | None = None
        self._ledger: SymlinkLedger | None = None
        self._git: GitManager | None = None

    @property
    def repo_root(self) -> Path:
        return self.config.repo_path

    def run(self) -> DoctorReport:
        started = time.perf_counter()
        results: list[ValidationResult] = []
        for category, checks in self._plan():
            for name, check in checks:
                results.extend(self._run_check(category, name, check))

        fixes = self._apply_fixes(results) if self.fix else []
        succeeded = {outcome.action for outcome in fixes if outcome.success}

        summary = DoctorSummary(
            total=len(results),
            passed=sum(1 for r in results if r.status is ValidationStatus.PASS),
            warnings=sum(1 for r in results if r.status is ValidationStatus.WARNING),
            errors=sum(1 for r in results if r.status is ValidationStatus.ERROR),
            fixable=sum(1 for r in results if r.fixable),
            fixed=sum(1 for r in results if r.fixable and r.fix_action in succeeded),
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return DoctorReport(results=results, fixes=fixes, summary=summary)

    def _plan(self) -> list[tuple[CheckCategory, list[tuple[str, CheckFn]]]]:
        return [
            (
                CheckCategory.ENVIRONMENT,
                [
                    ("Git", self._check_git),
                    ("Shell", self._check_shell),
                    ("Home directory", self._check_home),
                ],
            ),
            (
                CheckCategory.CONFIGURATION,
                [
                    ("Config file", self._check_config_file),
                    ("Repository path", self._check_repo_path),
                    ("Active profile", self._check_active_profile_set),
                ],
            ),
            (
                CheckCategory.REPOSITORY,
                [
                    ("Git repository", self._check_git_repo),
                    ("Remote", self._check_remote),
                    ("Working tree", self._check_working_tree),
                    ("Branch status", self._check_branch_status),
                ],
            ),
            (
                CheckCategory.PROFILES,
                [
                    ("Manifest", self._check_manifest),
                    ("Active profile exists", self._check_active_profile_exists),
                    ("Profile files", self._check_profile_files),
                    ("Common files", self._check_common_files),
                    ("Manifest invariants", self._check_manifest_invariants),
                ],
            ),
            (
                CheckCategory.SYMLINKS,
                [
                    ("Activation state", self._check_activation_state),
                    ("Tracking", self._check_tracking),
                    ("Orphaned symlinks", self._check_orphans),
                    ("Coverage", self._check_coverage),
                    ("Validity", self._check_validity),
                ],
            ),
            (
                CheckCategory.BACKUPS,
                [
                    ("Backups enabled", self._check_backups_enabled),
                    ("Backup directory", self._check_backup_directory),
                ],
            ),
            (
                CheckCategory.FILESYSTEM,
                [
                    ("Repository writable", lambda: self._check_writable(self.repo_root)),
                    ("Home writable", lambda: self._check_writable(self.home)),
                    ("Disk usage", self._check_disk_usage),
                ],
            ),
        ]

    def _run_check(self, category: CheckCategory, name: str, check: CheckFn) -> list[ValidationResult]:
        started = time.perf_counter()
        try:
            findings = check()
        except Exception as exc:
            logger.debug("Check %s/%s raised", category.value, name, exc_info=True)
            findings = [_error(f"Check failed: {exc}")]
        elapsed = (time.perf_counter() - started) * 1000

        return [
            ValidationResult(
                category=category,
                check_name=finding.name or name,
                message=finding.message,
                status=finding.status,
                fixable=finding.fix_action is not None and finding.status is not ValidationStatus.PASS,
                fix_action=finding.fix_action,
                details=finding.details,
                duration_ms=elapsed,
            )
            for finding in findings
        ]

    def _details(self, items: list[str]) -> str | None:
        if not items:
            return None
        if self.verbose or len(items) <= DETAIL_LIMIT:
            return "\n".join(items)
        hidden = len(items) - DETAIL_LIMIT
        return "\n".join([*items[:DETAIL_LIMIT], f"... and {hidden} more (use --verbose)"])

    # ------------------------------------------------------------------
    # Environment

    def _check_git(self) -> list[_Finding]:
        if shutil.which("git") is None:
            return [_error("git executable not found on PATH")]
        try:
            version = Git().version()
        except GitCommandError as exc:
            return [_error(f"git is installed but failed to run: {exc}")]
        return [_ok(version.strip())]

    def _check_shell(self) -> list[_Finding]:
        shell = os.environ.get("SHELL")
        if not shell:
            return [_warn("SHELL is not set")]
        return [_ok(f"Using {shell}")]

    def _check_home(self) -> list[_Finding]:
        if not self.home.is_dir():
            return [_error(f"Home directory '{self.home}' does not exist")]
        return [_ok(str(self.home))]

    # ------------------------------------------------------------------
    # Configuration

    def _check_config_file(self) -> list[_Finding]:
        if not self.config_path.exists():
            return [_warn(f"Configuration file '{self.config_path}' not found; defaults are in use")]
        return [_ok(str(self.config_path))]

    def _check_repo_path(self) -> list[_Finding]:
        if not self.repo_root.is_dir():
            return [_error(f"Repository path '{self.repo_root}' does not exist")]
        return [_ok(str(self.repo_root))]

    def _check_active_profile_set(self) -> list[_Finding]:
        if not self.config.active_profile:
            return [_warn("No active profile selected")]
        return [_ok(f"Active profile is '{self.config.active_profile}'")]

    # ------------------------------------------------------------------
    # Repository

    def _repo(self) -> GitManager | None:
        if self._git is None and self.repo_root.is_dir() and is_git_repo(self.repo_root):
            self._git = GitManager.open(self.repo_root)
        return self._git

    def _check_git_repo(self) -> list[_Finding]:
        if self._repo() is None:
            return [_error(f"'{self.repo_root}' is not a git repository")]
        return [_ok("Repository is a git repository")]

    def _check_remote(self) -> list[_Finding]:
        git = self._repo()
        if git is None:
            return []
        url = git.remote_url("origin")
        if url is None:
            return [_warn("No 'origin' remote configured")]
        return [_ok(f"origin -> {redact_credentials(url)}")]

    def _check_working_tree(self) -> list[_Finding]:
        git = self._repo()
        if git is None:
            return []
        changes = git.uncommitted_changes()
        if changes:
            return [_warn(f"{len(changes)} uncommitted changes", details=self._details(changes))]
        return [_ok("Working tree is clean")]

    def _check_branch_status(self) -> list[_Finding]:
        git = self._repo()
        if git is None:
            return []
        branch = git.get_current_branch()
        if branch is None:
            return [_warn("HEAD is detached")]
        counts = git.ahead_behind("origin", branch)
        if counts is None:
            return [_warn(f"Branch '{branch}' has no upstream on origin")]
        ahead, behind = counts
        if behind:
            return [_warn(f"Branch '{branch}' is {behind} commit(s) behind origin; run sync")]
        if ahead:
            return [_ok(f"Branch '{branch}' is {ahead} commit(s) ahead of origin")]
        return [_ok(f"Branch '{branch}' is up to date")]

    # ------------------------------------------------------------------
    # Profiles

    def _check_manifest(self) -> list[_Finding]:
        try:
            self._manifest = ProfileManifest.load(self.repo_root)
        except ManifestNotFoundError as exc:
            return [_warn(str(exc), FIX_REBUILD_MANIFEST)]
        except ManifestCorruptError as exc:
            return [_error(str(exc), FIX_REBUILD_MANIFEST)]
        count = len(self._manifest.profiles)
        return [_ok(f"Manifest lists {count} profile(s) and {len(self._manifest.common.synced_files)} common file(s)")]

    def _check_active_profile_exists(self) -> list[_Finding]:
        if self._manifest is None or not self.config.active_profile:
            return []
        if not self._manifest.has_profile(self.config.active_profile):
            return [_error(f"Active profile '{self.config.active_profile}' is not in the manifest")]
        return [_ok(f"Profile '{self.config.active_profile}' exists")]

    def _check_profile_files(self) -> list[_Finding]:
        if self._manifest is None or not self.config.active_profile:
            return []
        profile = self._manifest.get_profile(self.config.active_profile)
        if profile is None:
            return []
        return [self._storage_finding(profile.name, profile.synced_files)]

    def _check_common_files(self) -> list[_Finding]:
        if self._manifest is None:
            return []
        return [self._storage_finding(COMMON_SCOPE, self._manifest.get_common_files())]

    def _storage_finding(self, bucket: str, files: list[str]) -> _Finding:
        missing = [relative for relative in files if not lexists(self.repo_root / bucket / relative)]
        if missing:
            return _error(f"{len(missing)} file(s) of '{bucket}' missing from storage", details=self._details(missing))
        return _ok(f"All {len(files)} file(s) of '{bucket}' present in storage")

    def _check_manifest_invariants(self) -> list[_Finding]:
        if self._manifest is None:
            return []
        common = self._manifest.get_common_files()
        problems: list[str] = []
        for profile in self._manifest.profiles:
            for relative in profile.synced_files:
                if relative in common:
                    problems.append(f"'{relative}' is in both common and profile '{profile.name}'")
            for common_path in common:
                for conflict in find_hierarchy_conflicts(common_path, profile.name, profile.synced_files):
                    relation = "contains" if conflict.is_parent else "is inside"
                    problems.append(
                        f"'{conflict.conflicting_path}' of profile '{profile.name}' "
                        f"{relation} common path '{common_path}'"
                    )
        if problems:
            return [_error(f"{len(problems)} overlap(s) between common and profiles", details=self._details(problems))]
        return [_ok("Common and profile paths do not overlap")]

    # ------------------------------------------------------------------
    # Symlinks

    def _load_ledger(self) -> SymlinkLedger:
        if self._ledger is None:
            self._ledger = SymlinkLedger.load_or_init(self.repo_root)
        return self._ledger

    def _activated_profile(self) -> str | None:
        ledger = self._load_ledger()
        if ledger.active_profile:
            return ledger.active_profile
        if self.config.profile_activated and self.config.active_profile:
            return self.config.active_profile
        return None

    def _check_activation_state(self) -> list[_Finding]:
        try:
            ledger = self._load_ledger()
        except LedgerCorruptError as exc:
            return [_error(str(exc))]

        tracked = ledger.active_profile
        if self.config.profile_activated and not tracked:
            return [_warn("Configuration says a profile is active but no symlinks are tracked", FIX_SYNC_ACTIVATION)]
        if not self.config.profile_activated and tracked:
            message = f"Profile '{tracked}' is tracked as active but configuration says inactive"
            return [_warn(message, FIX_SYNC_ACTIVATION)]
        if tracked and tracked != self.config.active_profile:
            return [
                _warn(
                    f"Tracked active profile '{tracked}' differs from configured '{self.config.active_profile}'",
                    FIX_SYNC_ACTIVATION,
                )
            ]
        if tracked:
            return [_ok(f"Profile '{tracked}' is active")]
        return [_ok("No profile is active")]

    def _check_tracking(self) -> list[_Finding]:
        if self._ledger is None or self._activated_profile() is None:
            return []
        if not len(self._ledger):
            return [_warn("No symlinks are tracked for the active profile", FIX_REACTIVATE)]
        return [_ok(f"{len(self._ledger)} symlink(s) tracked")]

    def _check_orphans(self) -> list[_Finding]:
        if self._ledger is None or self._activated_profile() is None:
            return []
        orphans = [str(record.target) for record in self._ledger if not lexists(record.target)]
        if orphans:
            return [
                _warn(
                    f"{len(orphans)} tracked symlink(s) no longer exist",
                    FIX_CLEANUP_MISSING,
                    self._details(orphans),
                )
            ]
        return [_ok("No orphaned symlinks")]

    def _check_coverage(self) -> list[_Finding]:
        profile_name = self._activated_profile() if self._ledger is not None else None
        if self._manifest is None or profile_name is None:
            return []
        profile = self._manifest.get_profile(profile_name)
        buckets = [
            (profile_name, profile.synced_files if profile else []),
            (COMMON_SCOPE, self._manifest.get_common_files()),
        ]
        # Files missing from storage are reported by the Profiles checks.
        expected = [
            relative
            for bucket, files in buckets
            for relative in files
            if lexists(self.repo_root / bucket / relative)
        ]
        sources = [record.source.as_posix() for record in self._ledger or []]
        uncovered = [
            relative for relative in expected if not any(source.endswith(f"/{relative}") for source in sources)
        ]
        if uncovered:
            return [
                _error(
                    f"{len(uncovered)} synced file(s) have no tracked symlink",
                    FIX_REACTIVATE,
                    self._details(uncovered),
                )
            ]
        return [_ok(f"All {len(expected)} synced file(s) are linked")]

    def _check_validity(self) -> list[_Finding]:
        if self._ledger is None or self._activated_profile() is None:
            return []
        invalid: list[str] = []
        broken: list[str] = []
        dangling: list[str] = []
        for record in self._ledger:
            if not lexists(record.target):
                broken.append(str(record.target))
            elif not symlink_points_to(record.target, record.source):
                invalid.append(str(record.target))
            elif not record.source.exists():
                dangling.append(str(record.target))

        findings: list[_Finding] = []
        if invalid:
            message = f"{len(invalid)} symlink(s) point to the wrong place"
            findings.append(_error(message, FIX_REACTIVATE, self._details(invalid), name="Invalid symlinks"))
        if broken:
            message = f"{len(broken)} symlink(s) are missing from disk"
            findings.append(_warn(message, FIX_REACTIVATE, self._details(broken), name="Broken symlinks"))
        if dangling:
            message = f"{len(dangling)} symlink(s) point to files missing from the repository"
            findings.append(_warn(message, FIX_CLEANUP_MISSING, self._details(dangling), name="Dangling symlinks"))
        return findings or [_ok("All tracked symlinks are valid")]

    # ------------------------------------------------------------------
    # Backups

    def _check_backups_enabled(self) -> list[_Finding]:
        if not self.config.backup_enabled:
            return [_warn("Backups are disabled; existing files will not be overwritten")]
        return [_ok("Backups are enabled")]

    def _check_backup_directory(self) -> list[_Finding]:
        backup_root = default_backup_root(self.home)
        if not backup_root.is_dir():
            return [_ok("No backups yet")]
        sessions = [child for child in backup_root.iterdir() if child.is_dir()]
        size = dir_size(backup_root)
        message = f"{len(sessions)} backup session(s) using {format_size(size)} in {backup_root}"
        if size > BACKUP_WARNING_BYTES:
            return [_warn(message)]
        return [_ok(message)]

    # ------------------------------------------------------------------
    # Filesystem

    def _check_writable(self, path: Path) -> list[_Finding]:
        if not path.exists():
            return [_error(f"'{path}' does not exist")]
        if not os.access(path, os.W_OK):
            return [_error(f"'{path}' is not writable")]
        return [_ok(f"'{path}' is writable")]

    def _check_disk_usage(self) -> list[_Finding]:
        probe = self.repo_root if self.repo_root.exists() else self.home
        usage = shutil.disk_usage(probe)
        percent = usage.used / usage.total * 100 if usage.total else 0.0
        message = f"Disk {percent:.1f}% used ({format_size(usage.free)} free)"
        if percent > DISK_ERROR_PERCENT:
            return [_error(message)]
        if percent > DISK_WARNING_PERCENT:
            return [_warn(message)]
        return [_ok(message)]

    # ------------------------------------------------------------------
    # Fixes

    def _apply_fixes(self, results: list[ValidationResult]) -> list[FixOutcome]:
        actions: list[str] = []
        for result in results:
            if result.fixable and result.fix_action and result.fix_action not in actions:
                actions.append(result.fix_action)

        handlers: dict[str, Callable[[], str]] = {
            FIX_REBUILD_MANIFEST: self._fix_rebuild_manifest,
            FIX_SYNC_ACTIVATION: self._fix_sync_activation,
            FIX_REACTIVATE: self._fix_reactivate,
            FIX_CLEANUP_MISSING: self._fix_cleanup_missing,
        }

        outcomes: list[FixOutcome] = []
        for action in actions:
            try:
                message = handlers[action]()
            except (DotstateError, OSError) as exc:
                logger.warning("Fix '%s' failed: %s", action, exc)
                outcomes.append(FixOutcome(action=action, success=False, message=str(exc)))
                continue
            logger.info("Applied fix '%s': %s", action, message)
            outcomes.append(FixOutcome(action=action, success=True, message=message))
        return outcomes

    def _fix_rebuild_manifest(self) -> str:
        self._manifest = ProfileManifest.rebuild(self.repo_root)
        return f"Rebuilt manifest with {len(self._manifest.profiles)} profile(s)"

    def _fix_sync_activation(self) -> str:
        ledger = SymlinkLedger.load_or_init(self.repo_root)
        if ledger.active_profile:
            self.config = self.config.model_copy(
                update={"active_profile": ledger.active_profile, "profile_activated": True}
            )
            message = f"Marked profile '{ledger.active_profile}' as active"
        else:
            self.config = self.config.model_copy(update={"profile_activated": False})
            message = "Marked no profile as active"
        self.config.save(self.config_path)
        return message

    def _fix_reactivate(self) -> str:
        ledger = SymlinkLedger.load_or_init(self.repo_root)
        profile_name = ledger.active_profile or self.config.active_profile
        if not profile_name:
            raise DotstateError("No profile to re-activate")

        manager = DotstateManager(self.config, config_path=self.config_path, home=self.home)
        operations = manager.activate(profile_name)
        self.config = manager.config
        failed = [op for op in operations if not op.ok]
        if failed:
            raise DotstateError(f"{len(failed)} file(s) failed to link; first: {failed[0].target}: {failed[0].detail}")
        return f"Re-activated profile '{profile_name}' ({len(operations)} file(s))"

    def _fix_cleanup_missing(self) -> str:
        ledger = SymlinkLedger.load_or_init(self.repo_root)
        for record in ledger:
            if symlink_points_to(record.target, record.source) and not record.source.exists():
                record.target.unlink()
        dropped = ledger.retain(lambda record: lexists(record.target))
        ledger.save()
        return f"Removed {len(dropped)} missing or broken symlink record(s)"
