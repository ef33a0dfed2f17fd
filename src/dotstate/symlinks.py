"""Symlink activation engine.

Materialises a profile's (and common's) files from repository storage into the
home directory as symlinks and removes them again. Every call processes all of
its files and reports one :class:`~dotstate.models.Operation` per file; a
problem with one file never aborts the batch. The tracking ledger is flushed
once, after the whole batch.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from .filesystem import copy_entry, create_symlink, lexists, move_path, symlink_points_to
from .ledger import SymlinkLedger
from .models import (
    ALREADY_ABSENT,
    ALREADY_CORRECT,
    NOT_OUR_SYMLINK,
    NOT_TRACKED,
    SOURCE_MISSING,
    WOULD_OVERWRITE,
    Operation,
    SymlinkRecord,
    SymlinkScope,
)

BACKUP_DIRNAME = ".dotstate-backups"

logger = logging.getLogger(__name__)


def default_backup_root(home: Path) -> Path:
    return home / BACKUP_DIRNAME


class SymlinkManager:
    """Creates and removes tracked symlinks for profiles and common files."""

    def __init__(
        self,
        repo_root: Path,
        home: Path | None = None,
        *,
        backup_enabled: bool = True,
        backup_root: Path | None = None,
        ledger: SymlinkLedger | None = None,
    ) -> None:
        self.repo_root = repo_root
        self.home = home if home is not None else Path.home()
        self.backup_enabled = backup_enabled
        self.backup_root = backup_root if backup_root is not None else default_backup_root(self.home)
        self.ledger = ledger if ledger is not None else SymlinkLedger.load_or_init(repo_root)
        self._session_dir: Path | None = None

    # ------------------------------------------------------------------
    # Activation

    def activate(
        self,
        profile_name: str,
        files: Sequence[str],
        common_files: Sequence[str] = (),
    ) -> list[Operation]:
        """Symlink ``files`` from the profile and ``common_files`` from common."""

        scope = SymlinkScope.for_profile(profile_name)
        operations = [self._activate_one(scope, relative) for relative in files]
        operations.extend(self._activate_one(SymlinkScope.common(), relative) for relative in common_files)

        self.ledger.active_profile = profile_name
        self.ledger.save()
        return operations

    def activate_common(self, common_files: Sequence[str]) -> list[Operation]:
        """Symlink common files without changing the active profile."""

        return self.link_files(SymlinkScope.common(), common_files)

    def link_files(self, scope: SymlinkScope, files: Sequence[str]) -> list[Operation]:
        """Symlink ``files`` stored under ``scope`` without changing the active profile."""

        operations = [self._activate_one(scope, relative) for relative in files]
        self.ledger.save()
        return operations

    def _activate_one(self, scope: SymlinkScope, relative: str) -> Operation:
        source = self.repo_root / scope.storage_name() / relative
        target = self.home / relative

        if not lexists(source):
            logger.warning("Cannot link %s: %s does not exist", target, source)
            return Operation.failed(target, source, SOURCE_MISSING)

        existing = self.ledger.get(target)

        if symlink_points_to(target, source):
            if existing is None or existing.source != source or existing.scope != scope:
                backup = existing.backup if existing is not None else None
                self.ledger.add(SymlinkRecord(source=source, target=target, scope=scope, backup=backup))
            return Operation.skipped(target, source, ALREADY_CORRECT)

        backup: Path | None = None
        try:
            if lexists(target):
                if not self.backup_enabled:
                    return Operation.failed(target, source, WOULD_OVERWRITE)
                backup = self._backup(target, relative)

            try:
                create_symlink(target, source)
            except OSError:
                if backup is not None and not lexists(target):
                    move_path(backup, target)
                raise
        except OSError as exc:
            logger.warning("Failed to link %s -> %s: %s", target, source, exc)
            return Operation.failed(target, source, str(exc))

        if backup is None and existing is not None:
            backup = existing.backup
        self.ledger.add(SymlinkRecord(source=source, target=target, scope=scope, backup=backup))
        logger.debug("Linked %s -> %s", target, source)
        return Operation.success(target, source, f"backed up to {backup}" if backup else None)

    # ------------------------------------------------------------------
    # Deactivation

    def deactivate(self, profile_name: str, *, restore: bool = True) -> list[Operation]:
        """Remove every tracked symlink owned by ``profile_name`` or by common."""

        records = self.ledger.records_for_profile(profile_name)
        operations = self._deactivate_records(records, restore=restore)
        if self.ledger.active_profile == profile_name:
            self.ledger.active_profile = ""
        self.ledger.save()
        return operations

    def deactivate_targets(self, targets: Iterable[Path], *, restore: bool = True) -> list[Operation]:
        """Remove tracked symlinks for specific targets; untracked targets are skipped."""

        records: list[SymlinkRecord] = []
        operations: list[Operation] = []
        for target in targets:
            record = self.ledger.get(target)
            if record is None:
                operations.append(Operation.skipped(target, target, NOT_TRACKED))
            else:
                records.append(record)
        operations.extend(self._deactivate_records(records, restore=restore))
        self.ledger.save()
        return operations

    def _deactivate_records(self, records: list[SymlinkRecord], *, restore: bool) -> list[Operation]:
        operations: list[Operation] = []
        for record in records:
            operation = self._deactivate_one(record, restore=restore)
            if operation.ok:
                self.ledger.remove(record.target)
            operations.append(operation)
        return operations

    def _deactivate_one(self, record: SymlinkRecord, *, restore: bool) -> Operation:
        target, source = record.target, record.source

        if not lexists(target):
            if restore and record.backup is not None and lexists(record.backup):
                # Unlinked by an earlier run whose restore failed.
                return self._restore(record)
            return Operation.skipped(target, source, ALREADY_ABSENT)
        if not symlink_points_to(target, source):
            logger.info("Leaving %s in place: it no longer points at %s", target, source)
            return Operation.skipped(target, source, NOT_OUR_SYMLINK)

        try:
            target.unlink()
        except OSError as exc:
            logger.warning("Failed to deactivate %s: %s", target, exc)
            return Operation.failed(target, source, str(exc))

        if not restore:
            logger.debug("Unlinked %s (no restore)", target)
            return Operation.success(target, source)
        return self._restore(record, relink_on_failure=True)

    def _restore(self, record: SymlinkRecord, *, relink_on_failure: bool = False) -> Operation:
        target, source = record.target, record.source
        detail: str | None = None
        try:
            backup = self.find_backup(record)
            if backup is not None:
                move_path(backup, target)
                detail = f"restored backup {backup}"
            elif lexists(source):
                copy_entry(source, target)
                detail = "restored from repository"
        except OSError as exc:
            logger.warning("Failed to restore %s: %s", target, exc)
            if relink_on_failure and not lexists(target):
                try:
                    create_symlink(target, source)
                except OSError as relink_exc:
                    logger.warning("Could not put %s back: %s", target, relink_exc)
            return Operation.failed(target, source, str(exc))

        logger.debug("Unlinked %s (%s)", target, detail or "nothing to restore")
        return Operation.success(target, source, detail)

    # ------------------------------------------------------------------
    # Backups

    @property
    def session_dir(self) -> Path:
        """Backup directory for this engine instance, created lazily."""

        if self._session_dir is None:
            stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
            self._session_dir = self.backup_root / stamp
        return self._session_dir

    def _backup(self, target: Path, relative: str) -> Path:
        destination = self.session_dir / relative
        counter = 1
        while lexists(destination):
            counter += 1
            destination = self.session_dir / f"{relative}.{counter}"
        move_path(target, destination)
        logger.info("Backed up %s to %s", target, destination)
        return destination

    def find_backup(self, record: SymlinkRecord) -> Path | None:
        """Return the backup to restore for ``record``, newest session first."""

        if record.backup is not None and lexists(record.backup):
            return record.backup

        try:
            relative = record.target.relative_to(self.home)
        except ValueError:
            return None

        if not self.backup_root.is_dir():
            return None
        for session in sorted(self.backup_root.iterdir(), reverse=True):
            candidate = session / relative
            if session.is_dir() and lexists(candidate):
                return candidate
        return None

    # ------------------------------------------------------------------

    def relink(self, record: SymlinkRecord, new_source: Path, scope: SymlinkScope) -> Operation:
        """Point an existing tracked symlink at ``new_source`` under ``scope``."""

        target = record.target
        if lexists(target) and not symlink_points_to(target, record.source):
            return Operation.skipped(target, new_source, NOT_OUR_SYMLINK)
        try:
            if lexists(target):
                target.unlink()
            create_symlink(target, new_source)
        except OSError as exc:
            return Operation.failed(target, new_source, str(exc))
        self.ledger.add(replace(record, source=new_source, scope=scope))
        self.ledger.save()
        return Operation.success(target, new_source)
