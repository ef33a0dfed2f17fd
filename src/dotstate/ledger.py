"""Tracking ledger of the symlinks dotstate has created."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Iterator

import tomli_w

from .exceptions import LedgerCorruptError
from .filesystem import atomic_write_bytes
from .models import SymlinkRecord, SymlinkScope

LEDGER_FILENAME = ".dotstate-symlinks.toml"


def ledger_path(repo_root: Path) -> Path:
    return repo_root / LEDGER_FILENAME


class SymlinkLedger:
    """Insertion-ordered record of created symlinks keyed by their target."""

    def __init__(
        self,
        path: Path,
        active_profile: str = "",
        records: dict[Path, SymlinkRecord] | None = None,
    ) -> None:
        self.path = path
        self.active_profile = active_profile
        self._records: dict[Path, SymlinkRecord] = records or {}

    @classmethod
    def load_or_init(cls, repo_root: Path) -> "SymlinkLedger":
        path = ledger_path(repo_root)
        if not path.exists():
            return cls(path)

        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
            raise LedgerCorruptError(f"Symlink tracking file '{path}' is not valid TOML: {exc}") from exc

        try:
            records: dict[Path, SymlinkRecord] = {}
            for item in data.get("symlinks", []):
                record = SymlinkRecord(
                    source=Path(item["source"]),
                    target=Path(item["target"]),
                    scope=SymlinkScope.parse(item["scope"]),
                    backup=Path(item["backup"]) if item.get("backup") else None,
                )
                records[record.target] = record
            active_profile = str(data.get("active_profile", ""))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise LedgerCorruptError(f"Symlink tracking file '{path}' has an invalid structure: {exc}") from exc

        return cls(path, active_profile, records)

    def save(self) -> None:
        payload = {
            "active_profile": self.active_profile,
            "symlinks": [self._record_to_dict(record) for record in self._records.values()],
        }
        atomic_write_bytes(self.path, tomli_w.dumps(payload).encode())

    def get(self, target: Path) -> SymlinkRecord | None:
        return self._records.get(target)

    def add(self, record: SymlinkRecord) -> None:
        """Insert ``record``; a record for the same target is replaced in place."""

        self._records[record.target] = record

    def remove(self, target: Path) -> SymlinkRecord | None:
        return self._records.pop(target, None)

    def records_for_profile(self, profile_name: str) -> list[SymlinkRecord]:
        """Records owned by ``profile_name`` or by common, in insertion order."""

        return [record for record in self._records.values() if record.scope.matches(profile_name)]

    def records_for_scope(self, scope: SymlinkScope) -> list[SymlinkRecord]:
        return [record for record in self._records.values() if record.scope == scope]

    def retain(self, predicate) -> list[SymlinkRecord]:
        """Keep only records matching ``predicate``; return the dropped ones."""

        dropped = [record for record in self._records.values() if not predicate(record)]
        for record in dropped:
            del self._records[record.target]
        return dropped

    def __iter__(self) -> Iterator[SymlinkRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, target: object) -> bool:
        return target in self._records

    @staticmethod
    def _record_to_dict(record: SymlinkRecord) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "source": str(record.source),
            "target": str(record.target),
            "scope": str(record.scope),
        }
        if record.backup is not None:
            payload["backup"] = str(record.backup)
        return payload
