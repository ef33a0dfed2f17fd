from __future__ import annotations

from pathlib import Path

import pytest

from dotstate.exceptions import LedgerCorruptError
from dotstate.ledger import LEDGER_FILENAME, SymlinkLedger
from dotstate.models import SymlinkRecord, SymlinkScope


def _record(name: str, scope: SymlinkScope, backup: Path | None = None) -> SymlinkRecord:
    return SymlinkRecord(
        source=Path("/repo") / scope.storage_name() / name,
        target=Path("/home/user") / name,
        scope=scope,
        backup=backup,
    )


def test_missing_ledger_is_empty(repo_root: Path) -> None:
    ledger = SymlinkLedger.load_or_init(repo_root)

    assert len(ledger) == 0
    assert ledger.active_profile == ""


def test_save_and_load_round_trip_preserves_order(repo_root: Path) -> None:
    ledger = SymlinkLedger.load_or_init(repo_root)
    ledger.active_profile = "work"
    ledger.add(_record(".zshrc", SymlinkScope.for_profile("work"), backup=Path("/backups/1/.zshrc")))
    ledger.add(_record(".vimrc", SymlinkScope.common()))
    ledger.add(_record(".gitconfig", SymlinkScope.for_profile("work")))
    ledger.save()

    loaded = SymlinkLedger.load_or_init(repo_root)

    assert loaded.active_profile == "work"
    assert [record.target.name for record in loaded] == [".zshrc", ".vimrc", ".gitconfig"]
    assert loaded.get(Path("/home/user/.zshrc")).backup == Path("/backups/1/.zshrc")
    assert loaded.get(Path("/home/user/.vimrc")).scope.is_common


def test_add_replaces_record_in_place(repo_root: Path) -> None:
    ledger = SymlinkLedger.load_or_init(repo_root)
    ledger.add(_record(".zshrc", SymlinkScope.for_profile("work")))
    ledger.add(_record(".vimrc", SymlinkScope.common()))
    ledger.add(_record(".zshrc", SymlinkScope.for_profile("home")))

    assert len(ledger) == 2
    assert [record.scope.storage_name() for record in ledger] == ["home", "common"]


def test_records_for_profile_includes_common(repo_root: Path) -> None:
    ledger = SymlinkLedger.load_or_init(repo_root)
    ledger.add(_record(".zshrc", SymlinkScope.for_profile("work")))
    ledger.add(_record(".bashrc", SymlinkScope.for_profile("home")))
    ledger.add(_record(".vimrc", SymlinkScope.common()))

    names = [record.target.name for record in ledger.records_for_profile("work")]
    assert names == [".zshrc", ".vimrc"]
    assert [r.target.name for r in ledger.records_for_scope(SymlinkScope.common())] == [".vimrc"]


def test_retain_returns_dropped_records(repo_root: Path) -> None:
    ledger = SymlinkLedger.load_or_init(repo_root)
    ledger.add(_record(".zshrc", SymlinkScope.for_profile("work")))
    ledger.add(_record(".vimrc", SymlinkScope.common()))

    dropped = ledger.retain(lambda record: record.scope.is_common)

    assert [record.target.name for record in dropped] == [".zshrc"]
    assert Path("/home/user/.zshrc") not in ledger
    assert Path("/home/user/.vimrc") in ledger


def test_corrupt_ledger_raises(repo_root: Path) -> None:
    (repo_root / LEDGER_FILENAME).write_text("symlinks = [\n")

    with pytest.raises(LedgerCorruptError):
        SymlinkLedger.load_or_init(repo_root)


def test_undecodable_ledger_is_corrupt(repo_root: Path) -> None:
    (repo_root / LEDGER_FILENAME).write_bytes(b"\xff\xfe garbage")

    with pytest.raises(LedgerCorruptError, match="not valid TOML"):
        SymlinkLedger.load_or_init(repo_root)


def test_non_table_records_are_corrupt(repo_root: Path) -> None:
    (repo_root / LEDGER_FILENAME).write_text('symlinks = [["/r/a", "/h/a"]]\n')

    with pytest.raises(LedgerCorruptError, match="invalid structure"):
        SymlinkLedger.load_or_init(repo_root)


def test_invalid_scope_is_corrupt(repo_root: Path) -> None:
    (repo_root / LEDGER_FILENAME).write_text(
        '[[symlinks]]\nsource = "/r/a"\ntarget = "/h/a"\nscope = "everyone"\n'
    )

    with pytest.raises(LedgerCorruptError, match="invalid structure"):
        SymlinkLedger.load_or_init(repo_root)


def test_scope_parse_round_trip() -> None:
    assert SymlinkScope.parse("common") == SymlinkScope.common()
    assert SymlinkScope.parse("profile:work") == SymlinkScope.for_profile("work")
    assert str(SymlinkScope.for_profile("work")) == "profile:work"
    with pytest.raises(ValueError):
        SymlinkScope.parse("profile:")
