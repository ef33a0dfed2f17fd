from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import build_repo
from dotstate.config import Config, load_config
from dotstate.doctor import (
    FIX_CLEANUP_MISSING,
    FIX_REACTIVATE,
    FIX_REBUILD_MANIFEST,
    FIX_SYNC_ACTIVATION,
    CheckCategory,
    Doctor,
    DoctorReport,
    ValidationResult,
    ValidationStatus,
)
from dotstate.ledger import SymlinkLedger
from dotstate.manager import DotstateManager
from dotstate.manifest import MANIFEST_FILENAME, ProfileManifest


def _run(config_path: Path, home: Path, *, fix: bool = False) -> DoctorReport:
    return Doctor(load_config(config_path), config_path=config_path, fix=fix, home=home).run()


def _check(report: DoctorReport, name: str) -> list[ValidationResult]:
    return [result for result in report.results if result.check_name == name]


def _category(report: DoctorReport, category: CheckCategory) -> list[ValidationResult]:
    return [result for result in report.results if result.category is category]


def test_categories_run_in_order(config: Config, config_path: Path, fake_home: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"work": {}})

    report = _run(config_path, fake_home)

    order = list(dict.fromkeys(result.category for result in report.results))
    assert order == list(CheckCategory)
    assert report.summary.total == len(report.results)
    assert report.summary.passed + report.summary.warnings + report.summary.errors == report.summary.total


def test_not_a_git_repository_is_an_error(
    config: Config, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"work": {}})

    report = _run(config_path, fake_home)

    [result] = _check(report, "Git repository")
    assert result.status is ValidationStatus.ERROR
    assert report.has_errors
    assert _check(report, "Remote") == []


def test_common_and_profile_duplicate_is_flagged(
    config: Config, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"personal": {".gitignore": "a"}}, common={".gitignore": "b"})

    report = _run(config_path, fake_home)

    [result] = _check(report, "Manifest invariants")
    assert result.status is ValidationStatus.ERROR
    assert not result.fixable
    assert "personal" in (result.details or "")


def test_common_and_profile_hierarchy_overlap_is_flagged(
    config: Config, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"personal": {".config/nvim/init.lua": ""}}, common={".config/nvim": ""})

    [result] = _check(_run(config_path, fake_home), "Manifest invariants")

    assert result.status is ValidationStatus.ERROR
    assert "is inside common path '.config/nvim'" in (result.details or "")


def test_deleted_symlink_converges_after_fix(
    manager: DotstateManager, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"work": {".zshrc": "", ".gitconfig": ""}})
    manager.activate("work")
    (fake_home / ".zshrc").unlink()

    report = _run(config_path, fake_home)
    [orphan] = _check(report, "Orphaned symlinks")
    assert orphan.status is ValidationStatus.WARNING
    assert orphan.fix_action == FIX_CLEANUP_MISSING
    [broken] = _check(report, "Broken symlinks")
    assert broken.status is ValidationStatus.WARNING
    assert broken.fixable
    assert broken.fix_action == FIX_REACTIVATE
    assert all(result.status is not ValidationStatus.ERROR for result in _category(report, CheckCategory.SYMLINKS))

    fixed = _run(config_path, fake_home, fix=True)
    assert [(outcome.action, outcome.success) for outcome in fixed.fixes] == [
        (FIX_CLEANUP_MISSING, True),
        (FIX_REACTIVATE, True),
    ]
    assert fixed.summary.fixed == 2

    after = _run(config_path, fake_home)
    symlinks = _category(after, CheckCategory.SYMLINKS)
    assert symlinks
    assert all(result.status is ValidationStatus.PASS for result in symlinks)
    assert _check(after, "Broken symlinks") == []
    assert (fake_home / ".zshrc").is_symlink()
    assert len(SymlinkLedger.load_or_init(repo_root)) == 2


def test_broken_symlink_converges_after_fix(
    manager: DotstateManager, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"work": {".zshrc": "", ".gitconfig": ""}})
    manager.activate("work")
    (repo_root / "work" / ".zshrc").unlink()

    report = _run(config_path, fake_home)
    [dangling] = _check(report, "Dangling symlinks")
    assert dangling.status is ValidationStatus.WARNING
    assert dangling.fix_action == FIX_CLEANUP_MISSING
    [storage] = _check(report, "Profile files")
    assert storage.status is ValidationStatus.ERROR

    _run(config_path, fake_home, fix=True)

    [after] = _check(_run(config_path, fake_home), "Validity")
    assert after.status is ValidationStatus.PASS
    assert not (fake_home / ".zshrc").is_symlink()


def test_activation_mismatch_syncs_from_ledger(
    manager: DotstateManager, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"work": {".zshrc": ""}})
    manager.activate("work")
    load_config(config_path).model_copy(update={"profile_activated": False}).save(config_path)

    [state] = _check(_run(config_path, fake_home), "Activation state")
    assert state.status is ValidationStatus.WARNING
    assert state.fix_action == FIX_SYNC_ACTIVATION

    _run(config_path, fake_home, fix=True)

    assert load_config(config_path).profile_activated is True
    [after] = _check(_run(config_path, fake_home), "Activation state")
    assert after.status is ValidationStatus.PASS


def test_missing_coverage_is_fixed_by_reactivation(
    manager: DotstateManager, config_path: Path, fake_home: Path, repo_root: Path
) -> None:
    build_repo(repo_root, {"work": {".zshrc": ""}})
    manager.activate("work")
    manifest = ProfileManifest.load(repo_root)
    manifest.add_common_file(".vimrc")
    manifest.save(repo_root)
    (repo_root / "common").mkdir()
    (repo_root / "common" / ".vimrc").write_text("")

    [coverage] = _check(_run(config_path, fake_home), "Coverage")
    assert coverage.status is ValidationStatus.ERROR

    _run(config_path, fake_home, fix=True)

    assert (fake_home / ".vimrc").is_symlink()
    [after] = _check(_run(config_path, fake_home), "Coverage")
    assert after.status is ValidationStatus.PASS


def test_corrupt_manifest_is_rebuilt(config: Config, config_path: Path, fake_home: Path, repo_root: Path) -> None:
    (repo_root / "work").mkdir()
    (repo_root / "work" / ".zshrc").write_text("")
    (repo_root / MANIFEST_FILENAME).write_text("profiles = [\n")

    [broken] = _check(_run(config_path, fake_home), "Manifest")
    assert broken.status is ValidationStatus.ERROR
    assert broken.fix_action == FIX_REBUILD_MANIFEST

    _run(config_path, fake_home, fix=True)

    assert ProfileManifest.load(repo_root).require_profile("work").synced_files == [".zshrc"]


def test_failing_check_becomes_error_result(
    config: Config, config_path: Path, fake_home: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def explode(self: Doctor) -> list:
        raise RuntimeError("boom")

    monkeypatch.setattr(Doctor, "_check_shell", explode)

    report = _run(config_path, fake_home)

    [shell] = _check(report, "Shell")
    assert shell.status is ValidationStatus.ERROR
    assert "boom" in shell.message
    assert _check(report, "Home directory")[0].status is ValidationStatus.PASS


def test_report_serializes_to_json(config: Config, config_path: Path, fake_home: Path) -> None:
    report = _run(config_path, fake_home)

    payload = json.loads(report.model_dump_json())

    assert payload["summary"]["total"] == len(report.results)
    assert {"category", "check_name", "message", "status", "fixable"} <= set(payload["results"][0])
