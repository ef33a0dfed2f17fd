from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from conftest import build_repo, write_file
from dotstate.cli import app
from dotstate.config import Config, load_config
from dotstate.manifest import ProfileManifest

runner = CliRunner()


def _flat(output: str) -> str:
    return " ".join(output.split())


def test_cli_activate_and_deactivate_flow(config: Config, config_path: Path, fake_home: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"work": {".zshrc": "work"}}, common={".vimrc": "vim"})

    activate_result = runner.invoke(app, ["activate", "work", "--config", str(config_path)])
    assert activate_result.exit_code == 0
    assert "2 succeeded, 0 skipped, 0 failed" in activate_result.stdout
    assert (fake_home / ".zshrc").is_symlink()
    assert load_config(config_path).profile_activated is True

    list_result = runner.invoke(app, ["list", "--config", str(config_path)])
    assert list_result.exit_code == 0
    assert ".zshrc" in list_result.stdout
    assert ".vimrc" in list_result.stdout

    deactivate_result = runner.invoke(app, ["deactivate", "--config", str(config_path)])
    assert deactivate_result.exit_code == 0
    assert not (fake_home / ".zshrc").is_symlink()
    assert load_config(config_path).profile_activated is False


def test_cli_activate_exits_non_zero_on_failure(config: Config, config_path: Path, repo_root: Path) -> None:
    manifest = build_repo(repo_root, {"work": {}})
    manifest.add_synced_file("work", ".missing")
    manifest.save(repo_root)

    result = runner.invoke(app, ["activate", "work", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "0 succeeded, 0 skipped, 1 failed" in result.stdout


def test_cli_unknown_profile_is_reported(config: Config, config_path: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"work": {}})

    result = runner.invoke(app, ["activate", "ghost", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Unknown profile 'ghost'" in _flat(result.stdout)


def test_cli_profile_commands(config: Config, config_path: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"work": {}})

    create = runner.invoke(app, ["profile", "create", "home", "-d", "Desktop", "--config", str(config_path)])
    assert create.exit_code == 0
    duplicate = runner.invoke(app, ["profile", "create", "home", "--config", str(config_path)])
    assert duplicate.exit_code == 1
    assert "already exists" in duplicate.stdout

    switch = runner.invoke(app, ["profile", "switch", "home", "--config", str(config_path)])
    assert switch.exit_code == 0
    assert load_config(config_path).active_profile == "home"

    listing = runner.invoke(app, ["profile", "list", "--config", str(config_path)])
    assert listing.exit_code == 0
    assert "Desktop" in listing.stdout

    delete = runner.invoke(app, ["profile", "delete", "work", "--config", str(config_path)])
    assert delete.exit_code == 0
    assert [profile.name for profile in ProfileManifest.load(repo_root).profiles] == ["home"]


def test_cli_add_and_remove(config: Config, config_path: Path, fake_home: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"work": {}})
    runner.invoke(app, ["profile", "switch", "work", "--config", str(config_path)])
    write_file(fake_home / ".inputrc", "set editing-mode vi\n")

    add = runner.invoke(app, ["add", str(fake_home / ".inputrc"), "--config", str(config_path)])
    assert add.exit_code == 0
    assert (fake_home / ".inputrc").is_symlink()

    remove = runner.invoke(app, ["remove", ".inputrc", "--config", str(config_path)])
    assert remove.exit_code == 0
    assert "Stopped syncing" in remove.stdout
    assert (fake_home / ".inputrc").read_text() == "set editing-mode vi\n"


def test_cli_move_to_common_conflict_suggests_force(config: Config, config_path: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"work": {".vimrc": "one"}, "home": {".vimrc": "two"}})

    blocked = runner.invoke(app, ["move-to-common", "work", ".vimrc", "--config", str(config_path)])
    assert blocked.exit_code == 1
    assert "--force" in _flat(blocked.stdout)

    forced = runner.invoke(app, ["move-to-common", "work", ".vimrc", "--force", "--config", str(config_path)])
    assert forced.exit_code == 0
    assert ProfileManifest.load(repo_root).get_common_files() == [".vimrc"]


def test_cli_doctor_json_and_exit_code(config: Config, config_path: Path, repo_root: Path) -> None:
    build_repo(repo_root, {"personal": {".gitignore": "a"}}, common={".gitignore": "b"})

    result = runner.invoke(app, ["doctor", "--json", "--config", str(config_path)])

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    invariants = [item for item in payload["results"] if item["check_name"] == "Manifest invariants"]
    assert invariants[0]["status"] == "error"


def test_cli_sync_requires_git_repository(config: Config, config_path: Path, repo_root: Path) -> None:
    result = runner.invoke(app, ["sync", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "not a git repository" in _flat(result.stdout)
