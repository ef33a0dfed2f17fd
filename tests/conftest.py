from __future__ import annotations

from pathlib import Path

import pytest

from dotstate.config import CONFIG_ENV_VAR, TOKEN_ENV_VAR, Config, RepoMode
from dotstate.manager import DotstateManager
from dotstate.manifest import Profile, ProfileManifest
from dotstate.symlinks import SymlinkManager


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv(TOKEN_ENV_VAR, raising=False)
    return home


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def config_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "config" / "config.toml"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    return path


@pytest.fixture
def config(repo_root: Path, config_path: Path, fake_home: Path) -> Config:
    cfg = Config(repo_path=repo_root, repo_mode=RepoMode.LOCAL)
    cfg.save(config_path)
    return cfg


@pytest.fixture
def engine(repo_root: Path, fake_home: Path) -> SymlinkManager:
    return SymlinkManager(repo_root, fake_home)


@pytest.fixture
def manager(config: Config, config_path: Path, fake_home: Path) -> DotstateManager:
    return DotstateManager(config, config_path=config_path, home=fake_home)


def write_file(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def build_repo(
    repo_root: Path,
    profiles: dict[str, dict[str, str]],
    common: dict[str, str] | None = None,
) -> ProfileManifest:
    """Write profile/common storage and a matching manifest."""

    manifest = ProfileManifest()
    for name, files in profiles.items():
        for relative, content in files.items():
            write_file(repo_root / name / relative, content)
        (repo_root / name).mkdir(parents=True, exist_ok=True)
        manifest.profiles.append(Profile(name=name, synced_files=list(files)))
    for relative, content in (common or {}).items():
        write_file(repo_root / "common" / relative, content)
    manifest.common.synced_files = list(common or {})
    manifest.save(repo_root)
    return manifest
