"""TOML configuration loading for dotstate."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError
from .filesystem import atomic_write_bytes

CONFIG_ENV_VAR = "DOTSTATE_CONFIG"
TOKEN_ENV_VAR = "DOTSTATE_GITHUB_TOKEN"
DEFAULT_CONFIG_FILENAME = "config.toml"


def default_config_path() -> Path:
    """Return the configuration path, honouring ``DOTSTATE_CONFIG``."""

    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return _expand_path(override)
    return Path.home() / ".config" / "dotstate" / DEFAULT_CONFIG_FILENAME


def default_repo_path() -> Path:
    return Path.home() / ".config" / "dotstate" / "storage"


def _expand_path(raw: str | os.PathLike[str] | Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    expanded = Path(os.path.expandvars(str(raw))).expanduser()
    return expanded.resolve(strict=False) if expanded.is_absolute() else (Path.cwd() / expanded).resolve(strict=False)


class RepoMode(str, Enum):
    """Where the repository's remote lives."""

    GITHUB = "github"
    LOCAL = "local"


class Config(BaseModel):
    """Process-wide settings shared by every command."""

    model_config = ConfigDict(frozen=True)

    repo_path: Path = Field(default_factory=default_repo_path)
    active_profile: str = ""
    profile_activated: bool = False
    backup_enabled: bool = True
    repo_mode: RepoMode = RepoMode.GITHUB
    default_branch: str = "main"
    custom_files: tuple[str, ...] = ()
    github_token: str | None = None

    @field_validator("repo_path", mode="before")
    @classmethod
    def _expand_repo_path(cls, value: Any) -> Path:
        return _expand_path(value)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Config":
        try:
            return cls.model_validate(dict(raw))
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def is_repo_configured(self) -> bool:
        return self.repo_path.is_dir()

    def get_github_token(self) -> str | None:
        """Return the GitHub token, preferring the environment variable."""

        return os.environ.get(TOKEN_ENV_VAR) or self.github_token

    def to_raw(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "repo_path": str(self.repo_path),
            "active_profile": self.active_profile,
            "profile_activated": self.profile_activated,
            "backup_enabled": self.backup_enabled,
            "repo_mode": self.repo_mode.value,
            "default_branch": self.default_branch,
            "custom_files": list(self.custom_files),
        }
        if self.github_token is not None:
            payload["github_token"] = self.github_token
        return payload

    def save(self, path: Path) -> None:
        """Atomically write the configuration to ``path``."""

        atomic_write_bytes(path, tomli_w.dumps(self.to_raw()).encode())


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file. Defaults to
            ``~/.config/dotstate/config.toml``.

    Raises:
        ConfigError: if the file is missing, unparseable or invalid.
    """

    config_path = Path(path) if path is not None else default_config_path()
    if not config_path.exists():
        raise ConfigError(f"Configuration file '{config_path}' does not exist")

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    return Config.from_raw(data)


def load_or_create_config(path: Path | None = None) -> Config:
    """Load the configuration, writing one with defaults when it is missing."""

    config_path = Path(path) if path is not None else default_config_path()
    if config_path.exists():
        return load_config(config_path)

    config = Config()
    config.save(config_path)
    return config
