"""Profile manifest persistence for dotstate."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Iterable

import tomli_w

from .exceptions import (
    DuplicateProfileError,
    InvalidProfileNameError,
    ManifestCorruptError,
    ManifestNotFoundError,
    UnknownProfileError,
)
from .filesystem import atomic_write_bytes, iter_files
from .models import COMMON_SCOPE

MANIFEST_FILENAME = ".dotstate-profiles.toml"

logger = logging.getLogger(__name__)


def manifest_path(repo_root: Path) -> Path:
    return repo_root / MANIFEST_FILENAME


def normalize_relative(raw: str | Path) -> str:
    """Return ``raw`` as a clean repository-relative POSIX path.

    Raises:
        ValueError: if the path is empty, absolute, or escapes the repository.
    """

    text = str(raw).replace("\\", "/")
    candidate = PurePosixPath(text)
    if candidate.is_absolute():
        raise ValueError(f"Path '{raw}' must be relative to the home directory")
    parts = [part for part in candidate.parts if part not in ("", ".")]
    if not parts:
        raise ValueError("Path must not be empty")
    if ".." in parts:
        raise ValueError(f"Path '{raw}' must not escape its base directory")
    return PurePosixPath(*parts).as_posix()


def validate_profile_name(name: str) -> None:
    if not name or not name.strip():
        raise InvalidProfileNameError("Profile name must not be empty")
    if name == COMMON_SCOPE:
        raise InvalidProfileNameError(f"'{COMMON_SCOPE}' is reserved for shared files")
    if "/" in name or "\\" in name or name.startswith("."):
        raise InvalidProfileNameError(f"Profile name '{name}' cannot be used as a directory name")


def _dedupe(files: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in files:
        normalized = normalize_relative(item)
        if normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


@dataclass(slots=True)
class Profile:
    """A named set of dotfiles synced together."""

    name: str
    description: str | None = None
    synced_files: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CommonBucket:
    """Files that are active under every profile."""

    synced_files: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return COMMON_SCOPE


class ProfileManifest:
    """Durable record of profiles and the files each one syncs."""

    def __init__(self, profiles: list[Profile] | None = None, common: CommonBucket | None = None) -> None:
        self.profiles: list[Profile] = profiles or []
        self.common: CommonBucket = common or CommonBucket()

    # ------------------------------------------------------------------
    # Loading and saving

    @classmethod
    def load(cls, repo_root: Path) -> "ProfileManifest":
        path = manifest_path(repo_root)
        if not path.exists():
            raise ManifestNotFoundError(f"No manifest found at '{path}'")

        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
            raise ManifestCorruptError(f"Manifest '{path}' is not valid TOML: {exc}") from exc

        try:
            return cls._from_raw(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ManifestCorruptError(f"Manifest '{path}' has an invalid structure: {exc}") from exc

    @classmethod
    def load_or_backfill(cls, repo_root: Path) -> "ProfileManifest":
        """Load the manifest, synthesizing it from the repository layout when missing."""

        try:
            return cls.load(repo_root)
        except ManifestNotFoundError:
            logger.info("No manifest in %s; rebuilding it from profile directories", repo_root)

        manifest = cls.backfill(repo_root)
        manifest.save(repo_root)
        return manifest

    @classmethod
    def backfill(cls, repo_root: Path) -> "ProfileManifest":
        """Build a manifest from the profile directories found on disk."""

        manifest = cls()
        if not repo_root.is_dir():
            return manifest

        for child in sorted(repo_root.iterdir()):
            if not child.is_dir() or child.is_symlink() or child.name.startswith("."):
                continue
            files = [relative.as_posix() for relative in iter_files(child)]
            if child.name == COMMON_SCOPE:
                manifest.common.synced_files = files
            else:
                manifest.profiles.append(Profile(name=child.name, synced_files=files))

        return manifest

    @classmethod
    def rebuild(cls, repo_root: Path) -> "ProfileManifest":
        """Move a corrupt manifest aside and backfill a new one."""

        path = manifest_path(repo_root)
        if path.exists():
            try:
                cls.load(repo_root)
            except ManifestCorruptError:
                stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
                aside = path.with_name(f"{path.name}.corrupt-{stamp}")
                path.replace(aside)
                logger.warning("Moved corrupt manifest to %s", aside)
        return cls.load_or_backfill(repo_root)

    def save(self, repo_root: Path) -> None:
        atomic_write_bytes(manifest_path(repo_root), tomli_w.dumps(self._to_raw()).encode())

    # ------------------------------------------------------------------
    # Profiles

    def get_profile(self, name: str) -> Profile | None:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None

    def has_profile(self, name: str) -> bool:
        return self.get_profile(name) is not None

    def require_profile(self, name: str) -> Profile:
        profile = self.get_profile(name)
        if profile is None:
            raise UnknownProfileError(f"Unknown profile '{name}'")
        return profile

    def add_profile(self, name: str, description: str | None = None) -> Profile:
        validate_profile_name(name)
        if self.has_profile(name):
            raise DuplicateProfileError(f"Profile '{name}' already exists")
        profile = Profile(name=name, description=description)
        self.profiles.append(profile)
        return profile

    def remove_profile(self, name: str) -> Profile:
        profile = self.require_profile(name)
        self.profiles.remove(profile)
        return profile

    def update_synced_files(self, profile_name: str, files: Iterable[str]) -> None:
        self.require_profile(profile_name).synced_files = _dedupe(files)

    def add_synced_file(self, profile_name: str, relative_path: str) -> bool:
        profile = self.require_profile(profile_name)
        normalized = normalize_relative(relative_path)
        if normalized in profile.synced_files:
            return False
        profile.synced_files.append(normalized)
        return True

    def remove_synced_file(self, profile_name: str, relative_path: str) -> bool:
        profile = self.require_profile(profile_name)
        normalized = normalize_relative(relative_path)
        if normalized not in profile.synced_files:
            return False
        profile.synced_files.remove(normalized)
        return True

    # ------------------------------------------------------------------
    # Common files

    def get_common_files(self) -> list[str]:
        return list(self.common.synced_files)

    def add_common_file(self, relative_path: str) -> bool:
        normalized = normalize_relative(relative_path)
        if normalized in self.common.synced_files:
            return False
        self.common.synced_files.append(normalized)
        return True

    def remove_common_file(self, relative_path: str) -> bool:
        normalized = normalize_relative(relative_path)
        if normalized not in self.common.synced_files:
            return False
        self.common.synced_files.remove(normalized)
        return True

    # ------------------------------------------------------------------
    # Serialisation

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> "ProfileManifest":
        profiles: list[Profile] = []
        seen: set[str] = set()
        for item in data.get("profiles", []):
            if not isinstance(item, dict):
                raise TypeError("profile entries must be tables")
            name = item["name"]
            if not isinstance(name, str):
                raise TypeError("profile names must be strings")
            try:
                validate_profile_name(name)
            except InvalidProfileNameError as exc:
                raise ValueError(str(exc)) from exc
            if name in seen:
                raise ValueError(f"profile '{name}' is listed twice")
            seen.add(name)
            description = item.get("description")
            profiles.append(
                Profile(
                    name=name,
                    description=str(description) if description is not None else None,
                    synced_files=_dedupe(item.get("synced_files", [])),
                )
            )

        common_raw = data.get("common", {})
        if not isinstance(common_raw, dict):
            raise TypeError("'common' must be a table")
        common = CommonBucket(synced_files=_dedupe(common_raw.get("synced_files", [])))
        return cls(profiles, common)

    def _to_raw(self) -> dict[str, Any]:
        profiles: list[dict[str, Any]] = []
        for profile in self.profiles:
            payload: dict[str, Any] = {"name": profile.name}
            if profile.description is not None:
                payload["description"] = profile.description
            payload["synced_files"] = list(profile.synced_files)
            profiles.append(payload)
        return {
            "common": {"synced_files": list(self.common.synced_files)},
            "profiles": profiles,
        }
