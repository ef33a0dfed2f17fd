from __future__ import annotations

from pathlib import Path, PurePosixPath

from conftest import build_repo
from dotstate.validation import (
    ConflictKind,
    find_hierarchy_conflicts,
    is_ancestor,
    validate_move_to_common,
)


def test_move_without_other_profiles_is_safe(repo_root: Path) -> None:
    manifest = build_repo(repo_root, {"work": {".zshrc": "a"}})

    result = validate_move_to_common(repo_root, "work", ".zshrc", manifest)

    assert result.can_proceed
    assert result.conflicts == []
    assert result.all_auto_resolvable


def test_missing_source_is_safe(repo_root: Path) -> None:
    manifest = build_repo(repo_root, {"work": {}, "home": {".zshrc": "b"}})

    result = validate_move_to_common(repo_root, "work", ".zshrc", manifest)

    assert result.can_proceed
    assert result.conflicts == []


def test_identical_copy_is_cleaned_up(repo_root: Path) -> None:
    manifest = build_repo(repo_root, {"work": {".zshrc": "same"}, "home": {".zshrc": "same"}})

    result = validate_move_to_common(repo_root, "work", ".zshrc", manifest)

    assert result.can_proceed
    assert result.all_auto_resolvable
    assert result.profiles_to_cleanup == ["home"]
    assert [c.kind for c in result.conflicts] == [ConflictKind.SAME_CONTENT]


def test_listed_but_absent_copy_counts_as_same(repo_root: Path) -> None:
    manifest = build_repo(repo_root, {"work": {".zshrc": "x"}, "home": {}})
    manifest.add_synced_file("home", ".zshrc")

    result = validate_move_to_common(repo_root, "work", ".zshrc", manifest)

    assert result.can_proceed
    assert result.profiles_to_cleanup == ["home"]


def test_different_copy_blocks_and_reports_sizes(repo_root: Path) -> None:
    manifest = build_repo(repo_root, {"work": {".zshrc": "short"}, "home": {".zshrc": "much longer"}})

    result = validate_move_to_common(repo_root, "work", ".zshrc", manifest)

    assert not result.can_proceed
    assert not result.all_auto_resolvable
    assert result.requires_confirmation
    assert result.overwritten_profiles == ["home"]
    [conflict] = result.conflicts
    assert conflict.kind is ConflictKind.DIFFERENT_CONTENT
    assert conflict.size_diff == (5, 11)
    assert "different version" in conflict.describe()


def test_mixed_same_and_different(repo_root: Path) -> None:
    manifest = build_repo(
        repo_root,
        {"work": {".zshrc": "v1"}, "home": {".zshrc": "v1"}, "server": {".zshrc": "v2"}},
    )

    result = validate_move_to_common(repo_root, "work", ".zshrc", manifest)

    assert not result.can_proceed
    assert result.profiles_to_cleanup == ["home"]
    assert {c.profile_name: c.kind for c in result.conflicts} == {
        "home": ConflictKind.SAME_CONTENT,
        "server": ConflictKind.DIFFERENT_CONTENT,
    }


def test_hierarchy_conflict_is_blocking_and_not_overridable(repo_root: Path) -> None:
    manifest = build_repo(
        repo_root,
        {"work": {".config/nvim/init.lua": "x"}, "home": {}},
    )
    manifest.update_synced_files("work", [".config/nvim"])
    manifest.update_synced_files("home", [".config"])

    result = validate_move_to_common(repo_root, "work", ".config/nvim", manifest)

    assert not result.can_proceed
    assert not result.requires_confirmation
    [conflict] = result.conflicts
    assert conflict.kind is ConflictKind.PATH_HIERARCHY
    assert conflict.conflicting_path == ".config"
    assert conflict.is_parent


def test_hierarchy_detection_is_symmetric() -> None:
    [as_child] = find_hierarchy_conflicts(".config/nvim", "home", [".config"])
    [as_parent] = find_hierarchy_conflicts(".config", "home", [".config/nvim"])

    assert as_child.is_parent
    assert not as_parent.is_parent
    assert find_hierarchy_conflicts(".config/nvim", "home", [".config/nvim2", ".config/nvim"]) == []


def test_is_ancestor_uses_path_components() -> None:
    assert is_ancestor(PurePosixPath(".config"), PurePosixPath(".config/nvim/init.lua"))
    assert not is_ancestor(PurePosixPath(".conf"), PurePosixPath(".config/nvim"))
    assert not is_ancestor(PurePosixPath(".config"), PurePosixPath(".config"))
