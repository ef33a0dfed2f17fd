"""Filesystem helpers for dotstate."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterator

from .models import EntryType


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def lexists(path: Path) -> bool:
    """Return ``True`` if ``path`` exists or is a (possibly dangling) symlink."""

    return path.exists() or path.is_symlink()


def detect_entry_type(path: Path) -> EntryType:
    """Determine the ``EntryType`` for ``path`` without following symlinks."""

    if path.is_symlink():
        return EntryType.SYMLINK
    if path.is_dir():
        return EntryType.DIRECTORY
    if path.exists():
        return EntryType.FILE
    return EntryType.MISSING


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` through a temporary file and ``os.replace``.

    Readers observe either the previous content or the new content, never a
    partially written file.
    """

    ensure_parent(path)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.dotstate-tmp-", dir=path.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def symlink_points_to(link: Path, target: Path) -> bool:
    """Return ``True`` if ``link`` is a symlink that resolves to ``target``."""

    if not link.is_symlink():
        return False
    current = Path(os.readlink(link))
    current_resolved = (link.parent / current).resolve(strict=False)
    target_resolved = target.resolve(strict=False)
    return current_resolved == target_resolved


def create_symlink(link: Path, target: Path) -> None:
    """Create ``link`` pointing at the absolute ``target``, creating parents."""

    ensure_parent(link)
    link.symlink_to(target, target_is_directory=target.is_dir())


def move_path(source: Path, destination: Path) -> None:
    """Move ``source`` to ``destination`` keeping symlinks as links."""

    ensure_parent(destination)
    if source.is_symlink():
        link_target = os.readlink(source)
        destination.symlink_to(link_target)
        source.unlink()
        return
    shutil.move(str(source), str(destination))


def copy_entry(source: Path, destination: Path) -> EntryType:
    """Copy ``source`` into ``destination`` preserving metadata."""

    entry_type = detect_entry_type(source)
    ensure_parent(destination)

    if lexists(destination):
        remove_path(destination)

    if entry_type == EntryType.SYMLINK:
        destination.symlink_to(os.readlink(source))
    elif entry_type == EntryType.DIRECTORY:
        shutil.copytree(source, destination, symlinks=True, copy_function=shutil.copy2)
    else:
        shutil.copy2(source, destination)

    return entry_type


def remove_path(path: Path) -> None:
    """Delete ``path`` whether it is a file, directory, or symlink."""

    if not lexists(path):
        return
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    shutil.rmtree(path)


def same_content(first: Path, second: Path) -> bool:
    """Compare two paths for identical content.

    Files are compared byte for byte after a size check. Directories are only
    compared by the names of their immediate entries; nested file contents are
    not inspected.
    """

    first_is_dir = first.is_dir()
    if first_is_dir != second.is_dir():
        return False

    if not first_is_dir:
        if first.stat().st_size != second.stat().st_size:
            return False
        with first.open("rb") as left, second.open("rb") as right:
            for chunk in iter(lambda: left.read(1024 * 1024), b""):
                if chunk != right.read(len(chunk)):
                    return False
        return True

    first_names = {child.name for child in first.iterdir()}
    second_names = {child.name for child in second.iterdir()}
    return first_names == second_names


def iter_files(root: Path) -> Iterator[Path]:
    """Yield every file or symlink below ``root`` relative to it, sorted."""

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        linked_dirs = [name for name in dirnames if (base / name).is_symlink()]
        for name in sorted(filenames + linked_dirs):
            yield (base / name).relative_to(root)


def dir_size(path: Path) -> int:
    """Return the total size in bytes of regular files below ``path``."""

    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            candidate = Path(dirpath) / name
            if candidate.is_symlink():
                continue
            try:
                total += candidate.stat().st_size
            except OSError:
                continue
    return total


def format_size(size: int) -> str:
    """Format a byte count for humans."""

    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"
