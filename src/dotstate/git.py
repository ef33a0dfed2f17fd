"""Thin git synchronisation wrapper built on GitPython."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from .exceptions import GitSyncError

logger = logging.getLogger(__name__)

_CREDENTIALS_RE = re.compile(r"(https?://)[^@/\s]+@")


def redact_credentials(url: str) -> str:
    """Hide any user/token segment of an HTTP(S) remote URL."""

    return _CREDENTIALS_RE.sub(r"\1***@", url)


def with_token(url: str, token: str | None) -> str:
    """Return ``url`` with ``token`` injected as HTTPS basic-auth credentials."""

    if not token or not url.startswith("https://"):
        return url
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"x-access-token:{token}@{host}", parts.path, parts.query, parts.fragment))


def is_git_repo(path: Path) -> bool:
    try:
        Repo(str(path))
    except (InvalidGitRepositoryError, NoSuchPathError):
        return False
    return True


class GitManager:
    """Commit, pull and push the dotfiles repository."""

    def __init__(self, repo: Repo) -> None:
        self.repo = repo

    @classmethod
    def open(cls, path: Path) -> "GitManager":
        try:
            return cls(Repo(str(path)))
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise GitSyncError(f"'{path}' is not a git repository") from exc

    def get_current_branch(self) -> str | None:
        if self.repo.head.is_detached:
            return None
        try:
            return self.repo.active_branch.name
        except TypeError:
            return None

    def remote_url(self, name: str = "origin") -> str | None:
        if name not in [remote.name for remote in self.repo.remotes]:
            return None
        return self.repo.remote(name).url

    def uncommitted_changes(self) -> list[str]:
        """Return ``git status --porcelain`` lines."""

        output = self.repo.git.status("--porcelain")
        return [line for line in output.splitlines() if line.strip()]

    def ahead_behind(self, remote: str, branch: str) -> tuple[int, int] | None:
        """Return ``(ahead, behind)`` relative to ``remote/branch``, or ``None`` without upstream."""

        try:
            counts = self.repo.git.rev_list("--left-right", "--count", f"{remote}/{branch}...HEAD")
        except GitCommandError:
            return None
        parts = counts.split()
        if len(parts) != 2:
            return None
        behind, ahead = (int(value) for value in parts)
        return ahead, behind

    def commit_all(self, message: str) -> bool:
        """Stage everything and commit. Returns ``False`` when there was nothing to commit."""

        try:
            self.repo.git.add("-A")
            if self.repo.head.is_valid():
                if not self.repo.index.diff("HEAD"):
                    return False
            elif not self.repo.index.entries:
                return False
            self.repo.index.commit(message)
        except GitCommandError as exc:
            raise GitSyncError(f"Failed to commit changes: {str(exc.stderr).strip() or exc}") from exc
        logger.info("Committed changes: %s", message)
        return True

    def remote_has_branch(self, remote: str, branch: str, token: str | None = None) -> bool:
        url = self._remote_fetch_url(remote, token)
        try:
            output = self.repo.git.ls_remote("--heads", url, branch)
        except GitCommandError as exc:
            raise GitSyncError(f"Failed to query {remote}: {redact_credentials(str(exc.stderr).strip())}") from exc
        return bool(output.strip())

    def pull_with_rebase(self, remote: str, branch: str, token: str | None = None) -> int:
        """Pull ``branch`` with rebase and return the number of commits received."""

        if not self.remote_has_branch(remote, branch, token):
            logger.info("Branch %s does not exist on %s yet; nothing to pull", branch, remote)
            return 0

        before = self.repo.head.commit.hexsha if self.repo.head.is_valid() else None
        url = self._remote_fetch_url(remote, token)
        try:
            self.repo.git.pull("--rebase", url, branch)
        except GitCommandError as exc:
            raise GitSyncError(f"Failed to pull from {remote}: {redact_credentials(str(exc.stderr).strip())}") from exc

        if before is None:
            return sum(1 for _ in self.repo.iter_commits())
        return sum(1 for _ in self.repo.iter_commits(f"{before}..HEAD"))

    def push(self, remote: str, branch: str, token: str | None = None) -> None:
        url = self._remote_fetch_url(remote, token)
        try:
            self.repo.git.push(url, f"HEAD:refs/heads/{branch}")
        except GitCommandError as exc:
            raise GitSyncError(f"Failed to push to {remote}: {redact_credentials(str(exc.stderr).strip())}") from exc
        logger.info("Pushed %s to %s", branch, redact_credentials(url))

    def _remote_fetch_url(self, remote: str, token: str | None) -> str:
        url = self.remote_url(remote)
        if url is None:
            raise GitSyncError(f"Remote '{remote}' is not configured")
        # Named remotes keep remote-tracking refs current; tokens need an explicit URL.
        return with_token(url, token) if token else remote
