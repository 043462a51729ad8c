# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Commit metadata and repository checkouts obtained through ``git``."""

from __future__ import annotations

import logging
import subprocess  # nosec B404
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Final

from .config.uri import RepoUri, UriKind
from .errors import MetadataError
from .process import ProcessResult, run_command
from .storage.models import Committer, LatestCommit

LOGGER = logging.getLogger(__name__)

GIT_LOG_FORMAT: Final[str] = (
    "SHA: %H%n"
    "Commit Header: %s%n"
    "Author: %an%n"
    "Author Email: %ae%n"
    "Author Date: %ad%n"
    "Committer: %cn%n"
    "Committer Email: %ce%n"
    "Committer Date: %cd"
)
DETACHED_BRANCH: Final[str] = "HEAD"

type GitRunner = Callable[[Sequence[str], Path | None], ProcessResult]


def _default_git(args: Sequence[str], cwd: Path | None) -> ProcessResult:
    return run_command(["git", *args], cwd=cwd)


def rfc2822_to_millis(text: str) -> int:
    """Convert an RFC 2822 timestamp to unix milliseconds.

    Raises:
        MetadataError: If ``text`` is not a valid RFC 2822 date.
    """

    try:
        moment = parsedate_to_datetime(text.strip())
    except (TypeError, ValueError) as exc:
        raise MetadataError(f"invalid RFC 2822 date `{text}`") from exc
    return int(moment.timestamp() * 1000)


def parse_git_log(text: str) -> LatestCommit:
    """Parse output of ``git log -1`` formatted with :data:`GIT_LOG_FORMAT`.

    Raises:
        MetadataError: If a required field is missing.
    """

    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(": ")
        if sep and key not in fields:
            fields[key] = value.strip()
    try:
        return LatestCommit(
            sha=fields["SHA"],
            message=fields.get("Commit Header", ""),
            author=fields.get("Author", ""),
            committer=Committer(
                datetime_ms=rfc2822_to_millis(fields["Committer Date"]),
                email=fields.get("Committer Email", ""),
                name=fields.get("Committer", ""),
            ),
        )
    except KeyError as exc:
        raise MetadataError(f"git log output lacks field {exc}") from exc


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """Latest commit and current branch of a checkout."""

    commit: LatestCommit
    branch: str


class GitClient:
    """Run the handful of ``git`` commands fleetcheck needs."""

    def __init__(self, runner: GitRunner | None = None) -> None:
        self._runner = runner or _default_git

    def _git(self, args: Sequence[str], cwd: Path | None = None) -> str:
        try:
            result = self._runner(args, cwd)
        except (OSError, subprocess.SubprocessError) as exc:
            raise MetadataError(f"failed to run git {' '.join(args)}: {exc}") from exc
        if not result.succeeded:
            raise MetadataError(f"git {' '.join(args)} exited with {result.returncode}: {result.stderr.strip()}")
        return result.stdout

    def commit_info(self, repo_dir: Path) -> CommitInfo:
        """Return the latest commit and current branch of ``repo_dir``."""

        log = self._git(["log", "-1", f"--pretty=tformat:{GIT_LOG_FORMAT}", "--date=rfc"], repo_dir)
        branch = self._git(["branch", "--show-current"], repo_dir).strip() or DETACHED_BRANCH
        return CommitInfo(commit=parse_git_log(log), branch=branch)

    def clone(self, url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        self._git(["clone", url, str(dest)])

    def pull(self, repo_dir: Path) -> None:
        self._git(["pull", "--ff-only"], repo_dir)


class RepoMaterializer:
    """Resolve a :class:`RepoUri` to a local checkout, cloning or pulling as needed."""

    def __init__(self, repos_dir: Path, git: GitClient | None = None) -> None:
        self.repos_dir = repos_dir
        self.git = git or GitClient()

    def checkout_dir(self, uri: RepoUri) -> Path:
        """Return where ``uri`` lives locally."""

        if uri.kind is UriKind.LOCAL:
            return Path(uri.location)
        return self.repos_dir / uri.user / uri.repo

    def materialize(self, uri: RepoUri) -> Path:
        """Return a local path for ``uri``.

        Raises:
            MetadataError: If a local path is missing or git fails.
        """

        path = self.checkout_dir(uri)
        try:
            if uri.kind is UriKind.LOCAL:
                if not path.is_dir():
                    raise MetadataError(f"local repository `{uri.key}` does not exist")
                return path
            if (path / ".git").exists():
                LOGGER.debug("updating %s in %s", uri.slug, path)
                self.git.pull(path)
            else:
                LOGGER.debug("cloning %s into %s", uri.location, path)
                self.git.clone(uri.location, path)
        except OSError as exc:
            raise MetadataError(f"failed to prepare checkout of `{uri.key}` in {path}: {exc}") from exc
        return path


__all__ = [
    "CommitInfo",
    "GIT_LOG_FORMAT",
    "GitClient",
    "RepoMaterializer",
    "parse_git_log",
    "rfc2822_to_millis",
]
