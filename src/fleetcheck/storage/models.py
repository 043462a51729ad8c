# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Persisted key and value types of the checker store."""

from __future__ import annotations

import time
from collections.abc import Mapping
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..checkers import CheckerTool
from ..targets.sources import TargetSourceKind


def now_millis() -> int:
    """Return the current unix time in milliseconds."""

    return time.time_ns() // 1_000_000


class DiagnosticKind(IntEnum):
    """Category of a stored diagnostic. New members may only be appended."""

    UNFORMATTED = 0
    CLIPPY_WARN = 1
    CLIPPY_ERROR = 2
    MIRI = 3
    SEMVER_VIOLATION = 4
    AUDIT = 5
    MIRAI = 6
    LOCKBUD_PROBABLY = 7
    LOCKBUD_POSSIBLY = 8
    RAPX = 9
    RUDRA = 10
    OUTDATED = 11
    GEIGER = 12
    CARGO = 13
    ATOMVCHECKER = 14
    UDEPS = 15


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RepositoryIdentity(_Frozen):
    """A repository at one commit on one branch."""

    user: str
    repo: str
    sha: str
    branch: str

    @property
    def slug(self) -> str:
        return f"{self.user}/{self.repo}"


class CheckerIdentity(_Frozen):
    """A checker tool with optional version and source revision."""

    tool: CheckerTool
    version: str | None = None
    sha: str | None = None


class NormalizedCommand(_Frozen):
    """Exact command identity used inside cache keys."""

    command_string: str
    target: str
    channel: str
    environment: tuple[tuple[str, str], ...] = ()
    feature_list: tuple[str, ...] = ()
    flag_list: tuple[str, ...] = ()

    @staticmethod
    def env_pairs(env: Mapping[str, str]) -> tuple[tuple[str, str], ...]:
        """Return ``env`` as sorted ``(name, value)`` pairs."""

        return tuple(sorted(env.items()))


class CacheKey(_Frozen):
    """Content address of one checker invocation."""

    repo: RepositoryIdentity
    package_name: str
    checker: CheckerIdentity
    command: NormalizedCommand


class Diagnostic(_Frozen):
    """One diagnostic record produced by an output parser."""

    file: str | None = None
    kind: DiagnosticKind
    raw: str


class Diagnostics(_Frozen):
    """Diagnostics of one invocation and the time it took."""

    duration_ms: int = 0
    data: tuple[Diagnostic, ...] = ()


class CacheValue(_Frozen):
    """Stored result of one invocation."""

    unix_timestamp_milli: int = Field(default_factory=now_millis)
    command: NormalizedCommand
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)


class RepoInfoKey(_Frozen):
    """A repository identity paired with the full merged configuration used."""

    repo: RepositoryIdentity
    config: dict[str, Any] = Field(default_factory=dict)


class Committer(_Frozen):
    datetime_ms: int
    email: str
    name: str


class LatestCommit(_Frozen):
    """Metadata of the checked commit."""

    sha: str
    message: str
    author: str
    committer: Committer


class RepoInfo(_Frozen):
    """Progress of checking one repository at one commit and configuration."""

    complete: bool = False
    caches: tuple[CacheKey, ...] = ()
    latest_commit: LatestCommit


class CheckRunRecord(_Frozen):
    """One batch run: repositories touched plus start and end timestamps."""

    keys: tuple[RepoInfoKey, ...] = ()
    timestamp_start: int = Field(default_factory=now_millis)
    timestamp_end: int = 0

    @property
    def in_progress(self) -> bool:
        return self.timestamp_end == 0


class LayoutSource(_Frozen):
    kind: TargetSourceKind
    path: str | None = None


class LayoutPackage(_Frozen):
    """Detected package with its resolved targets."""

    name: str
    dir: str
    channel: str | None = None
    targets: tuple[tuple[str, tuple[LayoutSource, ...]], ...] = ()


class LayoutSnapshot(_Frozen):
    """Packages, targets and installation plan detected for one repository."""

    root: str
    packages: tuple[LayoutPackage, ...] = ()
    installation: tuple[tuple[str, tuple[str, ...]], ...] = ()


__all__ = [
    "CacheKey",
    "CacheValue",
    "CheckRunRecord",
    "CheckerIdentity",
    "Committer",
    "Diagnostic",
    "DiagnosticKind",
    "Diagnostics",
    "LatestCommit",
    "LayoutPackage",
    "LayoutSnapshot",
    "LayoutSource",
    "NormalizedCommand",
    "RepoInfo",
    "RepoInfoKey",
    "RepositoryIdentity",
    "now_millis",
]
