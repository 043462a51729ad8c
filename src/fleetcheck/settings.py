# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Runtime settings for a batch run, read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Final

from .checkers import CheckerTool
from .errors import ConfigError

FORCE_REPO_CHECK_ENV: Final[str] = "FLEETCHECK_FORCE_REPO_CHECK"
FORCE_RUN_CHECK_ENV: Final[str] = "FLEETCHECK_FORCE_RUN_CHECK"
REPOS_DIR_ENV: Final[str] = "FLEETCHECK_REPOS_DIR"
DB_PATH_ENV: Final[str] = "FLEETCHECK_DB"
INSTALL_TARGETS_ENV: Final[str] = "FLEETCHECK_INSTALL_TARGETS"

DEFAULT_REPOS_DIR: Final[Path] = Path("repos")
DEFAULT_DB_PATH: Final[Path] = Path("fleetcheck.sqlite3")
_TRUE_TOKENS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_ALL_TOKEN: Final[str] = "all"


@dataclass(frozen=True, slots=True)
class RunSettings:
    """Define how aggressively a run bypasses cached results.

    Attributes:
        force_repo_check: Re-check repositories even when a complete info exists.
        force_run_all: Re-run every checker even on cache hits.
        force_run: Checkers to re-run even on cache hits.
        repos_dir: Directory where remote repositories are cloned.
        db_path: Location of the sqlite store.
        install_targets: Run ``rustup target add`` for detected targets.
    """

    force_repo_check: bool = False
    force_run_all: bool = False
    force_run: frozenset[CheckerTool] = frozenset()
    repos_dir: Path = DEFAULT_REPOS_DIR
    db_path: Path = DEFAULT_DB_PATH
    install_targets: bool = False

    @classmethod
    def from_environment(cls, env: Mapping[str, str] | None = None) -> RunSettings:
        """Parse settings from ``env`` (``os.environ`` by default).

        Raises:
            ConfigError: If the force-run variable names an unknown checker.
        """

        env = os.environ if env is None else env
        force_run_all, force_run = _parse_force_run(env.get(FORCE_RUN_CHECK_ENV, ""))
        settings = cls(
            force_repo_check=_is_true(env.get(FORCE_REPO_CHECK_ENV, "")),
            force_run_all=force_run_all,
            force_run=force_run,
            install_targets=_is_true(env.get(INSTALL_TARGETS_ENV, "")),
        )
        if repos_dir := env.get(REPOS_DIR_ENV):
            settings = replace(settings, repos_dir=Path(repos_dir).expanduser())
        if db_path := env.get(DB_PATH_ENV):
            settings = replace(settings, db_path=Path(db_path).expanduser())
        return settings

    def forces(self, checker: CheckerTool) -> bool:
        """Return ``True`` when cached results of ``checker`` must be ignored."""

        return self.force_run_all or checker in self.force_run


def _is_true(value: str) -> bool:
    return value.strip().lower() in _TRUE_TOKENS


def _parse_force_run(value: str) -> tuple[bool, frozenset[CheckerTool]]:
    token = value.strip().lower()
    if not token:
        return False, frozenset()
    if token in _TRUE_TOKENS or token == _ALL_TOKEN:
        return True, frozenset()
    checkers: set[CheckerTool] = set()
    for name in token.split(","):
        name = name.strip()
        if not name:
            continue
        try:
            checkers.add(CheckerTool.from_name(name))
        except ValueError as exc:
            raise ConfigError(f"{FORCE_RUN_CHECK_ENV} names unknown checker `{name}`", checker=name) from exc
    return False, frozenset(checkers)


__all__ = [
    "DB_PATH_ENV",
    "FORCE_REPO_CHECK_ENV",
    "FORCE_RUN_CHECK_ENV",
    "INSTALL_TARGETS_ENV",
    "REPOS_DIR_ENV",
    "RunSettings",
]
