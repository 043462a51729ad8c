# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for environment-driven run settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from fleetcheck.checkers import CheckerTool
from fleetcheck.errors import ConfigError
from fleetcheck.settings import RunSettings


def test_defaults_without_environment() -> None:
    settings = RunSettings.from_environment({})

    assert settings == RunSettings()
    assert not settings.forces(CheckerTool.CLIPPY)


def test_force_flags_and_paths() -> None:
    settings = RunSettings.from_environment(
        {
            "FLEETCHECK_FORCE_REPO_CHECK": "yes",
            "FLEETCHECK_FORCE_RUN_CHECK": "clippy, semver-checks",
            "FLEETCHECK_REPOS_DIR": "/srv/repos",
            "FLEETCHECK_DB": "/srv/cache.sqlite3",
            "FLEETCHECK_INSTALL_TARGETS": "1",
        }
    )

    assert settings.force_repo_check
    assert settings.force_run == frozenset({CheckerTool.CLIPPY, CheckerTool.SEMVER_CHECKS})
    assert settings.forces(CheckerTool.SEMVER_CHECKS)
    assert not settings.forces(CheckerTool.FMT)
    assert settings.repos_dir == Path("/srv/repos")
    assert settings.db_path == Path("/srv/cache.sqlite3")
    assert settings.install_targets


@pytest.mark.parametrize("value", ["all", "true", "ON"])
def test_force_run_all(value: str) -> None:
    settings = RunSettings.from_environment({"FLEETCHECK_FORCE_RUN_CHECK": value})

    assert settings.force_run_all
    assert all(settings.forces(checker) for checker in CheckerTool)


def test_unknown_force_run_checker_is_rejected() -> None:
    with pytest.raises(ConfigError, match="unknown checker `clipy`"):
        RunSettings.from_environment({"FLEETCHECK_FORCE_RUN_CHECK": "clipy"})
