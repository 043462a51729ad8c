# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""CLI tests for configuration, layout, run and check-log commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from fleetcheck.cli.app import app
from fleetcheck.errors import ToolchainError
from fleetcheck.storage import CheckerDb, Committer, LatestCommit, RepoInfo, RepoInfoKey, RepositoryIdentity
from fleetcheck.toolchain import RustcInfo

# ``fleetcheck.cli`` re-exports the Typer ``app``, which shadows the submodule
# of the same name for dotted lookups; patch the module object directly.
cli_app_module = sys.modules["fleetcheck.cli.app"]

HOST = "x86_64-unknown-linux-gnu"
WASM = "wasm32-unknown-unknown"


@pytest.fixture
def fake_toolchain(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_app_module, "query_rustc", lambda: RustcInfo(host=HOST, release="1.81.0"))
    monkeypatch.setattr(cli_app_module, "query_target_list", lambda: (HOST, WASM))
    monkeypatch.setattr(cli_app_module, "active_host_channel", lambda rustc: "1.81.0")


def _write_config(tmp_path: Path, payload: dict[str, Any]) -> Path:
    path = tmp_path / "repos.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_config_prints_merged_document(tmp_path: Path) -> None:
    base = _write_config(tmp_path, {"user/alpha": {"cmds": {"clippy": False}}, "user/beta": {}})
    override = tmp_path / "override.toml"
    override.write_text('["user/beta"]\ntargets = ["wasm32-unknown-unknown"]\n', encoding="utf-8")

    result = CliRunner().invoke(app, ["config", "--config", str(base), "--config", str(override)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload == {"user/alpha": {"cmds": {"clippy": False}}, "user/beta": {"targets": [WASM]}}


def test_config_lists_repositories(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"user/alpha": {}, "https://gitlab.com/group/project": {}})

    result = CliRunner().invoke(app, ["config", "-c", str(path), "--list-repos"])

    assert result.exit_code == 0, result.output
    lines = result.stdout.strip().splitlines()
    assert lines == ["user/alpha\tgithub\tuser/alpha", "https://gitlab.com/group/project\turl\tgroup/project"]


def test_config_rejects_invalid_documents(tmp_path: Path) -> None:
    path = _write_config(tmp_path, {"user/alpha": {"cmds": {"clippy": 3}}})

    result = CliRunner().invoke(app, ["config", "-c", str(path), "--no-emoji"])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.stdout


def test_schema_describes_repo_config() -> None:
    result = CliRunner().invoke(app, ["schema"])

    assert result.exit_code == 0, result.output
    schema = json.loads(result.stdout)
    assert "RepoConfig" in schema["$defs"]


def test_layout_shows_targets_and_commands(tmp_path: Path, write_crate, fake_toolchain: None) -> None:
    repo = write_crate(tmp_path / "owner", "demo", "demo")
    (repo / "build.sh").write_text(f"cargo build --target {WASM}\n")
    path = _write_config(tmp_path, {str(repo): {"cmds": {"lockbud": False}}})

    result = CliRunner().invoke(app, ["layout", "-c", str(path), "--commands", "--no-emoji"])

    assert result.exit_code == 0, result.output
    assert "demo" in result.stdout
    assert f"demo\tclippy\tcargo clippy --target {WASM} --no-deps" in result.stdout
    assert "demo\tfmt\tcargo +1.81.0 fmt" in result.stdout


def test_layout_rejects_unknown_repository(tmp_path: Path, fake_toolchain: None) -> None:
    path = _write_config(tmp_path, {"user/alpha": {}})

    result = CliRunner().invoke(app, ["layout", "-c", str(path), "--repo", "user/ghost", "--no-emoji"])

    assert result.exit_code == 2
    assert "Unknown repositories: user/ghost" in result.stdout


def test_run_reports_failures_and_records_the_check(tmp_path: Path, fake_toolchain: None) -> None:
    missing = tmp_path / "owner" / "missing"
    path = _write_config(tmp_path, {str(missing): {}})
    db_path = tmp_path / "fleetcheck.sqlite3"

    result = CliRunner().invoke(app, ["run", "-c", str(path), "--db", str(db_path), "--no-emoji"])

    assert result.exit_code == 1
    assert "does not exist" in result.stdout
    with CheckerDb.open(db_path) as store:
        ((ident, record),) = store.checks()
    assert ident == 0
    assert record.keys == ()
    assert not record.in_progress


def test_run_fails_cleanly_without_toolchain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken() -> RustcInfo:
        raise ToolchainError("failed to run rustc: not found")

    monkeypatch.setattr(cli_app_module, "query_rustc", broken)
    path = _write_config(tmp_path, {"user/alpha": {}})

    result = CliRunner().invoke(app, ["run", "-c", str(path), "--db", str(tmp_path / "db.sqlite3"), "--no-emoji"])

    assert result.exit_code == 2
    assert "failed to run rustc" in result.stdout


def test_checks_lists_runs(tmp_path: Path) -> None:
    db_path = tmp_path / "fleetcheck.sqlite3"
    key = RepoInfoKey(repo=RepositoryIdentity(user="owner", repo="demo", sha="abc123", branch="main"), config={})
    with CheckerDb.open(db_path) as store:
        store.put_info(
            key,
            RepoInfo(
                complete=True,
                latest_commit=LatestCommit(
                    sha="abc123", message="init", author="Ada", committer=Committer(datetime_ms=1, email="", name="")
                ),
            ),
        )
        store.new_check()
        store.push_key(key)
        store.set_complete()

    result = CliRunner().invoke(app, ["checks", "--db", str(db_path), "--keys", "--no-emoji"])

    assert result.exit_code == 0, result.output
    assert "0\towner/demo\tabc123" in result.stdout


def test_checks_requires_existing_store(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["checks", "--db", str(tmp_path / "absent.sqlite3"), "--no-emoji"])

    assert result.exit_code == 2
    assert "does not exist" in result.stdout
