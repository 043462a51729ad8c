# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""End-to-end tests of batch runs against local repositories with fake tools."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from fleetcheck.checkers import CheckerTool
from fleetcheck.config import ConfigDocument
from fleetcheck.metadata import GitClient
from fleetcheck.process import ExecutableSpec, ProcessResult
from fleetcheck.runner import BatchRunner, RepoStatus
from fleetcheck.settings import RunSettings
from fleetcheck.storage import OpenedStore
from fleetcheck.targets import TargetSourceKind
from fleetcheck.toolchain import RustcInfo

HOST = "x86_64-unknown-linux-gnu"
WASM = "wasm32-unknown-unknown"
LOG = """SHA: 0123456789abcdef
Commit Header: init
Author: Ada
Author Email: ada@example.com
Author Date: Mon, 2 Sep 2024 10:00:00 +0000
Committer: Ada
Committer Email: ada@example.com
Committer Date: Mon, 2 Sep 2024 10:00:00 +0000
"""


class FakeGit:
    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []

    def __call__(self, args: Sequence[str], cwd: Path | None) -> ProcessResult:
        self.calls.append(tuple(args))
        stdout = {"log": LOG, "branch": "main\n"}.get(args[0], "")
        return ProcessResult(returncode=0, stdout=stdout, stderr="", duration_ms=1)


class FakeExecutor:
    def __init__(self) -> None:
        self.specs: list[ExecutableSpec] = []

    def __call__(self, spec: ExecutableSpec) -> ProcessResult:
        self.specs.append(spec)
        stdout = ""
        if "fmt" in spec.args:
            stdout = json.dumps([{"name": "src/lib.rs", "mismatches": [{"original": "a", "expected": "b"}]}])
        return ProcessResult(returncode=0, stdout=stdout, stderr="", duration_ms=2)


@pytest.fixture
def repo_dir(tmp_path: Path, write_crate) -> Path:
    root = write_crate(tmp_path / "owner", "demo", "demo")
    (root / "build.sh").write_text(f"cargo build --target {WASM}\n")
    return root


def _runner(
    store: OpenedStore,
    tmp_path: Path,
    *,
    git: FakeGit | None = None,
    executor: FakeExecutor | None = None,
    **settings: Any,
) -> BatchRunner:
    return BatchRunner(
        store,
        rustc=RustcInfo(host=HOST, release="1.81.0"),
        known_targets=(HOST, WASM),
        settings=RunSettings(repos_dir=tmp_path / "repos", **settings),
        git=GitClient(git or FakeGit()),
        executor=executor or FakeExecutor(),
    )


def _document(repo_dir: Path, config: dict[str, Any] | None = None) -> ConfigDocument:
    return ConfigDocument.from_mapping({str(repo_dir): config if config is not None else {"cmds": {"lockbud": False}}})


def test_first_run_executes_and_second_run_is_cached(tmp_path: Path, repo_dir: Path) -> None:
    db_path = tmp_path / "fleetcheck.sqlite3"
    executor = FakeExecutor()
    with OpenedStore.open(db_path) as store:
        (outcome,) = _runner(store, tmp_path, executor=executor).run(_document(repo_dir))

        assert outcome.status is RepoStatus.CHECKED
        assert outcome.invocations == 2
        assert outcome.executed == 2
        assert outcome.diagnostics == 1
        assert outcome.info_key is not None
        assert outcome.info_key.repo.slug == "owner/demo"
        assert outcome.info_key.repo.sha == "0123456789abcdef"
        assert executor.specs[0].args[:2] == ("+stable", "fmt")
        assert executor.specs[1].args[0] == "clippy"
        assert executor.specs[1].cwd == repo_dir.resolve()

        info = store.db.get_info(outcome.info_key)
        assert info is not None
        assert info.complete
        assert [key.checker.tool for key in info.caches] == [CheckerTool.FMT, CheckerTool.CLIPPY]

        layout = store.db.get_layout(outcome.info_key)
        assert layout is not None
        (package,) = layout.packages
        assert package.name == "demo"
        assert [triple for triple, _ in package.targets] == [WASM]
        assert package.targets[0][1][0].kind is TargetSourceKind.DETECTED_BY_PKG_SCRIPTS

        (second,) = _runner(store, tmp_path, executor=executor).run(_document(repo_dir))

        assert second.status is RepoStatus.CACHED
        assert len(executor.specs) == 2
        checks = store.db.checks()
        assert len(checks) == 1
        assert checks[0][1].keys == (outcome.info_key,)


def test_forced_repo_check_reuses_invocation_cache(tmp_path: Path, repo_dir: Path) -> None:
    executor = FakeExecutor()
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        _runner(store, tmp_path, executor=executor).run(_document(repo_dir))
        (outcome,) = _runner(store, tmp_path, executor=executor, force_repo_check=True).run(_document(repo_dir))

        assert outcome.status is RepoStatus.CHECKED
        assert outcome.executed == 0
        assert len(executor.specs) == 2

        (forced,) = _runner(
            store,
            tmp_path,
            executor=executor,
            force_repo_check=True,
            force_run=frozenset({CheckerTool.CLIPPY}),
        ).run(_document(repo_dir))

        assert forced.executed == 1
        assert executor.specs[-1].args[0] == "clippy"


def test_use_last_cache_skips_checkout(tmp_path: Path, repo_dir: Path) -> None:
    db_path = tmp_path / "fleetcheck.sqlite3"
    with OpenedStore.open(db_path) as store:
        (first,) = _runner(store, tmp_path).run(_document(repo_dir))

    git = FakeGit()
    config = {"cmds": {"lockbud": False}, "meta": {"use_last_cache": True}}
    with OpenedStore.open(db_path) as store:
        (outcome,) = _runner(store, tmp_path, git=git).run(_document(repo_dir, config))

    assert outcome.status is RepoStatus.CACHED
    assert outcome.info_key == first.info_key
    assert git.calls == []


def test_failing_repository_does_not_abort_the_batch(tmp_path: Path, repo_dir: Path) -> None:
    missing = tmp_path / "owner" / "missing"
    document = ConfigDocument.from_mapping({str(missing): {}, str(repo_dir): {"cmds": {"lockbud": False}}})
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        outcomes = _runner(store, tmp_path).run(document, jobs=2)

        assert [outcome.status for outcome in outcomes] == [RepoStatus.FAILED, RepoStatus.CHECKED]
        assert "does not exist" in (outcomes[0].error or "")
        (record,) = [record for _, record in store.db.checks()]
        assert [key.repo.repo for key in record.keys] == ["demo"]
        assert not record.in_progress


def test_configuration_errors_fail_only_that_repository(tmp_path: Path, repo_dir: Path) -> None:
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        (outcome,) = _runner(store, tmp_path).run(_document(repo_dir, {"packages": {"ghost": {}}}))

    assert outcome.status is RepoStatus.FAILED
    assert outcome.error == f"The package `ghost` is not in the repo `{repo_dir}`."


def test_setup_failure_is_reported(tmp_path: Path, repo_dir: Path) -> None:
    calls: list[tuple[tuple[str, ...], Path]] = []

    def setup_runner(args: Sequence[str], cwd: Path) -> ProcessResult:
        calls.append((tuple(args), cwd))
        return ProcessResult(returncode=1, stdout="", stderr="nope", duration_ms=1)

    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        runner = _runner(store, tmp_path)
        runner.setup_runner = setup_runner
        (outcome,) = runner.run(_document(repo_dir, {"setup": "make prepare FLAG='a b'"}))

    assert outcome.status is RepoStatus.FAILED
    assert "exited with 1" in (outcome.error or "")
    assert calls == [(("make", "prepare", "FLAG=a b"), repo_dir.resolve())]


def test_run_can_select_repositories(tmp_path: Path, repo_dir: Path) -> None:
    document = ConfigDocument.from_mapping({str(tmp_path / "owner" / "missing"): {}, str(repo_dir): {}})
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        outcomes = _runner(store, tmp_path).run(document, repos=[str(repo_dir)])

    assert [outcome.repo for outcome in outcomes] == [str(repo_dir)]


class RecordingSetup:
    def __init__(self, failing: str | None = None) -> None:
        self.calls: list[tuple[tuple[str, ...], Path]] = []
        self.failing = failing

    def __call__(self, args: Sequence[str], cwd: Path) -> ProcessResult:
        self.calls.append((tuple(args), cwd))
        if self.failing is not None and self.failing in args:
            return ProcessResult(returncode=101, stdout="", stderr="no registry", duration_ms=1)
        return ProcessResult(returncode=0, stdout="", stderr="", duration_ms=1)


PREPARED_CMDS = {"cmds": {"fmt": False, "clippy": False, "lockbud": False, "geiger": True, "audit": True}}


def test_clean_and_lockfile_steps_precede_their_checkers(tmp_path: Path, repo_dir: Path) -> None:
    setup = RecordingSetup()
    executor = FakeExecutor()
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        runner = _runner(store, tmp_path, executor=executor)
        runner.setup_runner = setup
        (outcome,) = runner.run(_document(repo_dir, PREPARED_CMDS))

    assert outcome.status is RepoStatus.CHECKED
    assert outcome.executed == 2
    assert sorted(setup.calls) == [
        (("cargo", "clean"), repo_dir.resolve()),
        (("cargo", "generate-lockfile"), repo_dir.resolve()),
    ]
    audit = next(spec for spec in executor.specs if "audit" in spec.args)
    assert audit.cwd == repo_dir.resolve()


def test_existing_lockfile_is_left_alone(tmp_path: Path, repo_dir: Path) -> None:
    (repo_dir / "Cargo.lock").write_text("version = 3\n")
    setup = RecordingSetup()
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        runner = _runner(store, tmp_path)
        runner.setup_runner = setup
        (outcome,) = runner.run(_document(repo_dir, PREPARED_CMDS))

    assert outcome.status is RepoStatus.CHECKED
    assert [args for args, _ in setup.calls] == [("cargo", "clean")]


def test_failed_lockfile_generation_fails_the_repository(tmp_path: Path, repo_dir: Path) -> None:
    setup = RecordingSetup(failing="generate-lockfile")
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        runner = _runner(store, tmp_path)
        runner.setup_runner = setup
        (outcome,) = runner.run(_document(repo_dir, {"cmds": {"fmt": False, "clippy": False, "audit": True}}))

    assert outcome.status is RepoStatus.FAILED
    assert outcome.error == f"cargo generate-lockfile in {repo_dir.resolve()} exited with 101: no registry"


def test_feature_targets_outside_the_candidates_fail_the_repository(tmp_path: Path, repo_dir: Path) -> None:
    config = {"features": [{"targets": ["aarch64-apple-darwin"]}]}
    with OpenedStore.open(tmp_path / "fleetcheck.sqlite3") as store:
        (outcome,) = _runner(store, tmp_path).run(_document(repo_dir, config))

    assert outcome.status is RepoStatus.FAILED
    assert outcome.error == (
        f"Target `aarch64-apple-darwin` isn't found or specified for any package in repo `{repo_dir}`"
    )
