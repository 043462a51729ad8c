# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for git commit metadata and repository materialization."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from fleetcheck.config import RepoUri
from fleetcheck.errors import MetadataError
from fleetcheck.metadata import GitClient, RepoMaterializer, parse_git_log, rfc2822_to_millis
from fleetcheck.process import ProcessResult

LOG = """SHA: 0123456789abcdef
Commit Header: Fix: handle empty workspaces
Author: Ada
Author Email: ada@example.com
Author Date: Mon, 2 Sep 2024 10:00:00 +0000
Committer: Grace
Committer Email: grace@example.com
Committer Date: Mon, 2 Sep 2024 12:30:00 +0200
"""


class FakeGit:
    def __init__(self, outputs: dict[str, str] | None = None, fail: set[str] | None = None) -> None:
        self.outputs = outputs or {}
        self.fail = fail or set()
        self.calls: list[tuple[tuple[str, ...], Path | None]] = []

    def __call__(self, args: Sequence[str], cwd: Path | None) -> ProcessResult:
        self.calls.append((tuple(args), cwd))
        if args[0] in self.fail:
            return ProcessResult(returncode=128, stdout="", stderr="fatal: boom", duration_ms=1)
        return ProcessResult(returncode=0, stdout=self.outputs.get(args[0], ""), stderr="", duration_ms=1)


def test_rfc2822_to_millis_honours_offsets() -> None:
    assert rfc2822_to_millis("Thu, 1 Jan 1970 00:00:01 +0000") == 1_000
    assert rfc2822_to_millis("Thu, 1 Jan 1970 01:00:01 +0100") == 1_000


def test_rfc2822_to_millis_rejects_garbage() -> None:
    with pytest.raises(MetadataError):
        rfc2822_to_millis("yesterday")


def test_parse_git_log_extracts_committer() -> None:
    commit = parse_git_log(LOG)

    assert commit.sha == "0123456789abcdef"
    assert commit.message == "Fix: handle empty workspaces"
    assert commit.author == "Ada"
    assert commit.committer.name == "Grace"
    assert commit.committer.email == "grace@example.com"
    assert commit.committer.datetime_ms == rfc2822_to_millis("Mon, 2 Sep 2024 10:30:00 +0000")


def test_parse_git_log_requires_sha() -> None:
    with pytest.raises(MetadataError, match="SHA"):
        parse_git_log("Committer Date: Mon, 2 Sep 2024 12:30:00 +0200\n")


def test_commit_info_reads_log_and_branch(tmp_path: Path) -> None:
    git = FakeGit({"log": LOG, "branch": "main\n"})

    info = GitClient(git).commit_info(tmp_path)

    assert info.branch == "main"
    assert info.commit.sha == "0123456789abcdef"
    assert all(cwd == tmp_path for _, cwd in git.calls)


def test_detached_checkout_reports_head(tmp_path: Path) -> None:
    info = GitClient(FakeGit({"log": LOG, "branch": "\n"})).commit_info(tmp_path)

    assert info.branch == "HEAD"


def test_git_failure_raises_metadata_error(tmp_path: Path) -> None:
    with pytest.raises(MetadataError, match="fatal: boom"):
        GitClient(FakeGit(fail={"log"})).commit_info(tmp_path)


def test_materializer_clones_then_pulls(tmp_path: Path) -> None:
    git = FakeGit()
    materializer = RepoMaterializer(tmp_path / "repos", GitClient(git))
    uri = RepoUri.parse("os-checker/demo")

    path = materializer.materialize(uri)

    assert path == tmp_path / "repos" / "os-checker" / "demo"
    assert git.calls[-1][0] == ("clone", "https://github.com/os-checker/demo.git", str(path))

    (path / ".git").mkdir(parents=True)
    materializer.materialize(uri)

    assert git.calls[-1] == (("pull", "--ff-only"), path)


def test_materializer_uses_local_paths_in_place(tmp_path: Path) -> None:
    local = tmp_path / "owner" / "crate"
    local.mkdir(parents=True)
    materializer = RepoMaterializer(tmp_path / "repos", GitClient(FakeGit()))

    assert materializer.materialize(RepoUri.parse(str(local))) == local.resolve()
    with pytest.raises(MetadataError, match="does not exist"):
        materializer.materialize(RepoUri.parse(str(tmp_path / "owner" / "missing")))


def test_materializer_wraps_filesystem_errors(tmp_path: Path) -> None:
    repos_dir = tmp_path / "repos"
    repos_dir.write_text("not a directory")
    materializer = RepoMaterializer(repos_dir, GitClient(FakeGit()))

    with pytest.raises(MetadataError, match="failed to prepare checkout of `os-checker/demo`"):
        materializer.materialize(RepoUri.parse("os-checker/demo"))
