# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Tests for the checker store: codec, tables, check log and latest-info index."""

from __future__ import annotations

import json
from collections.abc import Iterator
from enum import IntEnum
from pathlib import Path

import pytest
from pydantic import TypeAdapter

from fleetcheck.checkers import CheckerTool
from fleetcheck.errors import StorageError
from fleetcheck.storage import (
    PERSISTED_ENUMS,
    CacheKey,
    CacheValue,
    CheckerDb,
    CheckerIdentity,
    Committer,
    Diagnostic,
    DiagnosticKind,
    Diagnostics,
    LatestCommit,
    LayoutPackage,
    LayoutSnapshot,
    NormalizedCommand,
    OpenedStore,
    RepoInfo,
    RepoInfoKey,
    RepoSession,
    RepositoryIdentity,
    check_append_only,
    decode,
    encode,
    verify_persisted_enums,
)

HOST = "x86_64-unknown-linux-gnu"


def _identity(repo: str = "demo", sha: str = "abc123") -> RepositoryIdentity:
    return RepositoryIdentity(user="user", repo=repo, sha=sha, branch="main")


def _cache_key(features: tuple[str, ...] = (), repo: str = "demo") -> CacheKey:
    return CacheKey(
        repo=_identity(repo),
        package_name="demo",
        checker=CheckerIdentity(tool=CheckerTool.CLIPPY),
        command=NormalizedCommand(
            command_string=f"cargo clippy --target {HOST} --no-deps",
            target=HOST,
            channel="stable",
            environment=(("RUSTFLAGS", "-D warnings"),),
            feature_list=features,
        ),
    )


def _info_key(repo: str = "demo", sha: str = "abc123") -> RepoInfoKey:
    return RepoInfoKey(repo=_identity(repo, sha), config={"cmds": {"clippy": True}})


def _commit(datetime_ms: int, sha: str = "abc123") -> LatestCommit:
    return LatestCommit(
        sha=sha,
        message="init",
        author="Dev",
        committer=Committer(datetime_ms=datetime_ms, email="dev@example.com", name="Dev"),
    )


@pytest.fixture
def db(tmp_path: Path) -> Iterator[CheckerDb]:
    store = CheckerDb.open(tmp_path / "store" / "fleetcheck.sqlite3")
    yield store
    store.close()


def test_encoding_is_canonical() -> None:
    key = _cache_key()

    assert encode(key) == encode(_cache_key())
    assert encode(key) != encode(_cache_key(features=("-F", "serde")))
    assert decode(CacheKey, encode(key)) == key


def test_encoding_writes_enum_ordinals() -> None:
    value = Diagnostic(file="src/lib.rs", kind=DiagnosticKind.CLIPPY_ERROR, raw="error")

    assert b'"kind":2' in encode(value)


def test_decode_rejects_corrupt_bytes() -> None:
    with pytest.raises(StorageError, match="corrupt CacheKey"):
        decode(CacheKey, b'{"repo": 1}')


def test_persisted_enums_are_append_only() -> None:
    verify_persisted_enums()

    class Appended(IntEnum):
        FIRST = 0
        SECOND = 1
        THIRD = 2

    class Inserted(IntEnum):
        FIRST = 0
        NEWCOMER = 1
        SECOND = 2

    class Gapped(IntEnum):
        FIRST = 0
        SECOND = 2

    check_append_only(Appended, ("FIRST", "SECOND"))
    with pytest.raises(StorageError, match="append new members"):
        check_append_only(Inserted, ("FIRST", "SECOND"))
    with pytest.raises(StorageError, match="expected 1"):
        check_append_only(Gapped, ("FIRST", "SECOND"))
    with pytest.raises(StorageError, match="lost persisted member"):
        check_append_only(Appended, ("FIRST", "SECOND", "THIRD", "FOURTH"))


def test_rows_written_before_an_enum_grows_decode_unchanged() -> None:
    key = _cache_key()
    diagnostic = Diagnostic(file="src/lib.rs", kind=DiagnosticKind.CLIPPY_WARN, raw="warning: unused")
    value = CacheValue(command=key.command, diagnostics=Diagnostics(duration_ms=5, data=(diagnostic,)))
    stored_key, stored_value = encode(key), encode(value)

    GrownTool = IntEnum("GrownTool", [*(member.name for member in CheckerTool), "SANITIZER"], start=0)
    GrownKind = IntEnum("GrownKind", [*(member.name for member in DiagnosticKind), "SANITIZER"], start=0)
    check_append_only(GrownTool, PERSISTED_ENUMS[CheckerTool])
    check_append_only(GrownKind, PERSISTED_ENUMS[DiagnosticKind])

    tool = TypeAdapter(GrownTool).validate_python(json.loads(stored_key)["checker"]["tool"])
    (row,) = json.loads(stored_value)["diagnostics"]["data"]
    kind = TypeAdapter(GrownKind).validate_python(row["kind"])
    assert tool.name == "CLIPPY"
    assert kind.name == "CLIPPY_WARN"
    assert decode(CacheKey, stored_key) == key
    assert decode(CacheValue, stored_value) == value


def test_data_table_is_last_write_wins(db: CheckerDb) -> None:
    key = _cache_key()
    first = CacheValue(command=key.command, diagnostics=Diagnostics(duration_ms=5))
    second = CacheValue(
        command=key.command,
        diagnostics=Diagnostics(duration_ms=9, data=(Diagnostic(kind=DiagnosticKind.CLIPPY_WARN, raw="warning"),)),
    )

    assert db.get(key) is None
    db.put(key, first)
    db.put(key, second)

    assert db.get(key) == second
    assert db.get(_cache_key(features=("-F", "serde"))) is None


def test_info_and_layout_tables(db: CheckerDb) -> None:
    key = _info_key()
    info = RepoInfo(complete=True, caches=(_cache_key(),), latest_commit=_commit(1_000))
    layout = LayoutSnapshot(root="/repos/user/demo", packages=(LayoutPackage(name="demo", dir=""),))

    db.put_info(key, info)
    db.put_layout(key, layout)

    assert db.get_info(key) == info
    assert db.get_layout(key) == layout
    assert db.scan_all_info() == [(key, info)]
    assert db.get_info(_info_key(sha="other")) is None


def test_store_reopens_with_persisted_rows(tmp_path: Path) -> None:
    path = tmp_path / "fleetcheck.sqlite3"
    key = _cache_key()
    value = CacheValue(command=key.command)
    with CheckerDb.open(path) as store:
        store.put(key, value)

    with CheckerDb.open(path) as store:
        assert store.get(key) == value


def test_push_key_requires_a_check_in_progress(db: CheckerDb) -> None:
    with pytest.raises(StorageError, match="no check run in progress"):
        db.push_key(_info_key())

    db.new_check()
    db.set_complete(timestamp_end=10)

    with pytest.raises(StorageError):
        db.push_key(_info_key())


def test_identical_runs_coalesce_into_the_earlier_row(db: CheckerDb) -> None:
    first_id = db.new_check()
    db.push_key(_info_key("b"))
    db.push_key(_info_key("a"))
    ident, record = db.set_complete(timestamp_end=100)
    start = record.timestamp_start

    assert first_id == 0
    assert ident == 0
    assert [key.repo.repo for key in record.keys] == ["a", "b"]

    assert db.new_check() == 1
    db.push_key(_info_key("a"))
    db.push_key(_info_key("b"))
    ident, record = db.set_complete(timestamp_end=200)

    assert ident == 0
    assert record.timestamp_start == start
    assert record.timestamp_end == 200

    db.new_check()
    db.push_key(_info_key("b"))
    db.push_key(_info_key("a"))
    db.set_complete(timestamp_end=300)

    checks = db.checks()
    assert [(ident, entry.timestamp_start, entry.timestamp_end) for ident, entry in checks] == [(0, start, 300)]


def test_runs_with_different_keys_are_kept(db: CheckerDb) -> None:
    db.new_check()
    db.push_key(_info_key("a"))
    db.set_complete(timestamp_end=100)

    db.new_check()
    db.push_key(_info_key("a", sha="def456"))
    db.set_complete(timestamp_end=200)

    db.new_check()
    db.push_key(_info_key("a", sha="def456"))
    ident, record = db.set_complete(timestamp_end=300)

    assert ident == 1
    assert [(ident, entry.timestamp_end) for ident, entry in db.checks()] == [(0, 100), (1, 300)]
    assert not record.in_progress


def test_compaction_is_skipped_while_shared(db: CheckerDb) -> None:
    other = db.share()

    assert db.compact() is False

    other.close()
    assert db.compact() is True


def test_closed_handle_rejects_operations(tmp_path: Path) -> None:
    store = CheckerDb.open(tmp_path / "fleetcheck.sqlite3")
    other = store.share()
    store.close()

    with pytest.raises(StorageError, match="closed"):
        store.get(_cache_key())
    assert other.get(_cache_key()) is None
    other.close()


def test_latest_info_index_prefers_newest_commit(tmp_path: Path) -> None:
    path = tmp_path / "fleetcheck.sqlite3"
    old_key, new_key = _info_key(sha="old"), _info_key(sha="new")
    with CheckerDb.open(path) as store:
        store.put_info(new_key, RepoInfo(complete=False, latest_commit=_commit(2_000, "new")))
        store.put_info(old_key, RepoInfo(complete=True, latest_commit=_commit(1_000, "old")))
        store.put_info(_info_key("other"), RepoInfo(complete=True, latest_commit=_commit(500)))

    with OpenedStore.open(path) as opened:
        latest = opened.latest_info_for("user", "demo")
        assert latest is not None
        assert latest.latest_commit.sha == "new"
        assert opened.latest_key_for("user", "demo") == new_key
        assert opened.latest_info_for("user", "missing") is None
        assert len(opened.index) == 2


def test_repo_session_tracks_progress(db: CheckerDb) -> None:
    key = _info_key()
    session = RepoSession.start(db, key, _commit(1_000))

    stored = db.get_info(key)
    assert stored is not None
    assert not stored.complete

    session.append(_cache_key())
    session.append(_cache_key(features=("-F", "serde")))
    session.set_complete()

    stored = db.get_info(key)
    assert stored is not None
    assert stored.complete
    assert len(stored.caches) == 2
