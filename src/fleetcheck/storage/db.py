# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Transactional sqlite-backed store for cache entries, repo info and check runs."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Final

from ..errors import StorageError
from .codec import decode, encode, verify_persisted_enums
from .models import (
    CacheKey,
    CacheValue,
    CheckRunRecord,
    LayoutSnapshot,
    RepoInfo,
    RepoInfoKey,
    now_millis,
)

LOGGER = logging.getLogger(__name__)

DATA_TABLE: Final[str] = "data"
INFO_TABLE: Final[str] = "info"
LAYOUT_TABLE: Final[str] = "layout"
CHECKS_TABLE: Final[str] = "checks"

_SCHEMA: Final[tuple[str, ...]] = (
    f"CREATE TABLE IF NOT EXISTS {DATA_TABLE} (key BLOB PRIMARY KEY, value BLOB NOT NULL)",
    f"CREATE TABLE IF NOT EXISTS {INFO_TABLE} (key BLOB PRIMARY KEY, value BLOB NOT NULL)",
    f"CREATE TABLE IF NOT EXISTS {LAYOUT_TABLE} (key BLOB PRIMARY KEY, value BLOB NOT NULL)",
    f"CREATE TABLE IF NOT EXISTS {CHECKS_TABLE} (id INTEGER PRIMARY KEY, value BLOB NOT NULL)",
)


class _Backend:
    """Connection, write lock and live-handle count shared by every handle."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.lock = threading.RLock()
        self.handles = 0
        try:
            self.conn = sqlite3.connect(str(path), check_same_thread=False, isolation_level=None)
            for statement in _SCHEMA:
                self.conn.execute(statement)
        except sqlite3.Error as exc:
            raise StorageError(f"failed to open store {path}: {exc}") from exc


class CheckerDb:
    """Handle onto the checker store.

    Every public operation runs in its own transaction. Handles created with
    :meth:`share` use the same connection; :meth:`compact` only runs when the
    calling handle is the last one open.
    """

    def __init__(self, backend: _Backend) -> None:
        self._backend = backend
        self._closed = False
        with backend.lock:
            backend.handles += 1

    @classmethod
    def open(cls, path: Path) -> CheckerDb:
        """Open or create the store at ``path``.

        Raises:
            StorageError: If the database cannot be opened or persisted enums
                no longer match the stored ordinals.
        """

        verify_persisted_enums()
        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(_Backend(path))

    @property
    def path(self) -> Path:
        return self._backend.path

    def share(self) -> CheckerDb:
        """Return another handle onto the same store."""

        self._ensure_open()
        return CheckerDb(self._backend)

    def close(self) -> None:
        """Release this handle, closing the connection with the last one."""

        if self._closed:
            return
        self._closed = True
        backend = self._backend
        with backend.lock:
            backend.handles -= 1
            if backend.handles == 0:
                backend.conn.close()

    def __enter__(self) -> CheckerDb:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError("store handle is closed")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        self._ensure_open()
        backend = self._backend
        with backend.lock:
            try:
                cursor = backend.conn.cursor()
                cursor.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"failed to begin transaction: {exc}") from exc
            try:
                yield cursor
            except BaseException:
                backend.conn.rollback()
                raise
            try:
                cursor.execute("COMMIT")
            except sqlite3.Error as exc:
                backend.conn.rollback()
                raise StorageError(f"failed to commit transaction: {exc}") from exc

    def _read(self, table: str, key: bytes) -> bytes | None:
        try:
            with self._transaction() as cursor:
                row = cursor.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()  # nosec B608
        except sqlite3.Error as exc:
            raise StorageError(f"failed to read {table}: {exc}") from exc
        return None if row is None else bytes(row[0])

    def _write(self, table: str, key: bytes, value: bytes) -> None:
        try:
            with self._transaction() as cursor:
                cursor.execute(
                    f"INSERT INTO {table} (key, value) VALUES (?, ?) "  # nosec B608
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"failed to write {table}: {exc}") from exc

    # DATA

    def get(self, key: CacheKey) -> CacheValue | None:
        """Return the cached value for ``key``, if any."""

        raw = self._read(DATA_TABLE, encode(key))
        return None if raw is None else decode(CacheValue, raw)

    def put(self, key: CacheKey, value: CacheValue) -> None:
        """Store ``value`` under ``key``, replacing any earlier value."""

        self._write(DATA_TABLE, encode(key), encode(value))

    # INFO

    def get_info(self, key: RepoInfoKey) -> RepoInfo | None:
        """Return the repository info stored under ``key``, if any."""

        raw = self._read(INFO_TABLE, encode(key))
        return None if raw is None else decode(RepoInfo, raw)

    def put_info(self, key: RepoInfoKey, info: RepoInfo) -> None:
        """Store ``info`` under ``key``."""

        self._write(INFO_TABLE, encode(key), encode(info))

    def scan_all_info(self) -> list[tuple[RepoInfoKey, RepoInfo]]:
        """Return every stored ``(RepoInfoKey, RepoInfo)`` pair."""

        try:
            with self._transaction() as cursor:
                rows = cursor.execute(f"SELECT key, value FROM {INFO_TABLE} ORDER BY rowid").fetchall()  # nosec B608
        except sqlite3.Error as exc:
            raise StorageError(f"failed to scan {INFO_TABLE}: {exc}") from exc
        return [(decode(RepoInfoKey, bytes(key)), decode(RepoInfo, bytes(value))) for key, value in rows]

    # LAYOUT

    def get_layout(self, key: RepoInfoKey) -> LayoutSnapshot | None:
        """Return the layout snapshot recorded for ``key``, if any."""

        raw = self._read(LAYOUT_TABLE, encode(key))
        return None if raw is None else decode(LayoutSnapshot, raw)

    def put_layout(self, key: RepoInfoKey, layout: LayoutSnapshot) -> None:
        """Record the layout snapshot for ``key``."""

        self._write(LAYOUT_TABLE, encode(key), encode(layout))

    # CHECKS

    @staticmethod
    def _last_check(cursor: sqlite3.Cursor, below: int | None = None) -> tuple[int, CheckRunRecord] | None:
        if below is None:
            row = cursor.execute(
                f"SELECT id, value FROM {CHECKS_TABLE} ORDER BY id DESC LIMIT 1"  # nosec B608
            ).fetchone()
        else:
            row = cursor.execute(
                f"SELECT id, value FROM {CHECKS_TABLE} WHERE id < ? ORDER BY id DESC LIMIT 1",  # nosec B608
                (below,),
            ).fetchone()
        if row is None:
            return None
        return int(row[0]), decode(CheckRunRecord, bytes(row[1]))

    @staticmethod
    def _store_check(cursor: sqlite3.Cursor, ident: int, record: CheckRunRecord) -> None:
        cursor.execute(
            f"INSERT INTO {CHECKS_TABLE} (id, value) VALUES (?, ?) "  # nosec B608
            "ON CONFLICT(id) DO UPDATE SET value = excluded.value",
            (ident, encode(record)),
        )

    def new_check(self) -> int:
        """Start a new check run and return its id."""

        try:
            with self._transaction() as cursor:
                last = self._last_check(cursor)
                ident = 0 if last is None else last[0] + 1
                self._store_check(cursor, ident, CheckRunRecord())
        except sqlite3.Error as exc:
            raise StorageError(f"failed to start check run: {exc}") from exc
        LOGGER.debug("started check run %d", ident)
        return ident

    def push_key(self, key: RepoInfoKey) -> None:
        """Append ``key`` to the in-progress check run.

        Raises:
            StorageError: If no check run is in progress.
        """

        try:
            with self._transaction() as cursor:
                last = self._last_check(cursor)
                if last is None or not last[1].in_progress:
                    raise StorageError("no check run in progress")
                ident, record = last
                self._store_check(cursor, ident, record.model_copy(update={"keys": (*record.keys, key)}))
        except sqlite3.Error as exc:
            raise StorageError(f"failed to record repository in check run: {exc}") from exc

    def set_complete(self, timestamp_end: int | None = None) -> tuple[int, CheckRunRecord]:
        """Complete the in-progress check run, coalescing it with an identical predecessor.

        Keys are sorted by repository identity. When the previous run holds
        exactly the same keys, the newer row is dropped and the previous row
        keeps its id and start time with this run's end time.

        Returns:
            tuple[int, CheckRunRecord]: Id and record that survive in the log.

        Raises:
            StorageError: If no check run is in progress.
        """

        end = now_millis() if timestamp_end is None else timestamp_end
        try:
            with self._transaction() as cursor:
                last = self._last_check(cursor)
                if last is None or not last[1].in_progress:
                    raise StorageError("no check run in progress")
                ident, record = last
                keys = tuple(sorted(record.keys, key=_identity_order))
                completed = record.model_copy(update={"keys": keys, "timestamp_end": max(end, 1)})
                previous = self._last_check(cursor, below=ident)
                if previous is not None and _same_keys(previous[1], completed):
                    prev_ident, prev_record = previous
                    merged = prev_record.model_copy(update={"timestamp_end": completed.timestamp_end})
                    cursor.execute(f"DELETE FROM {CHECKS_TABLE} WHERE id = ?", (ident,))  # nosec B608
                    self._store_check(cursor, prev_ident, merged)
                    LOGGER.debug("check run %d coalesced into %d", ident, prev_ident)
                    return prev_ident, merged
                self._store_check(cursor, ident, completed)
                return ident, completed
        except sqlite3.Error as exc:
            raise StorageError(f"failed to complete check run: {exc}") from exc

    def checks(self) -> list[tuple[int, CheckRunRecord]]:
        """Return the check log ordered by id."""

        try:
            with self._transaction() as cursor:
                rows = cursor.execute(f"SELECT id, value FROM {CHECKS_TABLE} ORDER BY id").fetchall()  # nosec B608
        except sqlite3.Error as exc:
            raise StorageError(f"failed to read check log: {exc}") from exc
        return [(int(ident), decode(CheckRunRecord, bytes(value))) for ident, value in rows]

    def compact(self) -> bool:
        """Reclaim free space when no other handle is open.

        Returns:
            bool: ``True`` when compaction ran, ``False`` when it was skipped.
        """

        self._ensure_open()
        backend = self._backend
        with backend.lock:
            if backend.handles > 1:
                LOGGER.warning("skipping compaction of %s: %d handles are open", backend.path, backend.handles)
                return False
            try:
                backend.conn.execute("VACUUM")
            except sqlite3.Error as exc:
                raise StorageError(f"failed to compact {backend.path}: {exc}") from exc
        return True


def _identity_order(key: RepoInfoKey) -> tuple[str, str, str, str]:
    return key.repo.user, key.repo.repo, key.repo.sha, key.repo.branch


def _same_keys(left: CheckRunRecord, right: CheckRunRecord) -> bool:
    return encode(CheckRunRecord(keys=left.keys, timestamp_start=0)) == encode(
        CheckRunRecord(keys=right.keys, timestamp_start=0)
    )


__all__ = ["CHECKS_TABLE", "CheckerDb", "DATA_TABLE", "INFO_TABLE", "LAYOUT_TABLE"]
