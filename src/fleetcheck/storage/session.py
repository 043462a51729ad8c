# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""In-progress repository info maintained while one repository is checked."""

from __future__ import annotations

from .db import CheckerDb
from .models import CacheKey, LatestCommit, RepoInfo, RepoInfoKey


class RepoSession:
    """Track the ``RepoInfo`` of one repository while its checkers run.

    A session must only be used from the thread checking that repository;
    appends are read-modify-write against the store.
    """

    def __init__(self, db: CheckerDb, key: RepoInfoKey, info: RepoInfo) -> None:
        self.db = db
        self.key = key
        self.info = info

    @classmethod
    def start(cls, db: CheckerDb, key: RepoInfoKey, latest_commit: LatestCommit) -> RepoSession:
        """Store a fresh incomplete info for ``key`` and return its session."""

        info = RepoInfo(complete=False, caches=(), latest_commit=latest_commit)
        db.put_info(key, info)
        return cls(db, key, info)

    def append(self, cache_key: CacheKey) -> None:
        """Record that ``cache_key`` finished for this repository."""

        current = self.db.get_info(self.key) or self.info
        self.info = current.model_copy(update={"caches": (*current.caches, cache_key)})
        self.db.put_info(self.key, self.info)

    def set_complete(self) -> RepoInfo:
        """Mark every checker of this repository as finished."""

        current = self.db.get_info(self.key) or self.info
        self.info = current.model_copy(update={"complete": True})
        self.db.put_info(self.key, self.info)
        return self.info


__all__ = ["RepoSession"]
