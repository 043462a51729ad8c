# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Opened store exposing the latest repository info per ``user/repo``."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType

from .db import CheckerDb
from .models import RepoInfo, RepoInfoKey

LOGGER = logging.getLogger(__name__)


class LatestInfoIndex:
    """Map ``(user, repo)`` to the info of the most recently committed check.

    Built once from a full scan; later writes to the store are not reflected.
    """

    def __init__(self, entries: dict[tuple[str, str], tuple[RepoInfoKey, RepoInfo]]) -> None:
        self._entries = entries

    @classmethod
    def build(cls, pairs: Iterable[tuple[RepoInfoKey, RepoInfo]]) -> LatestInfoIndex:
        """Keep, per repository, the entry with the newest committer datetime.

        Ties prefer complete entries, then the later entry in scan order.
        """

        entries: dict[tuple[str, str], tuple[RepoInfoKey, RepoInfo]] = {}
        for key, info in pairs:
            slot = (key.repo.user, key.repo.repo)
            current = entries.get(slot)
            if current is None or _rank(info) >= _rank(current[1]):
                entries[slot] = (key, info)
        return cls(entries)

    def get(self, user: str, repo: str) -> tuple[RepoInfoKey, RepoInfo] | None:
        """Return the indexed ``(key, info)`` for ``user/repo``."""

        return self._entries.get((user, repo))

    def __len__(self) -> int:
        return len(self._entries)


def _rank(info: RepoInfo) -> tuple[int, bool]:
    return info.latest_commit.committer.datetime_ms, info.complete


class OpenedStore:
    """A :class:`CheckerDb` handle plus the index computed when it was opened."""

    def __init__(self, db: CheckerDb) -> None:
        self.db = db
        self.index = LatestInfoIndex.build(db.scan_all_info())
        LOGGER.debug("indexed latest info for %d repositories", len(self.index))

    @classmethod
    def open(cls, path: Path) -> OpenedStore:
        """Open the store at ``path`` and build its index."""

        return cls(CheckerDb.open(path))

    def latest_info_for(self, user: str, repo: str) -> RepoInfo | None:
        """Return the newest known info for ``user/repo``, if any."""

        entry = self.index.get(user, repo)
        return None if entry is None else entry[1]

    def latest_key_for(self, user: str, repo: str) -> RepoInfoKey | None:
        """Return the key of the newest known info for ``user/repo``, if any."""

        entry = self.index.get(user, repo)
        return None if entry is None else entry[0]

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> OpenedStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["LatestInfoIndex", "OpenedStore"]
