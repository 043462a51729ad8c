# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Content-addressed result cache and check-run log."""

from __future__ import annotations

from .codec import PERSISTED_ENUMS, check_append_only, decode, encode, verify_persisted_enums
from .db import CheckerDb
from .index import LatestInfoIndex, OpenedStore
from .models import (
    CacheKey,
    CacheValue,
    CheckerIdentity,
    CheckRunRecord,
    Committer,
    Diagnostic,
    DiagnosticKind,
    Diagnostics,
    LatestCommit,
    LayoutPackage,
    LayoutSnapshot,
    LayoutSource,
    NormalizedCommand,
    RepoInfo,
    RepoInfoKey,
    RepositoryIdentity,
    now_millis,
)
from .session import RepoSession

__all__ = [
    "PERSISTED_ENUMS",
    "CacheKey",
    "CacheValue",
    "CheckRunRecord",
    "CheckerDb",
    "CheckerIdentity",
    "Committer",
    "Diagnostic",
    "DiagnosticKind",
    "Diagnostics",
    "LatestCommit",
    "LatestInfoIndex",
    "LayoutPackage",
    "LayoutSnapshot",
    "LayoutSource",
    "NormalizedCommand",
    "OpenedStore",
    "RepoInfo",
    "RepoInfoKey",
    "RepoSession",
    "RepositoryIdentity",
    "check_append_only",
    "decode",
    "encode",
    "now_millis",
    "verify_persisted_enums",
]
