# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Canonical byte encoding of stored models and the append-only enum policy.

Keys and values are stored as compact JSON with sorted object keys, so equal
models always produce identical bytes. Enum-typed fields are written as their
integer ordinal. Decoding maps an ordinal back to whichever member owns that
value *now*, so reordering or inserting members silently changes the meaning
of previously stored rows. Persisted enums may therefore only grow at the
end; :data:`PERSISTED_ENUMS` pins the member order already on disk and
:func:`verify_persisted_enums` refuses to open a store when the code no
longer agrees with it.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from enum import IntEnum
from typing import Final

from pydantic import BaseModel, ValidationError

from ..checkers import CheckerTool
from ..errors import StorageError
from ..targets.sources import TargetSourceKind
from .models import DiagnosticKind

PERSISTED_ENUMS: Final[Mapping[type[IntEnum], tuple[str, ...]]] = {
    CheckerTool: (
        "FMT",
        "CLIPPY",
        "MIRI",
        "SEMVER_CHECKS",
        "AUDIT",
        "MIRAI",
        "LOCKBUD",
        "RAPX",
        "RUDRA",
        "OUTDATED",
        "GEIGER",
        "CARGO",
        "ATOMVCHECKER",
        "UDEPS",
    ),
    DiagnosticKind: (
        "UNFORMATTED",
        "CLIPPY_WARN",
        "CLIPPY_ERROR",
        "MIRI",
        "SEMVER_VIOLATION",
        "AUDIT",
        "MIRAI",
        "LOCKBUD_PROBABLY",
        "LOCKBUD_POSSIBLY",
        "RAPX",
        "RUDRA",
        "OUTDATED",
        "GEIGER",
        "CARGO",
        "ATOMVCHECKER",
        "UDEPS",
    ),
    TargetSourceKind: (
        "RUST_TOOLCHAIN_TOML",
        "CARGO_CONFIG_TOML",
        "DOCSRS_PKG_DEFAULT",
        "DOCSRS_WORKSPACE_DEFAULT",
        "DOCSRS_PKG",
        "DOCSRS_WORKSPACE",
        "DETECTED_BY_PKG_SCRIPTS",
        "DETECTED_BY_REPO_GITHUB",
        "DETECTED_BY_REPO_SCRIPTS",
        "SPECIFIED_IN_CONFIG",
        "UNSPECIFIED_DEFAULT",
    ),
}


def encode(model: BaseModel) -> bytes:
    """Return the canonical bytes of ``model``."""

    payload = model.model_dump(mode="json")
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode[M: BaseModel](model_type: type[M], data: bytes) -> M:
    """Decode bytes produced by :func:`encode` into ``model_type``.

    Raises:
        StorageError: If the bytes do not validate as ``model_type``.
    """

    try:
        return model_type.model_validate_json(data)
    except ValidationError as exc:
        raise StorageError(f"corrupt {model_type.__name__} record: {exc}") from exc


def check_append_only(enum_type: type[IntEnum], pinned: Sequence[str]) -> None:
    """Verify ``enum_type`` still starts with ``pinned`` at ordinals ``0..n-1``.

    Raises:
        StorageError: If a pinned member moved, was renamed or was removed, or
            if ordinals are not contiguous from zero.
    """

    members = list(enum_type)
    for index, member in enumerate(members):
        if member.value != index:
            raise StorageError(f"{enum_type.__name__}.{member.name} has ordinal {member.value}, expected {index}")
    for index, name in enumerate(pinned):
        if index >= len(members):
            raise StorageError(f"{enum_type.__name__} lost persisted member {name}")
        if members[index].name != name:
            raise StorageError(
                f"{enum_type.__name__} ordinal {index} is {members[index].name} but stored rows mean {name}; "
                "append new members instead of inserting them"
            )


def verify_persisted_enums() -> None:
    """Run :func:`check_append_only` for every persisted enum."""

    for enum_type, pinned in PERSISTED_ENUMS.items():
        check_append_only(enum_type, pinned)


__all__ = ["PERSISTED_ENUMS", "check_append_only", "decode", "encode", "verify_persisted_enums"]
