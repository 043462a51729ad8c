# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Provenance-tracking containers for detected target triples."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import IntEnum


class TargetSourceKind(IntEnum):
    """Origin of a detected target triple.

    Values are persisted; new members may only be appended.
    """

    RUST_TOOLCHAIN_TOML = 0
    CARGO_CONFIG_TOML = 1
    DOCSRS_PKG_DEFAULT = 2
    DOCSRS_WORKSPACE_DEFAULT = 3
    DOCSRS_PKG = 4
    DOCSRS_WORKSPACE = 5
    DETECTED_BY_PKG_SCRIPTS = 6
    DETECTED_BY_REPO_GITHUB = 7
    DETECTED_BY_REPO_SCRIPTS = 8
    SPECIFIED_IN_CONFIG = 9
    UNSPECIFIED_DEFAULT = 10

    @property
    def label(self) -> str:
        """Return a human-readable label such as ``"DetectedByPkgScripts"``."""

        return "".join(part.capitalize() for part in self.name.split("_"))


@dataclass(frozen=True, slots=True)
class TargetSource:
    """One provenance entry: the kind of source and the file that produced it."""

    kind: TargetSourceKind
    path: str | None = None

    def describe(self) -> str:
        """Return ``Kind(path)`` or ``Kind`` for display."""

        if self.path is None:
            return self.kind.label
        return f"{self.kind.label}({self.path})"


class TargetSet:
    """Ordered mapping from target triple to its provenance entries.

    Triples keep first-insertion order. Within a triple, entries are unique
    by ``(kind, path)`` and keep insertion order.
    """

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: dict[str, list[TargetSource]] = {}

    def push(self, triple: str, source: TargetSource) -> None:
        """Record that ``source`` contributed ``triple``."""

        sources = self._entries.setdefault(triple, [])
        if source not in sources:
            sources.append(source)

    def push_many(self, triples: Iterable[str], source: TargetSource) -> None:
        """Record ``source`` for each triple in ``triples``."""

        for triple in triples:
            self.push(triple, source)

    def merge(self, other: TargetSet) -> None:
        """Fold every entry of ``other`` into this set."""

        for triple, sources in other.items():
            for source in sources:
                self.push(triple, source)

    def ensure_default(self, host: str) -> None:
        """Insert the host triple as an unspecified default when the set is empty."""

        if not self._entries:
            self.push(host, TargetSource(TargetSourceKind.UNSPECIFIED_DEFAULT))

    def specified(self) -> list[str]:
        """Return triples explicitly listed in fleetcheck configuration."""

        return [
            triple
            for triple, sources in self._entries.items()
            if any(source.kind is TargetSourceKind.SPECIFIED_IN_CONFIG for source in sources)
        ]

    def candidates(self) -> list[str]:
        """Return the triples commands should run against.

        Configured triples replace detected ones whenever any are present.
        """

        return self.specified() or list(self._entries)

    def sources(self, triple: str) -> list[TargetSource]:
        """Return provenance entries for ``triple`` (empty when absent)."""

        return list(self._entries.get(triple, ()))

    def items(self) -> Iterator[tuple[str, list[TargetSource]]]:
        """Iterate over ``(triple, sources)`` pairs in insertion order."""

        for triple, sources in self._entries.items():
            yield triple, list(sources)

    def as_dict(self) -> dict[str, list[str]]:
        """Return a JSON-friendly view keyed by triple."""

        return {triple: [source.describe() for source in sources] for triple, sources in self._entries.items()}

    def __contains__(self, triple: object) -> bool:
        return triple in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TargetSet):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"TargetSet({self.as_dict()!r})"


__all__ = ["TargetSet", "TargetSource", "TargetSourceKind"]
