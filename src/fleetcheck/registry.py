# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Per-run registries interning target triples and toolchains into small integers."""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from dataclasses import dataclass, field


class InternRegistry[T: Hashable]:
    """Assign stable integer identifiers to values in first-seen order."""

    def __init__(self) -> None:
        self._values: list[T] = []
        self._ids: dict[T, int] = {}
        self._lock = threading.Lock()

    def intern(self, value: T) -> int:
        """Return the identifier for ``value``, registering it when unseen.

        Args:
            value: Hashable value to intern.

        Returns:
            int: Identifier that :meth:`resolve` maps back to ``value``.
        """

        with self._lock:
            existing = self._ids.get(value)
            if existing is not None:
                return existing
            ident = len(self._values)
            self._values.append(value)
            self._ids[value] = ident
            return ident

    def resolve(self, ident: int) -> T:
        """Return the value registered under ``ident``.

        Raises:
            KeyError: If ``ident`` was never issued by this registry.
        """

        try:
            return self._values[ident]
        except IndexError as exc:
            raise KeyError(ident) from exc

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._values))


@dataclass(slots=True)
class RunRegistries:
    """Registries constructed once per batch run and shared by reference.

    The host toolchain channel is interned first so that it always owns
    identifier ``0``.
    """

    host_channel: str
    toolchains: InternRegistry[str] = field(default_factory=InternRegistry)
    targets: InternRegistry[str] = field(default_factory=InternRegistry)

    def __post_init__(self) -> None:
        self.toolchains.intern(self.host_channel)

    def toolchain_id(self, channel: str | None) -> int:
        """Intern ``channel``, mapping ``None`` to the host toolchain."""

        if channel is None:
            return 0
        return self.toolchains.intern(channel)

    def toolchain(self, ident: int | None) -> str:
        """Resolve a toolchain identifier, treating ``None`` as the host."""

        return self.toolchains.resolve(0 if ident is None else ident)


__all__ = ["InternRegistry", "RunRegistries"]
