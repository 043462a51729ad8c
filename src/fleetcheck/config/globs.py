# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Validated glob patterns for selecting package directories."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from fnmatch import fnmatchcase

from ..errors import ConfigError


def check_glob(pattern: str) -> str | None:
    """Return a reason ``pattern`` is malformed, or ``None`` when it parses."""

    if not pattern.strip():
        return "empty pattern"
    depth = 0
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\":
            index += 2
            continue
        if char == "[" and not depth:
            depth = 1
            # A leading `]` or `!]` is literal inside a class.
            if pattern[index + 1 : index + 2] in ("!", "^"):
                index += 1
            if pattern[index + 1 : index + 2] == "]":
                index += 1
        elif char == "]" and depth:
            depth = 0
        index += 1
    if depth:
        return "unclosed `[`"
    for component in pattern.split("/"):
        if "**" in component and component != "**":
            return "`**` must be a whole path component"
    return None


@dataclass(frozen=True, slots=True)
class GlobSet:
    """Compiled set of directory globs matched against POSIX relative paths."""

    patterns: tuple[str, ...] = ()

    @classmethod
    def compile(cls, patterns: Iterable[str], *, repo: str, package: str | None = None) -> GlobSet:
        """Validate ``patterns`` and return a matcher.

        Raises:
            ConfigError: If any pattern is malformed.
        """

        checked: list[str] = []
        for pattern in patterns:
            reason = check_glob(pattern)
            if reason is not None:
                raise ConfigError(
                    f"Invalid package glob `{pattern}` for repo `{repo}`: {reason}",
                    repo=repo,
                    package=package,
                )
            checked.append(pattern)
        return cls(tuple(checked))

    def matches(self, relative_dir: str) -> bool:
        """Return ``True`` when any pattern matches ``relative_dir``."""

        return any(_match(relative_dir, pattern) for pattern in self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)


def _match(path: str, pattern: str) -> bool:
    if fnmatchcase(path, pattern):
        return True
    # `dir/**` also selects `dir` itself.
    if pattern.endswith("/**") and fnmatchcase(path, pattern[:-3]):
        return True
    return pattern.startswith("**/") and fnmatchcase(path, pattern[3:])


__all__ = ["GlobSet", "check_glob"]
