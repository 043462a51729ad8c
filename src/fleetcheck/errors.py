# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Exception hierarchy shared across fleetcheck subsystems."""

from __future__ import annotations


class FleetcheckError(Exception):
    """Base class for errors raised by fleetcheck."""


class ConfigError(FleetcheckError):
    """Raised when repository configuration input is invalid.

    The optional ``repo``, ``package`` and ``checker`` attributes identify the
    configuration node that failed validation so callers can report it.
    """

    def __init__(
        self,
        message: str,
        *,
        repo: str | None = None,
        package: str | None = None,
        checker: str | None = None,
    ) -> None:
        super().__init__(message)
        self.repo = repo
        self.package = package
        self.checker = checker


class CommandParseError(ConfigError):
    """Raised when a custom command line cannot be tokenized or rewritten."""


class ToolchainError(FleetcheckError):
    """Raised when toolchain information cannot be obtained or parsed."""


class LayoutError(FleetcheckError):
    """Raised when a repository checkout cannot be walked for packages."""


class MetadataError(FleetcheckError):
    """Raised when commit metadata or repository materialization fails."""


class ExecutionError(FleetcheckError):
    """Raised when a checker or setup command cannot be started or setup fails."""


class StorageError(FleetcheckError):
    """Raised when the embedded store cannot be opened, read or written."""


__all__ = [
    "CommandParseError",
    "ConfigError",
    "ExecutionError",
    "FleetcheckError",
    "LayoutError",
    "MetadataError",
    "StorageError",
    "ToolchainError",
]
