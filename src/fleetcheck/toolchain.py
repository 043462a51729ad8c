# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Rust toolchain discovery: host information, known triples and toolchain files."""

from __future__ import annotations

import logging
import subprocess  # nosec B404
import tomllib
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from .errors import ToolchainError
from .process import ProcessResult, run_command

LOGGER = logging.getLogger(__name__)

TOOLCHAIN_FILE_NAMES: Final[tuple[str, str]] = ("rust-toolchain.toml", "rust-toolchain")
PRERELEASE_CHANNELS: Final[tuple[str, ...]] = ("nightly", "beta")

type CommandRunner = Callable[[Sequence[str]], ProcessResult]


@dataclass(frozen=True, slots=True)
class RustcInfo:
    """Fields reported by ``rustc -vV``."""

    host: str
    release: str
    commit_hash: str | None = None
    commit_date: str | None = None

    @classmethod
    def parse(cls, text: str) -> RustcInfo:
        """Parse the verbose version banner printed by ``rustc -vV``.

        Args:
            text: Raw stdout of ``rustc -vV``.

        Returns:
            RustcInfo: Parsed host triple and release information.

        Raises:
            ToolchainError: If the banner lacks a ``host:`` line.
        """

        fields: dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition(":")
            if sep:
                fields[key.strip()] = value.strip()
        host = fields.get("host")
        if not host:
            raise ToolchainError("rustc -vV output does not contain a host triple")
        return cls(
            host=host,
            release=fields.get("release", "unknown"),
            commit_hash=fields.get("commit-hash"),
            commit_date=fields.get("commit-date"),
        )

    @property
    def channel(self) -> str:
        """Return the release channel named by the version, e.g. ``nightly`` for ``1.82.0-nightly``."""

        _, _, suffix = self.release.partition("-")
        for channel in PRERELEASE_CHANNELS:
            if suffix.startswith(channel):
                return channel
        return "stable"


def _default_runner(args: Sequence[str]) -> ProcessResult:
    return run_command(args)


def query_rustc(runner: CommandRunner | None = None) -> RustcInfo:
    """Run ``rustc -vV`` and parse the result."""

    runner = runner or _default_runner
    try:
        result = runner(["rustc", "-vV"])
    except (OSError, subprocess.SubprocessError) as exc:
        raise ToolchainError(f"failed to run rustc: {exc}") from exc
    if not result.succeeded:
        raise ToolchainError(f"rustc -vV exited with {result.returncode}: {result.stderr.strip()}")
    return RustcInfo.parse(result.stdout)


def query_target_list(runner: CommandRunner | None = None) -> tuple[str, ...]:
    """Return the authoritative list of target triples known to ``rustc``."""

    runner = runner or _default_runner
    try:
        result = runner(["rustc", "--print=target-list"])
    except (OSError, subprocess.SubprocessError) as exc:
        raise ToolchainError(f"failed to run rustc: {exc}") from exc
    if not result.succeeded:
        raise ToolchainError(f"rustc --print=target-list exited with {result.returncode}")
    return tuple(line.strip() for line in result.stdout.splitlines() if line.strip())


def query_active_toolchain(host: str, runner: CommandRunner | None = None) -> str:
    """Return the channel of ``rustup show active-toolchain`` without the host suffix.

    ``stable-x86_64-unknown-linux-gnu (default)`` becomes ``stable`` when
    ``host`` is ``x86_64-unknown-linux-gnu``.

    Raises:
        ToolchainError: If rustup cannot be run or reports nothing.
    """

    runner = runner or _default_runner
    try:
        result = runner(["rustup", "show", "active-toolchain"])
    except (OSError, subprocess.SubprocessError) as exc:
        raise ToolchainError(f"failed to run rustup: {exc}") from exc
    if not result.succeeded:
        raise ToolchainError(f"rustup show active-toolchain exited with {result.returncode}: {result.stderr.strip()}")
    words = result.stdout.split()
    if not words:
        raise ToolchainError("rustup show active-toolchain reported no toolchain")
    return words[0].removesuffix(f"-{host}")


def active_host_channel(rustc: RustcInfo, runner: CommandRunner | None = None) -> str:
    """Return the toolchain cargo uses by default, falling back to the rustc release channel."""

    try:
        return query_active_toolchain(rustc.host, runner)
    except ToolchainError as exc:
        LOGGER.warning("using rustc release channel %s: %s", rustc.channel, exc)
        return rustc.channel


def _string_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list | tuple):
        return tuple(str(item) for item in value)
    return ()


@dataclass(frozen=True, slots=True)
class ToolchainFile:
    """Contents of a ``rust-toolchain.toml`` or legacy ``rust-toolchain`` file."""

    path: Path
    channel: str | None = None
    targets: tuple[str, ...] = ()
    components: tuple[str, ...] = ()
    profile: str | None = None


def parse_toolchain_file(path: Path) -> ToolchainFile:
    """Parse a toolchain file.

    The extensionless legacy form may hold either TOML or a bare channel name.

    Raises:
        ToolchainError: If the file is TOML but malformed.
    """

    text = path.read_text(encoding="utf-8")
    if path.suffix != ".toml" and "[toolchain]" not in text:
        channel = text.strip() or None
        return ToolchainFile(path=path, channel=channel)
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ToolchainError(f"invalid toolchain file {path}: {exc}") from exc
    table = data.get("toolchain", {})
    if not isinstance(table, dict):
        raise ToolchainError(f"invalid [toolchain] table in {path}")
    return ToolchainFile(
        path=path,
        channel=table.get("channel"),
        targets=_string_tuple(table.get("targets", ())),
        components=_string_tuple(table.get("components", ())),
        profile=table.get("profile"),
    )


def find_nearest(start: Path, stop: Path, names: Sequence[str]) -> Path | None:
    """Walk from ``start`` up to and including ``stop`` looking for ``names``.

    The first directory containing any of ``names`` ends the search; within one
    directory ``names`` are tried in order, so earlier names win.

    Args:
        start: Directory where the search begins.
        stop: Ancestor directory where the search ends (inclusive).
        names: Relative file names in precedence order.

    Returns:
        Path | None: The first match found, or ``None``.
    """

    start = start.resolve()
    stop = stop.resolve()
    current = start
    while True:
        for name in names:
            candidate = current / name
            if candidate.is_file():
                return candidate
        if current == stop or current.parent == current:
            return None
        if stop not in current.parents:
            return None
        current = current.parent


@dataclass(slots=True)
class InstallationPlan:
    """Targets per toolchain channel to install with ``rustup target add``."""

    targets: dict[str, list[str]] = field(default_factory=dict)

    def add(self, channel: str, targets: Iterable[str], *, skip: Iterable[str] = ()) -> None:
        """Record ``targets`` for ``channel`` excluding ``skip``."""

        excluded = set(skip)
        bucket = self.targets.setdefault(channel, [])
        for target in targets:
            if target not in excluded and target not in bucket:
                bucket.append(target)

    def commands(self) -> list[list[str]]:
        """Return the ``rustup`` argument vectors realising the plan."""

        return [
            ["rustup", "target", "add", "--toolchain", channel, *targets]
            for channel, targets in sorted(self.targets.items())
            if targets
        ]


def install_targets(plan: InstallationPlan, runner: CommandRunner | None = None) -> None:
    """Execute ``plan``, logging rather than raising on individual failures."""

    runner = runner or _default_runner
    for args in plan.commands():
        try:
            result = runner(args)
        except (OSError, subprocess.SubprocessError) as exc:
            LOGGER.warning("failed to run %s: %s", " ".join(args), exc)
            continue
        if not result.succeeded:
            LOGGER.warning("%s exited with %s: %s", " ".join(args), result.returncode, result.stderr.strip())


__all__ = [
    "InstallationPlan",
    "RustcInfo",
    "TOOLCHAIN_FILE_NAMES",
    "ToolchainFile",
    "active_host_channel",
    "find_nearest",
    "install_targets",
    "parse_toolchain_file",
    "query_active_toolchain",
    "query_rustc",
    "query_target_list",
]
