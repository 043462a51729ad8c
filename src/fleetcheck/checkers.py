# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Closed set of supported checkers and their default command builders."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Final

from .errors import ConfigError
from .process import ExecutableSpec

PLUS_TOOLCHAIN_LOCKBUD: Final[str] = "+nightly-2024-05-21"
PLUS_TOOLCHAIN_MIRAI: Final[str] = "+nightly-2024-10-10"
PLUS_TOOLCHAIN_RAPX: Final[str] = "+nightly-2024-10-12"
PLUS_TOOLCHAIN_RUDRA: Final[str] = "+nightly-2021-10-21"
PLUS_TOOLCHAIN_ATOMVCHECKER: Final[str] = "+nightly-2023-03-09"


class CheckerTool(IntEnum):
    """Supported checkers.

    Ordinals are persisted in cache keys; new members may only be appended.
    ``CARGO`` is virtual: it labels compiler errors surfaced by any checker
    and cannot be configured.
    """

    FMT = 0
    CLIPPY = 1
    MIRI = 2
    SEMVER_CHECKS = 3
    AUDIT = 4
    MIRAI = 5
    LOCKBUD = 6
    RAPX = 7
    RUDRA = 8
    OUTDATED = 9
    GEIGER = 10
    CARGO = 11
    ATOMVCHECKER = 12
    UDEPS = 13

    @property
    def cli_name(self) -> str:
        """Return the canonical name used in configuration and command lines."""

        return self.name.lower().replace("_", "-")

    @classmethod
    def from_name(cls, name: str) -> CheckerTool:
        """Return the checker whose canonical name is ``name``.

        Raises:
            ValueError: If ``name`` does not name a checker.
        """

        for member in cls:
            if member.cli_name == name:
                return member
        raise ValueError(f"unknown checker `{name}`")


DEFAULT_ENABLED: Final[tuple[CheckerTool, ...]] = (CheckerTool.FMT, CheckerTool.CLIPPY, CheckerTool.LOCKBUD)
HOST_ONLY: Final[frozenset[CheckerTool]] = frozenset(
    {
        CheckerTool.MIRI,
        CheckerTool.MIRAI,
        CheckerTool.AUDIT,
        CheckerTool.OUTDATED,
        CheckerTool.GEIGER,
    }
)
CLEAN_BEFORE: Final[frozenset[CheckerTool]] = frozenset({CheckerTool.MIRAI, CheckerTool.RAPX, CheckerTool.GEIGER})
ONCE_PER_WORKSPACE: Final[frozenset[CheckerTool]] = frozenset({CheckerTool.AUDIT})
CONFIGURABLE: Final[tuple[CheckerTool, ...]] = tuple(tool for tool in CheckerTool if tool is not CheckerTool.CARGO)


@dataclass(frozen=True, slots=True)
class BuildContext:
    """Inputs shared by every default command builder."""

    package_dir: Path
    target: str
    host_channel: str
    env: Mapping[str, str] = field(default_factory=dict)
    features_args: tuple[str, ...] = ()
    package_channel: str | None = None
    workspace_dir: Path | None = None

    @property
    def channel(self) -> str:
        """Return the toolchain channel cargo picks inside the package directory."""

        return self.package_channel or self.host_channel


@dataclass(frozen=True, slots=True)
class BuiltCommand:
    """Output of a builder: display string, executable and toolchain channel."""

    command_string: str
    spec: ExecutableSpec
    channel: str


def _env_prefix(env: Mapping[str, str]) -> str:
    return "".join(f'{name}="{value}" ' for name, value in env.items())


def _cargo(
    ctx: BuildContext,
    args: Sequence[str],
    *,
    display: Sequence[str],
    channel: str,
    extra_env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> BuiltCommand:
    env = dict(extra_env or {})
    env.update(ctx.env)
    display_text = " ".join(part for part in ("cargo", *display) if part)
    return BuiltCommand(
        command_string=f"{_env_prefix(ctx.env)}{display_text}",
        spec=ExecutableSpec(program="cargo", args=tuple(args), cwd=cwd or ctx.package_dir, env=env),
        channel=channel,
    )


def build_command(checker: CheckerTool, ctx: BuildContext) -> BuiltCommand:
    """Build the default invocation of ``checker`` for one package and target.

    Args:
        checker: Checker to invoke.
        ctx: Package directory, target, host toolchain, environment and features.

    Returns:
        BuiltCommand: Display string, executable spec and toolchain channel.

    Raises:
        ConfigError: For the virtual ``cargo`` checker, which has no command.
    """

    host = f"+{ctx.host_channel}"
    target = ctx.target
    features = list(ctx.features_args)
    match checker:
        case CheckerTool.FMT:
            return _cargo(ctx, [host, "fmt", "--", "--emit=json"], display=[host, "fmt"], channel=ctx.host_channel)
        case CheckerTool.CLIPPY:
            args = ["clippy", "--target", target, "--no-deps", "--message-format=json", *features]
            display = ["clippy", "--target", target, *features, "--no-deps"]
            return _cargo(ctx, args, display=display, channel=ctx.channel)
        case CheckerTool.MIRI:
            args = [host, "miri", "test", "--target", target, *features]
            return _cargo(ctx, args, display=args, channel=ctx.host_channel)
        case CheckerTool.SEMVER_CHECKS:
            args = [host, "semver-checks", "--target", target, "--color=never", *features]
            display = [host, "semver-checks", "--target", target, *features]
            return _cargo(ctx, args, display=display, channel=ctx.host_channel)
        case CheckerTool.AUDIT:
            args = [host, "audit", "--json", "-c", "never"]
            workspace = ctx.workspace_dir or ctx.package_dir
            return _cargo(ctx, args, display=[host, "audit"], channel=ctx.host_channel, cwd=workspace)
        case CheckerTool.MIRAI:
            args = [PLUS_TOOLCHAIN_MIRAI, "mirai", "--target", target, "--message-format=json", *features]
            display = [PLUS_TOOLCHAIN_MIRAI, "mirai", "--target", target, *features]
            return _cargo(ctx, args, display=display, channel=PLUS_TOOLCHAIN_MIRAI[1:])
        case CheckerTool.LOCKBUD:
            args = [PLUS_TOOLCHAIN_LOCKBUD, "lockbud", "-k", "all", "--", "--target", target, *features]
            return _cargo(ctx, args, display=args, channel=PLUS_TOOLCHAIN_LOCKBUD[1:])
        case CheckerTool.RAPX:
            args = [PLUS_TOOLCHAIN_RAPX, "rapx", "-F", "-M", "-timeout=300", "--", "--target", target, "--color=never"]
            args.extend(features)
            display = [PLUS_TOOLCHAIN_RAPX, "rapx", "-F", "-M", "--", "--target", target, *features]
            return _cargo(ctx, args, display=display, channel=PLUS_TOOLCHAIN_RAPX[1:], extra_env={"RAP_LOG": "WARN"})
        case CheckerTool.RUDRA:
            args = [PLUS_TOOLCHAIN_RUDRA, "rudra", "--target", target, *features]
            return _cargo(ctx, args, display=args, channel=PLUS_TOOLCHAIN_RUDRA[1:])
        case CheckerTool.OUTDATED:
            args = [host, "outdated", "-R", "--exit-code=2", "--color=never"]
            return _cargo(ctx, args, display=[host, "outdated", "-R", "--exit-code=2"], channel=ctx.host_channel)
        case CheckerTool.GEIGER:
            args = [host, "geiger", "--output-format", "Ascii", "--color", "never"]
            display = [host, "geiger", "--output-format", "Ascii"]
            return _cargo(ctx, args, display=display, channel=ctx.host_channel)
        case CheckerTool.CARGO:
            raise ConfigError("the cargo checker is virtual and has no command", checker=checker.cli_name)
        case CheckerTool.ATOMVCHECKER:
            args = [
                PLUS_TOOLCHAIN_ATOMVCHECKER,
                "atomvchecker",
                "-k",
                "atomicity_violation",
                "--",
                "--target",
                target,
                *features,
            ]
            return _cargo(ctx, args, display=args, channel=PLUS_TOOLCHAIN_ATOMVCHECKER[1:])
        case CheckerTool.UDEPS:
            args = [host, "udeps", "--color=never", "--target", target, *features]
            display = [host, "udeps", "--target", target, *features]
            return _cargo(ctx, args, display=display, channel=ctx.host_channel)


__all__ = [
    "BuildContext",
    "BuiltCommand",
    "CLEAN_BEFORE",
    "CONFIGURABLE",
    "CheckerTool",
    "DEFAULT_ENABLED",
    "HOST_ONLY",
    "ONCE_PER_WORKSPACE",
    "build_command",
]
