# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Turn effective configuration and target sets into concrete invocations."""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from .checkers import HOST_ONLY, ONCE_PER_WORKSPACE, BuildContext, CheckerTool, build_command
from .config.models import FeatureSet, RepoConfig, custom_lines, default_cmds, is_enabled
from .errors import CommandParseError
from .layout import Package
from .process import ExecutableSpec
from .registry import RunRegistries
from .targets.sources import TargetSet

LOGGER = logging.getLogger(__name__)

MIN_COMMAND_WORDS: Final[int] = 3
_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$", re.DOTALL)
_OPERATOR_CHARS: Final[frozenset[str]] = frozenset("();<>|&")


@dataclass(frozen=True, slots=True)
class InvocationDescriptor:
    """One concrete checker invocation for a package and target."""

    package_name: str
    package_dir: Path
    target: str
    target_overridden: bool
    toolchain: int
    channel: str
    checker: CheckerTool
    command_string: str
    environment: Mapping[str, str]
    executable_spec: ExecutableSpec
    features_args: tuple[str, ...] = ()
    custom: bool = False


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    """A simple shell command split into prefix assignments and words."""

    assigns: dict[str, str] = field(default_factory=dict)
    words: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PackagePlan:
    """Everything the resolver needs to know about one selected package."""

    package: Package
    config: RepoConfig
    targets: TargetSet
    channel: str | None = None


def parse_command_line(line: str) -> ParsedCommand:
    """Split ``line`` like a POSIX shell simple command.

    Leading ``NAME=value`` words become assignments; quotes are removed and
    ``#`` is an ordinary character.

    Raises:
        CommandParseError: If quoting is unbalanced or the line uses shell
            operators such as pipes, redirections or command lists.
    """

    lexer = shlex.shlex(line, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        tokens = list(lexer)
    except ValueError as exc:
        raise CommandParseError(f"Failed to parse `{line}`: {exc}") from exc
    for token in tokens:
        if token and set(token) <= _OPERATOR_CHARS:
            raise CommandParseError(f"Failed to parse `{line}`: only simple commands are supported")
    assigns: dict[str, str] = {}
    index = 0
    while index < len(tokens):
        match = _ASSIGNMENT.match(tokens[index])
        if match is None:
            break
        assigns[match.group(1)] = match.group(2)
        index += 1
    return ParsedCommand(assigns=assigns, words=tuple(tokens[index:]))


def extract_target(words: Sequence[str]) -> str | None:
    """Return the value of the first ``--target v`` or ``--target=v`` in ``words``."""

    for index, word in enumerate(words):
        if word == "--target":
            return words[index + 1] if index + 1 < len(words) else None
        if word.startswith("--target="):
            return word.removeprefix("--target=")
    return None


def inject_target(words: Sequence[str], candidate: str) -> tuple[list[str], str | None]:
    """Insert ``--target=<candidate>`` unless ``words`` already name a target.

    The flag goes after the cargo subcommand: index 2 for ``cargo sub ...``
    and index 3 for ``cargo +toolchain sub ...``.

    Returns:
        tuple[list[str], str | None]: Rewritten words and the explicit target
        found in the input, if any.

    Raises:
        CommandParseError: If the command is not a cargo invocation.
    """

    rewritten = list(words)
    overridden = extract_target(rewritten)
    if len(rewritten) < 2 or rewritten[0] != "cargo":
        raise CommandParseError(
            f"`{' '.join(words)}`: only `cargo +toolchain subcmd` or `cargo subcmd` is supported"
        )
    if overridden is None:
        position = 3 if rewritten[1].startswith("+") and len(rewritten) > 2 else 2
        rewritten.insert(position, f"--target={candidate}")
    return rewritten, overridden


def environment_for(config: RepoConfig, target: str) -> dict[str, str]:
    """Return global ``env`` overlaid with ``meta.target_env`` for ``target``."""

    env = dict(config.env)
    if config.meta is not None:
        env.update(config.meta.target_env.get(target, {}))
    return env


def feature_variants(feature_sets: Sequence[FeatureSet], target: str) -> list[tuple[str, ...]]:
    """Return the feature argument lists to run for ``target``.

    Without applicable feature sets a single empty variant is returned.
    """

    variants = [feature_set.args() for feature_set in feature_sets if feature_set.applies_to(target)]
    return variants or [()]


def custom_invocation(
    line: str,
    plan: PackagePlan,
    target: str,
    checker: CheckerTool,
    *,
    registries: RunRegistries,
) -> InvocationDescriptor:
    """Build a descriptor from a user-supplied command line.

    Raises:
        CommandParseError: If the line has fewer than three words, uses shell
            operators, or is not a cargo command.
    """

    parsed = parse_command_line(line)
    if len(parsed.words) < MIN_COMMAND_WORDS:
        raise CommandParseError(
            f"`{line}` must name the checker executable and its arguments (at least {MIN_COMMAND_WORDS} words)",
            package=plan.package.name,
            checker=checker.cli_name,
        )
    words, overridden = inject_target(parsed.words, target)
    channel = words[1][1:] if words[1].startswith("+") else plan.channel or registries.host_channel
    env = environment_for(plan.config, overridden or target)
    env.update(parsed.assigns)
    return InvocationDescriptor(
        package_name=plan.package.name,
        package_dir=plan.package.dir,
        target=overridden or target,
        target_overridden=overridden is not None,
        toolchain=registries.toolchain_id(channel),
        channel=channel,
        checker=checker,
        command_string=" ".join(words),
        environment=env,
        executable_spec=ExecutableSpec(program=words[0], args=tuple(words[1:]), cwd=plan.package.dir, env=env),
        custom=True,
    )


def default_invocation(
    plan: PackagePlan,
    target: str,
    checker: CheckerTool,
    features_args: tuple[str, ...],
    *,
    registries: RunRegistries,
) -> InvocationDescriptor:
    """Build a descriptor from the checker's default command builder."""

    env = environment_for(plan.config, target)
    built = build_command(
        checker,
        BuildContext(
            package_dir=plan.package.dir,
            target=target,
            host_channel=registries.host_channel,
            env=env,
            features_args=features_args,
            package_channel=plan.channel,
            workspace_dir=plan.package.workspace_dir,
        ),
    )
    return InvocationDescriptor(
        package_name=plan.package.name,
        package_dir=plan.package.dir,
        target=target,
        target_overridden=False,
        toolchain=registries.toolchain_id(built.channel),
        channel=built.channel,
        checker=checker,
        command_string=built.command_string,
        environment=dict(built.spec.env),
        executable_spec=built.spec,
        features_args=features_args,
    )


def resolve_commands(
    repo: str,
    plans: Sequence[PackagePlan],
    *,
    host_target: str,
    registries: RunRegistries,
) -> list[InvocationDescriptor]:
    """Emit one descriptor per package, enabled checker and target.

    Host-only checkers run against ``host_target`` alone, and workspace-wide
    checkers such as ``audit`` run once per workspace root. A custom line that
    already names a target is applied once, to the first package and target
    reaching it, and skipped for every later package.

    Args:
        repo: Repository key used in error context.
        plans: Selected packages with effective configuration and targets.
        host_target: Host triple.
        registries: Per-run toolchain and target registries.

    Returns:
        list[InvocationDescriptor]: Descriptors sorted by package then checker.

    Raises:
        ConfigError: If a checker key is unsupported or a custom line is invalid.
    """

    descriptors: list[InvocationDescriptor] = []
    exhausted: set[tuple[CheckerTool, str]] = set()
    workspaces: set[tuple[CheckerTool, Path]] = set()
    for plan in plans:
        cmds = default_cmds()
        cmds.update(plan.config.checker_settings(repo=repo, package=plan.package.name))
        candidates = plan.targets.candidates()
        for checker, setting in cmds.items():
            if not is_enabled(setting):
                continue
            targets = [host_target] if checker in HOST_ONLY else candidates
            for target in targets:
                registries.targets.intern(target)
            lines = custom_lines(setting)
            if not lines and checker in ONCE_PER_WORKSPACE:
                workspace = (checker, plan.package.workspace_dir)
                if workspace not in workspaces:
                    workspaces.add(workspace)
                    descriptors.append(default_invocation(plan, host_target, checker, (), registries=registries))
                continue
            if not lines:
                for target in targets:
                    for features_args in feature_variants(plan.config.features, target):
                        descriptors.append(
                            default_invocation(plan, target, checker, features_args, registries=registries)
                        )
                continue
            for line in lines:
                if (checker, line) in exhausted:
                    LOGGER.debug("skipping `%s` for %s: target already applied", line, plan.package.name)
                    continue
                for target in targets:
                    try:
                        descriptor = custom_invocation(line, plan, target, checker, registries=registries)
                    except CommandParseError as exc:
                        exc.repo = repo
                        raise
                    descriptors.append(descriptor)
                    if descriptor.target_overridden:
                        exhausted.add((checker, line))
                        break
    descriptors.sort(key=lambda item: (item.package_name, item.checker))
    return descriptors


__all__ = [
    "InvocationDescriptor",
    "PackagePlan",
    "ParsedCommand",
    "custom_invocation",
    "default_invocation",
    "environment_for",
    "extract_target",
    "feature_variants",
    "inject_target",
    "parse_command_line",
    "resolve_commands",
]
