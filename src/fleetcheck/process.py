# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Shell-free wrappers around ``subprocess`` used to run checkers and tooling."""

from __future__ import annotations

import os
import shutil
import subprocess  # nosec B404
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ExecutableSpec:
    """Program, arguments, working directory and environment of one invocation."""

    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        """Return the full argument vector including the program name."""

        return [self.program, *self.args]


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Exit status and captured output of a finished process."""

    returncode: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the process exited with status zero."""

        return self.returncode == 0


class ProcessExecutor(Protocol):
    """Callable contract for running one :class:`ExecutableSpec`."""

    def __call__(self, spec: ExecutableSpec) -> ProcessResult:
        """Run ``spec`` and return its captured result."""
        ...


def _normalize_args(args: Sequence[str]) -> list[str]:
    if not args:
        raise ValueError("subprocess command requires at least one argument")

    head, *rest = args
    head_path = Path(head)
    if head_path.is_absolute():
        return [str(head_path), *rest]

    resolved = shutil.which(head)
    if resolved is None:
        raise FileNotFoundError(f"Executable '{head}' was not found on PATH")
    return [resolved, *rest]


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = False,
    timeout: float | None = None,
) -> ProcessResult:
    """Execute ``args`` after resolving the executable on ``PATH``.

    Args:
        args: Program followed by its arguments.
        cwd: Optional working directory.
        env: Extra environment variables layered over the current environment.
        check: Raise :class:`subprocess.CalledProcessError` on non-zero exit when ``True``.
        timeout: Optional timeout in seconds.

    Returns:
        ProcessResult: Exit status, decoded output and wall-clock duration.
    """

    normalized = _normalize_args(args)
    merged_env = None
    if env:
        merged_env = dict(os.environ)
        merged_env.update(env)
    started = time.perf_counter()
    completed = subprocess.run(  # nosec B603
        normalized,
        cwd=str(cwd) if cwd is not None else None,
        env=merged_env,
        check=check,
        capture_output=True,
        text=True,
        errors="replace",
        timeout=timeout,
        stdin=subprocess.DEVNULL,
    )
    duration_ms = int((time.perf_counter() - started) * 1000)
    return ProcessResult(
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration_ms=duration_ms,
    )


def execute_spec(spec: ExecutableSpec) -> ProcessResult:
    """Default :class:`ProcessExecutor` running ``spec`` with :func:`run_command`."""

    return run_command(spec.argv, cwd=spec.cwd, env=spec.env)


__all__ = [
    "ExecutableSpec",
    "ProcessExecutor",
    "ProcessResult",
    "execute_spec",
    "run_command",
]
