# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Adapters turning captured checker output into stored diagnostics."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from typing import Final

from .checkers import CheckerTool
from .commands import InvocationDescriptor
from .process import ProcessResult
from .storage.models import Diagnostic, DiagnosticKind

LOGGER = logging.getLogger(__name__)

type OutputParser = Callable[[InvocationDescriptor, ProcessResult], list[Diagnostic]]

CHECKER_KINDS: Final[Mapping[CheckerTool, DiagnosticKind]] = {
    CheckerTool.FMT: DiagnosticKind.UNFORMATTED,
    CheckerTool.CLIPPY: DiagnosticKind.CLIPPY_WARN,
    CheckerTool.MIRI: DiagnosticKind.MIRI,
    CheckerTool.SEMVER_CHECKS: DiagnosticKind.SEMVER_VIOLATION,
    CheckerTool.AUDIT: DiagnosticKind.AUDIT,
    CheckerTool.MIRAI: DiagnosticKind.MIRAI,
    CheckerTool.LOCKBUD: DiagnosticKind.LOCKBUD_PROBABLY,
    CheckerTool.RAPX: DiagnosticKind.RAPX,
    CheckerTool.RUDRA: DiagnosticKind.RUDRA,
    CheckerTool.OUTDATED: DiagnosticKind.OUTDATED,
    CheckerTool.GEIGER: DiagnosticKind.GEIGER,
    CheckerTool.CARGO: DiagnosticKind.CARGO,
    CheckerTool.ATOMVCHECKER: DiagnosticKind.ATOMVCHECKER,
    CheckerTool.UDEPS: DiagnosticKind.UDEPS,
}
_CARGO_ERROR: Final[re.Pattern[str]] = re.compile(r"^error(\[E\d+\])?:", re.MULTILINE)
_EMPTY_OUTPUTS: Final[frozenset[str]] = frozenset({"", "[]"})


def cargo_errors(result: ProcessResult) -> list[Diagnostic]:
    """Return one ``CARGO`` diagnostic when stderr reports compiler errors."""

    if _CARGO_ERROR.search(result.stderr):
        return [Diagnostic(kind=DiagnosticKind.CARGO, raw=result.stderr.strip())]
    return []


def raw_output_parser(descriptor: InvocationDescriptor, result: ProcessResult) -> list[Diagnostic]:
    """Record non-empty stdout as a single diagnostic of the checker's kind."""

    diagnostics = cargo_errors(result)
    text = result.stdout.strip()
    if text not in _EMPTY_OUTPUTS:
        diagnostics.append(Diagnostic(kind=CHECKER_KINDS[descriptor.checker], raw=text))
    return diagnostics


def fmt_parser(descriptor: InvocationDescriptor, result: ProcessResult) -> list[Diagnostic]:
    """Record one ``UNFORMATTED`` diagnostic per file listed by ``rustfmt --emit=json``."""

    diagnostics = cargo_errors(result)
    text = result.stdout.strip()
    if not text:
        return diagnostics
    try:
        entries = json.loads(text)
    except json.JSONDecodeError:
        LOGGER.debug("fmt output for %s is not JSON; storing raw output", descriptor.package_name)
        return raw_output_parser(descriptor, result)
    for entry in entries if isinstance(entries, list) else []:
        if isinstance(entry, dict) and entry.get("mismatches"):
            diagnostics.append(
                Diagnostic(file=entry.get("name"), kind=DiagnosticKind.UNFORMATTED, raw=json.dumps(entry))
            )
    return diagnostics


def clippy_parser(descriptor: InvocationDescriptor, result: ProcessResult) -> list[Diagnostic]:
    """Record compiler messages from ``--message-format=json`` output."""

    diagnostics = cargo_errors(result)
    for line in result.stdout.splitlines():
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict) or record.get("reason") != "compiler-message":
            continue
        message = record.get("message") or {}
        rendered = message.get("rendered")
        if not rendered:
            continue
        kind = DiagnosticKind.CLIPPY_ERROR if message.get("level") == "error" else DiagnosticKind.CLIPPY_WARN
        spans = [span for span in message.get("spans", []) if span.get("is_primary")]
        file = spans[0].get("file_name") if spans else None
        diagnostics.append(Diagnostic(file=file, kind=kind, raw=rendered))
    return diagnostics


DEFAULT_PARSERS: Final[Mapping[CheckerTool, OutputParser]] = {
    CheckerTool.FMT: fmt_parser,
    CheckerTool.CLIPPY: clippy_parser,
}


def parser_for(checker: CheckerTool, overrides: Mapping[CheckerTool, OutputParser] | None = None) -> OutputParser:
    """Return the parser for ``checker``, falling back to :func:`raw_output_parser`."""

    if overrides and checker in overrides:
        return overrides[checker]
    return DEFAULT_PARSERS.get(checker, raw_output_parser)


__all__ = [
    "CHECKER_KINDS",
    "OutputParser",
    "cargo_errors",
    "clippy_parser",
    "fmt_parser",
    "parser_for",
    "raw_output_parser",
]
