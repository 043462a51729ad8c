# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Heuristic scanning of scripts and CI files for embedded target triples."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Final

from ..layout import walk_dir
from .sources import TargetSet, TargetSource, TargetSourceKind

LOGGER = logging.getLogger(__name__)

SCRIPT_STEM_PREFIXES: Final[tuple[str, ...]] = ("Makefile", "makefile", "GNUmakefile")
SCRIPT_SUFFIXES: Final[frozenset[str]] = frozenset({".mk", ".sh", ".py", ".just"})
CI_DIR_NAME: Final[str] = ".github"
PKG_SCAN_DEPTH: Final[int] = 4
CI_SCAN_DEPTH: Final[int] = 4
REPO_SCRIPT_DEPTH: Final[int] = 1


def is_script(path: Path) -> bool:
    """Return ``True`` for make, shell, python and just scripts."""

    return path.stem.startswith(SCRIPT_STEM_PREFIXES) or path.suffix in SCRIPT_SUFFIXES


class TripleScanner:
    """Match known target triples on word boundaries inside file contents."""

    def __init__(self, known_targets: Iterable[str]) -> None:
        triples = sorted({triple for triple in known_targets if triple}, key=lambda t: (-len(t), t))
        self._known = frozenset(triples)
        if triples:
            alternation = b"|".join(re.escape(triple.encode()) for triple in triples)
            self._pattern: re.Pattern[bytes] | None = re.compile(rb"\b(?:" + alternation + rb")\b")
        else:
            self._pattern = None

    @property
    def known(self) -> frozenset[str]:
        """Return the triples this scanner recognises."""

        return self._known

    def find(self, data: bytes) -> list[str]:
        """Return distinct triples found in ``data`` in first-seen order."""

        if self._pattern is None:
            return []
        found: dict[str, None] = {}
        for match in self._pattern.finditer(data):
            found.setdefault(match.group(0).decode(), None)
        return list(found)

    def scan_files(self, files: Iterable[Path], kind: TargetSourceKind, *, relative_to: Path) -> TargetSet:
        """Scan ``files`` and record each hit under ``kind``.

        Unreadable files are logged and skipped.

        Args:
            files: Candidate files to read.
            kind: Provenance recorded for every hit.
            relative_to: Base directory used to render provenance paths.

        Returns:
            TargetSet: Triples found with their provenance.
        """

        result = TargetSet()
        for path in files:
            try:
                data = path.read_bytes()
            except OSError as exc:
                LOGGER.warning("skipping unreadable file %s during target scan: %s", path, exc)
                continue
            triples = self.find(data)
            if triples:
                result.push_many(triples, TargetSource(kind, _display_path(path, relative_to)))
        return result

    def scan_package(self, package_dir: Path, repo_root: Path) -> TargetSet:
        """Scan scripts inside the package directory."""

        files = [path for path in walk_dir(package_dir, max_depth=PKG_SCAN_DEPTH) if is_script(path)]
        return self.scan_files(files, TargetSourceKind.DETECTED_BY_PKG_SCRIPTS, relative_to=repo_root)

    def scan_repository(self, repo_root: Path) -> TargetSet:
        """Scan the repository CI directory and top-level scripts."""

        result = TargetSet()
        ci_dir = repo_root / CI_DIR_NAME
        if ci_dir.is_dir():
            ci_files = list(walk_dir(ci_dir, max_depth=CI_SCAN_DEPTH))
            result.merge(self.scan_files(ci_files, TargetSourceKind.DETECTED_BY_REPO_GITHUB, relative_to=repo_root))
        scripts = [
            path
            for path in walk_dir(repo_root, max_depth=REPO_SCRIPT_DEPTH, exclude=[ci_dir])
            if is_script(path)
        ]
        result.merge(self.scan_files(scripts, TargetSourceKind.DETECTED_BY_REPO_SCRIPTS, relative_to=repo_root))
        return result


def _display_path(path: Path, base: Path) -> str:
    try:
        return path.resolve().relative_to(base.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def known_or_warn(triples: Sequence[str], scanner: TripleScanner, *, origin: str) -> list[str]:
    """Return ``triples`` unchanged, logging any not known to the toolchain."""

    if scanner.known:
        for triple in triples:
            if triple not in scanner.known:
                LOGGER.warning("%s declares unknown target %s", origin, triple)
    return list(triples)


__all__ = ["TripleScanner", "is_script", "known_or_warn"]
