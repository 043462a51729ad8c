# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Multi-source target triple resolution for one package."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Final

from ..errors import ToolchainError
from ..layout import MANIFEST_NAME, find_workspace_manifest, read_manifest
from ..toolchain import TOOLCHAIN_FILE_NAMES, ToolchainFile, find_nearest, parse_toolchain_file
from .scan import TripleScanner, known_or_warn
from .sources import TargetSet, TargetSource, TargetSourceKind

LOGGER = logging.getLogger(__name__)

CARGO_CONFIG_NAMES: Final[tuple[str, str]] = (".cargo/config.toml", ".cargo/config")


def _as_triples(value: object) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


def _docs_rs_table(manifest: Mapping[str, Any], section: str) -> Mapping[str, Any]:
    table: object = manifest.get(section, {})
    for key in ("metadata", "docs", "rs"):
        if not isinstance(table, dict):
            return {}
        table = table.get(key, {})
    return table if isinstance(table, dict) else {}


class TargetResolver:
    """Accumulate candidate target triples from every known source.

    One resolver is constructed per run from the toolchain's target list and
    host triple; repository-level scans are memoised per repository root.
    """

    def __init__(self, *, known_targets: Iterable[str], host: str) -> None:
        self.host = host
        self.scanner = TripleScanner(known_targets)
        self._repo_scans: dict[Path, TargetSet] = {}

    def resolve(self, package_dir: Path, repo_root: Path, *, overrides: Sequence[str] = ()) -> TargetSet:
        """Return the target set for the package at ``package_dir``.

        Args:
            package_dir: Directory holding the package ``Cargo.toml``.
            repo_root: Repository checkout root bounding upward searches.
            overrides: Triples configured explicitly for this package.

        Returns:
            TargetSet: Accumulated triples with provenance; never empty.
        """

        result = TargetSet()
        result.merge(self.from_toolchain_file(package_dir, repo_root))
        result.merge(self.from_cargo_config(package_dir, repo_root))
        result.merge(self.from_docs_metadata(package_dir, repo_root))
        result.merge(self.scanner.scan_package(package_dir, repo_root))
        result.merge(self.repository_scan(repo_root))
        result.push_many(
            known_or_warn(overrides, self.scanner, origin="configuration"),
            TargetSource(TargetSourceKind.SPECIFIED_IN_CONFIG),
        )
        result.ensure_default(self.host)
        return result

    def repository_scan(self, repo_root: Path) -> TargetSet:
        """Return the memoised CI and script scan for ``repo_root``."""

        key = repo_root.resolve()
        cached = self._repo_scans.get(key)
        if cached is None:
            cached = self.scanner.scan_repository(repo_root)
            self._repo_scans[key] = cached
        result = TargetSet()
        result.merge(cached)
        return result

    def toolchain_file(self, package_dir: Path, repo_root: Path) -> ToolchainFile | None:
        """Return the nearest parsed toolchain file, or ``None``."""

        path = find_nearest(package_dir, repo_root, TOOLCHAIN_FILE_NAMES)
        if path is None:
            return None
        try:
            return parse_toolchain_file(path)
        except (OSError, UnicodeDecodeError, ToolchainError) as exc:
            LOGGER.warning("skipping unreadable toolchain file %s: %s", path, exc)
            return None

    def from_toolchain_file(self, package_dir: Path, repo_root: Path) -> TargetSet:
        result = TargetSet()
        toolchain = self.toolchain_file(package_dir, repo_root)
        if toolchain is not None:
            display = self._display(toolchain.path, repo_root)
            source = TargetSource(TargetSourceKind.RUST_TOOLCHAIN_TOML, display)
            result.push_many(known_or_warn(toolchain.targets, self.scanner, origin=display), source)
        return result

    def from_cargo_config(self, package_dir: Path, repo_root: Path) -> TargetSet:
        result = TargetSet()
        path = find_nearest(package_dir, repo_root, CARGO_CONFIG_NAMES)
        if path is None:
            return result
        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning("skipping unreadable cargo config %s: %s", path, exc)
            return result
        build = data.get("build", {})
        if isinstance(build, dict):
            display = self._display(path, repo_root)
            source = TargetSource(TargetSourceKind.CARGO_CONFIG_TOML, display)
            result.push_many(known_or_warn(_as_triples(build.get("target")), self.scanner, origin=display), source)
        return result

    def from_docs_metadata(self, package_dir: Path, repo_root: Path) -> TargetSet:
        """Read ``default-target`` and ``targets`` from docs.rs metadata.

        Package and workspace tables are read independently and may all
        contribute at once.
        """

        result = TargetSet()
        manifest_path = package_dir / MANIFEST_NAME
        manifest = read_manifest(manifest_path) if manifest_path.is_file() else None
        if manifest is not None:
            display = self._display(manifest_path, repo_root)
            table = _docs_rs_table(manifest, "package")
            result.push_many(
                _as_triples(table.get("default-target")),
                TargetSource(TargetSourceKind.DOCSRS_PKG_DEFAULT, display),
            )
            result.push_many(_as_triples(table.get("targets")), TargetSource(TargetSourceKind.DOCSRS_PKG, display))
        workspace = find_workspace_manifest(package_dir, repo_root)
        if workspace is not None:
            ws_path, ws_manifest = workspace
            display = self._display(ws_path, repo_root)
            table = _docs_rs_table(ws_manifest, "workspace")
            result.push_many(
                _as_triples(table.get("default-target")),
                TargetSource(TargetSourceKind.DOCSRS_WORKSPACE_DEFAULT, display),
            )
            result.push_many(
                _as_triples(table.get("targets")),
                TargetSource(TargetSourceKind.DOCSRS_WORKSPACE, display),
            )
        return result

    @staticmethod
    def _display(path: Path, repo_root: Path) -> str:
        try:
            return path.resolve().relative_to(repo_root.resolve()).as_posix()
        except ValueError:
            return path.as_posix()


__all__ = ["CARGO_CONFIG_NAMES", "TargetResolver"]
