# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Discover Cargo packages inside a checked-out repository."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from .errors import LayoutError

LOGGER = logging.getLogger(__name__)

MANIFEST_NAME: Final[str] = "Cargo.toml"
MAX_MANIFEST_DEPTH: Final[int] = 10
SKIPPED_DIRS: Final[frozenset[str]] = frozenset({".git", "target"})

type Manifest = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class Package:
    """A Cargo package discovered in a repository."""

    name: str
    dir: Path
    manifest: Path
    features: tuple[str, ...] = ()
    workspace: Path | None = None

    @property
    def workspace_dir(self) -> Path:
        """Return the workspace root, or the package directory for a standalone package."""

        return self.workspace or self.dir

    def relative_dir(self, root: Path) -> str:
        """Return the package directory relative to ``root`` in POSIX form."""

        try:
            rel = self.dir.resolve().relative_to(root.resolve())
        except ValueError:
            return self.dir.as_posix()
        text = rel.as_posix()
        return "" if text == "." else text


def walk_dir(root: Path, *, max_depth: int, exclude: Sequence[Path] = ()) -> Iterator[Path]:
    """Yield files below ``root`` no deeper than ``max_depth`` levels.

    ``.git`` and ``target`` directories are never entered, and directories in
    ``exclude`` are pruned entirely. Output is sorted for determinism.

    Args:
        root: Directory to walk.
        max_depth: Maximum depth, where ``1`` means files directly in ``root``.
        exclude: Directories to prune.

    Yields:
        Path: Each regular file found.
    """

    excluded = {path.resolve() for path in exclude}
    root_depth = len(root.resolve().parts)
    for current, dirnames, filenames in os.walk(root):
        current_path = Path(current)
        depth = len(current_path.resolve().parts) - root_depth + 1
        if depth >= max_depth:
            dirnames.clear()
        else:
            dirnames[:] = sorted(
                name
                for name in dirnames
                if name not in SKIPPED_DIRS and (current_path / name).resolve() not in excluded
            )
        for name in sorted(filenames):
            yield current_path / name


def read_manifest(path: Path) -> Manifest | None:
    """Parse a ``Cargo.toml`` file, logging and returning ``None`` on failure."""

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        LOGGER.warning("skipping unreadable manifest %s: %s", path, exc)
        return None


def _package_features(manifest: Manifest) -> tuple[str, ...]:
    names: list[str] = list(manifest.get("features", {}) or {})
    for dep_name, spec in (manifest.get("dependencies", {}) or {}).items():
        if isinstance(spec, dict) and spec.get("optional") and dep_name not in names:
            names.append(dep_name)
    return tuple(names)


def discover_packages(repo_root: Path) -> list[Package]:
    """Return every package declared by a ``Cargo.toml`` below ``repo_root``.

    Duplicate package names keep the first manifest in sorted path order.

    Args:
        repo_root: Repository checkout directory.

    Returns:
        list[Package]: Packages sorted by name and directory.

    Raises:
        LayoutError: If the checkout cannot be walked.
    """

    found: dict[str, Package] = {}
    try:
        for path in walk_dir(repo_root, max_depth=MAX_MANIFEST_DEPTH):
            if path.name != MANIFEST_NAME:
                continue
            manifest = read_manifest(path)
            if manifest is None:
                continue
            package = manifest.get("package")
            if not isinstance(package, dict) or not isinstance(package.get("name"), str):
                continue
            name = package["name"]
            if name in found:
                LOGGER.warning("package %s declared again in %s; keeping %s", name, path, found[name].manifest)
                continue
            workspace = find_workspace_manifest(path.parent, repo_root)
            found[name] = Package(
                name=name,
                dir=path.parent,
                manifest=path,
                features=_package_features(manifest),
                workspace=workspace[0].parent if workspace is not None else None,
            )
    except OSError as exc:
        raise LayoutError(f"failed to scan {repo_root} for packages: {exc}") from exc
    return sorted(found.values(), key=lambda pkg: (pkg.name, pkg.dir.as_posix()))


def find_workspace_manifest(package_dir: Path, repo_root: Path) -> tuple[Path, Manifest] | None:
    """Return the nearest ancestor manifest declaring ``[workspace]``.

    The package's own manifest counts when it declares a workspace.
    """

    root = repo_root.resolve()
    current = package_dir.resolve()
    while True:
        candidate = current / MANIFEST_NAME
        if candidate.is_file():
            manifest = read_manifest(candidate)
            if manifest is not None and "workspace" in manifest:
                return candidate, manifest
        if current == root or root not in current.parents:
            return None
        current = current.parent


__all__ = [
    "MANIFEST_NAME",
    "Package",
    "discover_packages",
    "find_workspace_manifest",
    "read_manifest",
    "walk_dir",
]
