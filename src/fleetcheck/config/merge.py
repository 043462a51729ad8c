# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Layer configuration documents and repository/package nodes, with validation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from ..errors import ConfigError
from ..layout import Package
from .globs import GlobSet
from .models import ConfigDocument, FeatureSet, MetaConfig, RepoConfig, custom_lines


def merge_documents(left: ConfigDocument, right: ConfigDocument) -> ConfigDocument:
    """Combine two documents; ``right`` replaces ``left`` wholesale per repository.

    Args:
        left: Earlier document.
        right: Later document whose repository entries win.

    Returns:
        ConfigDocument: Combined document sorted by repository key.
    """

    combined = dict(left.root)
    combined.update(right.root)
    return ConfigDocument(dict(sorted(combined.items())))


def merge_all(documents: Iterable[ConfigDocument]) -> ConfigDocument:
    """Fold ``documents`` left to right with :func:`merge_documents`."""

    result = ConfigDocument({})
    for document in documents:
        result = merge_documents(result, document)
    return result


def _overlay[M: BaseModel](base: M, overlay: M, *, skip: frozenset[str] = frozenset()) -> M:
    update: dict[str, Any] = {}
    for name in overlay.model_fields_set - skip:
        update[name] = getattr(overlay, name)
    return base.model_copy(update=update)


def merge(repo_config: RepoConfig, package_overrides: RepoConfig | None) -> RepoConfig:
    """Return the effective configuration of one package.

    The repository node is applied first; the package node then replaces only
    the fields it sets. ``cmds`` and ``meta`` merge key by key. The result
    carries no nested ``packages``.

    Args:
        repo_config: Repository-level node.
        package_overrides: Package-level node, or ``None`` when absent.

    Returns:
        RepoConfig: Effective configuration for the package.
    """

    base = repo_config.model_copy(update={"packages": {}})
    if package_overrides is None:
        return base
    merged = _overlay(base, package_overrides, skip=frozenset({"packages", "cmds", "meta"}))
    cmds = dict(repo_config.cmds)
    cmds.update(package_overrides.cmds)
    meta = repo_config.meta
    if package_overrides.meta is not None:
        meta = _overlay(meta or MetaConfig(), package_overrides.meta)
    return merged.model_copy(update={"cmds": cmds, "meta": meta})


def _validate_cmds(node: RepoConfig, *, repo: str, package: str | None) -> None:
    for checker, setting in node.checker_settings(repo=repo, package=package).items():
        name = checker.cli_name
        for line in custom_lines(setting):
            if name not in line:
                if package is None:
                    message = f"For repo `{repo}`, `{line}` doesn't contain the corresponding checker name `{name}`"
                else:
                    message = (
                        f"For repo `{repo}` and package `{package}`, `{line}` doesn't contain "
                        f"the corresponding checker name `{name}`"
                    )
                raise ConfigError(message, repo=repo, package=package, checker=name)


def _validate_features(node: RepoConfig, package: Package, *, repo: str) -> None:
    for feature_set in node.features:
        for feature in feature_set.features:
            if feature not in package.features:
                raise ConfigError(
                    f"Feature `{feature}` doesn't exist for package `{package.name}` in repo `{repo}`",
                    repo=repo,
                    package=package.name,
                )


def _validate_repo_features(node: RepoConfig, packages: Sequence[Package], *, repo: str) -> None:
    defined = {feature for package in packages for feature in package.features}
    for feature_set in node.features:
        for feature in feature_set.features:
            if feature not in defined:
                raise ConfigError(f"Feature `{feature}` doesn't exist for any package in repo `{repo}`", repo=repo)


def _check_feature_targets(
    feature_sets: Sequence[FeatureSet], available: Iterable[str], *, repo: str, package: str | None
) -> None:
    known = set(available)
    for feature_set in feature_sets:
        for target in feature_set.targets:
            if target not in known:
                owner = f"package `{package}`" if package is not None else "any package"
                raise ConfigError(
                    f"Target `{target}` isn't found or specified for {owner} in repo `{repo}`",
                    repo=repo,
                    package=package,
                )


def validate_feature_targets(repo: str, config: RepoConfig, package_targets: Mapping[str, Iterable[str]]) -> None:
    """Check that targets named by feature sets are candidates of their packages.

    Package-level feature sets may only name targets of that package;
    repository-level ones may name a target of any package.

    Args:
        repo: Repository key used in error messages.
        config: Repository node as configured.
        package_targets: Resolved candidate targets keyed by package name.

    Raises:
        ConfigError: On the first target that no package resolves.
    """

    for name, node in config.packages.items():
        if name in package_targets:
            _check_feature_targets(node.features, package_targets[name], repo=repo, package=name)
    union = [target for targets in package_targets.values() for target in targets]
    _check_feature_targets(config.features, union, repo=repo, package=None)


def validate_repo_config(repo: str, config: RepoConfig, packages: Sequence[Package]) -> None:
    """Validate ``config`` eagerly against the discovered ``packages``.

    Raises:
        ConfigError: On the first unknown package, unsupported checker, custom
            command missing its checker name, undefined feature, or bad glob.
    """

    by_name = {package.name: package for package in packages}
    for name in config.packages:
        if name not in by_name:
            raise ConfigError(f"The package `{name}` is not in the repo `{repo}`.", repo=repo, package=name)
    _validate_cmds(config, repo=repo, package=None)
    _validate_repo_features(config, packages, repo=repo)
    for name, node in config.packages.items():
        _validate_cmds(node, repo=repo, package=name)
        _validate_features(node, by_name[name], repo=repo)
        if node.meta is not None:
            GlobSet.compile(node.meta.only_pkg_dir_globs, repo=repo, package=name)
            GlobSet.compile(node.meta.skip_pkg_dir_globs, repo=repo, package=name)
    if config.meta is not None:
        GlobSet.compile(config.meta.only_pkg_dir_globs, repo=repo)
        GlobSet.compile(config.meta.skip_pkg_dir_globs, repo=repo)


def select_packages(repo: str, config: RepoConfig, packages: Sequence[Package], root: Path) -> list[Package]:
    """Return packages whose directories pass the ``meta`` glob filters."""

    meta = config.meta or MetaConfig()
    only = GlobSet.compile(meta.only_pkg_dir_globs, repo=repo)
    skip = GlobSet.compile(meta.skip_pkg_dir_globs, repo=repo)
    selected: list[Package] = []
    for package in packages:
        rel = package.relative_dir(root)
        if only and not only.matches(rel):
            continue
        if skip.matches(rel):
            continue
        selected.append(package)
    return selected


def effective_configs(
    repo: str,
    config: RepoConfig,
    packages: Sequence[Package],
    root: Path,
) -> list[tuple[Package, RepoConfig]]:
    """Validate ``config`` then pair each selected package with its merged node.

    Raises:
        ConfigError: If validation fails; nothing is returned in that case.
    """

    validate_repo_config(repo, config, packages)
    return [
        (package, merge(config, config.packages.get(package.name)))
        for package in select_packages(repo, config, packages, root)
    ]


__all__ = [
    "effective_configs",
    "merge",
    "merge_all",
    "merge_documents",
    "select_packages",
    "validate_feature_targets",
    "validate_repo_config",
]
