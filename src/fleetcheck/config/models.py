# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Pydantic models describing per-repository checker configuration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator

from ..checkers import CONFIGURABLE, DEFAULT_ENABLED, CheckerTool
from ..errors import ConfigError

type CmdSetting = bool | str | list[str]


def _string_or_list(value: Any) -> Any:
    if isinstance(value, str):
        return [value]
    return value


class MetaConfig(BaseModel):
    """Options steering package selection, environment and caching."""

    model_config = ConfigDict(extra="forbid")

    only_pkg_dir_globs: list[str] = Field(default_factory=list)
    skip_pkg_dir_globs: list[str] = Field(default_factory=list)
    target_env: dict[str, dict[str, str]] = Field(default_factory=dict)
    rerun: bool = False
    use_last_cache: bool = False

    @field_validator("only_pkg_dir_globs", "skip_pkg_dir_globs", mode="before")
    @classmethod
    def _accept_single_glob(cls, value: Any) -> Any:
        return _string_or_list(value)


class FeatureSet(BaseModel):
    """One combination of cargo feature flags.

    Accepts either the short form ``"feat1,feat2"`` or a table with ``F``,
    ``no-default-features``, ``all-features`` and ``targets`` keys.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    features: list[str] = Field(default_factory=list, alias="F")
    no_default_features: bool = Field(default=False, alias="no-default-features")
    all_features: bool = Field(default=False, alias="all-features")
    targets: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _expand_short_form(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"F": value}
        return value

    @field_validator("features", mode="before")
    @classmethod
    def _split_commas(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    def applies_to(self, target: str) -> bool:
        """Return ``True`` when this set is unrestricted or lists ``target``."""

        return not self.targets or target in self.targets

    def args(self) -> tuple[str, ...]:
        """Return the cargo arguments selecting this feature combination."""

        args: list[str] = []
        if self.features:
            args.extend(["-F", ",".join(self.features)])
        if self.no_default_features:
            args.append("--no-default-features")
        if self.all_features:
            args.append("--all-features")
        return tuple(args)


class RepoConfig(BaseModel):
    """Configuration node for a repository or, nested under ``packages``, a package."""

    model_config = ConfigDict(extra="forbid")

    meta: MetaConfig | None = None
    setup: list[str] = Field(default_factory=list)
    targets: list[str] | None = None
    no_install_targets: list[str] | None = None
    features: list[FeatureSet] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cmds: dict[str, CmdSetting] = Field(default_factory=dict)
    packages: dict[str, RepoConfig] = Field(default_factory=dict)

    @field_validator("setup", "targets", "no_install_targets", mode="before")
    @classmethod
    def _accept_single_string(cls, value: Any) -> Any:
        return _string_or_list(value)

    @field_validator("features", mode="before")
    @classmethod
    def _accept_single_feature_set(cls, value: Any) -> Any:
        if isinstance(value, (str, dict)):
            return [value]
        return value

    def checker_settings(self, *, repo: str, package: str | None = None) -> dict[CheckerTool, CmdSetting]:
        """Return ``cmds`` keyed by checker.

        Args:
            repo: Repository key for error reporting.
            package: Package name for error reporting when this is a package node.

        Returns:
            dict[CheckerTool, CmdSetting]: Settings in declaration order.

        Raises:
            ConfigError: If a key does not name a configurable checker.
        """

        settings: dict[CheckerTool, CmdSetting] = {}
        for name, setting in self.cmds.items():
            try:
                checker = CheckerTool.from_name(name)
            except ValueError:
                checker = None
            if checker is None or checker not in CONFIGURABLE:
                scope = f"repo `{repo}`" if package is None else f"repo `{repo}`'s pkg `{package}`"
                raise ConfigError(
                    f"Checker `{name}` is not supported in cmds of {scope}",
                    repo=repo,
                    package=package,
                    checker=name,
                )
            settings[checker] = setting
        return settings

    def canonical(self) -> dict[str, Any]:
        """Return a JSON-ready dump omitting unset defaults, used in store keys."""

        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


def custom_lines(setting: CmdSetting) -> list[str]:
    """Return custom command lines for ``setting`` (empty for booleans)."""

    if isinstance(setting, bool):
        return []
    if isinstance(setting, str):
        return [setting]
    return list(setting)


def is_enabled(setting: CmdSetting) -> bool:
    """Return ``False`` only for an explicit ``false`` setting."""

    return setting is not False


def default_cmds() -> dict[CheckerTool, CmdSetting]:
    """Return the checker settings every package starts from."""

    return {checker: True for checker in DEFAULT_ENABLED}


class ConfigDocument(RootModel[dict[str, RepoConfig]]):
    """A whole configuration file mapping repository keys to configuration."""

    def repos(self) -> list[str]:
        """Return repository keys in document order."""

        return list(self.root)

    def get(self, repo: str) -> RepoConfig | None:
        """Return the configuration for ``repo`` when present."""

        return self.root.get(repo)

    def items(self) -> list[tuple[str, RepoConfig]]:
        """Return ``(repo, config)`` pairs in document order."""

        return list(self.root.items())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ConfigDocument:
        """Validate a decoded JSON or TOML mapping."""

        return cls.model_validate(dict(data))


__all__ = [
    "CmdSetting",
    "ConfigDocument",
    "FeatureSet",
    "MetaConfig",
    "RepoConfig",
    "custom_lines",
    "default_cmds",
    "is_enabled",
]
