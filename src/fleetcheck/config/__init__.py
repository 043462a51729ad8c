# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Repository configuration: models, loading, layering and validation."""

from __future__ import annotations

from .globs import GlobSet, check_glob
from .loader import config_schema, load_document, load_documents
from .merge import (
    effective_configs,
    merge,
    merge_all,
    merge_documents,
    select_packages,
    validate_feature_targets,
    validate_repo_config,
)
from .models import (
    CmdSetting,
    ConfigDocument,
    FeatureSet,
    MetaConfig,
    RepoConfig,
    custom_lines,
    default_cmds,
    is_enabled,
)
from .uri import RepoUri, UriKind

__all__ = [
    "CmdSetting",
    "ConfigDocument",
    "FeatureSet",
    "GlobSet",
    "MetaConfig",
    "RepoConfig",
    "RepoUri",
    "UriKind",
    "check_glob",
    "config_schema",
    "custom_lines",
    "default_cmds",
    "effective_configs",
    "is_enabled",
    "load_document",
    "load_documents",
    "merge",
    "merge_all",
    "merge_documents",
    "select_packages",
    "validate_feature_targets",
    "validate_repo_config",
]
