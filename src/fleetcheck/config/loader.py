# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Read configuration documents from JSON or TOML files."""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..errors import ConfigError
from .merge import merge_all
from .models import ConfigDocument

LOGGER = logging.getLogger(__name__)


def _decode(path: Path) -> Any:
    if path.suffix == ".toml":
        with path.open("rb") as handle:
            return tomllib.load(handle)
    return json.loads(path.read_text(encoding="utf-8"))


def load_document(path: Path) -> ConfigDocument:
    """Load and validate one configuration document.

    Args:
        path: JSON file, or TOML file when the suffix is ``.toml``.

    Returns:
        ConfigDocument: Validated document.

    Raises:
        ConfigError: If the file cannot be read, decoded or validated.
    """

    try:
        raw = _decode(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Unable to read configuration {path}: {exc}") from exc
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Invalid configuration syntax in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration {path} must map repository keys to tables")
    try:
        document = ConfigDocument.from_mapping(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}:\n{exc}") from exc
    LOGGER.debug("loaded %d repositories from %s", len(document.root), path)
    return document


def load_documents(paths: Iterable[Path]) -> ConfigDocument:
    """Load ``paths`` in order, later files replacing earlier repository entries."""

    return merge_all(load_document(path) for path in paths)


def config_schema() -> dict[str, Any]:
    """Return the JSON schema of a configuration document."""

    return ConfigDocument.model_json_schema()


__all__ = ["config_schema", "load_document", "load_documents"]
