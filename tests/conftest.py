# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.

"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

WriteCrate = Callable[..., Path]


@pytest.fixture
def write_crate() -> WriteCrate:
    """Return a helper creating ``Cargo.toml`` packages below a root."""

    def _write(root: Path, rel: str, name: str, extra: str = "") -> Path:
        directory = root / rel if rel else root
        directory.mkdir(parents=True, exist_ok=True)
        manifest = f'[package]\nname = "{name}"\nversion = "0.1.0"\n'
        if extra:
            manifest += "\n" + extra.strip() + "\n"
        (directory / "Cargo.toml").write_text(manifest, encoding="utf-8")
        return directory

    return _write
