# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Target triple detection with provenance."""

from __future__ import annotations

from .detect import CARGO_CONFIG_NAMES, TargetResolver
from .scan import TripleScanner, is_script
from .sources import TargetSet, TargetSource, TargetSourceKind

__all__ = [
    "CARGO_CONFIG_NAMES",
    "TargetResolver",
    "TargetSet",
    "TargetSource",
    "TargetSourceKind",
    "TripleScanner",
    "is_script",
]
