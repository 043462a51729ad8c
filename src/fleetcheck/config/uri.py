# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Parse repository keys into user/repo coordinates and clone locations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final
from urllib.parse import urlparse

from ..errors import ConfigError

_SHORT_FORM: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
GITHUB_URL_TEMPLATE: Final[str] = "https://github.com/{user}/{repo}.git"


class UriKind(StrEnum):
    """How a repository key locates its source."""

    GITHUB = "github"
    URL = "url"
    LOCAL = "local"


@dataclass(frozen=True, slots=True)
class RepoUri:
    """Parsed repository key."""

    key: str
    kind: UriKind
    user: str
    repo: str
    location: str

    @property
    def slug(self) -> str:
        """Return ``user/repo``."""

        return f"{self.user}/{self.repo}"

    @classmethod
    def parse(cls, key: str) -> RepoUri:
        """Classify ``key`` as ``user/repo``, a URL or a local path.

        Raises:
            ConfigError: If user and repository names cannot be derived.
        """

        text = key.strip()
        if "://" in text and not text.startswith("file://"):
            parsed = urlparse(text)
            parts = [part for part in parsed.path.split("/") if part]
            if len(parts) < 2:
                raise ConfigError(f"Cannot derive user/repo from `{key}`", repo=key)
            return cls(key, UriKind.URL, parts[-2], parts[-1].removesuffix(".git"), text)
        if text.startswith("file://"):
            text = text.removeprefix("file://")
        elif _SHORT_FORM.match(text) and not text.startswith("."):
            user, repo = text.split("/")
            return cls(key, UriKind.GITHUB, user, repo, GITHUB_URL_TEMPLATE.format(user=user, repo=repo))
        path = Path(text).expanduser()
        parts = path.resolve().parts
        if len(parts) < 3:
            raise ConfigError(f"Cannot derive user/repo from local path `{key}`", repo=key)
        return cls(key, UriKind.LOCAL, parts[-2], parts[-1], str(path.resolve()))


__all__ = ["GITHUB_URL_TEMPLATE", "RepoUri", "UriKind"]
