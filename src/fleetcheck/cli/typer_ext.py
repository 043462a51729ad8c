# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Typer helpers producing a consistently ordered command listing."""

from __future__ import annotations

from typing import Any

import click
import typer
from typer.core import TyperGroup


class SortedTyperGroup(TyperGroup):
    """Typer group that lists its commands alphabetically in help output."""

    def list_commands(self, ctx: click.Context) -> list[str]:
        """Return command names sorted alphabetically.

        Args:
            ctx: Click context describing the application invocation.

        Returns:
            list[str]: Sorted command names.
        """

        return sorted(super().list_commands(ctx))


def create_typer(*, cls: type[TyperGroup] | None = None, **kwargs: Any) -> typer.Typer:
    """Return a :class:`typer.Typer` whose help lists commands in sorted order.

    Args:
        cls: Optional Typer group subclass; defaults to :class:`SortedTyperGroup`.
        **kwargs: Additional arguments forwarded to :class:`typer.Typer`.

    Returns:
        typer.Typer: Configured application.
    """

    return typer.Typer(cls=cls or SortedTyperGroup, **kwargs)


__all__ = ["SortedTyperGroup", "create_typer"]
