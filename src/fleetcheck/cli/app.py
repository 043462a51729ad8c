# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""CLI application entry point wiring configuration, layout, run and log commands."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ..commands import resolve_commands
from ..config import ConfigDocument, RepoUri, config_schema, load_documents
from ..errors import ConfigError, FleetcheckError, StorageError, ToolchainError
from ..logging import configure_logging, detect_tty, fail, get_console_manager, info, ok, section, warn
from ..metadata import RepoMaterializer
from ..registry import RunRegistries
from ..runner import BatchRunner, RepoOutcome, RepoStatus, plan_packages
from ..settings import RunSettings
from ..storage import CheckerDb, OpenedStore
from ..targets import TargetResolver
from ..toolchain import RustcInfo, active_host_channel, query_rustc, query_target_list
from .typer_ext import create_typer

app = create_typer(
    name="fleetcheck",
    help="Batch static analysis for fleets of Rust repositories.",
    no_args_is_help=True,
    add_completion=False,
)

ConfigPaths = Annotated[
    list[Path],
    typer.Option(
        "--config",
        "-c",
        help="Configuration file (JSON or TOML); repeat to layer files, later ones win.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
]
RepoFilter = Annotated[
    list[str] | None,
    typer.Option("--repo", "-r", help="Only process this repository key; may be repeated."),
]
DbPath = Annotated[
    Path | None,
    typer.Option("--db", help="Location of the sqlite store (defaults to FLEETCHECK_DB or ./fleetcheck.sqlite3)."),
]
EmojiFlag = Annotated[bool, typer.Option("--emoji/--no-emoji", help="Toggle emoji output.")]
VerboseFlag = Annotated[bool, typer.Option("--verbose", "-v", help="Emit debug logging on stderr.")]

EXIT_FAILURES = 1
EXIT_USAGE = 2


def _console() -> Console:
    return get_console_manager().get(color=detect_tty(), emoji=False)


def _settings() -> RunSettings:
    try:
        return RunSettings.from_environment()
    except ConfigError as exc:
        fail(str(exc), use_emoji=False)
        raise typer.Exit(code=EXIT_USAGE) from exc


def _load(paths: Sequence[Path], *, emoji: bool) -> ConfigDocument:
    try:
        return load_documents(paths)
    except ConfigError as exc:
        fail(str(exc), use_emoji=emoji)
        raise typer.Exit(code=EXIT_USAGE) from exc


def _select(document: ConfigDocument, repos: Sequence[str] | None, *, emoji: bool) -> list[str]:
    keys = document.repos()
    if not repos:
        return keys
    unknown = [repo for repo in repos if repo not in document.root]
    if unknown:
        fail(f"Unknown repositories: {', '.join(unknown)}", use_emoji=emoji)
        raise typer.Exit(code=EXIT_USAGE)
    return [key for key in keys if key in repos]


def _toolchain(*, emoji: bool) -> tuple[RustcInfo, tuple[str, ...], RunRegistries]:
    try:
        rustc = query_rustc()
        known_targets = query_target_list()
    except ToolchainError as exc:
        fail(str(exc), use_emoji=emoji)
        raise typer.Exit(code=EXIT_USAGE) from exc
    return rustc, known_targets, RunRegistries(host_channel=active_host_channel(rustc))


def _millis(value: int) -> str:
    if value == 0:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=UTC).isoformat(timespec="seconds")


@app.command("config")
def config_command(
    config: ConfigPaths,
    list_repos: Annotated[bool, typer.Option("--list-repos", help="Only list repository keys.")] = False,
    emoji: EmojiFlag = True,
) -> None:
    """Print the merged configuration document."""

    document = _load(config, emoji=emoji)
    if list_repos:
        for key in document.repos():
            uri = RepoUri.parse(key)
            typer.echo(f"{key}\t{uri.kind.value}\t{uri.slug}")
        return
    payload = {key: repo.canonical() for key, repo in document.items()}
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command("schema")
def schema_command() -> None:
    """Print the JSON schema of configuration documents."""

    typer.echo(json.dumps(config_schema(), indent=2, sort_keys=True))


@app.command("layout")
def layout_command(
    config: ConfigPaths,
    repo: RepoFilter = None,
    commands: Annotated[bool, typer.Option("--commands", help="Also list resolved checker commands.")] = False,
    emoji: EmojiFlag = True,
    verbose: VerboseFlag = False,
) -> None:
    """Show packages, targets with their sources and, optionally, checker commands."""

    configure_logging(verbose=verbose)
    settings = _settings()
    document = _load(config, emoji=emoji)
    rustc, known_targets, registries = _toolchain(emoji=emoji)
    resolver = TargetResolver(known_targets=known_targets, host=rustc.host)
    materializer = RepoMaterializer(settings.repos_dir)
    console = _console()
    failures = 0
    for key in _select(document, repo, emoji=emoji):
        section(key, use_color=detect_tty())
        try:
            root = materializer.materialize(RepoUri.parse(key))
            plans = plan_packages(resolver, key, document.root[key], root)
            descriptors = resolve_commands(key, plans, host_target=rustc.host, registries=registries)
        except FleetcheckError as exc:
            fail(str(exc), use_emoji=emoji)
            failures += 1
            continue

        table = Table(title=str(root), show_lines=False)
        table.add_column("Package")
        table.add_column("Dir")
        table.add_column("Toolchain")
        table.add_column("Target")
        table.add_column("Sources")
        for plan in plans:
            for triple, sources in plan.targets.items():
                table.add_row(
                    plan.package.name,
                    plan.package.relative_dir(root) or ".",
                    plan.channel or registries.host_channel,
                    triple,
                    ", ".join(source.describe() for source in sources),
                )
        console.print(table)
        if commands:
            for descriptor in descriptors:
                typer.echo(f"{descriptor.package_name}\t{descriptor.checker.cli_name}\t{descriptor.command_string}")
    if failures:
        raise typer.Exit(code=EXIT_FAILURES)


def _render_outcomes(outcomes: Sequence[RepoOutcome]) -> None:
    table = Table(title="Check run")
    table.add_column("Repository")
    table.add_column("Status")
    table.add_column("Invocations", justify="right")
    table.add_column("Executed", justify="right")
    table.add_column("Diagnostics", justify="right")
    for outcome in outcomes:
        table.add_row(
            outcome.repo,
            outcome.status.value,
            str(outcome.invocations),
            str(outcome.executed),
            str(outcome.diagnostics),
        )
    _console().print(table)


@app.command("run")
def run_batch(
    config: ConfigPaths,
    repo: RepoFilter = None,
    db: DbPath = None,
    jobs: Annotated[int, typer.Option("--jobs", "-j", min=1, help="Repositories checked concurrently.")] = 1,
    install: Annotated[
        bool,
        typer.Option("--install-targets/--no-install-targets", help="Install detected targets with rustup."),
    ] = False,
    compact: Annotated[bool, typer.Option("--compact", help="Compact the store after the run.")] = False,
    emoji: EmojiFlag = True,
    verbose: VerboseFlag = False,
) -> None:
    """Check every configured repository and record the run in the check log."""

    configure_logging(verbose=verbose)
    settings = _settings()
    if db is not None:
        settings = replace(settings, db_path=db)
    if install:
        settings = replace(settings, install_targets=True)
    document = _load(config, emoji=emoji)
    selected = _select(document, repo, emoji=emoji)
    rustc, known_targets, registries = _toolchain(emoji=emoji)
    info(f"host {rustc.host}, rustc {rustc.release}, toolchain {registries.host_channel}", use_emoji=emoji)

    try:
        with OpenedStore.open(settings.db_path) as store:
            runner = BatchRunner(
                store,
                rustc=rustc,
                known_targets=known_targets,
                settings=settings,
                registries=registries,
            )
            outcomes = runner.run(document, repos=selected, jobs=jobs)
            if compact and not store.db.compact():
                warn("compaction skipped while other store handles are open", use_emoji=emoji)
    except StorageError as exc:
        fail(str(exc), use_emoji=emoji)
        raise typer.Exit(code=EXIT_USAGE) from exc

    _render_outcomes(outcomes)
    failed = [outcome for outcome in outcomes if outcome.status is RepoStatus.FAILED]
    for outcome in failed:
        fail(f"{outcome.repo}: {outcome.error}", use_emoji=emoji)
    if failed:
        raise typer.Exit(code=EXIT_FAILURES)
    ok(f"checked {len(outcomes)} repositories", use_emoji=emoji)


@app.command("checks")
def checks_command(
    db: DbPath = None,
    keys: Annotated[bool, typer.Option("--keys", help="List the repositories of every run.")] = False,
    emoji: EmojiFlag = True,
) -> None:
    """Print the check log."""

    settings = _settings()
    path = db or settings.db_path
    if not path.exists():
        fail(f"store {path} does not exist", use_emoji=emoji)
        raise typer.Exit(code=EXIT_USAGE)
    try:
        with CheckerDb.open(path) as store:
            records = store.checks()
    except StorageError as exc:
        fail(str(exc), use_emoji=emoji)
        raise typer.Exit(code=EXIT_USAGE) from exc

    table = Table(title=f"Check log ({path.name})")
    table.add_column("Id", justify="right")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Repos", justify="right")
    for ident, record in records:
        table.add_row(str(ident), _millis(record.timestamp_start), _millis(record.timestamp_end), str(len(record.keys)))
    _console().print(table)
    if keys:
        for ident, record in records:
            for key in record.keys:
                typer.echo(f"{ident}\t{key.repo.slug}\t{key.repo.sha}")


def main() -> None:
    """Run the ``fleetcheck`` application."""

    app()


__all__ = ["app", "main"]
