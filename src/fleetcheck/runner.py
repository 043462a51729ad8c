# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Blackcat Informatics® Inc.
"""Batch orchestration: plan, look up, execute and record checks per repository."""

from __future__ import annotations

import logging
import shlex
import subprocess  # nosec B404
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

from .checkers import CLEAN_BEFORE, CheckerTool
from .commands import InvocationDescriptor, PackagePlan, resolve_commands
from .config.merge import effective_configs, validate_feature_targets
from .config.models import ConfigDocument, MetaConfig, RepoConfig
from .config.uri import RepoUri
from .errors import ExecutionError, FleetcheckError, StorageError
from .layout import discover_packages
from .metadata import GitClient, RepoMaterializer
from .parsers import OutputParser, parser_for
from .process import ExecutableSpec, ProcessExecutor, ProcessResult, execute_spec, run_command
from .registry import RunRegistries
from .settings import RunSettings
from .storage.index import OpenedStore
from .storage.models import (
    CacheKey,
    CacheValue,
    CheckerIdentity,
    Diagnostics,
    LayoutPackage,
    LayoutSnapshot,
    LayoutSource,
    NormalizedCommand,
    RepoInfoKey,
    RepositoryIdentity,
)
from .storage.session import RepoSession
from .targets.detect import TargetResolver
from .toolchain import InstallationPlan, RustcInfo, install_targets

LOGGER = logging.getLogger(__name__)

LOCKFILE_NAME: Final[str] = "Cargo.lock"

type SetupRunner = Callable[[Sequence[str], Path], ProcessResult]


class RepoStatus(StrEnum):
    """Outcome category of one repository in a batch."""

    CHECKED = "checked"
    CACHED = "cached"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RepoOutcome:
    """Result of processing one repository."""

    repo: str
    status: RepoStatus
    info_key: RepoInfoKey | None = None
    invocations: int = 0
    executed: int = 0
    diagnostics: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not RepoStatus.FAILED


def cache_key_for(identity: RepositoryIdentity, descriptor: InvocationDescriptor) -> CacheKey:
    """Return the content address of ``descriptor`` run against ``identity``."""

    return CacheKey(
        repo=identity,
        package_name=descriptor.package_name,
        checker=CheckerIdentity(tool=descriptor.checker),
        command=NormalizedCommand(
            command_string=descriptor.command_string,
            target=descriptor.target,
            channel=descriptor.channel,
            environment=NormalizedCommand.env_pairs(descriptor.environment),
            feature_list=descriptor.features_args,
        ),
    )


def plan_packages(resolver: TargetResolver, repo: str, config: RepoConfig, root: Path) -> list[PackagePlan]:
    """Discover packages, validate ``config`` and resolve targets per package.

    Raises:
        ConfigError: If ``config`` does not validate against the packages.
    """

    packages = discover_packages(root)
    plans: list[PackagePlan] = []
    for package, effective in effective_configs(repo, config, packages, root):
        toolchain = resolver.toolchain_file(package.dir, root)
        plans.append(
            PackagePlan(
                package=package,
                config=effective,
                targets=resolver.resolve(package.dir, root, overrides=effective.targets or ()),
                channel=toolchain.channel if toolchain is not None else None,
            )
        )
    validate_feature_targets(repo, config, {plan.package.name: list(plan.targets) for plan in plans})
    return plans


def _default_setup(args: Sequence[str], cwd: Path) -> ProcessResult:
    return run_command(args, cwd=cwd)


class BatchRunner:
    """Check a set of repositories against one opened store.

    Repositories run in parallel; the packages and checkers of a single
    repository always run on one worker thread.
    """

    def __init__(
        self,
        store: OpenedStore,
        *,
        rustc: RustcInfo,
        known_targets: Iterable[str],
        settings: RunSettings | None = None,
        materializer: RepoMaterializer | None = None,
        git: GitClient | None = None,
        executor: ProcessExecutor = execute_spec,
        parsers: Mapping[CheckerTool, OutputParser] | None = None,
        setup_runner: SetupRunner = _default_setup,
        registries: RunRegistries | None = None,
    ) -> None:
        self.store = store
        self.rustc = rustc
        self.settings = settings or RunSettings()
        self.git = git or GitClient()
        self.materializer = materializer or RepoMaterializer(self.settings.repos_dir, self.git)
        self.executor = executor
        self.parsers = dict(parsers or {})
        self.setup_runner = setup_runner
        self.registries = registries or RunRegistries(host_channel=rustc.channel)
        self.resolver = TargetResolver(known_targets=known_targets, host=rustc.host)

    # planning

    def plan(self, repo: str, config: RepoConfig, root: Path) -> list[PackagePlan]:
        return plan_packages(self.resolver, repo, config, root)

    def resolve(self, repo: str, plans: Sequence[PackagePlan]) -> list[InvocationDescriptor]:
        return resolve_commands(repo, plans, host_target=self.rustc.host, registries=self.registries)

    def installation_plan(self, plans: Sequence[PackagePlan]) -> InstallationPlan:
        """Return targets to install per toolchain, honouring ``no_install_targets``."""

        installation = InstallationPlan()
        for plan in plans:
            channel = plan.channel or self.registries.host_channel
            installation.add(
                channel,
                plan.targets.candidates(),
                skip=[self.rustc.host, *(plan.config.no_install_targets or ())],
            )
        return installation

    def layout_snapshot(self, root: Path, plans: Sequence[PackagePlan]) -> LayoutSnapshot:
        packages = tuple(
            LayoutPackage(
                name=plan.package.name,
                dir=plan.package.relative_dir(root),
                channel=plan.channel,
                targets=tuple(
                    (triple, tuple(LayoutSource(kind=source.kind, path=source.path) for source in sources))
                    for triple, sources in plan.targets.items()
                ),
            )
            for plan in plans
        )
        installation = self.installation_plan(plans)
        return LayoutSnapshot(
            root=str(root),
            packages=packages,
            installation=tuple((channel, tuple(targets)) for channel, targets in sorted(installation.targets.items())),
        )

    # execution

    def run_setup(self, repo: str, config: RepoConfig, root: Path) -> None:
        """Run configured setup lines in the repository root.

        Raises:
            ExecutionError: If a line cannot be parsed, started, or fails.
        """

        for line in config.setup:
            try:
                args = shlex.split(line)
                result = self.setup_runner(args, root)
            except (ValueError, OSError, subprocess.SubprocessError) as exc:
                raise ExecutionError(f"setup `{line}` for {repo} failed: {exc}") from exc
            if not result.succeeded:
                raise ExecutionError(f"setup `{line}` for {repo} exited with {result.returncode}")

    def _run_step(self, args: Sequence[str], cwd: Path) -> ProcessResult:
        try:
            return self.setup_runner(args, cwd)
        except (OSError, subprocess.SubprocessError) as exc:
            raise ExecutionError(f"`{' '.join(args)}` in {cwd} failed: {exc}") from exc

    def clean_workspaces(self, checker: CheckerTool, workspace_dirs: Sequence[Path]) -> None:
        """Run ``cargo clean`` in each workspace so ``checker`` sees no stale artefacts.

        Failures are logged; the checker still runs.
        """

        for directory in workspace_dirs:
            try:
                result = self._run_step(["cargo", "clean"], directory)
            except ExecutionError as exc:
                LOGGER.error("cargo clean before %s failed: %s", checker.cli_name, exc)
                continue
            if not result.succeeded:
                LOGGER.error(
                    "cargo clean before %s in %s exited with %d", checker.cli_name, directory, result.returncode
                )

    def ensure_lockfile(self, workspace_dir: Path) -> None:
        """Generate ``Cargo.lock`` in ``workspace_dir`` when it is missing.

        Raises:
            ExecutionError: If ``cargo generate-lockfile`` cannot run or fails.
        """

        if (workspace_dir / LOCKFILE_NAME).exists():
            return
        LOGGER.info("generating %s in %s", LOCKFILE_NAME, workspace_dir)
        result = self._run_step(["cargo", "generate-lockfile"], workspace_dir)
        if not result.succeeded:
            raise ExecutionError(
                f"cargo generate-lockfile in {workspace_dir} exited with {result.returncode}: {result.stderr.strip()}"
            )

    def prepare(
        self,
        descriptor: InvocationDescriptor,
        workspace_dirs: Sequence[Path],
        cleaned: set[CheckerTool],
    ) -> None:
        """Run the steps ``descriptor`` needs right before it executes.

        Checkers in :data:`CLEAN_BEFORE` get one ``cargo clean`` per repository;
        default ``audit`` invocations get a lockfile.
        """

        checker = descriptor.checker
        if checker in CLEAN_BEFORE and checker not in cleaned:
            cleaned.add(checker)
            self.clean_workspaces(checker, workspace_dirs)
        cwd = descriptor.executable_spec.cwd
        if checker is CheckerTool.AUDIT and not descriptor.custom and cwd is not None:
            self.ensure_lockfile(cwd)

    def execute(self, descriptor: InvocationDescriptor) -> tuple[ProcessResult, Diagnostics]:
        """Run ``descriptor`` and parse its output.

        Raises:
            ExecutionError: If the checker process cannot be started.
        """

        spec: ExecutableSpec = descriptor.executable_spec
        try:
            result = self.executor(spec)
        except (OSError, subprocess.SubprocessError) as exc:
            raise ExecutionError(f"failed to run `{descriptor.command_string}`: {exc}") from exc
        parser = parser_for(descriptor.checker, self.parsers)
        diagnostics = parser(descriptor, result)
        LOGGER.debug(
            "%s exited with %d and %d diagnostics", descriptor.command_string, result.returncode, len(diagnostics)
        )
        return result, Diagnostics(duration_ms=result.duration_ms, data=tuple(diagnostics))

    def check_repo(self, repo: str, config: RepoConfig) -> RepoOutcome:
        """Check one repository, converting non-storage failures into an outcome.

        Raises:
            StorageError: Store failures abort the whole run.
        """

        try:
            return self._check_repo(repo, config)
        except StorageError:
            raise
        except FleetcheckError as exc:
            LOGGER.error("checking %s failed: %s", repo, exc)
            return RepoOutcome(repo=repo, status=RepoStatus.FAILED, error=str(exc))

    def _check_repo(self, repo: str, config: RepoConfig) -> RepoOutcome:
        uri = RepoUri.parse(repo)
        meta = config.meta or MetaConfig()
        reuse = not self.settings.force_repo_check and not meta.rerun

        if reuse and meta.use_last_cache:
            latest = self.store.latest_info_for(uri.user, uri.repo)
            latest_key = self.store.latest_key_for(uri.user, uri.repo)
            if latest is not None and latest.complete and latest_key is not None:
                LOGGER.info("%s: reusing last complete check of %s", repo, latest_key.repo.sha)
                return RepoOutcome(repo=repo, status=RepoStatus.CACHED, info_key=latest_key)

        root = self.materializer.materialize(uri)
        commit = self.git.commit_info(root)
        identity = RepositoryIdentity(user=uri.user, repo=uri.repo, sha=commit.commit.sha, branch=commit.branch)
        info_key = RepoInfoKey(repo=identity, config=config.canonical())

        db = self.store.db
        if reuse:
            existing = db.get_info(info_key)
            if existing is not None and existing.complete:
                LOGGER.info("%s@%s already checked", repo, identity.sha)
                return RepoOutcome(repo=repo, status=RepoStatus.CACHED, info_key=info_key)

        plans = self.plan(repo, config, root)
        descriptors = self.resolve(repo, plans)
        db.put_layout(info_key, self.layout_snapshot(root, plans))
        if self.settings.install_targets:
            install_targets(self.installation_plan(plans))
        self.run_setup(repo, config, root)

        session = RepoSession.start(db, info_key, commit.commit)
        workspace_dirs = sorted({plan.package.workspace_dir for plan in plans})
        cleaned: set[CheckerTool] = set()
        executed = 0
        diagnostics = 0
        for descriptor in descriptors:
            key = cache_key_for(identity, descriptor)
            cached = None if self.settings.forces(descriptor.checker) else db.get(key)
            if cached is None:
                self.prepare(descriptor, workspace_dirs, cleaned)
                _, parsed = self.execute(descriptor)
                db.put(key, CacheValue(command=key.command, diagnostics=parsed))
                executed += 1
                diagnostics += len(parsed.data)
            else:
                diagnostics += len(cached.diagnostics.data)
            session.append(key)
        session.set_complete()
        return RepoOutcome(
            repo=repo,
            status=RepoStatus.CHECKED,
            info_key=info_key,
            invocations=len(descriptors),
            executed=executed,
            diagnostics=diagnostics,
        )

    def run(self, document: ConfigDocument, *, repos: Sequence[str] | None = None, jobs: int = 1) -> list[RepoOutcome]:
        """Check every repository of ``document`` (or only ``repos``) as one check run.

        Args:
            document: Merged configuration document.
            repos: Optional subset of repository keys.
            jobs: Number of repositories processed concurrently.

        Returns:
            list[RepoOutcome]: One outcome per repository in document order.
        """

        selected = [(key, config) for key, config in document.items() if repos is None or key in repos]
        db = self.store.db
        db.new_check()
        outcomes: dict[str, RepoOutcome] = {}
        with ThreadPoolExecutor(max_workers=max(jobs, 1)) as pool:
            futures = {pool.submit(self.check_repo, key, config): key for key, config in selected}
            for future in as_completed(futures):
                outcome = future.result()
                if outcome.ok and outcome.info_key is not None:
                    db.push_key(outcome.info_key)
                outcomes[futures[future]] = outcome
        db.set_complete()
        return [outcomes[key] for key, _ in selected]


__all__ = ["BatchRunner", "RepoOutcome", "RepoStatus", "cache_key_for", "plan_packages"]
