"""Runners behind each CLI subcommand.

Every runner follows the same shape: discover the workspace, load release
plans, bump and exclude, plan, run the preflight checks the subcommand cares
about, confirm, run its phase(s) and finish. ``release`` runs all phases;
the other runners run one phase each so a release can be done (or resumed)
piece by piece.
"""

from __future__ import annotations

import re
import sys
from enum import IntEnum
from pathlib import Path

from pydantic import BaseModel, Field

from . import git, pipeline, uv
from .checks import (
    Severity,
    confirm,
    finish,
    verify_git_branch,
    verify_git_is_clean,
    verify_if_behind,
    verify_tags_exist,
    warn_changed,
)
from .config import (
    ConfigArgs,
    ReleaseConfig,
    load_package_config,
    load_workspace_config,
)
from .errors import Outcome, ReleaseAbort
from .models import Workspace
from .plan import PackageRelease, exclude, find_shared_version, load, partition_packages, plan
from .shell import debug, note, step
from .templates import today
from .versions import TargetVersion, to_pep440
from .workspace import discover_workspace, find_workspace_root


class StepArgs(BaseModel):
    """Options shared by every subcommand.

    Attributes:
        cwd: Directory to start looking for the workspace from.
        packages: Packages to process; empty means all.
        exclude: Packages to leave out.
        config: Configuration sources and overrides.
        execute: Actually perform changes; dry-run otherwise.
        no_confirm: Skip the confirmation prompt.
        prev_tag_name: Tag to treat as every package's previous release.
        metadata: Build metadata to attach when bumping.
        date: Release date used by every template in this run.
    """

    cwd: Path = Field(default_factory=Path.cwd)
    packages: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    config: ConfigArgs = Field(default_factory=ConfigArgs)
    execute: bool = False
    no_confirm: bool = False
    prev_tag_name: str | None = None
    metadata: str | None = None
    date: str = Field(default_factory=today)

    @property
    def dry_run(self) -> bool:
        return not self.execute


class Context(BaseModel):
    workspace: Workspace
    ws_config: ReleaseConfig
    pkgs: dict[str, PackageRelease]


def _load(args: StepArgs, target: TargetVersion | None = None) -> Context:
    """Discover the workspace, load every package and apply the bump."""
    workspace = discover_workspace(find_workspace_root(args.cwd))
    ws_config = load_workspace_config(args.config, workspace)
    pkgs = load(args.config, workspace)
    for pkg in pkgs.values():
        if args.prev_tag_name:
            # Trust the operator: nothing before this tag matters
            pkg.set_prev_tag(args.prev_tag_name)
        if target is not None:
            pkg.bump(target, args.metadata)
    return Context(workspace=workspace, ws_config=ws_config, pkgs=pkgs)


def _selected(ctx: Context) -> list[PackageRelease]:
    """Selected packages in publish order.

    Raises:
        ReleaseAbort: ``NO_PACKAGES`` when nothing is selected.
    """
    selected = [pkg for pkg in ctx.pkgs.values() if pkg.selected]
    if not selected:
        note("No packages selected.")
        raise ReleaseAbort(Outcome.NO_PACKAGES)
    return selected


def _exclude_unselected(ctx: Context, args: StepArgs) -> None:
    _, excluded = partition_packages(ctx.workspace, args.packages, args.exclude)
    exclude(ctx.workspace, ctx.pkgs, excluded)


def _is_unpublished(pkg: PackageRelease) -> bool:
    return (
        bool(pkg.config.publish)
        and pkg.config.registry is None
        and not uv.is_published(pkg.name, to_pep440(pkg.prev_version))
    )


def run_release(args: StepArgs, target: TargetVersion | None, unpublished: bool = False) -> None:
    """Release the selected packages: version, publish, tag, bump, push."""
    ctx = _load(args, target)

    if unpublished:
        excluded = [name for name, pkg in ctx.pkgs.items() if not _is_unpublished(pkg)]
    else:
        _, candidates = partition_packages(ctx.workspace, args.packages, args.exclude)
        explicit = set(partition_packages(ctx.workspace, [], args.exclude)[1])
        excluded = []
        for name in candidates:
            pkg = ctx.pkgs.get(name)
            if pkg is None:
                continue
            if name not in explicit and _is_unpublished(pkg):
                # Members with an unpublished current version still go out
                debug(f"Enabled {name}, {pkg.prev_version} is unpublished")
                continue
            excluded.append(name)
    exclude(ctx.workspace, ctx.pkgs, excluded)

    plan(ctx.pkgs)
    selected = _selected(ctx)
    pipeline.release(
        ctx.workspace, ctx.ws_config, selected, args.date, args.dry_run, args.no_confirm
    )


def run_version(args: StepArgs, target: TargetVersion) -> None:
    """Bump manifests (and dependents' requirements) without releasing."""
    ctx = _load(args, target)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    selected = _selected(ctx)
    dry_run = args.dry_run
    root = ctx.workspace.root

    failed = not verify_git_is_clean(root, dry_run, Severity.WARN)
    warn_changed(ctx.workspace, selected)
    failed |= not verify_git_branch(root, ctx.ws_config, dry_run, Severity.WARN)
    failed |= not verify_if_behind(root, ctx.ws_config, dry_run, Severity.WARN)

    confirm("Bump", selected, args.no_confirm, dry_run)

    for pkg in selected:
        version = pkg.planned_version
        if version is None:
            continue
        note(f"Update {pkg.name} to version {version}")
        pipeline.apply_version(pkg, version, dry_run)
        uv.update_lock(root, dry_run)

    finish(failed, dry_run)


def _soft_checks(ctx: Context, dry_run: bool) -> bool:
    root = ctx.workspace.root
    failed = not verify_git_is_clean(root, dry_run, Severity.WARN)
    failed |= not verify_git_branch(root, ctx.ws_config, dry_run, Severity.WARN)
    failed |= not verify_if_behind(root, ctx.ws_config, dry_run, Severity.WARN)
    return failed


def _hard_checks(ctx: Context, dry_run: bool) -> bool:
    root = ctx.workspace.root
    failed = not verify_git_is_clean(root, dry_run, Severity.ERROR)
    failed |= not verify_git_branch(root, ctx.ws_config, dry_run, Severity.ERROR)
    failed |= not verify_if_behind(root, ctx.ws_config, dry_run, Severity.WARN)
    return failed


def run_replace(args: StepArgs) -> None:
    """Run pre-release replacements for the current versions."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    selected = _selected(ctx)

    failed = _soft_checks(ctx, args.dry_run)
    confirm("Replace", selected, args.no_confirm, args.dry_run)
    for pkg in selected:
        pipeline.replace(pkg, args.date, args.dry_run)
    finish(failed, args.dry_run)


def run_hook(args: StepArgs) -> None:
    """Run the pre-release hook for the current versions."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    selected = _selected(ctx)

    failed = _soft_checks(ctx, args.dry_run)
    confirm("Run hook for", selected, args.no_confirm, args.dry_run)
    for pkg in selected:
        pipeline.run_hook(ctx.workspace, pkg, args.date, args.dry_run)
    finish(failed, args.dry_run)


def run_commit(args: StepArgs) -> None:
    """Commit the workspace with the workspace's pre-release message."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    selected = _selected(ctx)
    dry_run = args.dry_run
    root = ctx.workspace.root

    failed = not verify_git_branch(root, ctx.ws_config, dry_run, Severity.WARN)
    failed |= not verify_if_behind(root, ctx.ws_config, dry_run, Severity.WARN)

    confirm("Commit", selected, args.no_confirm, dry_run)
    pipeline.workspace_commit(
        ctx.workspace,
        ctx.ws_config,
        ctx.ws_config.pre_release_commit_message or "",
        args.date,
        dry_run,
        Outcome.COMMIT_FAILED,
        shared_version=find_shared_version(selected) or selected[0].version,
    )
    finish(failed, dry_run)


def run_publish(args: StepArgs) -> None:
    """Publish the current versions that are not on the index yet."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    for pkg in ctx.pkgs.values():
        if not pkg.selected or not pkg.config.publish or pkg.config.registry is not None:
            continue
        if uv.is_published(pkg.name, to_pep440(pkg.version)):
            debug(f"Disabled {pkg.name}, {pkg.version} is already published")
            pkg.exclude()
    plan(ctx.pkgs)
    selected = _selected(ctx)

    failed = _hard_checks(ctx, args.dry_run)
    confirm("Publish", selected, args.no_confirm, args.dry_run)
    pipeline.publish(selected, args.dry_run)
    finish(failed, args.dry_run)


def run_tag(args: StepArgs) -> None:
    """Tag the current versions that are not tagged yet."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    for pkg in ctx.pkgs.values():
        if pkg.planned_tag and git.tag_exists(pkg.package_root, pkg.planned_tag):
            debug(f"Disabled {pkg.name}, tag {pkg.planned_tag} already exists")
            pkg.exclude()
            pkg.planned_tag = None
    selected = _selected(ctx)

    failed = _hard_checks(ctx, args.dry_run)
    confirm("Tag", selected, args.no_confirm, args.dry_run)
    pipeline.tag(selected, args.date, args.dry_run)
    finish(failed, args.dry_run)


def run_push(args: StepArgs) -> None:
    """Push the branch and the current versions' tags."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    selected = _selected(ctx)
    dry_run = args.dry_run
    root = ctx.workspace.root

    failed = not verify_git_is_clean(root, dry_run, Severity.ERROR)
    failed |= not verify_tags_exist(selected, dry_run, Severity.ERROR)
    failed |= not verify_git_branch(root, ctx.ws_config, dry_run, Severity.ERROR)
    failed |= not verify_if_behind(root, ctx.ws_config, dry_run, Severity.WARN)

    confirm("Push", selected, args.no_confirm, dry_run)
    pipeline.push(ctx.workspace, ctx.ws_config, selected, dry_run)
    finish(failed, dry_run)


class CommitStatus(IntEnum):
    """How much a commit asks of the next version, lowest first."""

    IGNORE = 0
    FIX = 1
    FEATURE = 2
    BREAKING = 3


_CONVENTIONAL_RE = re.compile(r"^(?P<type>[A-Za-z]+)(\([^)]*\))?(?P<breaking>!)?: \S")

_IGNORED_TYPES = {"chore", "test", "style", "refactor", "revert"}
_FIX_TYPES = {"docs", "perf", "fix"}


def commit_status(message: str) -> CommitStatus | None:
    """Classify a commit message by its conventional-commit type.

    Returns None for messages that are not conventional commits or use an
    unknown type.

    Examples:
        commit_status("feat: add x") → CommitStatus.FEATURE
        commit_status("fix(cli)!: drop -y") → CommitStatus.BREAKING
        commit_status("Update README") → None
    """
    match = _CONVENTIONAL_RE.match(message)
    if not match:
        return None
    if match.group("breaking") or re.search(r"^BREAKING[ -]CHANGE: ", message, re.MULTILINE):
        return CommitStatus.BREAKING
    kind = match.group("type").lower()
    if kind in _IGNORED_TYPES:
        return CommitStatus.IGNORE
    if kind in _FIX_TYPES:
        return CommitStatus.FIX
    if kind == "feat":
        return CommitStatus.FEATURE
    return None


def suggest_level(status: CommitStatus, version: tuple[int, int, int], bumped: bool) -> str | None:
    """The bump level a set of commits calls for, or None if already covered.

    ``bumped`` means the version has moved on since the last tag, so any
    bump it already carries counts.
    """
    major, minor, patch = version
    if status is CommitStatus.BREAKING:
        if major == 0 and minor == 0:
            return None if bumped else "patch"
        if major == 0:
            return None if bumped and patch == 0 else "minor"
        return None if bumped and minor == 0 and patch == 0 else "major"
    if status is CommitStatus.FEATURE:
        if major == 0:
            return None if bumped else "patch"
        return None if bumped and patch == 0 else "minor"
    if status is CommitStatus.FIX:
        return None if bumped else "patch"
    return None


_STATUS_SUFFIX = {
    CommitStatus.BREAKING: " (breaking)",
    CommitStatus.FEATURE: " (feature)",
    CommitStatus.FIX: " (fix)",
    CommitStatus.IGNORE: "",
}


def changes(pkgs: list[PackageRelease]) -> None:
    """Print commits since each package's previous tag and suggest a bump."""
    for pkg in pkgs:
        version = pkg.version
        commits = git.commits_since(pkg.package_root, pkg.prev_tag)
        if commits is None:
            debug(
                f"Cannot detect changes for {pkg.name} because tag {pkg.prev_tag} is missing. "
                "Try setting `--prev-tag-name <TAG>`."
            )
            continue
        if not commits:
            continue

        step(f"Changes for {pkg.name} from {pkg.prev_tag} to {version}")
        max_status: CommitStatus | None = None
        for sha, summary, message in commits:
            status = commit_status(message)
            print(f"  {sha} {summary}{_STATUS_SUFFIX[status] if status is not None else ''}")
            if status is not None:
                max_status = status if max_status is None else max(max_status, status)

        if version.is_prerelease:
            continue
        unbumped = bool(pkg.planned_tag) and git.tag_exists(pkg.package_root, pkg.planned_tag)
        suggested = None
        if max_status is not None:
            full = version.full
            suggested = suggest_level(max_status, (full.major, full.minor, full.patch), not unbumped)
        if suggested:
            note(f"to update the version, run `monorelease version -p {pkg.name} {suggested}`")
        elif unbumped and max_status is not None:
            note(f"to update the version, run `monorelease version -p {pkg.name} <LEVEL|VERSION>`")


def run_changes(args: StepArgs) -> None:
    """Show commits since each package's last release."""
    ctx = _load(args)
    _exclude_unselected(ctx, args)
    plan(ctx.pkgs)
    selected = _selected(ctx)

    failed = _soft_checks(ctx, dry_run=False)
    changes(selected)
    finish(failed, dry_run=False)


def run_config(args: StepArgs, output: str = "-") -> None:
    """Dump the resolved configuration as TOML.

    Uses the root package's configuration when the workspace root is itself
    a package, and the workspace configuration otherwise.
    """
    workspace = discover_workspace(find_workspace_root(args.cwd))
    root_pkg = next(
        (p for p in workspace.packages.values() if p.path.resolve() == workspace.root.resolve()),
        None,
    )
    if root_pkg is not None:
        config = load_package_config(args.config, workspace, root_pkg)
    else:
        config = load_workspace_config(args.config, workspace)
    text = ReleaseConfig.from_defaults().update(config).to_toml()

    if output == "-":
        sys.stdout.write(text)
    else:
        Path(output).write_text(text)
