"""Preflight checks, confirmation and the end-of-run verdict.

Every ``verify_*`` check takes a ``Severity``. A failed ``ERROR`` check
aborts immediately with its own outcome when executing, and in dry-run
returns False so the failures can be collected and reported once by
``finish()``. A failed ``WARN`` check only prints.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from . import git, uv
from .config import ReleaseConfig
from .errors import Outcome, ReleaseAbort
from .models import Workspace
from .plan import PackageRelease, changed_since, find_shared_version
from .shell import confirm as ask
from .shell import debug, error, warn
from .versions import to_pep440


class Severity(str, Enum):
    ERROR = "error"
    WARN = "warn"


def _report(severity: Severity, outcome: Outcome, msg: str, dry_run: bool) -> bool:
    """Print a failed check; abort when it is a hard error outside dry-run."""
    if severity is Severity.WARN:
        warn(msg)
        return True
    error(msg)
    if not dry_run:
        raise ReleaseAbort(outcome)
    return False


def verify_git_is_clean(root: Path, dry_run: bool, severity: Severity) -> bool:
    dirty = git.is_dirty(root)
    if not dirty:
        return True
    listing = "\n".join(f"  {entry}" for entry in dirty)
    return _report(
        severity,
        Outcome.DIRTY_TREE,
        f"uncommitted changes detected, please commit before release:\n{listing}",
        dry_run,
    )


def verify_tags_missing(
    pkgs: Sequence[PackageRelease], dry_run: bool, severity: Severity
) -> bool:
    """Check that no tag about to be created already exists."""
    success = True
    seen: set[str] = set()
    for pkg in pkgs:
        tag_name = pkg.planned_tag
        if tag_name is None or tag_name in seen:
            continue
        seen.add(tag_name)
        if git.tag_exists(pkg.package_root, tag_name):
            success &= _report(
                severity,
                Outcome.TAG_EXISTS,
                f"tag `{tag_name}` already exists (for `{pkg.name}`)",
                dry_run,
            )
    return success


def verify_tags_exist(pkgs: Sequence[PackageRelease], dry_run: bool, severity: Severity) -> bool:
    """Check that every tag about to be pushed exists."""
    success = True
    seen: set[str] = set()
    for pkg in pkgs:
        tag_name = pkg.planned_tag
        if tag_name is None or tag_name in seen:
            continue
        seen.add(tag_name)
        if not git.tag_exists(pkg.package_root, tag_name):
            success &= _report(
                severity,
                Outcome.TAG_MISSING,
                f"tag `{tag_name}` doesn't exist (for `{pkg.name}`)",
                dry_run,
            )
    return success


def verify_monotonically_increasing(
    pkgs: Sequence[PackageRelease], dry_run: bool, severity: Severity
) -> bool:
    success = True
    for pkg in pkgs:
        version = pkg.planned_version
        if version is not None and version.full < pkg.prev_version.full:
            success &= _report(
                severity,
                Outcome.DOWNGRADE,
                f"cannot downgrade {pkg.name} from {pkg.prev_version} to {version}",
                dry_run,
            )
    return success


def branch_allowed(branch: str, patterns: Sequence[str]) -> bool:
    """Match a branch against gitignore-style globs; the last matching pattern wins.

    Examples:
        branch_allowed("main", ["*", "!HEAD"]) → True
        branch_allowed("HEAD", ["*", "!HEAD"]) → False
        branch_allowed("feature/x", ["main", "release/*"]) → False
    """
    allowed = False
    for pattern in patterns:
        negated = pattern.startswith("!")
        glob = pattern[1:] if negated else pattern
        if fnmatch.fnmatchcase(branch, glob):
            allowed = not negated
    return allowed


def verify_git_branch(
    root: Path, ws_config: ReleaseConfig, dry_run: bool, severity: Severity
) -> bool:
    branch = git.current_branch(root)
    patterns = ws_config.allow_branch or []
    if branch_allowed(branch, patterns):
        return True
    return _report(
        severity,
        Outcome.BRANCH_NOT_ALLOWED,
        f"cannot release from branch {branch!r}, instead switch to {', '.join(patterns)!r}",
        dry_run,
    )


def verify_if_behind(
    root: Path, ws_config: ReleaseConfig, dry_run: bool, severity: Severity
) -> bool:
    remote = ws_config.push_remote or "origin"
    branch = git.current_branch(root)
    git.fetch(root, remote, branch)
    if not git.is_behind_remote(root, remote, branch):
        return True
    return _report(
        severity, Outcome.BEHIND_REMOTE, f"{branch} is behind {remote}/{branch}", dry_run
    )


def verify_not_published(
    pkgs: Sequence[PackageRelease], dry_run: bool, severity: Severity
) -> bool:
    """Guard against publishing a version twice.

    Only packages published to PyPI are checked; other indexes cannot be
    queried.
    """
    success = True
    for pkg in pkgs:
        if not pkg.config.publish or pkg.config.registry is not None:
            continue
        version = pkg.version
        if uv.is_published(pkg.name, to_pep440(version)):
            success &= _report(
                severity,
                Outcome.ALREADY_PUBLISHED,
                f"{pkg.name} {version} is already published",
                dry_run,
            )
    return success


def verify_shared_versions(pkgs: Sequence[PackageRelease]) -> None:
    """Abort (even in dry-run) when a shared-version group disagrees."""
    find_shared_version(list(pkgs))


def warn_changed(workspace: Workspace, pkgs: Sequence[PackageRelease]) -> None:
    """Warn about packages being released without changes since their last tag.

    A package counts as changed when its own files changed, when a package
    it depends on changed, or (for packages with executables) when the lock
    file changed. Lock-file changes do not carry over to dependents.
    """
    changed: set[str] = set()
    for pkg in pkgs:
        version = pkg.planned_version
        if version is None:
            continue
        result = changed_since(workspace, pkg, pkg.prev_tag)
        if result is None:
            debug(
                f"Cannot detect changes for {pkg.name} because tag {pkg.prev_tag} is missing. "
                "Try setting `--prev-tag-name <TAG>`."
            )
            continue
        files, lock_changed = result
        if files:
            debug(f"Files changed in {pkg.name} since {pkg.prev_tag}: {[str(f) for f in files]}")
            changed.add(pkg.name)
            changed.update(dep.pkg.name for dep in pkg.dependents)
        elif pkg.name in changed:
            debug(f"Dependency changed for {pkg.name} since {pkg.prev_tag}")
            changed.update(dep.pkg.name for dep in pkg.dependents)
        elif lock_changed:
            debug(f"Lock file changed for {pkg.name} since {pkg.prev_tag}, assuming it's relevant")
            changed.add(pkg.name)
        else:
            warn(
                f"Updating {pkg.name} to {version} despite no changes made since tag "
                f"{pkg.prev_tag}"
            )


def confirm(step: str, pkgs: Sequence[PackageRelease], no_confirm: bool, dry_run: bool) -> None:
    """Ask the operator to approve the run.

    Raises:
        ReleaseAbort: ``DECLINED`` when the operator says no.
    """
    if dry_run or no_confirm:
        return
    if len(pkgs) == 1:
        pkg = pkgs[0]
        prompt = f"{step} {pkg.name} {pkg.version}?"
    else:
        lines = [step] + [f"  {pkg.name} {pkg.version}" for pkg in pkgs]
        prompt = "\n".join(lines) + "\n?"
    if not ask(prompt):
        raise ReleaseAbort(Outcome.DECLINED, "Release declined")


def finish(failed: bool, dry_run: bool) -> None:
    """Report the end of a run.

    Raises:
        ReleaseAbort: ``FAILED`` when a dry-run found problems.
    """
    if not dry_run:
        return
    if failed:
        raise ReleaseAbort(
            Outcome.FAILED, "Dry-run failed, resolve the above errors and try again."
        )
    warn("Ran a dry-run, re-run with `--execute` if all looked good.")
