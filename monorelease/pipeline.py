"""Release pipeline: verify → confirm → version → publish → tag → bump → push.

Each phase walks the selected packages in publish order and either applies
its changes or, in dry-run, prints what it would do. A failing phase raises
``ReleaseAbort`` with an outcome naming that phase. Phases already completed
stay completed; re-running is safe because published versions and existing
tags are detected and skipped.

Consolidation: packages with ``consolidate-commits`` share one workspace
commit per phase instead of committing individually, and packages with
``consolidate-pushes`` contribute their refs to one shared push.
"""

from __future__ import annotations

from collections.abc import Sequence

from . import git, uv
from .checks import (
    Severity,
    confirm,
    finish,
    verify_git_branch,
    verify_git_is_clean,
    verify_if_behind,
    verify_monotonically_increasing,
    verify_not_published,
    verify_shared_versions,
    verify_tags_missing,
    warn_changed,
)
from .config import DependentVersion, ReleaseConfig
from .deps import set_dependency_version, set_package_version
from .errors import Outcome, ReleaseAbort
from .models import Workspace
from .plan import PackageRelease, find_shared_version
from .replace import do_file_replacements
from .shell import call, debug, error, note, step, warn
from .templates import Template
from .versions import Version, requirement_matches, rewrite_requirement, to_pep440


def update_dependent_versions(pkg: PackageRelease, version: Version, dry_run: bool) -> None:
    """Apply the package's dependent-version policy to every dependent.

    Raises:
        ReleaseAbort: ``DEPENDENT_VERSION_CONFLICT`` under the ``error``
            policy when a dependent's requirement rejects ``version``.
    """
    policy = pkg.config.dependent_version or DependentVersion.FIX
    if policy is DependentVersion.IGNORE:
        return

    conflicts = False
    target = version.public
    for dep in pkg.dependents:
        matches = requirement_matches(dep.req, target, pep440=dep.pep440)
        if policy in (DependentVersion.WARN, DependentVersion.ERROR):
            if not matches:
                warn(
                    f"{dep.pkg.name}'s dependency on {pkg.name} `{dep.req}` is incompatible "
                    f"with {version.public_string}"
                )
                conflicts |= policy is DependentVersion.ERROR
            continue
        if policy is DependentVersion.FIX and matches:
            continue

        new_req = rewrite_requirement(dep.req, version, pep440=dep.pep440)
        if new_req is None:
            continue
        verb = "Fixing" if policy is DependentVersion.FIX else "Upgrading"
        note(f"{verb} {dep.pkg.name}'s dependency on {pkg.name} to `{new_req}` (from `{dep.req}`)")
        set_dependency_version(dep.pkg.manifest_path, pkg.name, dep.req, new_req, dry_run)
        if not dry_run:
            dep.req = new_req

    if conflicts:
        raise ReleaseAbort(
            Outcome.DEPENDENT_VERSION_CONFLICT,
            f"dependents of {pkg.name} do not accept {version.public_string}",
        )


def apply_version(pkg: PackageRelease, version: Version, dry_run: bool) -> None:
    """Write ``version`` into the package manifest and update its dependents."""
    update_dependent_versions(pkg, version, dry_run)
    set_package_version(pkg.manifest_path, version.full_string, dry_run)


def replace(pkg: PackageRelease, date: str, dry_run: bool) -> None:
    """Run the package's pre-release replacements for the version being released."""
    rules = pkg.config.pre_release_replacements or []
    if not rules:
        return
    prerelease = pkg.version.is_prerelease
    do_file_replacements(rules, pkg.template(date), pkg.package_root, prerelease, dry_run)


def hook_env(workspace: Workspace, pkg: PackageRelease, dry_run: bool) -> dict[str, str]:
    version = pkg.version
    return {
        "PREV_VERSION": pkg.prev_version.public_string,
        "PREV_METADATA": pkg.prev_version.metadata,
        "NEW_VERSION": version.public_string,
        "NEW_METADATA": version.metadata,
        "DRY_RUN": "true" if dry_run else "false",
        "CRATE_NAME": pkg.name,
        "WORKSPACE_ROOT": str(workspace.root),
        "CRATE_ROOT": str(pkg.manifest_path.parent),
    }


def run_hook(workspace: Workspace, pkg: PackageRelease, date: str, dry_run: bool) -> None:
    """Run the pre-release hook.

    The hook also runs in dry-run; it receives ``DRY_RUN=true`` and is
    expected to hold back its own side effects.

    Raises:
        ReleaseAbort: ``HOOK_FAILED`` on a non-zero exit.
    """
    args = pkg.config.hook_args()
    if not args:
        return
    template = pkg.template(date)
    args = [template.render(arg) for arg in args]
    debug(f"Calling pre-release hook: {args}")
    if not call(args, cwd=pkg.package_root, env=hook_env(workspace, pkg, dry_run)):
        error(f"Release of {pkg.name} aborted by non-zero return of pre-release hook.")
        raise ReleaseAbort(Outcome.HOOK_FAILED)


def pkg_commit(
    pkg: PackageRelease, message: str, date: str, dry_run: bool, outcome: Outcome
) -> None:
    """Commit all changes from the package root with a rendered message."""
    text = pkg.template(date).render(message)
    if not git.commit_all(pkg.package_root, text, bool(pkg.config.sign_commit), dry_run):
        raise ReleaseAbort(outcome, f"failed to commit release of {pkg.name}")


def workspace_commit(
    workspace: Workspace,
    ws_config: ReleaseConfig,
    message: str,
    date: str,
    dry_run: bool,
    outcome: Outcome,
    shared_version: Version | None = None,
    shared_post_version: Version | None = None,
) -> None:
    """One commit for every package that consolidates its commits."""
    template = Template(
        version=shared_version.public_string if shared_version else None,
        metadata=shared_version.metadata if shared_version else None,
        next_version=shared_post_version.public_string if shared_post_version else None,
        next_metadata=shared_post_version.metadata if shared_post_version else None,
        date=date,
    )
    text = template.render(message)
    if not git.commit_all(workspace.root, text, bool(ws_config.sign_commit), dry_run):
        raise ReleaseAbort(outcome, "failed to commit consolidated release")


def release_versions(
    workspace: Workspace,
    ws_config: ReleaseConfig,
    pkgs: Sequence[PackageRelease],
    date: str,
    dry_run: bool,
) -> None:
    """Apply planned versions, replacements and hooks, then commit.

    Packages released at their current version still get replacements and
    hooks; they are only committed when that left the tree dirty.
    """
    shared_commit = False
    for pkg in pkgs:
        version = pkg.planned_version
        if version is not None:
            note(f"Update {pkg.name} to version {version}")
            apply_version(pkg, version, dry_run)
            uv.update_lock(workspace.root, dry_run)
        replace(pkg, date, dry_run)
        run_hook(workspace, pkg, date, dry_run)

        if pkg.config.consolidate_commits:
            shared_commit |= version is not None
        elif version is not None or git.is_dirty(workspace.root):
            pkg_commit(
                pkg, pkg.config.pre_release_commit_message or "", date, dry_run,
                Outcome.COMMIT_FAILED,
            )

    if shared_commit or (
        any(pkg.config.consolidate_commits for pkg in pkgs) and git.is_dirty(workspace.root)
    ):
        workspace_commit(
            workspace,
            ws_config,
            ws_config.pre_release_commit_message or "",
            date,
            dry_run,
            Outcome.COMMIT_FAILED,
            shared_version=find_shared_version(list(pkgs)),
        )


def publish(
    pkgs: Sequence[PackageRelease], dry_run: bool, timeout: float = uv.PUBLISH_TIMEOUT
) -> None:
    """Build and upload packages, waiting for each to show up on PyPI.

    Versions already on PyPI are skipped so an interrupted release can be
    re-run.

    Raises:
        ReleaseAbort: ``PUBLISH_FAILED`` if an upload fails,
            ``PUBLISH_TIMEOUT`` if a version never becomes visible.
    """
    for pkg in pkgs:
        if not pkg.config.publish:
            continue
        version = pkg.version
        registry = pkg.config.registry
        index_version = to_pep440(version)
        if registry is None and uv.is_published(pkg.name, index_version):
            warn(f"{pkg.name} {version} is already published, skipping")
            continue

        note(f"Publishing {pkg.name} {version}")
        if not uv.publish(pkg.package_root, bool(pkg.config.verify), registry, dry_run):
            raise ReleaseAbort(Outcome.PUBLISH_FAILED, f"failed to publish {pkg.name}")

        if registry is None:
            if not uv.wait_for_publish(pkg.name, index_version, timeout, dry_run):
                raise ReleaseAbort(
                    Outcome.PUBLISH_TIMEOUT,
                    f"timed out waiting for {pkg.name} {version} to appear on PyPI",
                )
        else:
            debug(f"Not waiting for {pkg.name}: index `{registry}` cannot be polled")


def tag(pkgs: Sequence[PackageRelease], date: str, dry_run: bool) -> None:
    """Create each distinct planned tag once; existing tags are skipped.

    Raises:
        ReleaseAbort: ``TAG_FAILED`` if git refuses a tag.
    """
    seen: set[str] = set()
    for pkg in pkgs:
        tag_name = pkg.planned_tag
        if tag_name is None or tag_name in seen:
            continue
        seen.add(tag_name)
        if git.tag_exists(pkg.package_root, tag_name):
            warn(f"tag `{tag_name}` already exists, skipping")
            continue
        message = pkg.template(date).render(pkg.config.tag_message or "")
        debug(f"Creating git tag {tag_name}")
        if not git.tag(pkg.package_root, tag_name, message, bool(pkg.config.sign_tag), dry_run):
            raise ReleaseAbort(Outcome.TAG_FAILED, f"failed to create tag {tag_name}")


def post_release(
    workspace: Workspace,
    ws_config: ReleaseConfig,
    pkgs: Sequence[PackageRelease],
    date: str,
    dry_run: bool,
) -> None:
    """Move packages on to their next development version and commit."""
    shared_commit = False
    shared_post_version: Version | None = None
    for pkg in pkgs:
        next_version = pkg.planned_post_version
        if next_version is None:
            continue
        note(f"Starting {pkg.name}'s next development iteration {next_version}")
        apply_version(pkg, next_version, dry_run)
        uv.update_lock(workspace.root, dry_run)

        rules = pkg.config.post_release_replacements or []
        if rules:
            # Post-release replacements always apply
            do_file_replacements(rules, pkg.template(date), pkg.package_root, None, dry_run)

        if pkg.config.shared_version_group() and shared_post_version is None:
            shared_post_version = next_version
        if pkg.config.consolidate_commits:
            shared_commit = True
        else:
            pkg_commit(
                pkg, pkg.config.post_release_commit_message or "", date, dry_run,
                Outcome.POST_RELEASE_COMMIT_FAILED,
            )

    if shared_commit:
        workspace_commit(
            workspace,
            ws_config,
            ws_config.post_release_commit_message or "",
            date,
            dry_run,
            Outcome.POST_RELEASE_COMMIT_FAILED,
            shared_version=find_shared_version(list(pkgs)),
            shared_post_version=shared_post_version,
        )


def push(
    workspace: Workspace,
    ws_config: ReleaseConfig,
    pkgs: Sequence[PackageRelease],
    dry_run: bool,
) -> None:
    """Push the branch and tags.

    Raises:
        ReleaseAbort: ``PUSH_FAILED`` if a push is rejected.
    """
    if not ws_config.push:
        return
    remote = ws_config.push_remote or "origin"
    branch = git.current_branch(workspace.root)
    include_branch = dry_run or not git.is_local_unchanged(workspace.root, remote, branch)

    shared_refs: set[str] = set()
    for pkg in pkgs:
        if not pkg.config.push:
            continue
        refs = [branch] if include_branch else []
        if pkg.planned_tag:
            refs.append(pkg.planned_tag)

        if pkg.config.consolidate_pushes:
            shared_refs.update(refs)
        elif refs:
            note(f"Pushing {', '.join(refs)} to {remote}")
            if not git.push(pkg.package_root, remote, refs, pkg.config.push_options or [], dry_run):
                raise ReleaseAbort(Outcome.PUSH_FAILED, f"failed to push {pkg.name}")

    if shared_refs:
        refs = sorted(shared_refs)
        note(f"Pushing {', '.join(refs)} to {remote}")
        if not git.push(workspace.root, remote, refs, ws_config.push_options or [], dry_run):
            raise ReleaseAbort(Outcome.PUSH_FAILED, "failed to push")


def release(
    workspace: Workspace,
    ws_config: ReleaseConfig,
    pkgs: Sequence[PackageRelease],
    date: str,
    dry_run: bool,
    no_confirm: bool = False,
) -> None:
    """Run every phase for the selected packages.

    In execute mode the first failed check aborts before anything is
    changed. In dry-run every check runs and a failure is reported once at
    the end.

    Args:
        workspace: The workspace being released.
        ws_config: Workspace-level configuration.
        pkgs: Selected, planned packages in publish order.
        date: Release date shared by every template in this run.
        dry_run: Describe actions instead of performing them.
        no_confirm: Skip the confirmation prompt.
    """
    root = workspace.root
    failed = False

    step("Verifying release")
    failed |= not verify_git_is_clean(root, dry_run, Severity.ERROR)
    failed |= not verify_tags_missing(pkgs, dry_run, Severity.ERROR)
    failed |= not verify_monotonically_increasing(pkgs, dry_run, Severity.ERROR)
    failed |= not verify_git_branch(root, ws_config, dry_run, Severity.ERROR)
    failed |= not verify_if_behind(root, ws_config, dry_run, Severity.WARN)
    verify_shared_versions(pkgs)
    failed |= not verify_not_published(pkgs, dry_run, Severity.ERROR)
    warn_changed(workspace, pkgs)

    confirm("Release", pkgs, no_confirm, dry_run)

    step("Updating versions")
    release_versions(workspace, ws_config, pkgs, date, dry_run)

    step("Publishing")
    publish(pkgs, dry_run)

    step("Tagging")
    tag(pkgs, date, dry_run)

    step("Starting next development iteration")
    post_release(workspace, ws_config, pkgs, date, dry_run)

    step("Pushing")
    push(workspace, ws_config, pkgs, dry_run)

    finish(failed, dry_run)
