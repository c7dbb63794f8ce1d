"""Release planning.

Builds one ``PackageRelease`` per releasable workspace member, applies the
requested bump, handles exclusion, reconciles shared-version groups and
finally derives each package's tag and post-release version.

Lifecycle of a ``PackageRelease``:

1. ``load()`` reads the previous version and resolves the previous tag.
2. ``bump()`` sets ``planned_version``.
3. ``plan()`` may overwrite ``planned_version`` for shared-version groups,
   then ``PackageRelease.plan()`` sets ``planned_tag`` and
   ``planned_post_version``.
"""

from __future__ import annotations

import re
from pathlib import Path

import semver
from packaging.utils import canonicalize_name
from pydantic import BaseModel, ConfigDict, Field

from . import git
from .config import ConfigArgs, ReleaseConfig, load_package_config
from .errors import ConfigError, Outcome, ReleaseAbort, WorkspaceError
from .graph import topo_sort
from .models import PackageInfo, Workspace
from .shell import debug, error, warn
from .templates import Template, render_tag, render_tag_glob
from .versions import TargetVersion, Version, parse_version
from .workspace import package_content

_IDENTIFIERS_RE = re.compile(r"^[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*$")


class Dependency(BaseModel):
    """A workspace member's requirement on a package being released.

    Attributes:
        pkg: The dependent package.
        req: Its requirement on the released package, as written.
        pep440: Whether ``req`` is a PEP 508 specifier.
    """

    pkg: PackageInfo
    req: str
    pep440: bool = True


class PackageRelease(BaseModel):
    """Release plan for one package.

    Attributes:
        info: Package metadata from the workspace.
        config: Fully merged configuration for this package.
        is_root: True when the package lives at the workspace root.
        package_content: Tracked files belonging to the package.
        dependents: Requirements other members declare on this package.
        prev_version: Version currently in the manifest.
        prev_tag: Tag of the previous release.
        planned_version: Version to release; None when not bumping.
        planned_tag: Tag to create; None when tagging is disabled.
        planned_post_version: Development version to set after release.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    info: PackageInfo
    config: ReleaseConfig
    is_root: bool = False
    package_content: list[Path] = Field(default_factory=list)
    dependents: list[Dependency] = Field(default_factory=list)

    prev_version: Version
    prev_tag: str

    planned_version: Version | None = None
    planned_tag: str | None = None
    planned_post_version: Version | None = None

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def manifest_path(self) -> Path:
        return self.info.manifest_path

    @property
    def package_root(self) -> Path:
        return self.info.path

    @property
    def is_binary(self) -> bool:
        return self.info.is_binary

    @property
    def selected(self) -> bool:
        return bool(self.config.release)

    @property
    def version(self) -> Version:
        """The version being released: planned, or the current one."""
        return self.planned_version or self.prev_version

    def _render_tag(self, tag_name: str, base: Version) -> str:
        return render_tag(
            tag_name,
            self.config.tag_prefix_for(self.is_root),
            self.name,
            self.prev_version.public_string,
            self.prev_version.metadata,
            base.public_string,
            base.metadata,
        )

    def tag_glob(self) -> str:
        return render_tag_glob(
            self.config.tag_name or "", self.config.tag_prefix_for(self.is_root), self.name
        )

    def set_prev_tag(self, prev_tag: str) -> None:
        """Trust an operator-supplied tag as the previous release."""
        self.prev_tag = prev_tag

    def resolve_prev_tag(self) -> None:
        """Fall back to the latest matching tag when the rendered one is missing."""
        if git.tag_exists(self.package_root, self.prev_tag):
            return
        last = git.find_last_tag(self.package_root, self.tag_glob())
        if last:
            debug(f"{self.name}: using {last} as previous tag ({self.prev_tag} not found)")
            self.prev_tag = last

    def bump(self, target: TargetVersion, metadata: str | None = None) -> None:
        self.planned_version = target.bump(self.prev_version, metadata)

    def exclude(self) -> None:
        self.config = self.config.model_copy(update={"release": False})
        self.planned_version = None

    def plan(self) -> None:
        """Derive the tag and the post-release version from the final version."""
        if not self.selected:
            return
        base = self.version

        self.planned_tag = None
        if self.config.tag:
            self.planned_tag = self._render_tag(self.config.tag_name or "", base)

        self.planned_post_version = None
        if self.config.dev_version and not base.is_prerelease:
            ext = self.config.dev_version_ext or ""
            if not _IDENTIFIERS_RE.match(ext):
                raise ConfigError(f"invalid dev-version-ext `{ext}` for {self.name}")
            self.planned_post_version = Version(
                full=semver.Version(base.full.major, base.full.minor, base.full.patch + 1, ext)
            )

    def template(self, date: str | None = None) -> Template:
        """Placeholder values describing this package's release."""
        version = self.version
        post = self.planned_post_version
        return Template(
            prev_version=self.prev_version.public_string,
            prev_metadata=self.prev_version.metadata,
            version=version.public_string,
            metadata=version.metadata,
            crate_name=self.name,
            date=date,
            tag_name=self.planned_tag,
            next_version=post.public_string if post else None,
            next_metadata=post.metadata if post else None,
        )


def find_dependents(workspace: Workspace, name: str) -> list[Dependency]:
    """Every distinct requirement other members declare on ``name``."""
    dependents: list[Dependency] = []
    for other in workspace.packages.values():
        seen: set[tuple[str, bool]] = set()
        for decl in other.deps:
            key = (decl.req, decl.pep440)
            if decl.name == name and key not in seen:
                seen.add(key)
                dependents.append(Dependency(pkg=other, req=decl.req, pep440=decl.pep440))
    return dependents


def load_package(args: ConfigArgs, workspace: Workspace, pkg: PackageInfo) -> PackageRelease | None:
    """Build the release plan for one member, or None if release is disabled."""
    config = load_package_config(args, workspace, pkg)
    if not config.release:
        debug(f"Disabled in config, skipping {pkg.name}")
        return None

    is_root = pkg.path.resolve() == workspace.root.resolve()
    prev_version = parse_version(pkg.version)
    release = PackageRelease(
        info=pkg,
        config=config,
        is_root=is_root,
        package_content=package_content(workspace, pkg),
        dependents=find_dependents(workspace, pkg.name),
        prev_version=prev_version,
        prev_tag="",
    )
    release.prev_tag = release._render_tag(config.tag_name or "", prev_version)
    release.resolve_prev_tag()
    return release


def load(args: ConfigArgs, workspace: Workspace) -> dict[str, PackageRelease]:
    """Load release plans for all members in publish order."""
    pkgs: dict[str, PackageRelease] = {}
    for name in topo_sort(workspace.packages):
        release = load_package(args, workspace, workspace.packages[name])
        if release is not None:
            pkgs[name] = release
    return pkgs


def partition_packages(
    workspace: Workspace, packages: list[str], exclude: list[str]
) -> tuple[list[str], list[str]]:
    """Split members into selected and excluded by name.

    With no ``packages`` every member is selected; ``exclude`` always wins.

    Raises:
        WorkspaceError: If a requested package is not a workspace member.
    """
    names = list(workspace.packages)
    requested = [canonicalize_name(p) for p in packages]
    excluded_names = {canonicalize_name(p) for p in exclude}
    unknown = [p for p in requested + sorted(excluded_names) if p not in workspace.packages]
    if unknown:
        raise WorkspaceError(f"package(s) not in workspace: {', '.join(unknown)}")

    selected = [n for n in names if (not requested or n in requested) and n not in excluded_names]
    excluded = [n for n in names if n not in selected]
    return selected, excluded


def changed_since(
    workspace: Workspace, pkg: PackageRelease, since_ref: str
) -> tuple[list[Path], bool] | None:
    """Files of ``pkg`` changed since ``since_ref``.

    Lock-file changes are reported separately: they only count for packages
    installing executables, and are ignored while dev-version bumping is on
    because the post-release bump itself rewrites the lock file.

    Returns:
        ``(changed files, lock changed)``, or None if ``since_ref`` is unknown.
    """
    root = workspace.root if pkg.is_binary else pkg.package_root
    changed = git.changed_files(root, since_ref)
    if changed is None:
        return None
    content = set(pkg.package_content)
    files = [p for p in changed if p in content]

    lock_changed = False
    if workspace.lock_path in files:
        files.remove(workspace.lock_path)
        if not pkg.is_binary:
            debug(f"Ignoring lock file change since {since_ref}; {pkg.name} has no scripts")
        elif pkg.config.dev_version:
            debug(
                f"Ignoring lock file change since {since_ref}; could be a pre-release version bump"
            )
        else:
            lock_changed = True
    return files, lock_changed


def exclude(workspace: Workspace, pkgs: dict[str, PackageRelease], names: list[str]) -> None:
    """Drop packages from the release, reporting any that had changes."""
    for name in names:
        pkg = pkgs.get(name)
        if pkg is None or not pkg.selected:
            continue
        pkg.exclude()

        changes = changed_since(workspace, pkg, pkg.prev_tag)
        if changes is None:
            debug(f"Disabled by user, skipping {name} (no {pkg.prev_tag} tag)")
            continue
        files, lock_changed = changes
        if files:
            listing = "\n".join(f"    {f}" for f in files)
            warn(
                f"Disabled by user, skipping {name} which has files changed since "
                f"{pkg.prev_tag}:\n{listing}"
            )
        elif lock_changed:
            warn(
                f"Disabled by user, skipping {name} despite lock file being changed "
                f"since {pkg.prev_tag}"
            )
        else:
            debug(f"Disabled by user, skipping {name} (no changes since {pkg.prev_tag})")


def plan(pkgs: dict[str, PackageRelease]) -> dict[str, PackageRelease]:
    """Reconcile shared versions, then plan every package.

    Members of a shared-version group are raised to the group's highest
    version whenever their current version differs from it, even if no bump
    was requested for them. This runs before per-package planning because
    tags and post-release versions depend on the final version.
    """
    selected = [pkg for pkg in pkgs.values() if pkg.selected]

    shared: dict[str, Version] = {}
    for pkg in selected:
        group = pkg.config.shared_version_group()
        if group is None:
            continue
        version = pkg.version
        if group not in shared or shared[group].full < version.full:
            shared[group] = version

    for pkg in selected:
        group = pkg.config.shared_version_group()
        if group is None:
            continue
        shared_max = shared[group]
        if pkg.prev_version.bare != shared_max.bare:
            pkg.planned_version = shared_max

    for pkg in pkgs.values():
        pkg.plan()
    return pkgs


def find_shared_version(pkgs: list[PackageRelease]) -> Version | None:
    """Check shared-version groups agree and return the first shared version.

    Raises:
        ReleaseAbort: ``SHARED_VERSION_MISMATCH`` if any group disagrees.
    """
    groups: dict[str, Version] = {}
    first: Version | None = None
    consistent = True
    for pkg in pkgs:
        group = pkg.config.shared_version_group()
        if group is None or pkg.planned_version is None:
            continue
        version = pkg.planned_version
        expected = groups.setdefault(group, version)
        first = first or version
        if expected.bare != version.bare:
            error(f"{pkg.name} has version {version.bare_string}, should be {expected.bare_string}")
            consistent = False
    if not consistent:
        raise ReleaseAbort(Outcome.SHARED_VERSION_MISMATCH, "Package versions deviated, aborting")
    return first
