"""Workspace discovery.

Reads [tool.uv.workspace] from the root pyproject.toml, finds each member's
manifest, and records its name, version and internal dependencies.
"""

from __future__ import annotations

import glob
from pathlib import Path

from .deps import get_dependency_decls
from .errors import WorkspaceError
from .git import ls_files
from .models import PackageInfo, Workspace
from .toml import (
    get_project_name,
    get_project_version,
    get_workspace_exclude_globs,
    get_workspace_member_globs,
    has_project,
    has_scripts,
    load_pyproject,
)


def find_workspace_root(start: Path) -> Path:
    """Walk up from ``start`` to the directory declaring [tool.uv.workspace].

    Raises:
        WorkspaceError: If no enclosing workspace is found.
    """
    start = start.resolve()
    for candidate in (start, *start.parents):
        manifest = candidate / "pyproject.toml"
        if manifest.is_file():
            doc = load_pyproject(manifest)
            if doc.get("tool", {}).get("uv", {}).get("workspace") is not None:
                return candidate
    raise WorkspaceError(f"No uv workspace found at or above {start}")


def discover_workspace(root: Path) -> Workspace:
    """Scan the workspace and discover all packages.

    The root itself is a member when its pyproject.toml describes a package.
    Members are returned in declared order: the root first, then each member
    glob's matches sorted by path.

    Returns:
        The workspace with its packages keyed by canonical name.

    Raises:
        WorkspaceError: If no members are found.
    """
    root = root.resolve()
    root_doc = load_pyproject(root / "pyproject.toml")
    member_globs = get_workspace_member_globs(root_doc)
    excluded = {
        Path(match).resolve()
        for pattern in get_workspace_exclude_globs(root_doc)
        for match in glob.glob(str(root / pattern))
    }

    # Expand globs to find all package directories
    member_dirs: list[Path] = []
    if has_project(root_doc):
        member_dirs.append(root)
    for pattern in member_globs:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match).resolve()
            if p in excluded or p in member_dirs:
                continue
            if (p / "pyproject.toml").exists():
                member_dirs.append(p)

    if not member_dirs:
        raise WorkspaceError("No packages found matching workspace members")

    # First pass: collect basic info and parsed manifests
    docs = {}
    packages: dict[str, PackageInfo] = {}
    for d in member_dirs:
        manifest = d / "pyproject.toml"
        doc = load_pyproject(manifest)
        name = get_project_name(doc, d.name)
        if name in packages:
            raise WorkspaceError(f"Duplicate package name {name} at {d}")
        docs[name] = doc
        packages[name] = PackageInfo(
            name=name,
            path=d,
            manifest_path=manifest,
            version=get_project_version(doc),
            is_binary=has_scripts(doc),
        )

    # Second pass: internal deps need the full member list
    members = set(packages)
    for name, doc in docs.items():
        packages[name].deps = [
            decl for decl in get_dependency_decls(doc, members) if decl.name != name
        ]

    return Workspace(root=root, packages=packages)


def package_content(workspace: Workspace, pkg: PackageInfo) -> list[Path]:
    """Tracked files belonging to a package.

    Files under nested workspace members belong to those members, not to the
    enclosing package. Packages with executables also own the workspace lock
    file, since a lock change alters what gets installed alongside them.
    """
    nested = [
        other.path
        for other in workspace.packages.values()
        if other.name != pkg.name and other.path.is_relative_to(pkg.path)
    ]
    files = [
        f for f in ls_files(pkg.path) if not any(f.is_relative_to(n) for n in nested)
    ]
    if pkg.is_binary and workspace.lock_path not in files:
        files.append(workspace.lock_path)
    return files
