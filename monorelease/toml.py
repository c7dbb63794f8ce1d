"""TOML reading and writing utilities.

Uses tomlkit to preserve formatting and comments when modifying pyproject.toml
files, so release commits stay small and diff-friendly.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from packaging.utils import canonicalize_name
from tomlkit.exceptions import TOMLKitError

from .errors import ManifestError, WorkspaceError
from .shell import show_diff


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a pyproject.toml file.

    Returns a TOMLDocument that preserves formatting when modified and saved.

    Raises:
        ManifestError: If the file is missing or not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except (OSError, TOMLKitError) as exc:
        raise ManifestError(f"failed to read {path}: {exc}") from exc


def save_pyproject(path: Path, doc: tomlkit.TOMLDocument, dry_run: bool = False) -> None:
    """Save a TOMLDocument back to disk, preserving original formatting.

    In dry-run mode the file is left alone and a unified diff of the change
    is printed instead.

    Raises:
        ManifestError: If the file cannot be written.
    """
    after = tomlkit.dumps(doc)
    if dry_run:
        show_diff(path, path.read_text(), after)
        return
    try:
        path.write_text(after)
    except OSError as exc:
        raise ManifestError(f"failed to write {path}: {exc}") from exc


def _table(doc: Any, *keys: str) -> Any:
    node = doc
    for key in keys:
        if not hasattr(node, "get"):
            return {}
        node = node.get(key, {})
    return node


def get_project_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """Extract the canonical package name.

    Reads [project].name, then [tool.poetry].name. Names are normalized per
    PEP 503 (lowercase, hyphens instead of underscores) for consistent
    comparison.

    Args:
        doc: Parsed pyproject.toml document.
        fallback: Value to use if no name is specified.
    """
    name = _table(doc, "project").get("name") or _table(doc, "tool", "poetry").get("name")
    return canonicalize_name(str(name or fallback))


def get_project_version(doc: tomlkit.TOMLDocument) -> str:
    """Extract the version from [project] or [tool.poetry], defaulting to '0.0.0'."""
    version = _table(doc, "project").get("version") or _table(doc, "tool", "poetry").get(
        "version"
    )
    return str(version or "0.0.0")


def is_dynamic_version(doc: tomlkit.TOMLDocument) -> bool:
    """True when [project].dynamic lists "version"."""
    return "version" in _table(doc, "project").get("dynamic", [])


def has_project(doc: tomlkit.TOMLDocument) -> bool:
    """True when the document describes a package rather than a bare workspace root."""
    return "project" in doc or "poetry" in _table(doc, "tool")


def has_scripts(doc: tomlkit.TOMLDocument) -> bool:
    """True when the package installs executables."""
    project = _table(doc, "project")
    return bool(
        project.get("scripts")
        or project.get("gui-scripts")
        or _table(doc, "tool", "poetry").get("scripts")
    )


def get_tool_table(doc: tomlkit.TOMLDocument, tool: str) -> dict[str, Any]:
    """Return [tool.<tool>] as a plain dict (empty if absent)."""
    table = _table(doc, "tool", tool)
    return table.unwrap() if hasattr(table, "unwrap") else dict(table)


def get_workspace_member_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """Extract workspace member glob patterns from [tool.uv.workspace].

    These patterns (e.g., "packages/*", "libs/*") define which directories
    contain workspace packages.

    Raises:
        WorkspaceError: If no workspace members are defined.
    """
    members = _table(doc, "tool", "uv", "workspace").get("members")
    if not members:
        raise WorkspaceError("No [tool.uv.workspace] members defined in root pyproject.toml")
    return [str(m) for m in members]


def get_workspace_exclude_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """Extract [tool.uv.workspace].exclude patterns."""
    return [str(m) for m in _table(doc, "tool", "uv", "workspace").get("exclude", [])]
