"""Dependency declarations and manifest editing.

Reads internal dependency declarations out of a pyproject.toml and rewrites
versions and requirements in place. Declarations are found in:

- [project].dependencies and [project].optional-dependencies.* (runtime)
- [dependency-groups].* and [tool.uv].dev-dependencies (development)
- [tool.poetry.dependencies] (runtime)
- [tool.poetry.dev-dependencies] and [tool.poetry.group.*.dependencies]
  (development)

Uses tomlkit to preserve formatting and comments.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import tomlkit
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from .errors import ManifestError
from .models import DependencyDecl
from .toml import is_dynamic_version, load_pyproject, save_pyproject

# Splits a PEP 508 string around its version specifier
_PEP508_RE = re.compile(
    r"^\s*(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*"
    r"(?P<spec>[^;@]*?)\s*(?:[;@].*)?$",
    re.DOTALL,
)


def dep_canonical_name(dep_str: str) -> str | None:
    """Extract the canonical package name from a PEP 508 dependency string.

    Examples:
        "requests>=2.0" → "requests"
        "My_Package[extra]~=1.0" → "my-package"
        "not a requirement" → None
    """
    try:
        return canonicalize_name(Requirement(dep_str).name)
    except InvalidRequirement:
        return None


def dep_specifier(dep_str: str) -> str:
    """Return the version specifier exactly as written.

    Examples:
        "pkg[extra] >=1.0,<2 ; python_version < '3.12'" → ">=1.0,<2"
        "pkg" → ""
    """
    m = _PEP508_RE.match(dep_str)
    return m.group("spec") if m else ""


def replace_specifier(dep_str: str, new_spec: str) -> str:
    """Swap the version specifier, keeping name, extras and markers.

    Examples:
        replace_specifier("pkg[cli]==1.0.0; os_name == 'nt'", "==1.1.0")
            → "pkg[cli]==1.1.0; os_name == 'nt'"
    """
    m = _PEP508_RE.match(dep_str)
    if not m:
        raise ManifestError(f"cannot rewrite dependency `{dep_str}`")
    spec = m.group("spec")
    if spec.startswith("(") and spec.endswith(")"):
        new_spec = f"({new_spec})"
    return dep_str[: m.start("spec")] + new_spec + dep_str[m.end("spec") :]


def _get(node: Any, *keys: str) -> Any:
    for key in keys:
        if not hasattr(node, "get"):
            return None
        node = node.get(key)
    return node


def _pep508_lists(doc: tomlkit.TOMLDocument) -> Iterator[tuple[list, bool]]:
    """Yield (list of PEP 508 strings, is_dev) for every location."""
    deps = _get(doc, "project", "dependencies")
    if isinstance(deps, list):
        yield deps, False
    extras = _get(doc, "project", "optional-dependencies")
    if hasattr(extras, "values"):
        for group in extras.values():
            if isinstance(group, list):
                yield group, False
    groups = doc.get("dependency-groups")
    if hasattr(groups, "values"):
        for group in groups.values():
            if isinstance(group, list):
                yield group, True
    uv_dev = _get(doc, "tool", "uv", "dev-dependencies")
    if isinstance(uv_dev, list):
        yield uv_dev, True


def _poetry_tables(doc: tomlkit.TOMLDocument) -> Iterator[tuple[Any, bool]]:
    """Yield (Poetry dependency table, is_dev) for every location."""
    poetry = _get(doc, "tool", "poetry")
    if not hasattr(poetry, "get"):
        return
    main = poetry.get("dependencies")
    if hasattr(main, "items"):
        yield main, False
    dev = poetry.get("dev-dependencies")
    if hasattr(dev, "items"):
        yield dev, True
    groups = poetry.get("group")
    if hasattr(groups, "values"):
        for group in groups.values():
            table = _get(group, "dependencies")
            if hasattr(table, "items"):
                yield table, True


def _poetry_req(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if hasattr(value, "get"):
        version = value.get("version")
        return str(version) if version is not None else ""
    return None


def get_dependency_decls(doc: tomlkit.TOMLDocument, members: set[str]) -> list[DependencyDecl]:
    """Collect every declaration of a dependency on a workspace member.

    Args:
        doc: Parsed pyproject.toml.
        members: Canonical names of all workspace members.
    """
    decls: list[DependencyDecl] = []
    for deps, dev in _pep508_lists(doc):
        for dep_str in deps:
            if not isinstance(dep_str, str):
                # e.g. {include-group = "test"}
                continue
            name = dep_canonical_name(dep_str)
            if name in members:
                decls.append(DependencyDecl(name=name, req=dep_specifier(dep_str), dev=dev))
    for table, dev in _poetry_tables(doc):
        for key, value in table.items():
            name = canonicalize_name(key)
            req = _poetry_req(value)
            if name in members and req is not None:
                decls.append(DependencyDecl(name=name, req=req, dev=dev, pep440=False))
    return decls


def set_package_version(manifest_path: Path, version: str, dry_run: bool = False) -> None:
    """Set the package's own version.

    Updates [project].version, or [tool.poetry].version for Poetry projects.

    Raises:
        ManifestError: If the version is dynamic or the manifest has no
            package table.
    """
    doc = load_pyproject(manifest_path)
    if "project" in doc:
        if is_dynamic_version(doc):
            raise ManifestError(
                f"{manifest_path}: version is dynamic and cannot be set by monorelease"
            )
        doc["project"]["version"] = version
    elif hasattr(_get(doc, "tool", "poetry"), "get"):
        doc["tool"]["poetry"]["version"] = version
    else:
        raise ManifestError(f"{manifest_path}: no [project] table")
    save_pyproject(manifest_path, doc, dry_run)


def set_dependency_version(
    manifest_path: Path,
    dep_name: str,
    old_req: str,
    new_req: str,
    dry_run: bool = False,
) -> bool:
    """Rewrite the requirement on ``dep_name`` wherever it reads ``old_req``.

    Args:
        manifest_path: Dependent package's pyproject.toml.
        dep_name: Canonical name of the dependency.
        old_req: Requirement as currently written.
        new_req: Requirement to write instead.
        dry_run: Print a diff instead of writing.

    Returns:
        True if any declaration was rewritten.
    """
    doc = load_pyproject(manifest_path)
    changed = False

    for deps, _ in _pep508_lists(doc):
        for i, dep_str in enumerate(deps):
            if not isinstance(dep_str, str):
                continue
            if dep_canonical_name(dep_str) == dep_name and dep_specifier(dep_str) == old_req:
                deps[i] = replace_specifier(dep_str, new_req)
                changed = True

    for table, _ in _poetry_tables(doc):
        for key in list(table.keys()):
            if canonicalize_name(key) != dep_name:
                continue
            value = table[key]
            if isinstance(value, str):
                if value == old_req:
                    table[key] = new_req
                    changed = True
            elif hasattr(value, "get") and str(value.get("version", "")) == old_req:
                value["version"] = new_req
                changed = True

    if changed:
        save_pyproject(manifest_path, doc, dry_run)
    return changed
