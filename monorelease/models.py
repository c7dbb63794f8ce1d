"""Data models for monorelease.

These Pydantic models describe the workspace as read from disk: packages,
their internal dependency declarations, and the workspace itself.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class DependencyDecl(BaseModel):
    """One declaration of a dependency on another workspace member.

    A package may declare the same dependency several times (runtime deps,
    extras, dependency groups); each occurrence is recorded.

    Attributes:
        name: Canonical name of the workspace member depended on.
        req: Version requirement as written (e.g. ">=1.0", "^1.2"); empty
             when the declaration has no version constraint.
        dev: True for development-only declarations (dependency groups,
             dev-dependencies), which do not constrain publish order.
        pep440: True when ``req`` comes from a PEP 508 string.
    """

    name: str
    req: str = ""
    dev: bool = False
    pep440: bool = True


class PackageInfo(BaseModel):
    """Metadata for a single package in the workspace.

    Attributes:
        name: Canonical package name.
        path: Package directory.
        manifest_path: Path to the package's pyproject.toml.
        version: Current version string from pyproject.toml.
        deps: Declarations of internal (workspace) dependencies. External
              deps are not tracked since only internal requirements are
              ever rewritten.
        is_binary: True when the package installs executables.
    """

    name: str
    path: Path
    manifest_path: Path
    version: str
    deps: list[DependencyDecl] = Field(default_factory=list)
    is_binary: bool = False

    def runtime_deps(self) -> list[str]:
        """Names of members this package needs at runtime, in declared order."""
        names: list[str] = []
        for dep in self.deps:
            if not dep.dev and dep.name not in names:
                names.append(dep.name)
        return names


class Workspace(BaseModel):
    """A uv workspace.

    Attributes:
        root: Workspace root directory.
        packages: Members in declared order, keyed by canonical name.
    """

    root: Path
    packages: dict[str, PackageInfo] = Field(default_factory=dict)

    @property
    def lock_path(self) -> Path:
        return self.root / "uv.lock"

    @property
    def manifest_path(self) -> Path:
        return self.root / "pyproject.toml"
