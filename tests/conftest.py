"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import tomlkit

from monorelease.config import ReleaseConfig
from monorelease.models import PackageInfo, Workspace
from monorelease.plan import Dependency, PackageRelease
from monorelease.versions import parse_version


def write_package(root: Path, name: str, version: str = "1.0.0", deps: list[str] | None = None,
                  extra: str = "") -> Path:
    """Write packages/<name>/pyproject.toml and return the package directory."""
    package_dir = root / "packages" / name
    package_dir.mkdir(parents=True, exist_ok=True)
    dep_lines = ", ".join(f'"{d}"' for d in deps or [])
    (package_dir / "pyproject.toml").write_text(
        f'[project]\nname = "{name}"\nversion = "{version}"\ndependencies = [{dep_lines}]\n{extra}'
    )
    return package_dir


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """A uv workspace with pkg-a and pkg-b, where pkg-b pins pkg-a."""
    (tmp_path / "pyproject.toml").write_text(
        '[tool.uv.workspace]\nmembers = ["packages/*"]\n'
    )
    write_package(tmp_path, "pkg-a", "1.0.0")
    write_package(tmp_path, "pkg-b", "2.0.0", deps=["pkg-a==1.0.0", "requests>=2.0"])
    return tmp_path


@pytest.fixture
def sample_toml_doc() -> tomlkit.TOMLDocument:
    """Create a sample TOML document."""
    content = """\
[project]
name = "My_Package"
version = "2.0.0"
dependencies = ["click>=8.0", "pkg-a>=1.0"]

[project.optional-dependencies]
cli = ["pkg-b[fast]~=1.2"]

[dependency-groups]
test = ["pytest>=8.0", "pkg-c", {include-group = "lint"}]
lint = ["ruff"]

[tool.uv.workspace]
members = ["packages/*", "libs/*"]
exclude = ["packages/legacy"]

[tool.monorelease]
tag-prefix = ""
consolidate-commits = true
"""
    return tomlkit.parse(content)


def make_release(
    tmp_path: Path,
    name: str = "pkg-a",
    version: str = "1.0.0",
    planned: str | None = None,
    config: ReleaseConfig | None = None,
    dependents: list[Dependency] | None = None,
    is_root: bool = False,
) -> PackageRelease:
    """Build a PackageRelease without touching git."""
    package_dir = tmp_path if is_root else tmp_path / "packages" / name
    info = PackageInfo(
        name=name,
        path=package_dir,
        manifest_path=package_dir / "pyproject.toml",
        version=version,
    )
    pkg = PackageRelease(
        info=info,
        config=ReleaseConfig.from_defaults().update(config or ReleaseConfig()),
        is_root=is_root,
        dependents=dependents or [],
        prev_version=parse_version(version),
        prev_tag=f"{name}-v{version}",
    )
    if planned is not None:
        pkg.planned_version = parse_version(planned)
    return pkg


def make_workspace(tmp_path: Path, *pkgs: PackageRelease) -> Workspace:
    return Workspace(root=tmp_path, packages={p.name: p.info for p in pkgs})
