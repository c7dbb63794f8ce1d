"""Tests for monorelease.workspace."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from monorelease.errors import WorkspaceError
from monorelease.workspace import discover_workspace, find_workspace_root, package_content

from conftest import write_package


class TestFindWorkspaceRoot:
    def test_walks_up(self, workspace_root: Path) -> None:
        start = workspace_root / "packages" / "pkg-a"
        assert find_workspace_root(start) == workspace_root.resolve()

    def test_no_workspace(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text('[project]\nname = "x"\n')

        with pytest.raises(WorkspaceError):
            find_workspace_root(tmp_path)


class TestDiscoverWorkspace:
    def test_members_and_deps(self, workspace_root: Path) -> None:
        workspace = discover_workspace(workspace_root)

        assert list(workspace.packages) == ["pkg-a", "pkg-b"]
        pkg_b = workspace.packages["pkg-b"]
        assert pkg_b.version == "2.0.0"
        assert [(d.name, d.req) for d in pkg_b.deps] == [("pkg-a", "==1.0.0")]
        assert workspace.packages["pkg-a"].deps == []

    def test_root_package_comes_first(self, workspace_root: Path) -> None:
        (workspace_root / "pyproject.toml").write_text(
            '[project]\nname = "app"\nversion = "0.1.0"\n\n'
            '[project.scripts]\napp = "app:main"\n\n'
            '[tool.uv.workspace]\nmembers = ["packages/*"]\n'
        )

        workspace = discover_workspace(workspace_root)

        assert list(workspace.packages) == ["app", "pkg-a", "pkg-b"]
        assert workspace.packages["app"].is_binary

    def test_exclude(self, workspace_root: Path) -> None:
        (workspace_root / "pyproject.toml").write_text(
            '[tool.uv.workspace]\nmembers = ["packages/*"]\nexclude = ["packages/pkg-b"]\n'
        )

        workspace = discover_workspace(workspace_root)

        assert list(workspace.packages) == ["pkg-a"]

    def test_duplicate_names(self, workspace_root: Path) -> None:
        write_package(workspace_root, "copy")
        (workspace_root / "packages" / "copy" / "pyproject.toml").write_text(
            '[project]\nname = "pkg_a"\nversion = "1.0.0"\n'
        )

        with pytest.raises(WorkspaceError, match="Duplicate"):
            discover_workspace(workspace_root)

    def test_no_members(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text('[tool.uv.workspace]\nmembers = ["libs/*"]\n')

        with pytest.raises(WorkspaceError):
            discover_workspace(tmp_path)


class TestPackageContent:
    @patch("monorelease.workspace.ls_files")
    def test_nested_members_excluded(self, mock_ls: MagicMock, workspace_root: Path) -> None:
        """Files of a member nested in the root belong to that member."""
        (workspace_root / "pyproject.toml").write_text(
            '[project]\nname = "app"\nversion = "0.1.0"\n\n'
            '[tool.uv.workspace]\nmembers = ["packages/*"]\n'
        )
        workspace = discover_workspace(workspace_root)
        root = workspace.root
        mock_ls.return_value = [
            root / "pyproject.toml",
            root / "app.py",
            root / "packages" / "pkg-a" / "pyproject.toml",
        ]

        files = package_content(workspace, workspace.packages["app"])

        assert files == [root / "pyproject.toml", root / "app.py"]

    @patch("monorelease.workspace.ls_files")
    def test_binary_owns_lock_file(self, mock_ls: MagicMock, workspace_root: Path) -> None:
        write_package(workspace_root, "tool", extra='\n[project.scripts]\ntool = "tool:main"\n')
        workspace = discover_workspace(workspace_root)
        pkg = workspace.packages["tool"]
        mock_ls.return_value = [pkg.manifest_path]

        files = package_content(workspace, pkg)

        assert files == [pkg.manifest_path, workspace.lock_path]
