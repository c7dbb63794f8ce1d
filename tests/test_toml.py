"""Tests for monorelease.toml."""

from __future__ import annotations

from pathlib import Path

import pytest
import tomlkit

from monorelease.errors import ManifestError, WorkspaceError
from monorelease.toml import (
    get_project_name,
    get_project_version,
    get_tool_table,
    get_workspace_exclude_globs,
    get_workspace_member_globs,
    has_project,
    has_scripts,
    is_dynamic_version,
    load_pyproject,
    save_pyproject,
)


class TestProjectFields:
    def test_name_is_canonical(self, sample_toml_doc: tomlkit.TOMLDocument) -> None:
        assert get_project_name(sample_toml_doc, "fallback") == "my-package"

    def test_name_fallback(self) -> None:
        assert get_project_name(tomlkit.parse(""), "Dir_Name") == "dir-name"

    def test_poetry_name_and_version(self) -> None:
        doc = tomlkit.parse('[tool.poetry]\nname = "legacy"\nversion = "0.3.0"\n')

        assert get_project_name(doc, "x") == "legacy"
        assert get_project_version(doc) == "0.3.0"
        assert has_project(doc)

    def test_version(self, sample_toml_doc: tomlkit.TOMLDocument) -> None:
        assert get_project_version(sample_toml_doc) == "2.0.0"
        assert not is_dynamic_version(sample_toml_doc)

    def test_dynamic_version(self) -> None:
        doc = tomlkit.parse('[project]\nname = "x"\ndynamic = ["version"]\n')
        assert is_dynamic_version(doc)

    def test_scripts(self) -> None:
        doc = tomlkit.parse('[project]\nname = "x"\n\n[project.scripts]\nx = "x:main"\n')
        assert has_scripts(doc)
        assert not has_scripts(tomlkit.parse('[project]\nname = "x"\n'))

    def test_bare_workspace_root(self) -> None:
        assert not has_project(tomlkit.parse('[tool.uv.workspace]\nmembers = ["a"]\n'))


class TestWorkspaceTables:
    def test_members_and_exclude(self, sample_toml_doc: tomlkit.TOMLDocument) -> None:
        assert get_workspace_member_globs(sample_toml_doc) == ["packages/*", "libs/*"]
        assert get_workspace_exclude_globs(sample_toml_doc) == ["packages/legacy"]

    def test_no_members(self) -> None:
        with pytest.raises(WorkspaceError):
            get_workspace_member_globs(tomlkit.parse('[project]\nname = "x"\n'))

    def test_tool_table(self, sample_toml_doc: tomlkit.TOMLDocument) -> None:
        assert get_tool_table(sample_toml_doc, "monorelease") == {
            "tag-prefix": "",
            "consolidate-commits": True,
        }
        assert get_tool_table(sample_toml_doc, "missing") == {}


class TestLoadPyproject:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestError):
            load_pyproject(tmp_path / "pyproject.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "pyproject.toml"
        path.write_text("[project\n")

        with pytest.raises(ManifestError):
            load_pyproject(path)


class TestSavePyproject:
    def test_preserves_formatting(self, tmp_path: Path) -> None:
        path = tmp_path / "pyproject.toml"
        path.write_text('[project]\nname = "x"  # keep\nversion = "1.0.0"\n')
        doc = load_pyproject(path)
        doc["project"]["version"] = "1.1.0"

        save_pyproject(path, doc)

        assert path.read_text() == '[project]\nname = "x"  # keep\nversion = "1.1.0"\n'

    def test_dry_run_prints_diff(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "pyproject.toml"
        original = '[project]\nname = "x"\nversion = "1.0.0"\n'
        path.write_text(original)
        doc = load_pyproject(path)
        doc["project"]["version"] = "1.1.0"

        save_pyproject(path, doc, dry_run=True)

        out = capsys.readouterr().out
        assert path.read_text() == original
        assert '-version = "1.0.0"' in out
        assert '+version = "1.1.0"' in out
