"""Tests for monorelease.deps."""

from __future__ import annotations

from pathlib import Path

import pytest
import tomlkit

from monorelease.deps import (
    dep_canonical_name,
    dep_specifier,
    get_dependency_decls,
    replace_specifier,
    set_dependency_version,
    set_package_version,
)
from monorelease.errors import ManifestError


class TestDepCanonicalName:
    def test_simple_name(self) -> None:
        assert dep_canonical_name("requests") == "requests"

    def test_with_extras_and_version(self) -> None:
        assert dep_canonical_name("My_Package[extra]~=1.0") == "my-package"

    def test_invalid(self) -> None:
        assert dep_canonical_name("not a requirement") is None


class TestSpecifier:
    def test_specifier_as_written(self) -> None:
        assert dep_specifier("pkg[extra] >=1.0,<2 ; python_version < '3.12'") == ">=1.0,<2"

    def test_no_specifier(self) -> None:
        assert dep_specifier("pkg") == ""

    def test_replace_keeps_extras_and_markers(self) -> None:
        result = replace_specifier("pkg[cli]==1.0.0; os_name == 'nt'", "==1.1.0")
        assert result == "pkg[cli]==1.1.0; os_name == 'nt'"

    def test_replace_keeps_parens(self) -> None:
        assert replace_specifier("pkg (==1.0.0)", "==1.1.0") == "pkg (==1.1.0)"


class TestGetDependencyDecls:
    def test_collects_members_only(self, sample_toml_doc: tomlkit.TOMLDocument) -> None:
        """External deps are skipped; dependency groups are development deps."""
        decls = get_dependency_decls(sample_toml_doc, {"pkg-a", "pkg-b", "pkg-c"})

        assert [(d.name, d.req, d.dev) for d in decls] == [
            ("pkg-a", ">=1.0", False),
            ("pkg-b", "~=1.2", False),
            ("pkg-c", "", True),
        ]
        assert all(d.pep440 for d in decls)

    def test_poetry_tables(self) -> None:
        doc = tomlkit.parse(
            """\
[tool.poetry]
name = "app"
version = "1.0.0"

[tool.poetry.dependencies]
python = "^3.10"
pkg-a = "^1.0"

[tool.poetry.group.dev.dependencies]
pkg-b = { version = "~2.1", optional = true }
"""
        )

        decls = get_dependency_decls(doc, {"pkg-a", "pkg-b"})

        assert [(d.name, d.req, d.dev, d.pep440) for d in decls] == [
            ("pkg-a", "^1.0", False, False),
            ("pkg-b", "~2.1", True, False),
        ]


class TestSetPackageVersion:
    def test_updates_version(self, tmp_path: Path) -> None:
        manifest = tmp_path / "pyproject.toml"
        manifest.write_text('[project]\nname = "x"\nversion = "1.0.0"\n')

        set_package_version(manifest, "1.1.0")

        assert manifest.read_text() == '[project]\nname = "x"\nversion = "1.1.0"\n'

    def test_dry_run_leaves_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        manifest = tmp_path / "pyproject.toml"
        original = '[project]\nname = "x"\nversion = "1.0.0"\n'
        manifest.write_text(original)

        set_package_version(manifest, "1.1.0", dry_run=True)

        assert manifest.read_text() == original
        assert '+version = "1.1.0"' in capsys.readouterr().out

    def test_dynamic_version(self, tmp_path: Path) -> None:
        manifest = tmp_path / "pyproject.toml"
        manifest.write_text('[project]\nname = "x"\ndynamic = ["version"]\n')

        with pytest.raises(ManifestError):
            set_package_version(manifest, "1.1.0")


class TestSetDependencyVersion:
    def test_rewrites_every_matching_declaration(self, tmp_path: Path) -> None:
        manifest = tmp_path / "pyproject.toml"
        manifest.write_text(
            '[project]\nname = "b"\nversion = "1.0.0"\n'
            'dependencies = ["pkg-a==1.0.0", "requests>=2.0"]\n\n'
            '[dependency-groups]\ntest = ["pkg_a[test]==1.0.0"]\n'
        )

        changed = set_dependency_version(manifest, "pkg-a", "==1.0.0", "==1.1.0")

        content = manifest.read_text()
        assert changed
        assert '"pkg-a==1.1.0"' in content
        assert '"pkg_a[test]==1.1.0"' in content
        assert '"requests>=2.0"' in content

    def test_other_requirements_untouched(self, tmp_path: Path) -> None:
        """Only declarations reading exactly old_req are rewritten."""
        manifest = tmp_path / "pyproject.toml"
        original = '[project]\nname = "b"\nversion = "1.0.0"\ndependencies = ["pkg-a>=0.5"]\n'
        manifest.write_text(original)

        assert not set_dependency_version(manifest, "pkg-a", "==1.0.0", "==1.1.0")
        assert manifest.read_text() == original

    def test_poetry_inline_table(self, tmp_path: Path) -> None:
        manifest = tmp_path / "pyproject.toml"
        manifest.write_text(
            '[tool.poetry]\nname = "b"\nversion = "1.0.0"\n\n'
            '[tool.poetry.dependencies]\npkg-a = { version = "^1.0.0", path = "../a" }\n'
        )

        set_dependency_version(manifest, "pkg-a", "^1.0.0", "^1.0.1")

        assert 'version = "^1.0.1"' in manifest.read_text()
