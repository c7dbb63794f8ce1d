"""Release configuration.

Configuration is layered. Every layer is a ``ReleaseConfig`` whose fields are
all optional; later layers override earlier ones field by field:

1. built-in defaults
2. user-global file ($XDG_CONFIG_HOME/monorelease/release.toml)
3. workspace manifest ([tool.monorelease] in the root pyproject.toml)
4. workspace file (release.toml at the workspace root)
5. package manifest ([tool.monorelease] in the package pyproject.toml)
6. package file (release.toml next to the package manifest)
7. custom file passed with --config
8. command-line flags

``--isolated`` skips the user-global and release.toml files.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError
from .models import PackageInfo, Workspace
from .toml import get_tool_table, load_pyproject

TOOL_NAME = "monorelease"
CONFIG_FILE = "release.toml"

DEFAULT_BRANCHES = ["*", "!HEAD"]
DEFAULT_SHARED_GROUP = "default"


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class DependentVersion(str, Enum):
    """What to do with workspace members that depend on a released package.

    - upgrade: always rewrite their requirement to the new version
    - fix: rewrite only requirements the new version no longer satisfies
    - error: abort when a requirement is not satisfied
    - warn: report unsatisfied requirements
    - ignore: do nothing
    """

    UPGRADE = "upgrade"
    FIX = "fix"
    ERROR = "error"
    WARN = "warn"
    IGNORE = "ignore"


class Replace(BaseModel):
    """A regex replacement applied to a file during release.

    Attributes:
        file: File to edit, relative to the package directory.
        search: Regular expression to look for.
        replace: Replacement template (placeholders allowed).
        min: Minimum number of matches (default 1).
        max: Maximum number of matches (default unbounded).
        exactly: Exact number of matches. It fills in whichever of min and
            max is unset; an explicit min or max takes precedence.
        prerelease: Apply when releasing pre-release versions instead of
            regular ones. Post-release replacements ignore this flag.
    """

    model_config = ConfigDict(alias_generator=_kebab, populate_by_name=True, extra="forbid")

    file: Path
    search: str
    replace: str
    min: int | None = None
    max: int | None = None
    exactly: int | None = None
    prerelease: bool = False


class ReleaseConfig(BaseModel):
    """One configuration layer; unset fields defer to lower layers."""

    model_config = ConfigDict(alias_generator=_kebab, populate_by_name=True, extra="forbid")

    allow_branch: list[str] | None = None
    sign_commit: bool | None = None
    sign_tag: bool | None = None
    push_remote: str | None = None
    registry: str | None = None
    release: bool | None = None
    publish: bool | None = None
    verify: bool | None = None
    push: bool | None = None
    push_options: list[str] | None = None
    shared_version: bool | str | None = None
    consolidate_commits: bool | None = None
    consolidate_pushes: bool | None = None
    pre_release_commit_message: str | None = None
    post_release_commit_message: str | None = None
    pre_release_replacements: list[Replace] | None = None
    post_release_replacements: list[Replace] | None = None
    pre_release_hook: str | list[str] | None = None
    tag_message: str | None = None
    tag_prefix: str | None = None
    tag_name: str | None = None
    tag: bool | None = None
    dev_version_ext: str | None = None
    dev_version: bool | None = None
    dependent_version: DependentVersion | None = None

    @classmethod
    def from_defaults(cls) -> ReleaseConfig:
        return cls(
            allow_branch=list(DEFAULT_BRANCHES),
            sign_commit=False,
            sign_tag=False,
            push_remote="origin",
            release=True,
            publish=True,
            verify=True,
            push=True,
            push_options=[],
            consolidate_commits=False,
            consolidate_pushes=False,
            pre_release_commit_message="chore: release {{crate_name}} {{version}}",
            post_release_commit_message="chore: start next development iteration {{next_version}}",
            pre_release_replacements=[],
            post_release_replacements=[],
            tag_message="chore: release {{crate_name}} version {{version}}",
            tag_name="{{prefix}}v{{version}}",
            tag=True,
            dev_version_ext="dev",
            dev_version=False,
            dependent_version=DependentVersion.FIX,
        )

    def update(self, other: ReleaseConfig) -> ReleaseConfig:
        """Return a copy with every field ``other`` sets taking precedence."""
        values = {
            name: getattr(other, name)
            for name in type(other).model_fields
            if getattr(other, name) is not None
        }
        return self.model_copy(update=values)

    def tag_prefix_for(self, is_root: bool) -> str:
        """Tag prefix template: root packages default to none."""
        if self.tag_prefix is not None:
            return self.tag_prefix
        return "" if is_root else "{{crate_name}}-"

    def shared_version_group(self) -> str | None:
        if self.shared_version is True:
            return DEFAULT_SHARED_GROUP
        if not self.shared_version:
            return None
        return str(self.shared_version)

    def hook_args(self) -> list[str] | None:
        """The pre-release hook as an argument list; a string runs via the shell."""
        hook = self.pre_release_hook
        if hook is None:
            return None
        if isinstance(hook, str):
            return ["sh", "-c", hook]
        return list(hook)

    def to_toml(self) -> str:
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        return tomlkit.dumps(data)


def merge(*layers: ReleaseConfig | None) -> ReleaseConfig:
    """Overlay configuration layers, lowest precedence first."""
    merged = ReleaseConfig()
    for layer in layers:
        if layer is not None:
            merged = merged.update(layer)
    return merged


class ConfigArgs(BaseModel):
    """Configuration sources chosen on the command line.

    Attributes:
        custom_config: Extra config file (``--config``).
        isolated: Skip the user-global and release.toml files.
        overrides: Values set by command-line flags.
    """

    custom_config: Path | None = None
    isolated: bool = False
    overrides: ReleaseConfig = Field(default_factory=ReleaseConfig)


def _validate(data: dict, source: Path) -> ReleaseConfig:
    try:
        return ReleaseConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration in {source}:\n{exc}") from exc


def load_file(path: Path) -> ReleaseConfig | None:
    """Read a release.toml-style file; returns None if it does not exist."""
    if not path.is_file():
        return None
    try:
        data = tomlkit.parse(path.read_text()).unwrap()
    except (OSError, TOMLKitError) as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc
    return _validate(data, path)


def load_manifest(manifest_path: Path) -> ReleaseConfig | None:
    """Read [tool.monorelease] from a pyproject.toml, if present."""
    if not manifest_path.is_file():
        return None
    table = get_tool_table(load_pyproject(manifest_path), TOOL_NAME)
    if not table:
        return None
    return _validate(table, manifest_path)


def user_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / TOOL_NAME / CONFIG_FILE


def _custom(args: ConfigArgs) -> ReleaseConfig | None:
    if args.custom_config is None:
        return None
    config = load_file(args.custom_config)
    if config is None:
        raise ConfigError(f"config file {args.custom_config} does not exist")
    return config


def _workspace_layers(args: ConfigArgs, workspace: Workspace) -> list[ReleaseConfig | None]:
    layers: list[ReleaseConfig | None] = [ReleaseConfig.from_defaults()]
    if not args.isolated:
        layers.append(load_file(user_config_path()))
    layers.append(load_manifest(workspace.manifest_path))
    if not args.isolated:
        layers.append(load_file(workspace.root / CONFIG_FILE))
    return layers


def load_workspace_config(args: ConfigArgs, workspace: Workspace) -> ReleaseConfig:
    """Resolve the configuration used for workspace-wide actions."""
    layers = _workspace_layers(args, workspace)
    return merge(*layers, _custom(args), args.overrides)


def load_package_config(
    args: ConfigArgs, workspace: Workspace, pkg: PackageInfo
) -> ReleaseConfig:
    """Resolve the configuration for one package."""
    layers = _workspace_layers(args, workspace)
    if pkg.path.resolve() != workspace.root.resolve():
        layers.append(load_manifest(pkg.manifest_path))
        if not args.isolated:
            layers.append(load_file(pkg.path / CONFIG_FILE))
    return merge(*layers, _custom(args), args.overrides)
