"""CLI entry point for monorelease."""

from __future__ import annotations

import functools
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from monorelease import steps
from monorelease.config import ConfigArgs, DependentVersion, ReleaseConfig
from monorelease.errors import Outcome, ReleaseAbort, ReleaseError
from monorelease.shell import error, note, set_verbose
from monorelease.versions import TargetVersion


class TargetVersionType(click.ParamType):
    """``LEVEL|VERSION``: a bump level name or an explicit version."""

    name = "LEVEL|VERSION"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None):
        if isinstance(value, TargetVersion):
            return value
        try:
            return TargetVersion.parse(value)
        except ReleaseError as exc:
            self.fail(str(exc), param, ctx)


TARGET_VERSION = TargetVersionType()


_CONFIG_OPTIONS = [
    click.option(
        "-c", "--config", "custom_config", type=click.Path(path_type=Path),
        help="Custom config file.",
    ),
    click.option("--isolated", is_flag=True, help="Ignore implicit configuration files."),
    click.option(
        "--allow-branch",
        help="Comma-separated globs of branch names a release can happen from.",
    ),
    click.option("-v", "--verbose", is_flag=True, help="Show debug output."),
]

_RELEASE_OPTIONS = [
    click.option(
        "-p", "--package", "packages", multiple=True, help="Package to process (repeatable)."
    ),
    click.option("--exclude", multiple=True, help="Package to leave out (repeatable)."),
    click.option(
        "-x", "--execute", is_flag=True, help="Actually perform a release. Dry-run is the default."
    ),
    click.option("--no-confirm", is_flag=True, help="Skip release confirmation."),
    click.option("--prev-tag-name", help="The name of the tag for the previous release."),
    click.option("--sign", is_flag=True, help="Sign both git commits and tags."),
    click.option("--sign-commit", is_flag=True, help="Sign git commits."),
    click.option("--sign-tag", is_flag=True, help="Sign git tags."),
    click.option("--push-remote", help="Git remote to push to."),
    click.option("--registry", help="Index to publish to (a [[tool.uv.index]] name)."),
    click.option("--no-publish", is_flag=True, help="Do not publish."),
    click.option("--no-push", is_flag=True, help="Do not push."),
    click.option("--no-tag", is_flag=True, help="Do not create git tags."),
    click.option("--no-verify", is_flag=True, help="Build sdist and wheel from the source tree."),
    click.option(
        "--dependent-version",
        type=click.Choice([d.value for d in DependentVersion]),
        help="How to update workspace members depending on released packages.",
    ),
    click.option("--tag-prefix", help="Prefix of the git tag, may contain {{crate_name}}."),
    click.option("--tag-name", help="The name of the git tag."),
    click.option(
        "--dev-version/--no-dev-version", default=None,
        help="Bump to a development version after release.",
    ),
    click.option("--dev-version-ext", help="Pre-release identifier of the development version."),
]


def _apply(options: list[Callable]) -> Callable:
    def decorator(func: Callable) -> Callable:
        for option in reversed(options):
            func = option(func)
        return func

    return decorator


config_options = _apply(_CONFIG_OPTIONS)
release_options = _apply(_RELEASE_OPTIONS)


def _config_args(opts: dict[str, Any]) -> ConfigArgs:
    allow_branch = opts.get("allow_branch")
    dependent = opts.get("dependent_version")
    sign = opts.get("sign", False)
    overrides = ReleaseConfig(
        allow_branch=[b.strip() for b in allow_branch.split(",")] if allow_branch else None,
        sign_commit=True if sign or opts.get("sign_commit") else None,
        sign_tag=True if sign or opts.get("sign_tag") else None,
        push_remote=opts.get("push_remote"),
        registry=opts.get("registry"),
        publish=False if opts.get("no_publish") else None,
        push=False if opts.get("no_push") else None,
        tag=False if opts.get("no_tag") else None,
        verify=False if opts.get("no_verify") else None,
        dependent_version=DependentVersion(dependent) if dependent else None,
        tag_prefix=opts.get("tag_prefix"),
        tag_name=opts.get("tag_name"),
        dev_version=opts.get("dev_version"),
        dev_version_ext=opts.get("dev_version_ext"),
    )
    return ConfigArgs(
        custom_config=opts.get("custom_config"),
        isolated=opts.get("isolated", False),
        overrides=overrides,
    )


def _step_args(opts: dict[str, Any], metadata: str | None = None) -> steps.StepArgs:
    set_verbose(opts.get("verbose", False))
    return steps.StepArgs(
        packages=list(opts.get("packages", ())),
        exclude=list(opts.get("exclude", ())),
        config=_config_args(opts),
        execute=opts.get("execute", False),
        no_confirm=opts.get("no_confirm", False),
        prev_tag_name=opts.get("prev_tag_name"),
        metadata=metadata,
    )


def _run(func: Callable[..., None], *args: Any, **kwargs: Any) -> None:
    """Run a step, turning outcomes and fatal errors into exit codes."""
    try:
        func(*args, **kwargs)
    except ReleaseAbort as exc:
        if exc.message:
            (error if exc.outcome.is_error else note)(exc.message)
        raise SystemExit(exc.outcome.exit_code) from exc
    except ReleaseError as exc:
        error(str(exc))
        raise SystemExit(Outcome.FAILED.exit_code) from exc


def _step_command(func: Callable[[steps.StepArgs], None]) -> Callable[..., None]:
    @functools.wraps(func)
    def command(**opts: Any) -> None:
        _run(func, _step_args(opts))

    return command


@click.group()
@click.version_option()
def cli() -> None:
    """Release the packages of a uv workspace: version, publish, tag, push."""


@cli.command()
@click.argument("level_or_version", type=TARGET_VERSION, required=False)
@click.option("-m", "--metadata", help="Semver build metadata.")
@click.option(
    "--unpublished", is_flag=True, help="Process all packages whose current version is unpublished."
)
@config_options
@release_options
def release(
    level_or_version: TargetVersion | None, metadata: str | None, unpublished: bool, **opts: Any
) -> None:
    """Release the workspace, optionally bumping by LEVEL or to VERSION."""
    if unpublished and level_or_version is not None:
        raise click.UsageError("--unpublished cannot be combined with LEVEL|VERSION")
    if metadata is not None and level_or_version is None:
        raise click.UsageError("--metadata requires LEVEL|VERSION")
    _run(steps.run_release, _step_args(opts, metadata), level_or_version, unpublished)


@cli.command()
@click.argument("level_or_version", type=TARGET_VERSION)
@click.option("-m", "--metadata", help="Semver build metadata.")
@config_options
@release_options
def version(level_or_version: TargetVersion, metadata: str | None, **opts: Any) -> None:
    """Bump package versions without releasing."""
    _run(steps.run_version, _step_args(opts, metadata), level_or_version)


@cli.command()
@config_options
@release_options
@_step_command
def replace(args: steps.StepArgs) -> None:
    """Run the pre-release replacements."""
    steps.run_replace(args)


@cli.command()
@config_options
@release_options
@_step_command
def hook(args: steps.StepArgs) -> None:
    """Run the pre-release hook."""
    steps.run_hook(args)


@cli.command()
@config_options
@release_options
@_step_command
def commit(args: steps.StepArgs) -> None:
    """Commit the workspace with the release message."""
    steps.run_commit(args)


@cli.command()
@config_options
@release_options
@_step_command
def publish(args: steps.StepArgs) -> None:
    """Publish packages whose current version is not on the index."""
    steps.run_publish(args)


@cli.command()
@config_options
@release_options
@_step_command
def tag(args: steps.StepArgs) -> None:
    """Tag the current versions."""
    steps.run_tag(args)


@cli.command()
@config_options
@release_options
@_step_command
def push(args: steps.StepArgs) -> None:
    """Push the branch and release tags."""
    steps.run_push(args)


@cli.command()
@config_options
@release_options
@_step_command
def changes(args: steps.StepArgs) -> None:
    """Print commits since each package's last release."""
    steps.run_changes(args)


@cli.command()
@click.option(
    "-o", "--output", default="-", show_default=True,
    help="Write the configuration to a file, `-` for stdout.",
)
@config_options
def config(output: str, **opts: Any) -> None:
    """Dump the resolved configuration."""
    _run(steps.run_config, _step_args(opts), output)
