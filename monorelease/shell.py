"""Shell and output utilities.

Provides thin wrappers around subprocess calls for running git and other
commands, a dry-run aware ``call()`` for anything that mutates state, and
the output helpers every phase prints through.
"""

from __future__ import annotations

import difflib
import os
import shlex
import subprocess
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

import click

_verbose = False


def set_verbose(verbose: bool) -> None:
    """Enable or disable ``debug()`` output for the rest of the run."""
    global _verbose
    _verbose = verbose


def git(*args: str, cwd: Path | None = None, check: bool = True) -> str:
    """Run a read-only git query and return its stripped stdout.

    Args:
        *args: git arguments, e.g. "rev-parse", "HEAD".
        cwd: Repository directory; defaults to the current directory.
        check: Raise CalledProcessError on a non-zero exit. Pass False for
               queries whose failure just means "no answer" (fetch, tag list).
    """
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=check
    )
    return result.stdout.strip()


def git_proc(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command without raising, for callers that inspect the exit code."""
    return subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)


def run(
    *args: str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[bytes]:
    """Run a command with its output going straight to the terminal.

    Hooks, builds and uploads print their own progress, so nothing is
    captured here.

    Args:
        *args: The command, e.g. "uv", "publish".
        cwd: Working directory.
        env: Variables added on top of the inherited environment.
        check: Raise CalledProcessError on a non-zero exit.
    """
    full_env = {**os.environ, **env} if env else None
    return subprocess.run(args, cwd=cwd, env=full_env, check=check)


def call(
    args: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    dry_run: bool = False,
) -> bool:
    """Run a mutating command, or describe it in dry-run.

    Returns:
        True when the command succeeded (always True in dry-run).
    """
    rendered = shlex.join(args)
    if dry_run:
        note(f"[dry-run] {rendered}")
        return True
    debug(f"$ {rendered}")
    try:
        result = run(*args, cwd=cwd, env=env, check=False)
    except OSError as exc:
        error(f"failed to run `{rendered}`: {exc}")
        return False
    return result.returncode == 0


def step(msg: str) -> None:
    """Print a ruled header announcing the next release phase."""
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def note(msg: str) -> None:
    print(f"  {msg}")


def warn(msg: str) -> None:
    print(f"  Warning: {msg}")


def error(msg: str) -> None:
    print(f"ERROR: {msg}", file=sys.stderr)


def debug(msg: str) -> None:
    if _verbose:
        print(f"  [debug] {msg}")


def show_diff(path: Path, before: str, after: str) -> None:
    """Print a unified diff of a file edit that dry-run skipped."""
    diff = difflib.unified_diff(
        before.splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=str(path),
        tofile=str(path),
        n=1,
    )
    text = "".join(diff)
    if text:
        print(text.rstrip("\n"))


def confirm(prompt: str) -> bool:
    """Ask the operator a yes/no question, defaulting to no."""
    return click.confirm(prompt, default=False)
