"""Git operations used by the release pipeline.

Read-only queries run through ``shell.git()``. Anything that changes the
repository or a remote goes through ``shell.call()`` so dry-run only prints
the command.
"""

from __future__ import annotations

from pathlib import Path

from .shell import call, debug, git, git_proc, warn


def is_dirty(root: Path) -> list[str]:
    """List uncommitted changes (including untracked files); empty when clean."""
    status = git("status", "--porcelain", "--untracked-files=normal", cwd=root)
    return [line for line in status.splitlines() if line.strip()]


def current_branch(root: Path) -> str:
    """Name of the checked-out branch, or "HEAD" when detached."""
    return git("rev-parse", "--abbrev-ref", "HEAD", cwd=root) or "HEAD"


def top_level(root: Path) -> Path:
    return Path(git("rev-parse", "--show-toplevel", cwd=root))


def fetch(root: Path, remote: str, branch: str) -> None:
    git("fetch", remote, branch, cwd=root, check=False)


def _rev(root: Path, ref: str) -> str | None:
    result = git_proc("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", cwd=root)
    return result.stdout.strip() if result.returncode == 0 else None


def _merge_base(root: Path, remote: str, branch: str) -> tuple[str, str, str] | None:
    remote_branch = f"{remote}/{branch}"
    remote_id = _rev(root, remote_branch)
    branch_id = _rev(root, branch)
    if remote_id is None or branch_id is None:
        warn(f"Push target `{remote_branch}` doesn't exist")
        return None
    base = git("merge-base", remote_id, branch_id, cwd=root, check=False)
    debug(f"{remote_branch}: {remote_id}, merge base: {base}")
    return remote_id, branch_id, base


def is_behind_remote(root: Path, remote: str, branch: str) -> bool:
    """True when the remote branch has commits the local branch lacks."""
    ids = _merge_base(root, remote, branch)
    if ids is None:
        return False
    remote_id, _, base = ids
    return base != remote_id


def is_local_unchanged(root: Path, remote: str, branch: str) -> bool:
    """True when the local branch has nothing the remote branch lacks."""
    ids = _merge_base(root, remote, branch)
    if ids is None:
        return False
    _, branch_id, base = ids
    return base == branch_id


def tag_exists(root: Path, name: str) -> bool:
    return _rev(root, f"refs/tags/{name}") is not None


def find_last_tag(root: Path, pattern: str) -> str | None:
    """Find the highest-versioned tag matching a glob that is reachable from HEAD."""
    tags = git(
        "tag", "--list", pattern, "--merged", "HEAD", "--sort=-v:refname", cwd=root, check=False
    )
    return tags.splitlines()[0] if tags else None


def changed_files(root: Path, since_ref: str) -> list[Path] | None:
    """Files under ``root`` changed between ``since_ref`` and HEAD.

    Returns:
        Absolute paths of changed files, or None when ``since_ref`` cannot be
        resolved (e.g. the tag does not exist).
    """
    top = top_level(root)
    result = git_proc(
        "diff", f"{since_ref}..HEAD", "--name-only", "--exit-code", "--", ".", cwd=root
    )
    if result.returncode == 0:
        return []
    if result.returncode == 1:
        return [top / line for line in result.stdout.splitlines() if line]
    return None


def ls_files(root: Path) -> list[Path]:
    """Tracked files under ``root`` as absolute paths."""
    output = git("ls-files", cwd=root)
    return [root / line for line in output.splitlines() if line]


def commits_since(root: Path, since_ref: str) -> list[tuple[str, str, str]] | None:
    """Non-merge commits touching ``root`` since ``since_ref``.

    Returns:
        ``(short sha, summary, full message)`` per commit, newest first, or
        None when ``since_ref`` cannot be resolved.
    """
    result = git_proc(
        "log", "--no-merges", "--format=%h%x1f%s%x1f%B%x1e", f"{since_ref}..HEAD", "--", ".",
        cwd=root,
    )
    if result.returncode != 0:
        return None
    commits = []
    for record in result.stdout.split("\x1e"):
        record = record.strip("\n")
        if not record:
            continue
        sha, summary, message = record.split("\x1f", 2)
        commits.append((sha, summary, message.strip()))
    return commits


def commit_all(root: Path, message: str, sign: bool, dry_run: bool) -> bool:
    args = ["git", "commit"]
    if sign:
        args.append("-S")
    args += ["-am", message]
    return call(args, cwd=root, dry_run=dry_run)


def tag(root: Path, name: str, message: str, sign: bool, dry_run: bool) -> bool:
    """Create a tag; annotated whenever there is a message."""
    args = ["git", "tag", name]
    if message:
        args += ["-a", "-m", message]
        if sign:
            args.append("-s")
    return call(args, cwd=root, dry_run=dry_run)


def push(
    root: Path, remote: str, refs: list[str], options: list[str], dry_run: bool
) -> bool:
    if not refs:
        return True
    args = ["git", "push"]
    for option in options:
        args += ["--push-option", option]
    args += [remote, *refs]
    return call(args, cwd=root, dry_run=dry_run)
