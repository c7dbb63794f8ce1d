"""File replacements run during release.

Each rule names a file (relative to the package), a regular expression and
a replacement template. Rules are grouped per file so a file is read and
written once; every rule checks its match count before substituting.
Replacement strings use Python ``re`` syntax (``\\1``, ``\\g<name>``).
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

from .config import Replace
from .errors import ReplacementError
from .shell import debug, note, show_diff
from .templates import Template


def do_file_replacements(
    rules: Sequence[Replace],
    template: Template,
    cwd: Path,
    prerelease: bool | None,
    dry_run: bool,
) -> bool:
    """Apply replacement rules to files under ``cwd``.

    Args:
        rules: Replacement rules from configuration.
        template: Values for placeholders in the replacement strings.
        cwd: Directory the rule paths are relative to.
        prerelease: Whether the version being released is a pre-release.
            Rules marked ``prerelease`` only run for pre-releases and the
            others only for regular releases. None applies every rule.
        dry_run: Print a diff instead of writing.

    Returns:
        True if any file content changed (or would change).

    Raises:
        ReplacementError: If a file is missing, a pattern is invalid, or the
            number of matches is outside the rule's bounds.
    """
    by_file: dict[Path, list[Replace]] = {}
    for rule in rules:
        by_file.setdefault(rule.file, []).append(rule)

    changed = False
    for path in sorted(by_file):
        file = cwd / path
        debug(f"processing replacements for file {file}")
        if not file.exists():
            raise ReplacementError(f"unable to find file {file} to perform replace")
        data = file.read_text()
        replaced = data
        for rule in by_file[path]:
            if prerelease is not None and rule.prerelease != prerelease:
                debug(f"skipping `{rule.search}` for {'pre-' if prerelease else ''}release")
                continue
            replaced = _apply(rule, path, replaced, template)

        if replaced == data:
            debug(f"{file} is unchanged")
            continue
        changed = True
        if dry_run:
            note(f"Replacing in {path}")
            show_diff(path, data, replaced)
        else:
            file.write_text(replaced)
    return changed


def _apply(rule: Replace, path: Path, text: str, template: Template) -> str:
    try:
        pattern = re.compile(rule.search, re.MULTILINE)
    except re.error as exc:
        raise ReplacementError(f"invalid pattern `{rule.search}`: {exc}") from exc

    low = rule.min if rule.min is not None else rule.exactly if rule.exactly is not None else 1
    high = rule.max if rule.max is not None else rule.exactly
    actual = len(pattern.findall(text))
    if actual < low:
        raise ReplacementError(
            f"for `{rule.search}` in '{path}', at least {low} replacements expected, found {actual}"
        )
    if high is not None and actual > high:
        raise ReplacementError(
            f"for `{rule.search}` in '{path}', at most {high} replacements expected, found {actual}"
        )

    try:
        return pattern.sub(template.render(rule.replace), text)
    except (re.error, IndexError) as exc:
        raise ReplacementError(f"invalid replacement `{rule.replace}`: {exc}") from exc
