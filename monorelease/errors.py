"""Error types and process outcome codes.

Two tiers of failure exist:

- ``ReleaseError`` and its subclasses are fatal: the plan itself cannot be
  trusted (bad version strings, unsupported requirement operators, broken
  manifests). They abort immediately, dry-run or not.
- ``ReleaseAbort`` carries an ``Outcome`` describing which phase stopped the
  run. Its value doubles as the process exit code so scripts can branch on
  the phase that failed.
"""

from __future__ import annotations

from enum import IntEnum


class Outcome(IntEnum):
    """Process outcome of a run, used as the exit code."""

    SUCCESS = 0
    NO_PACKAGES = 2
    DECLINED = 3
    FAILED = 101
    COMMIT_FAILED = 102
    PUBLISH_FAILED = 103
    TAG_FAILED = 104
    POST_RELEASE_COMMIT_FAILED = 105
    PUSH_FAILED = 106
    HOOK_FAILED = 107
    DEPENDENT_VERSION_CONFLICT = 108
    PUBLISH_TIMEOUT = 109
    SHARED_VERSION_MISMATCH = 110
    DIRTY_TREE = 111
    TAG_EXISTS = 112
    DOWNGRADE = 113
    BRANCH_NOT_ALLOWED = 114
    BEHIND_REMOTE = 115
    ALREADY_PUBLISHED = 116
    TAG_MISSING = 117

    @property
    def is_error(self) -> bool:
        """False for success and for an operator declining the release."""
        return self not in (Outcome.SUCCESS, Outcome.DECLINED)

    @property
    def exit_code(self) -> int:
        # Declining is a clean abort, not a failure
        return 0 if self is Outcome.DECLINED else int(self)


class ReleaseError(Exception):
    """Base class for fatal errors that invalidate the release plan."""


class InvalidVersion(ReleaseError):
    """A version string could not be parsed."""


class InvalidReleaseLevel(ReleaseError):
    """A bump would move backwards on the alpha/beta/rc ladder."""

    def __init__(self, level: str, version: str) -> None:
        super().__init__(f"cannot bump {version} to {level}: pre-release ladder only moves forward")
        self.level = level
        self.version = version


class UnsupportedPrereleaseScheme(ReleaseError):
    """Pre-release identifiers are not of the form ``<label>[.<number>]``."""

    def __init__(self, version: str) -> None:
        super().__init__(
            f"unsupported pre-release scheme in {version}; expected <label> or <label>.<number>"
        )
        self.version = version


class InvalidRequirement(ReleaseError):
    """A dependency requirement string could not be parsed."""


class UnsupportedVersionRequirement(ReleaseError):
    """A requirement uses an operator that cannot be slid forward."""

    def __init__(self, requirement: str, operator: str) -> None:
        super().__init__(
            f"cannot rewrite requirement `{requirement}`: operator `{operator}` is not supported"
        )
        self.requirement = requirement
        self.operator = operator


class ConfigError(ReleaseError):
    """Release configuration is malformed."""


class ManifestError(ReleaseError):
    """A pyproject.toml could not be read or updated."""


class ReplacementError(ReleaseError):
    """A file replacement rule failed (missing file, wrong match count)."""


class WorkspaceError(ReleaseError):
    """The workspace layout could not be discovered."""


class ReleaseAbort(Exception):
    """Stops the run with a specific ``Outcome``.

    Args:
        outcome: Which phase or check stopped the run.
        message: Optional explanation, printed by the CLI.
    """

    def __init__(self, outcome: Outcome, message: str = "") -> None:
        super().__init__(message or outcome.name.lower().replace("_", " "))
        self.outcome = outcome
        self.message = message
