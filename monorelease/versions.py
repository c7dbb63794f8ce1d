"""Version parsing, bumping and requirement rewriting.

Versions are handled as semantic versions (python-semver), with two extra
conveniences for Python projects:

- incomplete versions are padded with zeros ("1.2" → "1.2.0"),
- PEP 440 normal forms are read back into semver form
  ("1.2.3rc1" → "1.2.3-rc.1", "1.2.dev0" → "1.2.0-dev").

A semver string such as ``1.0.1-alpha.1`` is also a valid PEP 440 version,
so whatever is computed here can be written straight into a pyproject.toml.

Requirement rewriting slides an existing requirement forward so it accepts a
newly released version while keeping its operator family and its precision
(a requirement pinned to a major version stays pinned to a major version).
"""

from __future__ import annotations

import re
from enum import Enum

import semver
from packaging import version as pep440
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from pydantic import BaseModel, ConfigDict, model_validator

from .errors import (
    InvalidReleaseLevel,
    InvalidRequirement,
    InvalidVersion,
    UnsupportedPrereleaseScheme,
    UnsupportedVersionRequirement,
)

ALPHA = "alpha"
BETA = "beta"
RC = "rc"

# Pre-release rungs, lowest first
LADDER = (ALPHA, BETA, RC)

_PEP440_PRE_LABELS = {"a": ALPHA, "b": BETA, "rc": RC}


class Version(BaseModel):
    """A semantic version with its common projections.

    Attributes:
        full: The complete version, including pre-release and build metadata.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    full: semver.Version

    @classmethod
    def from_semver(cls, full: semver.Version) -> Version:
        return cls(full=full)

    @property
    def bare(self) -> semver.Version:
        """The version with pre-release and build metadata cleared."""
        return semver.Version(self.full.major, self.full.minor, self.full.patch)

    @property
    def public(self) -> semver.Version:
        """The version with only build metadata cleared."""
        return self.full.replace(build=None)

    @property
    def full_string(self) -> str:
        return str(self.full)

    @property
    def bare_string(self) -> str:
        return str(self.bare)

    @property
    def public_string(self) -> str:
        return str(self.public)

    @property
    def metadata(self) -> str:
        return self.full.build or ""

    @property
    def is_prerelease(self) -> bool:
        return self.full.prerelease is not None

    def __str__(self) -> str:
        return self.full_string


def parse_version(version_str: str) -> Version:
    """Parse a version string into a Version.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3-rc.1" → "1.2.3-rc.1"

    PEP 440 versions that are not valid semver are converted:
    - "1.2.3rc1" → "1.2.3-rc.1"
    - "1.2.3a2.dev1" → "1.2.3-alpha.2.dev.1"
    - "1.2.3+local.7" → "1.2.3+local.7"

    Raises:
        InvalidVersion: If the string is neither semver nor PEP 440, or uses
            PEP 440 features semver cannot express (epochs, post releases,
            more than three release components).
    """
    text = version_str.strip()
    try:
        return Version(full=semver.Version.parse(text, optional_minor_and_patch=True))
    except (ValueError, TypeError):
        pass

    try:
        pep = pep440.Version(text)
    except pep440.InvalidVersion as exc:
        raise InvalidVersion(f"invalid version `{version_str}`") from exc
    if pep.epoch or pep.post is not None or len(pep.release) > 3:
        raise InvalidVersion(f"version `{version_str}` cannot be expressed as a semantic version")

    major, minor, patch = (*pep.release, 0, 0)[:3]
    pre: list[str] = []
    if pep.pre is not None:
        label, number = pep.pre
        pre += [_PEP440_PRE_LABELS[label], str(number)]
    if pep.dev is not None:
        pre.append("dev")
        if pep.dev or pep.pre is not None:
            pre.append(str(pep.dev))
    return Version(
        full=semver.Version(
            major,
            minor,
            patch,
            prerelease=".".join(pre) or None,
            build=pep.local,
        )
    )


def to_pep440(version: Version) -> str:
    """Render a version the way package indexes normalize it."""
    try:
        return str(pep440.Version(version.full_string))
    except pep440.InvalidVersion:
        return version.full_string


class BumpLevel(str, Enum):
    """How to move a version forward."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    ALPHA = "alpha"
    BETA = "beta"
    RC = "rc"
    RELEASE = "release"

    @property
    def is_prerelease(self) -> bool:
        return self in (BumpLevel.ALPHA, BumpLevel.BETA, BumpLevel.RC)


def prerelease_id(version: semver.Version) -> tuple[str, int | None] | None:
    """Split the pre-release identifier into ``(label, number)``.

    Examples:
        1.0.0-rc.2 → ("rc", 2)
        1.0.0-dev → ("dev", None)
        1.0.0 → None

    Raises:
        UnsupportedPrereleaseScheme: For a numeric first identifier
            ("1.0.0-1") or a non-numeric second one ("1.0.0-rc.x").
    """
    if version.prerelease is None:
        return None
    parts = version.prerelease.split(".")
    if parts[0].isdigit():
        raise UnsupportedPrereleaseScheme(str(version))
    number = None
    if len(parts) > 1:
        if not parts[1].isdigit():
            raise UnsupportedPrereleaseScheme(str(version))
        number = int(parts[1])
    return parts[0], number


def _step_ladder(version: semver.Version, label: str) -> semver.Version:
    current = prerelease_id(version)
    if current is None:
        # Pre-releases of the next patch
        return version.bump_patch().replace(prerelease=f"{label}.1")

    current_label, current_number = current
    if current_label in LADDER and LADDER.index(current_label) > LADDER.index(label):
        raise InvalidReleaseLevel(label, str(version))
    number = (current_number or 0) + 1 if current_label == label else 1
    return version.replace(prerelease=f"{label}.{number}")


def bump(current: Version, level: BumpLevel, metadata: str | None = None) -> Version | None:
    """Apply a bump level to a version.

    Major and minor bumps reset everything below them. A patch bump on a
    pre-release version only drops the pre-release (1.0.1-rc.1 → 1.0.1).
    Pre-release levels step along the alpha → beta → rc ladder; stepping
    within a rung increments its number, stepping from a release starts the
    next patch at ``.1``, and stepping down the ladder is an error.

    Args:
        current: Version to bump.
        level: Bump to apply.
        metadata: Build metadata to set on the result, replacing any existing.

    Returns:
        The bumped version, or None if nothing would change (e.g. a
        ``release`` bump of a version that is already a release).

    Raises:
        InvalidReleaseLevel: When stepping backwards on the ladder.
        UnsupportedPrereleaseScheme: When the current pre-release cannot be read.
    """
    v = current.full
    if level is BumpLevel.MAJOR:
        new = v.bump_major()
    elif level is BumpLevel.MINOR:
        new = v.bump_minor()
    elif level is BumpLevel.PATCH:
        new = v.replace(prerelease=None) if v.prerelease is not None else v.bump_patch()
    elif level.is_prerelease:
        new = _step_ladder(v, level.value)
    else:
        new = v.replace(prerelease=None)

    if metadata is not None:
        new = new.replace(build=metadata)

    if str(new) == str(v):
        return None
    return Version(full=new)


class TargetVersion(BaseModel):
    """Either a relative bump level or an absolute version."""

    model_config = ConfigDict(frozen=True)

    level: BumpLevel | None = None
    version: Version | None = None

    @model_validator(mode="after")
    def _one_of(self) -> TargetVersion:
        if (self.level is None) == (self.version is None):
            raise ValueError("exactly one of level and version must be set")
        return self

    @classmethod
    def relative(cls, level: BumpLevel) -> TargetVersion:
        return cls(level=level)

    @classmethod
    def absolute(cls, version: Version) -> TargetVersion:
        return cls(version=version)

    @classmethod
    def parse(cls, text: str) -> TargetVersion:
        """Parse a command-line ``LEVEL|VERSION`` argument."""
        try:
            return cls.relative(BumpLevel(text.strip().lower()))
        except ValueError:
            return cls.absolute(parse_version(text))

    def bump(self, current: Version, metadata: str | None = None) -> Version | None:
        if self.version is None:
            return bump(current, self.level, metadata)
        new = self.version.full
        if metadata is not None:
            new = new.replace(build=metadata)
        if str(new) == current.full_string:
            return None
        return Version(full=new)

    def __str__(self) -> str:
        return self.level.value if self.level is not None else str(self.version)


# Requirements
#
# Comparator grammar: an optional operator followed by a partial version,
# which may end in a `.*` wildcard. A missing operator means caret.

_COMPARATOR_RE = re.compile(r"^(?P<op>===|==|~=|!=|>=|<=|>|<|=|\^|~)?\s*(?P<version>\S+)$")
_PARTIAL_RE = re.compile(
    r"^(?P<major>\d+|\*)(?:\.(?P<minor>\d+|\*))?(?:\.(?P<patch>\d+|\*))?(?P<tail>.*)$"
)

_RANGE_OPS = (">", ">=", "<", "<=", "!=", "===")


def _cmp_pre(actual: str | None, wanted: str | None) -> int:
    return semver.Version(0, prerelease=actual).compare(semver.Version(0, prerelease=wanted))


class Comparator(BaseModel):
    """One comparator of a requirement, e.g. ``^1.2`` or ``==1.0.*``.

    Attributes:
        op: Normalized operator: ``^ ~ = ~= > >= < <= != ===`` or ``*`` for
            a bare or ``=``-style wildcard.
        spelling: Operator exactly as written ("" for a bare version).
        major, minor, patch: Version fields; unset fields stay None.
        pre: Pre-release identifiers, if any.
        wildcard: True when the version ends in ``.*``.
    """

    model_config = ConfigDict(frozen=True)

    op: str
    spelling: str = ""
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: str | None = None
    wildcard: bool = False

    @classmethod
    def parse(cls, text: str) -> Comparator | None:
        """Parse one comparator; returns None for a match-anything ``*``."""
        m = _COMPARATOR_RE.match(text.strip())
        if not m:
            raise InvalidRequirement(f"invalid comparator `{text}`")
        spelling = m.group("op") or ""
        raw = m.group("version")
        if raw == "*" and not spelling:
            return None

        v = _PARTIAL_RE.match(raw)
        if not v or v.group("major") == "*":
            raise InvalidRequirement(f"invalid version `{raw}` in `{text}`")
        major = int(v.group("major"))
        minor = v.group("minor")
        patch = v.group("patch")
        tail = v.group("tail")

        wildcard = minor == "*" or patch == "*"
        if wildcard:
            if tail or (minor == "*" and patch not in (None, "*")):
                raise InvalidRequirement(f"invalid wildcard `{raw}` in `{text}`")
            if spelling not in ("", "=", "==", "!="):
                raise InvalidRequirement(f"wildcard not allowed with `{spelling}` in `{text}`")
            op = "!=" if spelling == "!=" else "*"
            return cls(
                op=op,
                spelling=spelling,
                major=major,
                minor=None if minor == "*" else int(minor),
                wildcard=True,
            )

        pre = None
        tail = tail.split("+", 1)[0]
        if tail.startswith("-"):
            pre = tail[1:] or None
        elif tail:
            # PEP 440 suffix such as "rc1" or ".dev0"
            try:
                pre = parse_version(f"{major}.{minor or 0}.{patch or 0}{tail}").full.prerelease
            except InvalidVersion as exc:
                raise InvalidRequirement(f"invalid version `{raw}` in `{text}`") from exc

        op = {"": "^", "==": "=", "=": "="}.get(spelling, spelling)
        if op == "~=" and minor is None:
            raise InvalidRequirement(f"`~=` needs at least two version components in `{text}`")
        return cls(
            op=op,
            spelling=spelling,
            major=major,
            minor=None if minor is None else int(minor),
            patch=None if patch is None else int(patch),
            pre=pre,
        )

    def render(self) -> str:
        spelling = self.spelling or ("" if self.op == "*" else "^")
        text = str(self.major)
        if self.minor is not None:
            text += f".{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        if self.wildcard:
            text += ".*"
        if self.pre:
            text += f"-{self.pre}"
        return f"{spelling}{text}"

    def _cmp(self, version: semver.Version) -> int:
        """Compare ``version`` against the fields this comparator sets."""
        for actual, wanted in (
            (version.major, self.major),
            (version.minor, self.minor),
            (version.patch, self.patch),
        ):
            if wanted is None:
                return 0
            if actual != wanted:
                return -1 if actual < wanted else 1
        return _cmp_pre(version.prerelease, self.pre)

    def matches(self, version: semver.Version) -> bool:
        cmp = self._cmp(version)
        if self.op in ("=", "*"):
            return cmp == 0
        if self.op == "!=":
            return cmp != 0
        if self.op == ">":
            return cmp > 0
        if self.op == ">=":
            return cmp >= 0
        if self.op == "<":
            return cmp < 0
        if self.op == "<=":
            return cmp <= 0
        if self.op == "===":
            return self.render()[len(self.spelling) :] == str(version)
        if version.major != self.major:
            return False
        if self.op == "~":
            if self.minor is None:
                return True
            return version.minor == self.minor and cmp >= 0
        if self.op == "~=":
            if self.patch is None:
                return cmp >= 0
            return version.minor == self.minor and cmp >= 0
        # Caret: compatible up to the first non-zero component
        if self.minor is None:
            return True
        if self.major > 0:
            return cmp >= 0
        if self.patch is None:
            return version.minor == self.minor
        if self.minor > 0:
            return version.minor == self.minor and cmp >= 0
        return version.minor == self.minor and version.patch == self.patch and cmp >= 0

    def slide(self, version: semver.Version, requirement: str) -> Comparator:
        """Move this comparator onto ``version`` keeping its precision.

        Raises:
            UnsupportedVersionRequirement: For range and exclusion operators.
        """
        if self.op in _RANGE_OPS:
            raise UnsupportedVersionRequirement(requirement, self.spelling)
        if self.wildcard:
            return self.model_copy(
                update={
                    "major": version.major,
                    "minor": None if self.minor is None else version.minor,
                }
            )
        return self.model_copy(
            update={
                "major": version.major,
                "minor": None if self.minor is None else version.minor,
                "patch": None if self.patch is None else version.patch,
                "pre": version.prerelease,
            }
        )


def _specifier_contains(text: str, version: semver.Version) -> bool | None:
    """Check ``version`` against a PEP 440 specifier set, or None if ``packaging`` rejects it."""
    if not text.strip():
        return None
    try:
        specifiers = SpecifierSet(text.strip().strip("()"))
        return specifiers.contains(pep440.Version(str(version)), prereleases=True)
    except (InvalidSpecifier, pep440.InvalidVersion):
        return None


class Requirement(BaseModel):
    """A comma-separated list of comparators.

    Attributes:
        comparators: Parsed comparators; empty means "any version".
        separator: How comparators are joined when rendered.
        pep440: True when the text came from a PEP 508 string, in which case
            matching follows PEP 440 rather than caret/tilde rules.
        text: The requirement as written.
    """

    model_config = ConfigDict(frozen=True)

    comparators: list[Comparator]
    separator: str = ", "
    pep440: bool = False
    text: str = ""

    @classmethod
    def parse(cls, text: str, pep440: bool = False) -> Requirement:
        stripped = text.strip()
        if stripped.startswith("(") and stripped.endswith(")"):
            stripped = stripped[1:-1]
        pieces = [p for p in stripped.split(",") if p.strip()]
        comparators = [c for c in (Comparator.parse(p) for p in pieces) if c is not None]
        separator = ", " if ", " in stripped or not pep440 else ","
        return cls(comparators=comparators, separator=separator, pep440=pep440, text=text)

    def render(self) -> str:
        if not self.comparators:
            return "*"
        return self.separator.join(c.render() for c in self.comparators)

    def matches(self, version: semver.Version) -> bool:
        """Check whether ``version`` satisfies every comparator.

        PEP 508 requirements are checked with ``packaging`` (pre-releases
        allowed). Other requirements follow caret/tilde rules, where a
        pre-release only matches a comparator naming the same
        major.minor.patch with a pre-release of its own.
        """
        if self.pep440:
            contained = _specifier_contains(self.text, version)
            if contained is not None:
                return contained
        if not all(c.matches(version) for c in self.comparators):
            return False
        if version.prerelease is None:
            return True
        return any(
            c.pre is not None
            and (c.major, c.minor, c.patch) == (version.major, version.minor, version.patch)
            for c in self.comparators
        )

    def __str__(self) -> str:
        return self.text


def requirement_matches(requirement: str, version: semver.Version, pep440: bool = False) -> bool:
    """Check whether ``version`` satisfies ``requirement``.

    PEP 508 specifiers that ``packaging`` understands are decided without
    parsing comparators, so post-releases, epochs and four-part versions
    only matter when the requirement has to be rewritten.
    """
    if pep440:
        contained = _specifier_contains(requirement, version)
        if contained is not None:
            return contained
    return Requirement.parse(requirement, pep440=pep440).matches(version)


def rewrite_requirement(
    requirement: str, new_version: Version, pep440: bool = False
) -> str | None:
    """Rewrite a requirement so it accepts ``new_version``.

    Each comparator keeps its operator family and only the components it
    already pins. Pre-release identifiers of the new version are copied onto
    non-wildcard comparators. Build metadata is ignored.

    Examples:
        ("^1.0", 1.1.0) → "^1.1"
        ("1.0", 1.1.0) → "^1.1"
        ("~1.0.0", 2.0.0) → "~2.0.0"
        ("1.0.*", 2.0.0) → "2.0.*"
        ("==1.*", 2.3.0) → "==2.*"
        ("^1.0", 1.0.5) → None (already reads the same)

    Args:
        requirement: Requirement text, e.g. "^1.2" or "==1.0.*".
        new_version: Version the requirement must accept.
        pep440: Parse the requirement as a PEP 508 version specifier.

    Returns:
        The new requirement text, or None when the rewritten requirement
        renders the same as the original.

    Raises:
        UnsupportedVersionRequirement: For ``> >= < <= != ===`` comparators.
        InvalidRequirement: If the requirement cannot be parsed.
    """
    req = Requirement.parse(requirement, pep440=pep440)
    if not req.comparators:
        return None
    target = new_version.public
    new_req = req.model_copy(
        update={"comparators": [c.slide(target, requirement) for c in req.comparators]}
    )
    before = req.render()
    after = new_req.render()
    if after == before:
        return None
    return after
