"""Helpers for comparing release versions using semantic versioning rules."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from selfupgrade.errors import InvalidVersionFormat


__all__ = [
    "Ordering",
    "SemanticVersion",
    "compare_versions",
    "has_update",
    "is_prerelease_version",
    "parse_version",
]

_SEMVER_PATTERN = re.compile(
    r"""
    ^v?
    (?P<major>0|[1-9]\d*)\.
    (?P<minor>0|[1-9]\d*)\.
    (?P<patch>0|[1-9]\d*)
    (?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
    $
    """,
    re.VERBOSE,
)


class Ordering(Enum):
    LESS = -1
    EQUAL = 0
    GREATER = 1


@dataclass(frozen=True)
class SemanticVersion:
    """Parsed ``major.minor.patch[-prerelease][+build]`` identifier."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text


def parse_version(text: str) -> SemanticVersion:
    """Parse ``text`` or raise :class:`InvalidVersionFormat`."""

    if not isinstance(text, str):
        raise InvalidVersionFormat(f"Version must be a string, got {type(text).__name__}")
    match = _SEMVER_PATTERN.match(text.strip())
    if match is None:
        raise InvalidVersionFormat(f"Invalid semantic version: {text!r}")

    prerelease = match.group("prerelease")
    identifiers = tuple(prerelease.split(".")) if prerelease else ()
    for identifier in identifiers:
        if identifier.isdigit() and len(identifier) > 1 and identifier.startswith("0"):
            raise InvalidVersionFormat(
                f"Invalid semantic version: {text!r} (numeric identifier with leading zero)"
            )
    build = match.group("build")
    return SemanticVersion(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=identifiers,
        build=tuple(build.split(".")) if build else (),
    )


def compare_versions(a: str, b: str) -> Ordering:
    """Return how ``a`` orders relative to ``b``.

    Build metadata is ignored.  A pre-release has lower precedence than the
    release with the same ``major.minor.patch``.
    """

    left = parse_version(a)
    right = parse_version(b)

    left_core = (left.major, left.minor, left.patch)
    right_core = (right.major, right.minor, right.patch)
    if left_core != right_core:
        return Ordering.LESS if left_core < right_core else Ordering.GREATER

    return _compare_prerelease(left.prerelease, right.prerelease)


def has_update(current: str, latest: str) -> bool:
    """Return ``True`` if ``latest`` is newer than ``current``."""

    return compare_versions(current, latest) is Ordering.LESS


def is_prerelease_version(version: str) -> bool:
    return parse_version(version).is_prerelease


def _compare_prerelease(left: tuple[str, ...], right: tuple[str, ...]) -> Ordering:
    if left == right:
        return Ordering.EQUAL
    if not left:
        return Ordering.GREATER
    if not right:
        return Ordering.LESS

    for left_id, right_id in zip(left, right):
        if left_id == right_id:
            continue
        left_numeric = left_id.isdigit()
        right_numeric = right_id.isdigit()
        if left_numeric and right_numeric:
            return Ordering.LESS if int(left_id) < int(right_id) else Ordering.GREATER
        if left_numeric != right_numeric:
            # Numeric identifiers always have lower precedence.
            return Ordering.LESS if left_numeric else Ordering.GREATER
        return Ordering.LESS if left_id < right_id else Ordering.GREATER

    return Ordering.LESS if len(left) < len(right) else Ordering.GREATER
