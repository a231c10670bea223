"""Semantic version parsing and ordering used to decide upgrade eligibility."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

_SEMVER = re.compile(
    r"v?([0-9]+(\.[0-9]+)*?)"
    r"(-([0-9]+[0-9A-Za-z\-~]*(\.[0-9A-Za-z\-~]+)*)"
    r"|(-?([A-Za-z\-~]+[0-9A-Za-z\-~]*(\.[0-9A-Za-z\-~]+)*)))?"
    r"(\+([0-9A-Za-z\-~]+(\.[0-9A-Za-z\-~]+)*))?"
)

_INT64_MAX = 2**63 - 1


class MalformedVersionError(ValueError):
    """Raised when a string is not a valid semantic version."""


def _compare_part(left: str, right: str) -> int:
    if left == right:
        return 0
    left_numeric = left.isdigit()
    right_numeric = right.isdigit()
    if left == "":
        return -1 if right_numeric else 1
    if right == "":
        return 1 if left_numeric else -1
    if left_numeric and not right_numeric:
        return -1
    if not left_numeric and right_numeric:
        return 1
    if not left_numeric and not right_numeric:
        return 1 if left > right else -1
    return 1 if int(left) > int(right) else -1


def _compare_prereleases(left: str, right: str) -> int:
    if left == right:
        return 0
    left_parts = left.split(".")
    right_parts = right.split(".")
    for index in range(max(len(left_parts), len(right_parts))):
        left_part = left_parts[index] if index < len(left_parts) else ""
        right_part = right_parts[index] if index < len(right_parts) else ""
        result = _compare_part(left_part, right_part)
        if result:
            return result
    return 0


@total_ordering
@dataclass(frozen=True, eq=False)
class SemVer:
    """A parsed semantic version; build metadata does not affect ordering."""

    segments: tuple[int, ...]
    prerelease: str = ""
    metadata: str = ""
    original: str = ""

    def __str__(self) -> str:
        text = ".".join(str(segment) for segment in self.segments)
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.metadata:
            text += f"+{self.metadata}"
        return text

    def compare(self, other: SemVer) -> int:
        """Return -1, 0 or 1 as this version is lower, equal or higher."""
        if str(self) == str(other):
            return 0
        mine, theirs = self.segments, other.segments
        if mine == theirs:
            if not self.prerelease and not other.prerelease:
                return 0
            if not self.prerelease:
                return 1
            if not other.prerelease:
                return -1
            return _compare_prereleases(self.prerelease, other.prerelease)

        for index in range(max(len(mine), len(theirs))):
            if index >= len(mine):
                return -1 if any(theirs[index:]) else 0
            if index >= len(theirs):
                return 1 if any(mine[index:]) else 0
            if mine[index] != theirs[index]:
                return -1 if mine[index] < theirs[index] else 1
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: SemVer) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        segments = list(self.segments)
        while segments and segments[-1] == 0:
            segments.pop()
        return hash(tuple(segments))


def parse_semver(text: str) -> SemVer:
    """Parse a semantic version such as ``v1.2.3-rc1+build``."""
    match = _SEMVER.fullmatch(text)
    if match is None:
        raise MalformedVersionError(f"Malformed version: {text}")

    segments = []
    for part in match.group(1).split("."):
        value = int(part)
        if value > _INT64_MAX:
            raise MalformedVersionError(
                f'Error parsing version: strconv.ParseInt: parsing "{part}": value out of range'
            )
        segments.append(value)
    segments.extend([0] * (3 - len(segments)))

    prerelease = match.group(7) or match.group(4) or ""
    metadata = match.group(10) or ""
    return SemVer(tuple(segments), prerelease, metadata, text)