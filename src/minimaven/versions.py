"""Maven version ordering, snapshot detection and version ranges.

Everything here is pure: no I/O, no configuration.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import cmp_to_key


SNAPSHOT_SUFFIX = "-SNAPSHOT"

_TIMESTAMP_RE = re.compile(r"2\d{7,14}")
_DIGITS_RE = re.compile(r"[0-9]*")
_RANGE_RE = re.compile(r"([\[(])([^\])]*)([\])])")


def is_snapshot(version: str | None) -> bool:
    return version is not None and version.endswith(SNAPSHOT_SUFFIX)


def is_timestamp(version: str | None) -> bool:
    """Whether `version` looks like a baked build timestamp (e.g. 20230101120000)."""
    return version is not None and _TIMESTAMP_RE.fullmatch(version) is not None


def is_range(version: str | None) -> bool:
    return version is not None and version.startswith(("[", "("))


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def compare_versions(version1: str | None, version2: str | None) -> int:
    """Compare two Maven version strings.

    Segments are split on dots; each segment compares its leading digit run
    numerically (a longer run is larger) and then the remainder as text.
    A timestamp version always loses against a -SNAPSHOT version.

    Returns:
        -1, 0 or +1.
    """
    if version1 is None:
        return 0 if version2 is None else -1
    if version2 is None:
        return 1
    if version1 == version2:
        return 0

    # prefer the symbolic snapshot over a baked timestamp
    if is_timestamp(version1) and is_snapshot(version2):
        return -1
    if is_snapshot(version1) and is_timestamp(version2):
        return 1

    split1 = version1.split(".")
    split2 = version2.split(".")

    for i in range(max(len(split1), len(split2))):
        if i == len(split1):
            return -1
        if i == len(split2):
            return 1
        seg1, seg2 = split1[i], split2[i]
        end1 = _DIGITS_RE.match(seg1).end()
        end2 = _DIGITS_RE.match(seg2).end()
        if end1 != end2:
            return _sign(end1 - end2)
        if end1:
            result = _sign(int(seg1[:end1]) - int(seg2[:end2]))
            if result:
                return result
        rest1, rest2 = seg1[end1:], seg2[end2:]
        if rest1 != rest2:
            return -1 if rest1 < rest2 else 1
    return 0


version_sort_key = cmp_to_key(compare_versions)


@dataclass(frozen=True)
class _Interval:
    lower: str | None
    lower_inclusive: bool
    upper: str | None
    upper_inclusive: bool

    def contains(self, version: str) -> bool:
        if self.lower is not None:
            c = compare_versions(version, self.lower)
            if c < 0 or (c == 0 and not self.lower_inclusive):
                return False
        if self.upper is not None:
            c = compare_versions(version, self.upper)
            if c > 0 or (c == 0 and not self.upper_inclusive):
                return False
        return True


@dataclass(frozen=True)
class VersionRange:
    """A Maven version range such as `[1.0,2.0)`, `[1.5,)` or `[1.0]`.

    Unions (`[1.0,1.2],[1.5,)`) are accepted; a version matches if it lies in
    any of the intervals.
    """

    expression: str
    intervals: tuple[_Interval, ...]

    @classmethod
    def parse(cls, expression: str) -> "VersionRange":
        """Parse a range expression.

        Raises:
            ValueError: If `expression` is not a range expression.
        """
        intervals: list[_Interval] = []
        for m in _RANGE_RE.finditer(expression):
            opening, body, closing = m.groups()
            if "," not in body:
                pinned = body.strip()
                if not pinned or opening != "[" or closing != "]":
                    raise ValueError(f"Invalid version range: {expression}")
                intervals.append(_Interval(pinned, True, pinned, True))
                continue
            lower, upper = (s.strip() or None for s in body.split(",", 1))
            intervals.append(_Interval(lower, opening == "[", upper, closing == "]"))
        if not intervals:
            raise ValueError(f"Invalid version range: {expression}")
        return cls(expression=expression, intervals=tuple(intervals))

    def contains(self, version: str | None) -> bool:
        if not version:
            return False
        return any(interval.contains(version) for interval in self.intervals)


def highest_matching(version_range: VersionRange | str, candidates: Iterable[str]) -> str | None:
    """Return the highest candidate inside the range, or None."""
    if isinstance(version_range, str):
        version_range = VersionRange.parse(version_range)
    best: str | None = None
    for candidate in candidates:
        if not version_range.contains(candidate):
            continue
        if compare_versions(candidate, best) > 0:
            best = candidate
    return best
