"""npm-style versions and version ranges reduced to interval sets.

Only what conflict detection needs is modelled: every range alternative becomes a
single interval with optional inclusive/exclusive bounds, so intersection and
emptiness are exact. Prerelease versions are ordered by semver precedence but are
not given npm's special "same tuple only" matching rule.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import total_ordering
from typing import Final

from monorail.errors import ConfigError

_PARTIAL_VERSION_RE: Final[re.Pattern[str]] = re.compile(
    r"^[vV=]?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
_COMPARATOR_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<op><=|>=|<|>|=|\^|~>|~)?(?P<ver>.+)$")
_OPERATOR_GAP_RE: Final[re.Pattern[str]] = re.compile(r"(<=|>=|<|>|=|\^|~>|~)\s+")
_HYPHEN_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")
_WILDCARDS: Final[frozenset[str]] = frozenset({"x", "X", "*"})


@total_ordering
@dataclass(frozen=True, slots=True)
class Version:
    """A concrete semantic version."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[int | str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Version:
        partial = _parse_partial(text.strip())
        if partial is None or partial.minor is None or partial.patch is None:
            raise ConfigError(f"invalid version {text!r}: expected MAJOR.MINOR.PATCH")
        return Version(partial.major, partial.minor, partial.patch, partial.prerelease)

    def bump_patch(self) -> Version:
        return Version(self.major, self.minor, self.patch + 1)

    def next_minor(self) -> Version:
        return Version(self.major, self.minor + 1, 0)

    def next_major(self) -> Version:
        return Version(self.major + 1, 0, 0)

    def release(self) -> Version:
        return Version(self.major, self.minor, self.patch)

    def sort_key(self) -> tuple[object, ...]:
        if not self.prerelease:
            return (self.major, self.minor, self.patch, 1, ())
        identifiers = tuple(
            (0, item, "") if isinstance(item, int) else (1, 0, item) for item in self.prerelease
        )
        return (self.major, self.minor, self.patch, 0, identifiers)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return core + "-" + ".".join(str(item) for item in self.prerelease)
        return core


_ZERO: Final[Version] = Version(0, 0, 0)


@dataclass(frozen=True, slots=True)
class Bound:
    version: Version
    inclusive: bool


@dataclass(frozen=True, slots=True)
class Interval:
    """Contiguous set of versions; ``None`` bounds are unbounded."""

    lower: Bound | None = None
    upper: Bound | None = None

    @property
    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower.version > self.upper.version:
            return True
        if self.lower.version == self.upper.version:
            return not (self.lower.inclusive and self.upper.inclusive)
        return False

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower.version:
                return False
            if version == self.lower.version and not self.lower.inclusive:
                return False
        if self.upper is not None:
            if version > self.upper.version:
                return False
            if version == self.upper.version and not self.upper.inclusive:
                return False
        return True

    def intersect(self, other: Interval) -> Interval:
        return Interval(
            lower=_tighter_lower(self.lower, other.lower),
            upper=_tighter_upper(self.upper, other.upper),
        )

    def minimum(self) -> Version | None:
        """Lowest release version inside the interval, if any."""

        if self.lower is None:
            candidate = _ZERO
        elif self.lower.inclusive:
            candidate = self.lower.version
        elif self.lower.version.prerelease:
            candidate = self.lower.version.release()
        else:
            candidate = self.lower.version.bump_patch()
        return candidate if self.contains(candidate) else None

    def sort_key(self) -> tuple[object, ...]:
        lower_key: tuple[object, ...] = (
            (0,)
            if self.lower is None
            else (1, self.lower.version.sort_key(), 0 if self.lower.inclusive else 1)
        )
        upper_key: tuple[object, ...] = (
            (1,)
            if self.upper is None
            else (0, self.upper.version.sort_key(), 1 if self.upper.inclusive else 0)
        )
        return (lower_key, upper_key)

    def __str__(self) -> str:
        lower, upper = self.lower, self.upper
        if lower is None and upper is None:
            return "*"
        if lower is not None and upper is not None:
            if lower.inclusive and upper.inclusive and lower.version == upper.version:
                return str(lower.version)
            if lower.inclusive and not upper.inclusive and not lower.version.prerelease:
                if upper.version == _caret_upper(lower.version):
                    return f"^{lower.version}"
                if upper.version == lower.version.next_minor():
                    return f"~{lower.version}"
        parts: list[str] = []
        if lower is not None:
            parts.append(f"{'>=' if lower.inclusive else '>'}{lower.version}")
        if upper is not None:
            parts.append(f"{'<=' if upper.inclusive else '<'}{upper.version}")
        return " ".join(parts)


@dataclass(frozen=True, slots=True)
class VersionRange:
    """Union of intervals parsed from an npm range expression."""

    intervals: tuple[Interval, ...]
    raw: str = ""

    @classmethod
    def parse(cls, text: str) -> VersionRange:
        raw = text.strip()
        intervals: list[Interval] = []
        for alternative in raw.split("||"):
            interval = _parse_alternative(alternative.strip(), source=raw)
            if not interval.is_empty:
                intervals.append(interval)
        return cls(intervals=_normalize(intervals), raw=raw)

    @classmethod
    def exact(cls, version: Version) -> VersionRange:
        bound = Bound(version, True)
        return cls(intervals=(Interval(bound, bound),), raw=str(version))

    @property
    def is_empty(self) -> bool:
        return not self.intervals

    def contains(self, version: Version) -> bool:
        return any(interval.contains(version) for interval in self.intervals)

    def intersect(self, other: VersionRange) -> VersionRange:
        combined = [
            left.intersect(right) for left in self.intervals for right in other.intervals
        ]
        intervals = _normalize(item for item in combined if not item.is_empty)
        return VersionRange(intervals=intervals, raw=_render(intervals))

    def minimum_version(self) -> Version | None:
        candidates = [
            version
            for version in (interval.minimum() for interval in self.intervals)
            if version is not None
        ]
        return min(candidates) if candidates else None

    def canonical(self) -> str:
        return _render(self.intervals)

    def __str__(self) -> str:
        return self.raw or self.canonical()


@dataclass(frozen=True, slots=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    prerelease: tuple[int | str, ...]


def _parse_partial(text: str) -> _Partial | None:
    match = _PARTIAL_VERSION_RE.match(text)
    if match is None:
        return None

    numbers: list[int | None] = []
    wildcard_seen = False
    for group in ("major", "minor", "patch"):
        value = match.group(group)
        if value is None or value in _WILDCARDS or wildcard_seen:
            wildcard_seen = True
            numbers.append(None)
        else:
            numbers.append(int(value))

    prerelease: tuple[int | str, ...] = ()
    raw_pre = match.group("pre")
    if raw_pre is not None:
        prerelease = tuple(int(part) if part.isdigit() else part for part in raw_pre.split("."))
    return _Partial(numbers[0], numbers[1], numbers[2], prerelease)


def _parse_alternative(text: str, *, source: str) -> Interval:
    if text in {"", "*", "x", "X", "latest"}:
        return Interval()

    hyphen = _HYPHEN_RE.match(text)
    if hyphen is not None:
        low = _require_partial(hyphen.group("low"), source)
        high = _require_partial(hyphen.group("high"), source)
        return Interval(lower=_floor(low), upper=_hyphen_ceiling(high))

    interval = Interval()
    for token in _OPERATOR_GAP_RE.sub(r"\1", text).split():
        interval = interval.intersect(_parse_comparator(token, source=source))
    return interval


def _parse_comparator(token: str, *, source: str) -> Interval:
    match = _COMPARATOR_RE.match(token)
    if match is None:
        raise ConfigError(f"invalid version range {source!r}")
    op = match.group("op") or ""
    partial = _require_partial(match.group("ver"), source)

    if partial.major is None:
        if op in {"<", ">"}:
            return Interval(lower=Bound(_ZERO, True), upper=Bound(_ZERO, False))
        return Interval()

    floor = _floor(partial)
    ceiling = _ceiling(partial)

    if op in {"", "="}:
        if partial.patch is not None:
            return Interval(lower=floor, upper=Bound(floor.version, True))
        return Interval(lower=floor, upper=ceiling)
    if op == "^":
        return Interval(lower=floor, upper=Bound(_caret_upper_partial(partial), False))
    if op in {"~", "~>"}:
        if partial.minor is None:
            return Interval(lower=floor, upper=Bound(floor.version.next_major(), False))
        return Interval(
            lower=floor, upper=Bound(Version(partial.major, partial.minor + 1, 0), False)
        )
    if op == ">=":
        return Interval(lower=floor)
    if op == ">":
        if ceiling is None:
            return Interval(lower=Bound(floor.version, False))
        return Interval(lower=Bound(ceiling.version, True))
    if op == "<":
        return Interval(upper=Bound(floor.version, False))
    if op == "<=":
        if ceiling is None:
            return Interval(upper=Bound(floor.version, True))
        return Interval(upper=ceiling)
    raise ConfigError(f"invalid version range {source!r}")


def _require_partial(text: str, source: str) -> _Partial:
    partial = _parse_partial(text)
    if partial is None:
        raise ConfigError(f"invalid version range {source!r}: cannot parse {text!r}")
    return partial


def _floor(partial: _Partial) -> Bound:
    if partial.major is None:
        return Bound(_ZERO, True)
    return Bound(
        Version(partial.major, partial.minor or 0, partial.patch or 0, partial.prerelease), True
    )


def _ceiling(partial: _Partial) -> Bound | None:
    """Exclusive upper bound implied by a partial version, ``None`` when complete."""

    if partial.major is None:
        return None
    if partial.minor is None:
        return Bound(Version(partial.major + 1, 0, 0), False)
    if partial.patch is None:
        return Bound(Version(partial.major, partial.minor + 1, 0), False)
    return None


def _hyphen_ceiling(partial: _Partial) -> Bound | None:
    if partial.major is None:
        return None
    ceiling = _ceiling(partial)
    if ceiling is not None:
        return ceiling
    return Bound(_floor(partial).version, True)


def _caret_upper(version: Version) -> Version:
    if version.major > 0:
        return version.next_major()
    if version.minor > 0:
        return version.next_minor()
    return version.bump_patch()


def _caret_upper_partial(partial: _Partial) -> Version:
    if partial.major is None:
        return _ZERO
    if partial.minor is None:
        return Version(partial.major + 1, 0, 0)
    if partial.patch is None:
        if partial.major > 0:
            return Version(partial.major + 1, 0, 0)
        return Version(0, partial.minor + 1, 0)
    return _caret_upper(Version(partial.major, partial.minor, partial.patch))


def _tighter_lower(left: Bound | None, right: Bound | None) -> Bound | None:
    if left is None:
        return right
    if right is None:
        return left
    if left.version != right.version:
        return left if left.version > right.version else right
    return left if not left.inclusive else right


def _tighter_upper(left: Bound | None, right: Bound | None) -> Bound | None:
    if left is None:
        return right
    if right is None:
        return left
    if left.version != right.version:
        return left if left.version < right.version else right
    return left if not left.inclusive else right


def _normalize(intervals: Iterable[Interval]) -> tuple[Interval, ...]:
    unique = {interval.sort_key(): interval for interval in intervals}
    return tuple(unique[key] for key in sorted(unique))


def _render(intervals: tuple[Interval, ...]) -> str:
    if not intervals:
        return "<0.0.0-0"
    return " || ".join(str(interval) for interval in intervals)


__all__ = ["Bound", "Interval", "Version", "VersionRange"]
