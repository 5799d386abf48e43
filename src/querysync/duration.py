"""Duration parsing and the finite / infinite / static duration types."""

import re
from dataclasses import dataclass
from typing import assert_never

Duration = str | int  # "30s", "5m", "2h", "1d" or milliseconds

_DURATION_PATTERN = re.compile(r"^(\d+)(ms|s|m|h|d)$")
_UNITS: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}


def parse_duration(duration: Duration) -> int:
    """Parse duration string to milliseconds. Passthrough if already int."""
    if isinstance(duration, bool):
        raise TypeError("Duration must be a string or int, got bool")
    if isinstance(duration, int):
        if duration < 0:
            raise ValueError(f"Invalid duration: {duration!r}")
        return duration

    match = _DURATION_PATTERN.match(duration)
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")

    value, unit = match.groups()
    return int(value) * _UNITS[unit]


@dataclass(frozen=True, slots=True)
class FiniteDuration:
    """A finite duration in milliseconds."""

    ms: int


@dataclass(frozen=True, slots=True)
class InfiniteDuration:
    """Never elapses: data never goes stale by time, entries are never evicted."""


@dataclass(frozen=True, slots=True)
class StaticDuration:
    """Data is immutable: never stale, never refetched in the background."""


INFINITE = InfiniteDuration()
STATIC = StaticDuration()

GcDuration = FiniteDuration | InfiniteDuration
StaleDuration = FiniteDuration | InfiniteDuration | StaticDuration


def to_gc_duration(value: Duration | GcDuration) -> GcDuration:
    """Normalize a user-supplied eviction grace period."""
    match value:
        case FiniteDuration() | InfiniteDuration():
            return value
        case StaticDuration():
            raise TypeError("STATIC is not a valid gc duration")
        case str() | int():
            return FiniteDuration(parse_duration(value))
        case _:
            assert_never(value)


def to_stale_duration(value: Duration | StaleDuration) -> StaleDuration:
    """Normalize a user-supplied staleness window."""
    match value:
        case FiniteDuration() | InfiniteDuration() | StaticDuration():
            return value
        case str() | int():
            return FiniteDuration(parse_duration(value))
        case _:
            assert_never(value)


def max_gc_duration(a: GcDuration, b: GcDuration) -> GcDuration:
    """Return the longer of two grace periods (infinite beats everything)."""
    match (a, b):
        case (InfiniteDuration(), _) | (_, InfiniteDuration()):
            return INFINITE
        case (FiniteDuration(ms=x), FiniteDuration(ms=y)):
            return a if x >= y else b
        case _:
            raise TypeError(f"Cannot compare gc durations {a!r} and {b!r}")
