"""
Version labels.

Prototype lineages are lettered (vA, vB, ... vZ), Production lineages are
numbered (v1, v2, ... v999). Both ceilings are hard limits: reaching one is
a FormatError, never a wrap-around.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from app.doccontrol.errors import FormatError

PROTOTYPE = "prototype"
PRODUCTION = "production"

PROTOTYPE_CEILING = 26  # vZ
PRODUCTION_CEILING = 999

_PROTOTYPE_RE = re.compile(r"v([A-Z])")
_PRODUCTION_RE = re.compile(r"v([1-9]\d*)")


@dataclass(frozen=True)
class ParsedVersion:
    kind: str
    number: int  # vA -> 1, vC -> 3, v10 -> 10
    raw: str

    @property
    def is_production(self) -> bool:
        return self.kind == PRODUCTION


def parse_version(version: str) -> ParsedVersion | None:
    v = (version or "").strip()
    m = _PROTOTYPE_RE.fullmatch(v)
    if m:
        return ParsedVersion(PROTOTYPE, ord(m.group(1)) - ord("A") + 1, v)
    m = _PRODUCTION_RE.fullmatch(v)
    if m:
        return ParsedVersion(PRODUCTION, int(m.group(1)), v)
    return None


def parse_for_class(version: str, is_production: bool) -> ParsedVersion:
    parsed = parse_version(version)
    kind = PRODUCTION if is_production else PROTOTYPE
    if parsed is None or parsed.kind != kind:
        expected = "v<N>" if is_production else "v<A-Z>"
        raise FormatError(f"Version {version!r} is not a valid {kind} version (expected {expected})")
    return parsed


def format_version(number: int, is_production: bool) -> str:
    if is_production:
        if not 1 <= number <= PRODUCTION_CEILING:
            raise FormatError(f"Production version number out of range: {number}")
        return f"v{number}"
    if not 1 <= number <= PROTOTYPE_CEILING:
        raise FormatError(f"Prototype version number out of range: {number}")
    return "v" + chr(ord("A") + number - 1)


def initial_version(is_production: bool) -> str:
    return "v1" if is_production else "vA"


def next_version(current: str, is_production: bool) -> str:
    """
    vA -> vB, v1 -> v2.

    Raises FormatError when `current` does not match its class, or when vZ /
    v999 has been reached.
    """
    parsed = parse_for_class(current, is_production)
    limit = PRODUCTION_CEILING if is_production else PROTOTYPE_CEILING
    if parsed.number >= limit:
        raise FormatError(f"{parsed.kind.capitalize()} version limit reached ({current})")
    return format_version(parsed.number + 1, is_production)


def predecessor_version(version: str, is_production: bool) -> str | None:
    """The label whose sequence number is exactly one less, or None for a first version."""
    parsed = parse_for_class(version, is_production)
    if parsed.number == 1:
        return None
    return format_version(parsed.number - 1, is_production)


def compare_versions(a: str, b: str) -> int:
    pa, pb = parse_version(a), parse_version(b)
    if pa is None or pb is None:
        raise FormatError("Invalid version format for comparison")
    if pa.kind != pb.kind:
        raise FormatError("Cannot compare prototype and production versions")
    return (pa.number > pb.number) - (pa.number < pb.number)


def version_range(start: str, end: str) -> list[str]:
    """version_range("vA", "vC") -> ["vA", "vB", "vC"]"""
    ps, pe = parse_version(start), parse_version(end)
    if ps is None or pe is None:
        raise FormatError("Invalid version format")
    if ps.kind != pe.kind:
        raise FormatError("Cannot create range between different version types")
    if ps.number > pe.number:
        raise FormatError("Start version must be less than or equal to end version")
    return [format_version(n, ps.is_production) for n in range(ps.number, pe.number + 1)]


def sort_key(version: str) -> tuple[int, int]:
    parsed = parse_version(version)
    if parsed is None:
        return (2, 0)
    return (1 if parsed.is_production else 0, parsed.number)
