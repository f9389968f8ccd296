"""
Typed GTID sets.

MySQL prints GTID sets as comma-separated tokens of the form
``<uuid>:<interval>[:<interval>...]`` and wraps long sets with ``,\\n``.
GtidSet keeps the tokens in the order they were read so that a parsed set
renders back to the same text.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple


def normalize_gtid_text(text: Optional[str]) -> str:
    """Strip the newlines and blanks MySQL inserts into long GTID sets."""
    if not text:
        return ""
    return "".join(text.split())


@dataclass(frozen=True)
class GtidInterval:
    """Closed range of transaction sequence numbers."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 1 or self.end < self.start:
            raise ValueError(f"Invalid GTID interval: {self.start}-{self.end}")

    @classmethod
    def parse(cls, text: str) -> "GtidInterval":
        start, sep, end = text.partition("-")
        try:
            if sep:
                return cls(int(start), int(end))
            return cls(int(start), int(start))
        except ValueError:
            raise ValueError(f"Invalid GTID interval: {text!r}") from None

    def __str__(self) -> str:
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class GtidSetEntry:
    """All intervals one origin UUID contributes to a set."""
    uuid: str
    intervals: Tuple[GtidInterval, ...]

    @classmethod
    def parse(cls, token: str) -> "GtidSetEntry":
        parts = token.split(":")
        uuid = parts[0]
        if len(parts) < 2 or not uuid:
            raise ValueError(f"Invalid GTID token: {token!r}")
        return cls(uuid, tuple(GtidInterval.parse(p) for p in parts[1:]))

    def __str__(self) -> str:
        return ":".join([self.uuid] + [str(i) for i in self.intervals])


def _subtract_intervals(
    intervals: Iterable[GtidInterval],
    removed: List[GtidInterval]
) -> List[GtidInterval]:
    result: List[GtidInterval] = []
    for interval in intervals:
        pieces = [(interval.start, interval.end)]
        for cut in removed:
            next_pieces = []
            for start, end in pieces:
                if cut.end < start or cut.start > end:
                    next_pieces.append((start, end))
                    continue
                if cut.start > start:
                    next_pieces.append((start, cut.start - 1))
                if cut.end < end:
                    next_pieces.append((cut.end + 1, end))
            pieces = next_pieces
        result.extend(GtidInterval(start, end) for start, end in pieces)
    return result


@dataclass(frozen=True)
class GtidSet:
    """Ordered sequence of (origin UUID, intervals) entries."""
    entries: Tuple[GtidSetEntry, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: Optional[str]) -> "GtidSet":
        normalized = normalize_gtid_text(text)
        if not normalized:
            return cls()
        return cls(tuple(GtidSetEntry.parse(token) for token in normalized.split(",")))

    def __str__(self) -> str:
        return ",".join(str(entry) for entry in self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def is_empty(self) -> bool:
        return not self.entries

    def subtract(self, other: "GtidSet") -> "GtidSet":
        """
        Remove every GTID in ``other`` from this set.

        Works interval by interval, so only the errant part of an origin UUID
        is dropped. Entry order is kept; entries left with no intervals are
        removed entirely.
        """
        removed: Dict[str, List[GtidInterval]] = {}
        for entry in other.entries:
            removed.setdefault(entry.uuid, []).extend(entry.intervals)

        kept = []
        for entry in self.entries:
            cuts = removed.get(entry.uuid)
            if not cuts:
                kept.append(entry)
                continue
            remaining = _subtract_intervals(entry.intervals, cuts)
            if remaining:
                kept.append(GtidSetEntry(entry.uuid, tuple(remaining)))
        return GtidSet(tuple(kept))
