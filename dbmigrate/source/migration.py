"""In-memory index of migration files and the file name parser."""

from __future__ import annotations

import re
from bisect import bisect_left
from dataclasses import dataclass
from enum import Enum

_MAX_VERSION = 2**64 - 1


class Direction(str, Enum):
    """Direction a migration file applies in."""

    DOWN = "down"
    UP = "up"


@dataclass
class SourceMigration:
    """One migration file as seen by a source driver."""

    version: int
    direction: Direction
    identifier: str = ""
    raw: str = ""


class ParseError(ValueError):
    """Raised when a file name does not follow the migration pattern."""

    def __init__(self, raw: str = "") -> None:
        super().__init__("no match")
        self.raw = raw


class DuplicateMigrationError(Exception):
    """Raised when two files declare the same version and direction."""

    def __init__(self, migration: SourceMigration, name: str) -> None:
        super().__init__(f"duplicate migration file: {name}")
        self.migration = migration
        self.name = name


# Matches "123_name.up.ext" and "123_name.down.ext".
REGEX = re.compile(
    r"^([0-9]+)_(.*)\.("
    + Direction.DOWN.value
    + "|"
    + Direction.UP.value
    + r")\.(.*)\Z"
)


def parse(raw: str) -> SourceMigration:
    """Parse a migration file name into a SourceMigration."""
    match = REGEX.match(raw)
    if match is None:
        raise ParseError(raw)
    version = int(match.group(1))
    if version > _MAX_VERSION:
        raise ValueError(f"version {match.group(1)!r} is out of range")
    return SourceMigration(
        version=version,
        direction=Direction(match.group(3)),
        identifier=match.group(2),
        raw=raw,
    )


class Migrations:
    """Migrations keyed by version and direction, kept in version order."""

    def __init__(self) -> None:
        self._index: list[int] = []
        self._migrations: dict[int, dict[Direction, SourceMigration]] = {}

    def append(self, m: SourceMigration | None) -> bool:
        """Add a migration; return False if it is None or a duplicate."""
        if m is None:
            return False
        by_direction = self._migrations.setdefault(m.version, {})
        direction = Direction(m.direction)
        if direction in by_direction:
            return False
        by_direction[direction] = m
        self._index = sorted(self._migrations)
        return True

    def first(self) -> int | None:
        """Return the lowest version, or None when empty."""
        return self._index[0] if self._index else None

    def prev(self, version: int) -> int | None:
        """Return the version before the given one, or None."""
        pos = self._find_pos(version)
        if pos >= 1:
            return self._index[pos - 1]
        return None

    def next(self, version: int) -> int | None:
        """Return the version after the given one, or None."""
        pos = self._find_pos(version)
        if pos >= 0 and pos + 1 < len(self._index):
            return self._index[pos + 1]
        return None

    def up(self, version: int) -> SourceMigration | None:
        """Return the up migration for a version, or None."""
        return self._migrations.get(version, {}).get(Direction.UP)

    def down(self, version: int) -> SourceMigration | None:
        """Return the down migration for a version, or None."""
        return self._migrations.get(version, {}).get(Direction.DOWN)

    def _find_pos(self, version: int) -> int:
        pos = bisect_left(self._index, version)
        if pos < len(self._index) and self._index[pos] == version:
            return pos
        return -1