"""In-memory source driver whose bodies are the migrations' identifiers."""

from __future__ import annotations

import errno
import io
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from dbmigrate.source.driver import SourceDriver, register
from dbmigrate.source.migration import Migrations


def _not_exist(op: str, path: str) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, f"{op}: file does not exist", path)


@dataclass
class StubConfig:
    """Configuration for the stub driver; it has no settings."""


@dataclass(eq=False)
class StubDriver(SourceDriver):
    """A source whose migrations are set directly on ``migrations``."""

    url: str = ""
    instance: Any = None
    migrations: Migrations = field(default_factory=Migrations)
    config: StubConfig = field(default_factory=StubConfig)
    closed: bool = field(default=False, init=False)

    def open(self, url: str) -> StubDriver:
        return StubDriver(url=url, migrations=Migrations(), config=StubConfig())

    def close(self) -> None:
        """Mark the driver as closed."""
        self.closed = True

    def first(self) -> int:
        version = self.migrations.first()
        if version is None:
            raise _not_exist("first", self.url)
        return version

    def prev(self, version: int) -> int:
        found = self.migrations.prev(version)
        if found is None:
            raise _not_exist(f"prev for version {version}", self.url)
        return found

    def next(self, version: int) -> int:
        found = self.migrations.next(version)
        if found is None:
            raise _not_exist(f"next for version {version}", self.url)
        return found

    def read_up(self, version: int) -> tuple[BinaryIO, str]:
        migration = self.migrations.up(version)
        if migration is None:
            raise _not_exist(f"read up version {version}", self.url)
        return io.BytesIO(migration.identifier.encode()), f"{version}.up.stub"

    def read_down(self, version: int) -> tuple[BinaryIO, str]:
        migration = self.migrations.down(version)
        if migration is None:
            raise _not_exist(f"read down version {version}", self.url)
        return io.BytesIO(migration.identifier.encode()), f"{version}.down.stub"


def with_instance(instance: Any, config: StubConfig) -> StubDriver:
    """Return a stub driver wrapping an arbitrary instance."""
    return StubDriver(instance=instance, migrations=Migrations(), config=config)


register("stub", StubDriver())