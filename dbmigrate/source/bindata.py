"""Source driver over named assets embedded in the program."""

from __future__ import annotations

import errno
import io
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, BinaryIO

from dbmigrate.source.driver import SourceDriver, register
from dbmigrate.source.migration import Migrations, SourceMigration, parse

AssetFunc = Callable[[str], bytes]

_PATH = "<go-bindata>"


def _not_exist(op: str, path: str) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, f"{op}: file does not exist", path)


@dataclass
class AssetSource:
    """Asset names and the function that returns an asset's bytes."""

    names: Sequence[str]
    asset_func: AssetFunc


def resource(names: Sequence[str], asset_func: AssetFunc) -> AssetSource:
    """Wrap asset names and a loader into an AssetSource."""
    return AssetSource(names=list(names), asset_func=asset_func)


class BindataDriver(SourceDriver):
    """Reads migrations from an AssetSource; build it with ``with_instance``."""

    def __init__(self, asset_source: AssetSource | None = None) -> None:
        self.path = _PATH
        self.asset_source = asset_source
        self.migrations = Migrations()
        self.closed = False

    def open(self, url: str) -> SourceDriver:
        raise RuntimeError("opening embedded assets by URL is not supported; use with_instance")

    def close(self) -> None:
        """Mark the driver as closed."""
        self.closed = True

    def first(self) -> int:
        version = self.migrations.first()
        if version is None:
            raise _not_exist("first", self.path)
        return version

    def prev(self, version: int) -> int:
        found = self.migrations.prev(version)
        if found is None:
            raise _not_exist(f"prev for version {version}", self.path)
        return found

    def next(self, version: int) -> int:
        found = self.migrations.next(version)
        if found is None:
            raise _not_exist(f"next for version {version}", self.path)
        return found

    def read_up(self, version: int) -> tuple[BinaryIO, str]:
        migration = self.migrations.up(version)
        if migration is None:
            raise _not_exist(f"read version {version}", self.path)
        return self._read(migration), migration.identifier

    def read_down(self, version: int) -> tuple[BinaryIO, str]:
        migration = self.migrations.down(version)
        if migration is None:
            raise _not_exist(f"read version {version}", self.path)
        return self._read(migration), migration.identifier

    def _read(self, migration: SourceMigration) -> BinaryIO:
        assert self.asset_source is not None
        return io.BytesIO(self.asset_source.asset_func(migration.raw))


def with_instance(instance: Any) -> BindataDriver:
    """Return a driver indexing the migrations named in an AssetSource."""
    if not isinstance(instance, AssetSource):
        raise TypeError("expects AssetSource")
    driver = BindataDriver(instance)
    for name in instance.names:
        try:
            migration = parse(name)
        except ValueError:
            continue
        if not driver.migrations.append(migration):
            raise ValueError(f"unable to parse file {name}")
    return driver


register("go-bindata", BindataDriver())