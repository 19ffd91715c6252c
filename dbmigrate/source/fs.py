"""Source driver that reads migration files from a directory tree.

The tree may be a local directory (a path or ``pathlib.Path``) or any
traversable object offering ``joinpath``, ``iterdir``, ``is_dir``,
``is_file``, ``name`` and ``open``, such as ``zipfile.Path``.
"""

from __future__ import annotations

import errno
import os
import posixpath
from functools import reduce
from pathlib import Path
from typing import Any, BinaryIO

from dbmigrate.source.driver import SourceDriver
from dbmigrate.source.migration import (
    DuplicateMigrationError,
    Migrations,
    SourceMigration,
    parse,
)


def _not_exist(op: str, path: str) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, f"{op}: file does not exist", path)


def _resolve(fs: Any, path: str) -> Any:
    parts = [part for part in path.split("/") if part not in ("", ".")]
    return reduce(lambda node, part: node.joinpath(part), parts, fs)


class PartialDriver(SourceDriver):
    """Every source operation except ``open``, backed by a directory tree.

    Call ``init`` before use; subclasses supply ``open``.
    """

    def __init__(self) -> None:
        self._fs: Any = None
        self._root: Any = None
        self._path = ""
        self._migrations = Migrations()

    def init(self, fs: Any, path: str) -> None:
        """Index the migration files found in ``path`` below ``fs``."""
        if isinstance(fs, (str, os.PathLike)):
            fs = Path(fs)
        root = _resolve(fs, path)
        if not root.is_dir():
            if root.is_file():
                raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), str(root))
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(root))

        migrations = Migrations()
        for entry in sorted(root.iterdir(), key=lambda node: node.name):
            if entry.is_dir():
                continue
            try:
                migration = parse(entry.name)
            except ValueError:
                continue
            if not migrations.append(migration):
                raise DuplicateMigrationError(migration, entry.name)

        self._fs = fs
        self._root = root
        self._path = path
        self._migrations = migrations

    def close(self) -> None:
        """Close the underlying file system if it can be closed."""
        closer = getattr(self._fs, "close", None)
        if callable(closer):
            closer()

    def first(self) -> int:
        version = self._migrations.first()
        if version is None:
            raise _not_exist("first", self._path)
        return version

    def prev(self, version: int) -> int:
        found = self._migrations.prev(version)
        if found is None:
            raise _not_exist(f"prev for version {version}", self._path)
        return found

    def next(self, version: int) -> int:
        found = self._migrations.next(version)
        if found is None:
            raise _not_exist(f"next for version {version}", self._path)
        return found

    def read_up(self, version: int) -> tuple[BinaryIO, str]:
        migration = self._migrations.up(version)
        if migration is None:
            raise _not_exist(f"read up for version {version}", self._path)
        return self._open(migration), migration.identifier

    def read_down(self, version: int) -> tuple[BinaryIO, str]:
        migration = self._migrations.down(version)
        if migration is None:
            raise _not_exist(f"read down for version {version}", self._path)
        return self._open(migration), migration.identifier

    def _open(self, migration: SourceMigration) -> BinaryIO:
        location = posixpath.join(self._path, migration.raw)
        try:
            return self._root.joinpath(migration.raw).open("rb")
        except OSError:
            raise
        except Exception as exc:
            # Keep the path in the message for file systems whose errors lack it.
            raise OSError(errno.EIO, f"open: {exc}", location) from exc


class FsDriver(PartialDriver):
    """A driver built directly from a directory tree; it has no URL form."""

    def open(self, url: str) -> SourceDriver:
        raise RuntimeError("open cannot be called on the file system passthrough driver")


def new(fs: Any, path: str) -> FsDriver:
    """Return a driver over the migrations in ``path`` below ``fs``."""
    driver = FsDriver()
    driver.init(fs, path)
    return driver