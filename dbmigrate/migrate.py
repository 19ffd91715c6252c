"""Apply migrations from a source to a database, up or down."""

from __future__ import annotations

import errno
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import IO, Any
from urllib.parse import urlsplit

from dbmigrate.migration import Migration, new_migration
from dbmigrate.source.driver import SourceDriver, open_source
from dbmigrate.util import MultiError, suint

# Number of migrations read ahead of the one being applied.
DEFAULT_PREFETCH_MIGRATIONS = 10

# Seconds a database driver has to acquire its lock.
DEFAULT_LOCK_TIMEOUT = 15.0

# The version of a database to which no migration has been applied.
NIL_VERSION = -1


class MigrateError(Exception):
    """Base class of the errors raised while migrating."""


class NoChangeError(MigrateError):
    """Nothing had to be done."""

    def __init__(self, message: str = "no change") -> None:
        super().__init__(message)


class NilVersionError(MigrateError):
    """No migration has been applied to the database yet."""

    def __init__(self, message: str = "no migration") -> None:
        super().__init__(message)


class InvalidVersionError(MigrateError, ValueError):
    """A version below the nil version was given."""

    def __init__(self, message: str = "version must be >= -1") -> None:
        super().__init__(message)


class LockedError(MigrateError):
    """The database is already locked by this instance."""

    def __init__(self, message: str = "database locked") -> None:
        super().__init__(message)


class LockTimeoutError(MigrateError, TimeoutError):
    """The database lock could not be acquired in time."""

    def __init__(self, message: str = "timeout: can't acquire database lock") -> None:
        super().__init__(message)


class ShortLimitError(MigrateError):
    """The source ran out of migrations before the requested count."""

    def __init__(self, short: int) -> None:
        super().__init__(f"limit {short} short")
        self.short = short


class DirtyError(MigrateError):
    """The database was left in a dirty state by a failed migration."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Dirty database version {version}. Fix and force version.")
        self.version = version


class Logger(ABC):
    """Receives progress messages; ``verbose`` asks for more detail."""

    verbose: bool = False

    @abstractmethod
    def printf(self, message: str) -> None:
        """Write one message."""


class DatabaseDriver(ABC):
    """A database that migrations are applied to."""

    @abstractmethod
    def lock(self) -> None:
        """Acquire an exclusive migration lock."""

    @abstractmethod
    def unlock(self) -> None:
        """Release the migration lock."""

    @abstractmethod
    def run(self, body: IO[bytes]) -> None:
        """Execute a migration body."""

    @abstractmethod
    def set_version(self, version: int, dirty: bool) -> None:
        """Record the current version and whether it is dirty."""

    @abstractmethod
    def version(self) -> tuple[int, bool]:
        """Return the current version (NIL_VERSION if none) and dirty flag."""

    @abstractmethod
    def drop(self) -> None:
        """Delete everything in the database."""

    @abstractmethod
    def close(self) -> None:
        """Release the database connection."""


class _Failure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


_END = object()


def _scheme_from_url(url: str) -> str:
    if not url:
        raise ValueError("URL cannot be empty")
    scheme = urlsplit(url).scheme
    if not scheme:
        raise ValueError("no scheme")
    return scheme


def _duration(seconds: float) -> str:
    return f"{seconds * 1000:.3f}ms"


class Migrate:
    """Reads migrations from a source and applies them to a database."""

    def __init__(
        self,
        source_name: str,
        source: SourceDriver,
        database_name: str,
        database: DatabaseDriver,
    ) -> None:
        self.source_name = source_name
        self.source = source
        self.database_name = database_name
        self.database = database
        self.log: Logger | None = None
        self.prefetch_migrations = DEFAULT_PREFETCH_MIGRATIONS
        self.lock_timeout = DEFAULT_LOCK_TIMEOUT
        self._stop_requested = threading.Event()
        self._locked_mu = threading.Lock()
        self._is_locked = False

    @classmethod
    def with_database_instance(
        cls, source_url: str, database_name: str, database: DatabaseDriver
    ) -> Migrate:
        """Open the source named by a URL and pair it with a database driver."""
        source_name = _scheme_from_url(source_url)
        source = open_source(source_url)
        return cls(source_name, source, database_name, database)

    def __enter__(self) -> Migrate:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the source and the database."""
        self._log_verbose("Closing source and database")
        errors = []
        for closer in (self.source.close, self.database.close):
            try:
                closer()
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise MultiError(*errors)

    def graceful_stop(self) -> None:
        """Stop applying migrations at the next safe point."""
        self._stop_requested.set()

    def migrate(self, version: int) -> None:
        """Migrate up or down to the given version."""
        suint(version)
        with self._locked():
            current = self._clean_version()
            self._execute(self.read(current, version))

    def steps(self, n: int) -> None:
        """Apply n migrations up (n > 0) or down (n < 0)."""
        if n == 0:
            raise NoChangeError()
        with self._locked():
            current = self._clean_version()
            if n > 0:
                self._execute(self.read_up(current, n))
            else:
                self._execute(self.read_down(current, -n))

    def up(self) -> None:
        """Apply every up migration after the current version."""
        with self._locked():
            current = self._clean_version()
            self._execute(self.read_up(current, -1))

    def down(self) -> None:
        """Apply every down migration from the current version."""
        with self._locked():
            current = self._clean_version()
            self._execute(self.read_down(current, -1))

    def drop(self) -> None:
        """Delete everything in the database."""
        with self._locked():
            self.database.drop()

    def run(self, *args: Migration) -> None:
        """Apply the given migrations without consulting the source."""
        if not args:
            raise NoChangeError()
        with self._locked():
            self._clean_version()
            self._execute(self._schedule_all(args))

    def force(self, version: int) -> None:
        """Set the version and clear the dirty flag."""
        if version < NIL_VERSION:
            raise InvalidVersionError()
        with self._locked():
            self.database.set_version(version, False)

    def version(self) -> tuple[int, bool]:
        """Return the current version and dirty flag."""
        version, dirty = self.database.version()
        if version == NIL_VERSION:
            raise NilVersionError()
        return suint(version), dirty

    def read(self, from_version: int, to_version: int) -> Iterator[Migration]:
        """Yield the migrations leading from one version to another."""
        if from_version >= 0:
            self._version_exists(from_version)
        if to_version >= 0:
            self._version_exists(to_version)
        if from_version == to_version:
            raise NoChangeError()

        if from_version < to_version:
            if from_version == NIL_VERSION:
                first = self.source.first()
                yield self._start_buffering(self._new_migration(first, first))
                from_version = first
            while from_version < to_version:
                if self._stop():
                    return
                following = self.source.next(from_version)
                yield self._start_buffering(self._new_migration(following, following))
                from_version = following
        else:
            while from_version > to_version and from_version >= 0:
                if self._stop():
                    return
                try:
                    previous = self.source.prev(from_version)
                except FileNotFoundError:
                    if to_version != NIL_VERSION:
                        raise
                    yield self._start_buffering(self._new_migration(from_version, NIL_VERSION))
                    return
                yield self._start_buffering(self._new_migration(from_version, previous))
                from_version = previous

    def read_up(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` up migrations; -1 means no limit."""
        if from_version >= 0:
            self._version_exists(from_version)
        if limit == 0:
            raise NoChangeError()

        count = 0
        while count < limit or limit == -1:
            if self._stop():
                return
            if from_version == NIL_VERSION:
                first = self.source.first()
                yield self._start_buffering(self._new_migration(first, first))
                from_version = first
                count += 1
                continue
            try:
                following = self.source.next(from_version)
            except FileNotFoundError:
                if limit == -1 and count == 0:
                    raise NoChangeError() from None
                if limit == -1:
                    return
                if count == 0:
                    raise
                if count < limit:
                    raise ShortLimitError(limit - count) from None
                raise
            yield self._start_buffering(self._new_migration(following, following))
            from_version = following
            count += 1

    def read_down(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` down migrations; -1 means no limit."""
        if from_version >= 0:
            self._version_exists(from_version)
        if limit == 0:
            raise NoChangeError()
        if from_version == NIL_VERSION and limit == -1:
            raise NoChangeError()
        if from_version == NIL_VERSION and limit > 0:
            raise FileNotFoundError(errno.ENOENT, "no migration below the nil version")

        count = 0
        while count < limit or limit == -1:
            if self._stop():
                return
            try:
                previous = self.source.prev(from_version)
            except FileNotFoundError:
                if limit == -1 or limit - count > 0:
                    first = self.source.first()
                    yield self._start_buffering(self._new_migration(first, NIL_VERSION))
                    count += 1
                if count < limit:
                    raise ShortLimitError(limit - count) from None
                return
            yield self._start_buffering(self._new_migration(from_version, previous))
            from_version = previous
            count += 1

    def _clean_version(self) -> int:
        version, dirty = self.database.version()
        if dirty:
            raise DirtyError(version)
        return version

    def _schedule_all(self, migrations: Iterable[Migration]) -> Iterator[Migration]:
        for migr in migrations:
            self._log_scheduled(migr)
            yield self._start_buffering(migr)

    def _execute(self, items: Iterator[Any]) -> None:
        stream = self._prefetched(items)
        try:
            self._run_migrations(stream)
        finally:
            stream.close()

    def _prefetched(self, items: Iterator[Any]) -> Iterator[Any]:
        """Read items in a background thread, a bounded number ahead."""
        channel: queue.Queue[Any] = queue.Queue(maxsize=max(1, self.prefetch_migrations))
        abandoned = threading.Event()

        def put(item: Any) -> bool:
            while not abandoned.is_set():
                try:
                    channel.put(item, timeout=0.05)
                    return True
                except queue.Full:
                    continue
            return False

        def produce() -> None:
            try:
                for item in items:
                    if not put(item):
                        return
            except Exception as exc:
                put(_Failure(exc))
                return
            put(_END)

        threading.Thread(target=produce, daemon=True).start()
        try:
            while True:
                item = channel.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            abandoned.set()

    def _run_migrations(self, items: Iterable[Any]) -> None:
        for item in items:
            if self._stop():
                return
            if not isinstance(item, Migration):
                raise TypeError(f"unknown type: {type(item).__name__} with value: {item!r}")

            self.database.set_version(item.target_version, True)
            if item.body is not None:
                self._log_verbose(f"Read and execute {item.log_string()}")
                self.database.run(item.buffered_body)
            self.database.set_version(item.target_version, False)

            end = time.monotonic()
            read_time = item.finished_reading - item.started_buffering
            run_time = end - item.finished_reading
            if self.log is not None:
                if self.log.verbose:
                    self._log(
                        f"Finished {item.log_string()} "
                        f"(read {_duration(read_time)}, ran {_duration(run_time)})"
                    )
                else:
                    self._log(f"{item.log_string()} ({_duration(read_time + run_time)})")

    def _version_exists(self, version: int) -> None:
        missing: FileNotFoundError | None = None
        for read in (self.source.read_up, self.source.read_down):
            try:
                body, _ = read(version)
            except FileExistsError:
                return
            except FileNotFoundError as exc:
                missing = exc
                continue
            body.close()
            return
        error = FileNotFoundError(errno.ENOENT, f"no migration found for version {version}")
        self._log_error(error)
        raise error from missing

    def _stop(self) -> bool:
        return self._stop_requested.is_set()

    def _new_migration(self, version: int, target_version: int) -> Migration:
        reader = self.source.read_up if target_version >= version else self.source.read_down
        try:
            body, identifier = reader(version)
        except FileNotFoundError:
            migr = new_migration(None, "", version, target_version)
        else:
            migr = new_migration(body, identifier, version, target_version)
        self._log_scheduled(migr)
        return migr

    def _log_scheduled(self, migr: Migration) -> None:
        if self.prefetch_migrations > 0 and migr.body is not None:
            self._log_verbose(f"Start buffering {migr.log_string()}")
        else:
            self._log_verbose(f"Scheduled {migr.log_string()}")

    def _start_buffering(self, migr: Migration) -> Migration:
        def work() -> None:
            try:
                migr.buffer()
            except Exception as exc:
                self._log_error(exc)

        threading.Thread(target=work, daemon=True).start()
        return migr

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self._lock()
        try:
            yield
        except Exception as exc:
            try:
                self._unlock()
            except Exception as unlock_exc:
                raise MultiError(exc, unlock_exc) from exc
            raise
        self._unlock()

    def _lock(self) -> None:
        with self._locked_mu:
            if self._is_locked:
                raise LockedError()
            outcome: dict[str, BaseException] = {}
            finished = threading.Event()

            def acquire() -> None:
                try:
                    self.database.lock()
                except BaseException as exc:
                    outcome["error"] = exc
                finished.set()

            threading.Thread(target=acquire, daemon=True).start()
            if not finished.wait(self.lock_timeout):
                raise LockTimeoutError()
            if "error" in outcome:
                raise outcome["error"]
            self._is_locked = True

    def _unlock(self) -> None:
        with self._locked_mu:
            self.database.unlock()
            self._is_locked = False

    def _log(self, message: str) -> None:
        if self.log is not None:
            self.log.printf(message)

    def _log_verbose(self, message: str) -> None:
        if self.log is not None and self.log.verbose:
            self.log.printf(message)

    def _log_error(self, error: BaseException) -> None:
        if self.log is not None:
            self.log.printf(f"error: {error}")