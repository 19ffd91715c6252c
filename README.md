# dbmigrate

`dbmigrate` reads numbered migrations from a *source* and applies them to a
*database*, moving the recorded schema version up or down. Source and database
drivers are kept simple; ordering, locking and dirty-state handling live in
the `Migrate` class (`dbmigrate.migrate`).

## Migration files

Sources that index file names recognise names of the form

```
<version>_<title>.up.<ext>
<version>_<title>.down.<ext>
```

for example `1_create_users.up.sql` and `1_create_users.down.sql`. Versions
need not be contiguous, and a version may have only an up or only a down
migration; a missing body is applied as an empty migration so the version
still advances. Names that do not match are ignored.

`dbmigrate.source.migration.parse(raw)` turns such a name into a
`SourceMigration` (`version`, `direction`, `identifier`, `raw`), raising
`ParseError` when the name does not match. `Migrations` keeps them indexed by
version with `first()`, `prev(version)`, `next(version)`, `up(version)` and
`down(version)`, each returning `None` when there is nothing to return.

## Sources

Every source is a `dbmigrate.source.driver.SourceDriver`. Looking up a version
that is not there raises `FileNotFoundError`.

* `dbmigrate.source.file` — `FileDriver`, registered as the `file://` scheme,
  reads a directory on disk. A relative path is resolved against the working
  directory; an empty path means the working directory itself
  (`parse_url(url)` does this resolution).
* `dbmigrate.source.fs` — `PartialDriver` implements every source operation
  over a directory tree except `open`; `new(fs, path)` returns an `FsDriver`
  over a local path, a `pathlib.Path` or any traversable object such as
  `zipfile.Path`. Two files with the same version and direction raise
  `DuplicateMigrationError`; a missing directory raises `FileNotFoundError`.
* `dbmigrate.source.bindata` — `resource(names, asset_func)` builds an
  `AssetSource`, and `with_instance(asset_source)` returns a `BindataDriver`
  serving those assets. It cannot be opened from a URL.
* `dbmigrate.source.stub` — `StubDriver`, registered as `stub://`, an
  in-memory source whose migration bodies are their identifiers; set its
  `migrations` attribute directly, or build one with
  `with_instance(instance, StubConfig())`.

Importing a driver module registers its scheme. `open_source(url)` opens a
source by URL scheme, `list_drivers()` lists the registered names, and
`register(name, driver)` adds your own driver (registering a name twice raises
`ValueError`).

## Applying migrations

Provide a database by subclassing `dbmigrate.migrate.DatabaseDriver` and
implementing `lock`, `unlock`, `run(body)`, `set_version(version, dirty)`,
`version()` (returning `(version, dirty)`, with `-1` for no version), `drop`
and `close`. Then:

```python
import dbmigrate.source.file  # registers file://
from dbmigrate.migrate import Migrate, NoChangeError

with Migrate.with_database_instance("file://migrations", "mydb", my_database) as m:
    try:
        m.up()
    except NoChangeError:
        pass
    version, dirty = m.version()
```

`Migrate(source_name, source, database_name, database)` pairs driver instances
you already have. Leaving the `with` block, or calling `close()`, closes both.

Operations:

* `m.up()` / `m.down()` — apply every migration up, or roll every one back.
* `m.migrate(version)` — move up or down to an exact version.
* `m.steps(n)` — apply `n` migrations up, or `-n` down.
* `m.force(version)` — record a version and clear the dirty flag without
  running anything (`-1` means no version).
* `m.drop()` — remove everything from the database.
* `m.run(migration, ...)` — run hand-built `dbmigrate.migration.Migration`
  objects (see `new_migration(body, identifier, version, target_version)`).
* `m.version()` — the current version and dirty flag.
* `m.graceful_stop()` — stop at the next safe point between migrations.

Migration bodies are read in background threads, up to
`m.prefetch_migrations` ahead (default 10). `m.lock_timeout` is the number of
seconds the database has to grant its lock (default 15). Set `m.log` to a
`Logger` subclass (with a `printf(message)` method and a `verbose` flag) to
receive progress messages.

## Errors

The migration errors derive from `MigrateError`:

* `NoChangeError` — nothing to do.
* `NilVersionError` — no migration has been applied yet.
* `InvalidVersionError` — a forced version below `-1`.
* `LockedError`, `LockTimeoutError` — the database lock could not be taken.
* `ShortLimitError` — fewer migrations were available than requested; its
  `short` attribute says how many were missing.
* `DirtyError` — a previous run failed part-way; fix the database and force a
  version.

A version that exists in neither direction raises `FileNotFoundError`. When
unlocking fails after another error, both are raised together as a
`dbmigrate.util.MultiError`.

## What is not included

The package ships no database drivers: you supply a `DatabaseDriver` for your
database. It reads migrations only from local directories, traversable file
objects, in-memory assets and the in-memory stub; there are no drivers for
remote stores or code-hosting services. There is no command-line program; it
is used as a library.

## Development

```
pip install -e ".[test]"
pytest
```