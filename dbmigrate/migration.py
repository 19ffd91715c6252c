"""A single migration step as handed to the database driver."""

from __future__ import annotations

import io
import threading
import time
from dataclasses import dataclass, field
from typing import IO

DEFAULT_BUFFER_SIZE = 100_000
EMPTY_IDENTIFIER = "<empty>"


class _PendingBody(io.RawIOBase):
    """A reader that blocks until the migration body has been buffered."""

    def __init__(self) -> None:
        super().__init__()
        self._ready = threading.Event()
        self._data = io.BytesIO()
        self._error: BaseException | None = None

    def _feed(self, data: bytes) -> None:
        self._data = io.BytesIO(data)
        self._ready.set()

    def _fail(self, error: BaseException) -> None:
        self._error = error
        self._ready.set()

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self._ready.wait()
        if self._error is not None:
            raise self._error
        return self._data.readinto(buffer)


@dataclass(eq=False)
class Migration:
    """A migration from ``version`` to ``target_version`` (-1 means no version).

    Timestamps are taken from a monotonic clock, in seconds.
    """

    identifier: str = ""
    version: int = 0
    target_version: int = 0
    body: IO[bytes] | None = None
    buffered_body: IO[bytes] | None = None
    buffer_size: int = 0
    scheduled: float = field(default_factory=time.monotonic)
    started_buffering: float = 0.0
    finished_buffering: float = 0.0
    finished_reading: float = 0.0
    bytes_read: int = 0

    def __post_init__(self) -> None:
        if self.body is not None:
            if self.buffered_body is None:
                self.buffered_body = _PendingBody()
            if self.buffer_size <= 0:
                self.buffer_size = DEFAULT_BUFFER_SIZE

    def __str__(self) -> str:
        return f"{self.identifier} [{self.version}=>{self.target_version}]"

    def log_string(self) -> str:
        """Describe the migration for log output."""
        direction = "d" if self.target_version < self.version else "u"
        return f"{self.version}/{direction} {self.identifier}"

    def buffer(self) -> None:
        """Read the body and make it available through ``buffered_body``.

        Safe to run in a background thread; readers of ``buffered_body``
        wait until it has finished.
        """
        if self.body is None:
            return
        sink = self.buffered_body if isinstance(self.buffered_body, _PendingBody) else None
        self.started_buffering = time.monotonic()
        try:
            head = self.body.read(self.buffer_size) or b""
            self.finished_buffering = time.monotonic()
            rest = self.body.read() or b""
            data = bytes(head) + bytes(rest)
        except Exception as exc:
            if sink is not None:
                sink._fail(exc)
            raise
        self.finished_reading = time.monotonic()
        self.bytes_read = len(data)
        if sink is not None:
            sink._feed(data)
        self.body.close()


def new_migration(
    body: IO[bytes] | None, identifier: str, version: int, target_version: int
) -> Migration:
    """Create a migration; a None body makes an empty migration."""
    now = time.monotonic()
    if body is None:
        return Migration(
            identifier=identifier or EMPTY_IDENTIFIER,
            version=version,
            target_version=target_version,
            scheduled=now,
            started_buffering=now,
            finished_buffering=now,
            finished_reading=now,
        )
    return Migration(
        identifier=identifier,
        version=version,
        target_version=target_version,
        body=body,
        buffer_size=DEFAULT_BUFFER_SIZE,
        scheduled=now,
    )