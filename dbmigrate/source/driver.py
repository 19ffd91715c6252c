"""Source driver interface and the registry of named drivers."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import BinaryIO
from urllib.parse import urlsplit


class SourceDriver(ABC):
    """A read-only provider of migration files.

    Methods that look up a version raise FileNotFoundError when it is absent.
    """

    @abstractmethod
    def open(self, url: str) -> SourceDriver:
        """Return a new driver configured from the URL."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying source."""

    @abstractmethod
    def first(self) -> int:
        """Return the first available version."""

    @abstractmethod
    def prev(self, version: int) -> int:
        """Return the version before the given one."""

    @abstractmethod
    def next(self, version: int) -> int:
        """Return the version after the given one."""

    @abstractmethod
    def read_up(self, version: int) -> tuple[BinaryIO, str]:
        """Return the unread up body and its identifier."""

    @abstractmethod
    def read_down(self, version: int) -> tuple[BinaryIO, str]:
        """Return the unread down body and its identifier."""


_lock = threading.RLock()
_drivers: dict[str, SourceDriver] = {}


def register(name: str, driver: SourceDriver) -> None:
    """Register a driver under a URL scheme name."""
    if driver is None:
        raise ValueError("register driver is None")
    with _lock:
        if name in _drivers:
            raise ValueError(f"register called twice for driver {name}")
        _drivers[name] = driver


def open_source(url: str) -> SourceDriver:
    """Open a source using the driver registered for the URL's scheme."""
    scheme = urlsplit(url).scheme
    if not scheme:
        raise ValueError("source driver: invalid URL scheme")
    with _lock:
        driver = _drivers.get(scheme)
    if driver is None:
        raise ValueError(f"source driver: unknown driver '{scheme}' (not registered?)")
    return driver.open(url)


def list_drivers() -> list[str]:
    """Return the names of the registered drivers."""
    with _lock:
        return list(_drivers)