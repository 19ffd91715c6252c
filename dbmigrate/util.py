"""Small helpers shared across the package."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


class MultiError(Exception):
    """Several errors reported as one; None entries are dropped."""

    def __init__(self, *errors: BaseException | None) -> None:
        self.errors = [e for e in errors if e is not None]
        super().__init__(*self.errors)

    def __str__(self) -> str:
        return " and ".join(text for text in map(str, self.errors) if text)


def suint(n: int) -> int:
    """Return n, refusing negative values."""
    if n < 0:
        raise ValueError(f"suint({n}) expects input >= 0")
    return n


def filter_custom_query(url: str) -> str:
    """Return the URL without query parameters whose names start with 'x-'."""
    parts = urlsplit(url)
    grouped: dict[str, list[str]] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if not key.startswith("x-"):
            grouped.setdefault(key, []).append(value)
    query = urlencode([(key, value) for key in sorted(grouped) for value in grouped[key]])
    return urlunsplit(parts._replace(query=query))