"""Test doubles and layouts shared by the engine tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from bento_engine.data_models import GridRect
from bento_engine.errors import PersistenceError, RepositoryUnreachableError
from bento_engine.http import HttpResponse


@dataclass
class FakeTransport:
    """
    In-memory HttpTransport.

    ``routes`` maps (method, url) to a response, an exception, or a list of
    either; lists are consumed in order and their last entry repeats.
    """

    routes: dict[tuple[str, str], Any] = field(default_factory=dict)
    calls: list[tuple[str, str, Mapping[str, str], Any]] = field(default_factory=list)

    def add(self, method: str, url: str, *responses: Any) -> None:
        self.routes[(method, url)] = list(responses)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
    ) -> HttpResponse:
        self.calls.append((method, url, dict(headers or {}), json_body))
        queued = self.routes.get((method, url))
        if not queued:
            return HttpResponse(status=404, body={"message": "Not Found"})
        entry = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry

    def urls(self, method: str | None = None) -> list[str]:
        return [url for m, url, _, _ in self.calls if method is None or m == method]


def ok(body: Any, status: int = 200) -> HttpResponse:
    return HttpResponse(status=status, body=body)


def unreachable(url: str) -> RepositoryUnreachableError:
    return RepositoryUnreachableError(f"GET {url} failed: connection refused")


class FlakyAdapter:
    """Delegates to a real adapter but raises PersistenceError for chosen methods."""

    def __init__(self, inner: Any, fail: set[str] | None = None) -> None:
        self._inner = inner
        self.fail = set(fail or ())
        self.calls: list[str] = []

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def _wrapped(*args: Any, **kwargs: Any) -> Any:
            self.calls.append(name)
            if name in self.fail:
                raise PersistenceError(f"{name} rejected")
            return attr(*args, **kwargs)

        return _wrapped


# Gap-free layouts mixing every card shape, one per breakpoint.
DENSE_WIDE: dict[str, GridRect] = {
    "a": GridRect(0, 0, 2, 2),
    "b": GridRect(2, 0, 1, 2),
    "c": GridRect(3, 0, 1, 4),
    "d": GridRect(0, 2, 1, 2),
    "e": GridRect(1, 2, 2, 2),
    "f": GridRect(0, 4, 4, 1),
    "g": GridRect(0, 5, 1, 2),
    "h": GridRect(1, 5, 2, 4),
    "i": GridRect(3, 5, 1, 2),
}

DENSE_NARROW: dict[str, GridRect] = {
    "a": GridRect(0, 0, 2, 2),
    "b": GridRect(0, 2, 1, 2),
    "c": GridRect(1, 2, 1, 4),
    "d": GridRect(0, 4, 1, 2),
    "e": GridRect(0, 6, 2, 2),
    "f": GridRect(0, 8, 2, 1),
    "g": GridRect(0, 9, 1, 2),
    "h": GridRect(1, 9, 1, 4),
    "i": GridRect(0, 11, 1, 2),
}
