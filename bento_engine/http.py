"""
Minimal JSON-over-HTTP transport.

The publish pipeline and the snapshot reader only need a handful of JSON
requests, so the transport is a tiny Protocol with a urllib-backed default.
Tests substitute an in-memory transport.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from .errors import RepositoryUnreachableError

DEFAULT_TIMEOUT_SECONDS = 30
USER_AGENT = "bento-profile-kit/0.1"


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """
    A decoded HTTP response.

    Attributes
    ----------
    status:
        HTTP status code.
    body:
        Parsed JSON body, or None when the body was empty or not JSON.
    text:
        Raw body text.
    """

    status: int
    body: Any = None
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport(Protocol):
    """Sends one request and returns the decoded response."""

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
    ) -> HttpResponse:
        """
        Perform a request.

        Returns
        -------
        HttpResponse
            The response, including non-2xx statuses.

        Raises
        ------
        RepositoryUnreachableError
            If no response could be obtained (DNS, connection, timeout).
        """
        raise NotImplementedError


def _decode(raw: bytes) -> tuple[Any, str]:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return None, text
    try:
        return json.loads(text), text
    except json.JSONDecodeError:
        return None, text


@dataclass(frozen=True, slots=True)
class UrllibTransport:
    """HttpTransport backed by urllib.request."""

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
    ) -> HttpResponse:
        """See HttpTransport.request."""
        all_headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        all_headers.update(headers or {})
        data = None
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            all_headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, data=data, headers=all_headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                body, text = _decode(resp.read())
                return HttpResponse(
                    status=resp.status, body=body, text=text, headers=dict(resp.headers.items())
                )
        except urllib.error.HTTPError as exc:
            body, text = _decode(exc.read() if exc.fp else b"")
            return HttpResponse(
                status=exc.code,
                body=body,
                text=text,
                headers=dict(exc.headers.items()) if exc.headers else {},
            )
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise RepositoryUnreachableError(f"{method} {url} failed: {exc}") from exc
