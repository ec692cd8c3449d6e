"""ASGI request wrapper."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

if TYPE_CHECKING:
    from dispatchly._types import Receive, Scope


class Request:
    """Per-call request, progressively augmented as it moves down the chain.

    The dispatcher sets :attr:`params` and :attr:`query`; a body-decoding
    middleware sets :attr:`body`.
    """

    __slots__ = ("_receive", "_scope", "body", "params", "query", "raw_body")

    def __init__(self, scope: Scope, receive: Receive) -> None:
        self._scope = scope
        self._receive = receive
        self.raw_body: bytes | None = None
        self.body: Any = None
        self.params: dict[str, str] = {}
        self.query: dict[str, str] = {}

    @property
    def method(self) -> str:
        return self._scope["method"]

    @property
    def path(self) -> str:
        return self._scope["path"]

    @property
    def query_string(self) -> bytes:
        return self._scope.get("query_string", b"")

    @property
    def url(self) -> str:
        """The request target: path plus the raw query string, if any."""
        qs = self.query_string.decode("latin-1")
        return f"{self.path}?{qs}" if qs else self.path

    @property
    def target(self) -> str:
        """The percent-encoded request target, as sent on the wire.

        Built from ``raw_path`` when the server provides it, else from the
        re-quoted ``path``, so an encoded ``?`` or ``#`` stays in its segment.
        """
        raw = self._scope.get("raw_path")
        # Some servers include the query string in raw_path; query_string is authoritative.
        path = raw.decode("latin-1").split("?", 1)[0] if raw else quote(self.path)
        qs = self.query_string.decode("latin-1")
        return f"{path}?{qs}" if qs else path

    @property
    def headers(self) -> dict[str, str]:
        """Headers as a lowercase-keyed dict (last value wins for dupes)."""
        return {k.decode("latin-1"): v.decode("latin-1") for k, v in self._scope.get("headers", [])}

    async def read_body(self) -> bytes:
        """Read and cache the full request body."""
        if self.raw_body is not None:
            return self.raw_body
        chunks: list[bytes] = []
        while True:
            message = await self._receive()
            chunk = message.get("body", b"")
            if chunk:
                chunks.append(chunk)
            if not message.get("more_body", False):
                break
        self.raw_body = b"".join(chunks)
        return self.raw_body

    def __repr__(self) -> str:
        return f"Request({self.method!r}, {self.url!r})"
