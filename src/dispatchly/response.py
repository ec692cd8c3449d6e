"""Buffered response with a single terminal write."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from dispatchly._types import Send

logger = logging.getLogger("dispatchly.response")


class Response:
    """Accumulates status and headers, then accepts exactly one :meth:`end`.

    Once ended, the headers count as sent: further status/header changes and
    writes are ignored with a warning. The dispatcher flushes the response
    to the ASGI ``send`` callable after it is closed.
    """

    __slots__ = ("_body", "_closed", "_headers", "_status_code")

    def __init__(self) -> None:
        self._status_code = 200
        self._headers: dict[str, str] = {}
        self._body = b""
        self._closed = asyncio.Event()

    # ------------------------------------------------------------------
    # Status and headers
    # ------------------------------------------------------------------

    @property
    def headers_sent(self) -> bool:
        return self._closed.is_set()

    @property
    def status_code(self) -> int:
        return self._status_code

    @status_code.setter
    def status_code(self, value: int) -> None:
        if self._reject("status change"):
            return
        self._status_code = value

    @property
    def headers(self) -> dict[str, str]:
        """A copy of the headers, keyed by lowercase name."""
        return dict(self._headers)

    @property
    def body(self) -> bytes:
        return self._body

    def set_header(self, name: str, value: str) -> None:
        if self._reject(f"header {name!r}"):
            return
        self._headers[name.lower()] = value

    def get_header(self, name: str, default: str | None = None) -> str | None:
        return self._headers.get(name.lower(), default)

    # ------------------------------------------------------------------
    # Terminal writes
    # ------------------------------------------------------------------

    def end(self, body: bytes | str = b"") -> None:
        """Write the body and close the exchange."""
        if self._reject("terminal write"):
            return
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self._closed.set()

    def text(self, content: str, status_code: int | None = None) -> None:
        if status_code is not None:
            self.status_code = status_code
        if "content-type" not in self._headers:
            self.set_header("content-type", "text/plain; charset=utf-8")
        self.end(content)

    def json(self, content: Any, status_code: int | None = None) -> None:
        if status_code is not None:
            self.status_code = status_code
        self.set_header("content-type", "application/json")
        self.end(_dumps(content))

    def send_value(self, value: Any) -> None:
        """Write a handler's return value: JSON for containers/models, text otherwise."""
        if value is self or isinstance(value, Response):
            return
        if isinstance(value, dict | list | BaseModel):
            self.json(value)
        elif isinstance(value, bytes):
            self.end(value)
        else:
            self.text(str(value))

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def send(self, send: Send) -> None:
        """Flush the buffered response to an ASGI *send* callable."""
        headers = [(k.encode("latin-1"), v.encode("latin-1")) for k, v in self._headers.items()]
        if "content-length" not in self._headers:
            headers.append((b"content-length", str(len(self._body)).encode("latin-1")))
        await send({"type": "http.response.start", "status": self._status_code, "headers": headers})
        await send({"type": "http.response.body", "body": self._body})

    def _reject(self, what: str) -> bool:
        if self._closed.is_set():
            logger.warning("Ignoring %s: response already sent", what)
            return True
        return False

    def __repr__(self) -> str:
        state = "sent" if self.headers_sent else "pending"
        return f"Response({self._status_code}, {state})"


def _dumps(content: Any) -> bytes:
    if isinstance(content, BaseModel):
        return content.model_dump_json().encode("utf-8")
    return json.dumps(content, default=_encode_default, separators=(",", ":")).encode("utf-8")


def _encode_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    msg = f"Object of type {type(obj).__name__} is not JSON serializable"
    raise TypeError(msg)
