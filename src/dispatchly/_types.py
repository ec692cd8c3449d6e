"""ASGI and pipeline type definitions."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, MutableMapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dispatchly.request import Request
    from dispatchly.response import Response

Scope = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[dict[str, Any]]]
Send = Callable[[dict[str, Any]], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

# The continuation handed to every stage; returns an awaitable that runs
# even when the caller does not await it.
Next = Callable[..., Awaitable[None]]

Handler = Callable[["Request", "Response"], Any]
Middleware = Callable[["Request", "Response", Next], Any]
ErrorHandler = Callable[[BaseException, "Request", "Response", Next], Any]
