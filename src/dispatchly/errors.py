"""Dispatchly exception hierarchy.

Shared by the router, the middleware chain and the built-in middlewares so
every module raises and catches the same types.
"""

from __future__ import annotations


class DispatchlyError(Exception):
    """Base for all dispatchly-specific errors."""


class ConfigurationError(DispatchlyError):
    """Raised when the app or its startup target is misconfigured."""


class DuplicateRouteError(DispatchlyError):
    """Raised on re-registration of a ``METHOD path`` key in strict mode."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Route {key!r} is already registered")
        self.key = key


class HTTPError(DispatchlyError):
    """An error that carries the HTTP status it should be answered with.

    Passed to ``next(err)`` by middlewares; when no error handler writes a
    response, the chain's fallback answers with :attr:`status`.
    """

    status: int = 500
    detail: str = "Internal Server Error"

    def __init__(self, status: int | None = None, detail: str | None = None) -> None:
        if status is not None:
            self.status = status
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)

    def __str__(self) -> str:
        return self.detail

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, detail={self.detail!r})"


class BadRequest(HTTPError):  # noqa: N818
    """400: the request body could not be decoded."""

    status = 400
    detail = "Bad Request"


class NotFound(HTTPError):  # noqa: N818
    """404: no route matched the request."""

    status = 404
    detail = "Not found"


class RequestTimeout(HTTPError):  # noqa: N818
    """503: the request was still unanswered when ``request_timeout`` expired."""

    status = 503
    detail = "Request timed out"
