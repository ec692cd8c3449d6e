"""URL routing with ``:name`` path parameters."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from dispatchly.errors import DuplicateRouteError

if TYPE_CHECKING:
    from collections.abc import Callable

    from dispatchly._types import Handler

PARAM_MARKER = ":"

# A parameter matches exactly one non-empty path segment.
_SEGMENT_RE = r"([^/]+)"


class Route:
    """A single route mapping a method + path template to a wrapped handler."""

    __slots__ = ("handler", "method", "param_names", "path", "pattern", "pipeline")

    def __init__(
        self,
        method: str,
        path: str,
        handler: Handler,
        pipeline: Callable[..., Any] | None = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.handler = handler
        self.pipeline = pipeline
        self.pattern, self.param_names = compile_pattern(path)

    @property
    def key(self) -> str:
        return f"{self.method} {self.path}"

    def match(self, path: str) -> dict[str, str] | None:
        """Return path params if *path* matches, else ``None``.

        Values are assigned positionally, so a repeated name keeps the
        value of its last occurrence.
        """
        m = self.pattern.fullmatch(path)
        if m is None:
            return None
        return dict(zip(self.param_names, m.groups(), strict=True))

    def __repr__(self) -> str:
        return f"Route({self.method!r}, {self.path!r})"


class Router:
    """Ordered collection of routes with first-match-wins lookup.

    Parameters
    ----------
    strict:
        When ``True``, registering an existing ``METHOD path`` key raises
        :class:`DuplicateRouteError` instead of replacing the handler.
    """

    __slots__ = ("_index", "routes", "strict")

    def __init__(self, *, strict: bool = False) -> None:
        self.routes: list[Route] = []
        self.strict = strict
        self._index: dict[str, int] = {}

    def add_route(
        self,
        method: str,
        path: str,
        handler: Handler,
        pipeline: Callable[..., Any] | None = None,
    ) -> Route:
        route = Route(method, path, handler, pipeline)
        position = self._index.get(route.key)
        if position is None:
            self._index[route.key] = len(self.routes)
            self.routes.append(route)
        elif self.strict:
            raise DuplicateRouteError(route.key)
        else:
            # Replacement keeps the original scan position.
            self.routes[position] = route
        return route

    def match(
        self,
        method: str,
        path: str,
    ) -> tuple[Route, dict[str, str]] | None:
        """Return ``(route, params)`` for the first match, or ``None``."""
        method = method.upper()
        for route in self.routes:
            if route.method != method:
                continue
            params = route.match(path)
            if params is not None:
                return route, params
        return None

    def __len__(self) -> int:
        return len(self.routes)


def compile_pattern(path: str) -> tuple[re.Pattern[str], tuple[str, ...]]:
    """Compile ``/users/:id`` into an anchored regex + ordered param names."""
    names: list[str] = []
    parts: list[str] = []

    for segment in path.split("/"):
        if segment.startswith(PARAM_MARKER) and len(segment) > 1:
            names.append(segment[1:])
            parts.append(_SEGMENT_RE)
        else:
            parts.append(re.escape(segment))

    return re.compile("^" + "/".join(parts) + r"\Z"), tuple(names)


def format_routes(routes: list[Route]) -> list[str]:
    """Render the route table as aligned ``METHOD  path  handler`` lines."""
    if not routes:
        return []
    width = max(len(r.method) for r in routes)
    lines = []
    for route in routes:
        name = getattr(route.handler, "__qualname__", repr(route.handler))
        lines.append(f"{route.method:<{width}}  {route.path}  -> {name}")
    return lines
