"""Dispatchly ASGI application."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, unquote, urlsplit

from dispatchly.chain import MiddlewareChain
from dispatchly.config import AppConfig
from dispatchly.errors import ConfigurationError, NotFound, RequestTimeout
from dispatchly.request import Request
from dispatchly.response import Response
from dispatchly.routing import Route, Router, format_routes

if TYPE_CHECKING:
    from dispatchly._types import ErrorHandler, Handler, Middleware, Receive, Scope, Send

logger = logging.getLogger("dispatchly.app")


class Dispatchly:
    """ASGI 3.0 request-dispatch application.

    Middlewares and error handlers are bound to a route when the route is
    registered, so register them first::

        app = Dispatchly()
        app.use(logger)
        app.use_error(log_errors)

        @app.get("/users/:id")
        def show(request, response):
            response.json({"id": request.params["id"]})

    Parameters
    ----------
    config:
        An :class:`AppConfig`; defaults to ``AppConfig.from_env()``.
    **overrides:
        Field overrides applied on top of *config*, e.g. ``strict_routes=True``.
    """

    def __init__(self, config: AppConfig | None = None, **overrides: Any) -> None:
        if config is None:
            config = AppConfig.from_env(**overrides)
        elif overrides:
            config = dataclasses.replace(config, **overrides)
        self.config = config
        self.router = Router(strict=config.strict_routes)
        self.chain = MiddlewareChain()

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    def use(self, middleware: Middleware) -> Middleware:
        """Register a ``(request, response, next)`` middleware."""
        return self.chain.use(middleware)

    def use_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Register an ``(error, request, response, next)`` error handler."""
        return self.chain.use_error(handler)

    # ------------------------------------------------------------------
    # Route registration
    # ------------------------------------------------------------------

    def route(self, method: str, path: str, handler: Handler | None = None) -> Any:
        """Register *handler*, or return a decorator when it is omitted."""

        def register(fn: Handler) -> Handler:
            self.router.add_route(method, path, fn, self.chain.wrap(fn))
            return fn

        if handler is None:
            return register
        return register(handler)

    def get(self, path: str, handler: Handler | None = None) -> Any:
        return self.route("GET", path, handler)

    def post(self, path: str, handler: Handler | None = None) -> Any:
        return self.route("POST", path, handler)

    def put(self, path: str, handler: Handler | None = None) -> Any:
        return self.route("PUT", path, handler)

    def delete(self, path: str, handler: Handler | None = None) -> Any:
        return self.route("DELETE", path, handler)

    def patch(self, path: str, handler: Handler | None = None) -> Any:
        return self.route("PATCH", path, handler)

    @property
    def routes(self) -> list[Route]:
        return list(self.router.routes)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def split_target(self, target: str) -> tuple[str, dict[str, str]]:
        """Split a percent-encoded request target into its decoded path and
        a flat query mapping.

        Repeated query keys keep their last value.
        """
        parts = urlsplit(f"http://{self.config.host}{target}")
        return unquote(parts.path) or "/", dict(parse_qsl(parts.query, keep_blank_values=True))

    async def dispatch(self, request: Request, response: Response) -> None:
        path, query = self.split_target(request.target)
        result = self.router.match(request.method, path)
        if result is None:
            # Unmatched requests never reach middlewares or error handlers.
            response.text(NotFound.detail, status_code=NotFound.status)
            return

        route, params = result
        request.params = params
        request.query = query

        run = route.pipeline(request, response)
        timeout = self.config.request_timeout
        try:
            await asyncio.wait_for(run.finish(), timeout)
        except asyncio.TimeoutError:
            logger.warning("%s %s timed out after %ss", request.method, request.url, timeout)
            await run.expire(RequestTimeout(), timeout)

    # ------------------------------------------------------------------
    # ASGI interface
    # ------------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await _handle_lifespan(receive, send)
            return
        if scope["type"] != "http":
            return

        request = Request(scope, receive)
        response = Response()
        await self.dispatch(request, response)
        await response.send(send)

    # ------------------------------------------------------------------
    # Granian convenience
    # ------------------------------------------------------------------

    def listen(
        self,
        port: int | None = None,
        *,
        address: str | None = None,
        target: str | None = None,
        **granian_kwargs: Any,
    ) -> None:
        """Serve the app with Granian on *port* (default ``config.port``)."""
        from dispatchly._server import serve

        serve(
            target or _resolve_target(self),
            host=address or self.config.address,
            port=self.config.port if port is None else port,
            route_lines=format_routes(self.router.routes) if self.config.log_routes else None,
            granian_kwargs=granian_kwargs or None,
        )


# ------------------------------------------------------------------
# Module-level helpers
# ------------------------------------------------------------------


def _resolve_target(app: Dispatchly) -> str:
    """Derive a ``"module:var"`` string for the given app instance.

    Searches ``__main__`` for a module-level variable whose value *is* the
    app. Falls back to the ``__file__`` stem when running as a script
    (``python main.py``) so Granian workers can import it.
    """
    main = sys.modules.get("__main__")
    if main is None:
        msg = "Cannot auto-detect Granian target: __main__ module not found. Pass target='module:app'."
        raise ConfigurationError(msg)

    var_name: str | None = None
    for name, val in vars(main).items():
        if val is app:
            var_name = name
            break

    if var_name is None:
        msg = (
            "Cannot auto-detect Granian target: no module-level variable in "
            "__main__ references this Dispatchly instance. Pass target='module:app'."
        )
        raise ConfigurationError(msg)

    spec = getattr(main, "__spec__", None)
    module_name: str | None = spec.name if spec else None
    if not module_name:
        # Running as a script: use the filename stem so Granian can import it.
        main_file = getattr(main, "__file__", None)
        module_name = Path(main_file).stem if main_file else None

    return f"{module_name}:{var_name}"


async def _handle_lifespan(receive: Receive, send: Send) -> None:
    """Minimal lifespan responder: accept startup/shutdown with no-ops."""
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            await send({"type": "lifespan.shutdown.complete"})
            return

