"""Middleware chain: ordered middlewares, broadcast error handlers.

A :class:`MiddlewareChain` collects two append-only lists. Wrapping a
terminal handler snapshots both into a :class:`Pipeline`; each request then
gets its own :class:`ChainRun`, which carries the cursor and the error slot.

Every stage receives a ``next`` continuation::

    async def timing(request, response, next):
        start = time.monotonic()
        await next()
        logger.info("took %.3fs", time.monotonic() - start)

    def reject_all(err, request, response, next):
        if not response.headers_sent:
            response.text("nope", status_code=418)

``next()`` continues down the chain and ``next(err)`` diverts to the error
handlers. It returns a scheduled task, so a plain function may call it
without awaiting. A middleware that neither calls ``next`` nor ends the
response stalls its request.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from typing import TYPE_CHECKING, Any

from dispatchly.errors import HTTPError

if TYPE_CHECKING:
    from collections.abc import Callable

    from dispatchly._types import ErrorHandler, Handler, Middleware
    from dispatchly.request import Request
    from dispatchly.response import Response

logger = logging.getLogger("dispatchly.chain")


class ChainState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    HANDLER = "handler"
    ERROR = "error"
    RESPONSE_SENT = "response_sent"


class MiddlewareChain:
    """Registry of middlewares and error handlers shared by all routes."""

    __slots__ = ("error_handlers", "middlewares")

    def __init__(self) -> None:
        self.middlewares: list[Middleware] = []
        self.error_handlers: list[ErrorHandler] = []

    def use(self, middleware: Middleware) -> Middleware:
        """Append a ``(request, response, next)`` middleware."""
        self.middlewares.append(middleware)
        return middleware

    def use_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Append an ``(error, request, response, next)`` error handler."""
        self.error_handlers.append(handler)
        return handler

    def wrap(self, handler: Handler) -> Pipeline:
        """Bind *handler* to the lists as they are right now.

        Stages registered afterwards do not reach the returned pipeline.
        """
        return Pipeline(handler, tuple(self.middlewares), tuple(self.error_handlers))


class Pipeline:
    """A terminal handler wrapped with a frozen set of stages."""

    __slots__ = ("error_handlers", "handler", "middlewares")

    def __init__(
        self,
        handler: Handler,
        middlewares: tuple[Middleware, ...] = (),
        error_handlers: tuple[ErrorHandler, ...] = (),
    ) -> None:
        self.handler = handler
        self.middlewares = middlewares
        self.error_handlers = error_handlers

    def __call__(self, request: Request, response: Response) -> ChainRun:
        """Start a run for this request; the first stage is scheduled, not awaited."""
        run = ChainRun(self, request, response)
        run.next()
        return run

    def __repr__(self) -> str:
        return (
            f"Pipeline({_name(self.handler)}, middlewares={len(self.middlewares)}, "
            f"error_handlers={len(self.error_handlers)})"
        )


class ChainRun:
    """Per-request execution state: cursor, error slot, pending continuations."""

    __slots__ = ("_broadcasting", "_state", "_tasks", "error", "index", "pipeline", "request", "response")

    def __init__(self, pipeline: Pipeline, request: Request, response: Response) -> None:
        self.pipeline = pipeline
        self.request = request
        self.response = response
        self.index = 0
        self.error: BaseException | None = None
        self._state = ChainState.PENDING
        self._broadcasting = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ChainState:
        if self.response.headers_sent:
            return ChainState.RESPONSE_SENT
        return self._state

    def next(self, err: BaseException | None = None) -> asyncio.Task[None]:
        """The continuation handed to stages. Schedules :meth:`advance`."""
        task = asyncio.ensure_future(self.advance(err))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def advance(self, err: BaseException | None = None) -> None:
        """Run the next stage, or broadcast *err* to the error handlers."""
        if err is not None:
            await self._broadcast(err)
            return

        if self.index < len(self.pipeline.middlewares):
            middleware = self.pipeline.middlewares[self.index]
            self.index += 1
            self._state = ChainState.RUNNING
            try:
                await _invoke(middleware, self.request, self.response, self.next)
            except Exception as exc:
                await self._broadcast(exc)
            return

        self._state = ChainState.HANDLER
        try:
            result = await _invoke(self.pipeline.handler, self.request, self.response)
            if result is not None and not self.response.headers_sent:
                self.response.send_value(result)
        except Exception as exc:
            await self._broadcast(exc)

    async def finish(self) -> None:
        """Wait for the response to close and for in-flight stages to unwind."""
        await self.response.wait_closed()
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def cancel(self) -> None:
        """Cancel every stage still in flight and wait for them to stop."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    async def expire(self, err: BaseException, grace: float | None) -> None:
        """Abandon a stalled run and answer with *err*.

        Stalled stages are cancelled. Unless the stall happened inside the
        error broadcast, the error handlers get *grace* seconds to answer
        before the fallback is written directly.
        """
        in_broadcast = self._broadcasting
        await self.cancel()
        if self.response.headers_sent:
            return
        if not in_broadcast:
            self.next(err)
            try:
                await asyncio.wait_for(self.response.wait_closed(), grace)
            except asyncio.TimeoutError:
                await self.cancel()
        if not self.response.headers_sent:
            self.error = err
            self._state = ChainState.ERROR
            self._fallback(err)

    async def _broadcast(self, err: BaseException) -> None:
        if self._broadcasting or err is self.error:
            logger.warning("Ignoring re-signalled error during broadcast: %r", err)
            return

        self.error = err
        self._state = ChainState.ERROR
        self._broadcasting = True
        try:
            # Every handler sees every error; none short-circuits the rest.
            for handler in self.pipeline.error_handlers:
                try:
                    await _invoke(handler, err, self.request, self.response, self.next)
                except Exception:
                    logger.exception("Error handler %s raised", _name(handler))
        finally:
            self._broadcasting = False

        if not self.response.headers_sent:
            self._fallback(err)

    def _fallback(self, err: BaseException) -> None:
        if isinstance(err, HTTPError):
            status, detail = err.status, err.detail
        else:
            status, detail = 500, "Internal Server Error"
        if status >= 500:
            logger.error(
                "Unhandled error in %s %s",
                self.request.method,
                self.request.path,
                exc_info=(type(err), err, err.__traceback__),
            )
        self.response.set_header("content-type", "text/plain; charset=utf-8")
        self.response.status_code = status
        self.response.end(detail)

    def __repr__(self) -> str:
        return f"ChainRun(index={self.index}, state={self.state.value})"


async def _invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async stage and return its (awaited) result."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", repr(fn))
