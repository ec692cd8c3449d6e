"""Built-in middlewares and error handlers."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from dispatchly.errors import BadRequest, HTTPError

if TYPE_CHECKING:
    from dispatchly._types import Middleware, Next
    from dispatchly.request import Request
    from dispatchly.response import Response

access_logger = logging.getLogger("dispatchly.access")
error_logger = logging.getLogger("dispatchly.errors")


async def logger(request: Request, response: Response, next: Next) -> None:
    """Log ``METHOD /path?query`` for every routed request."""
    access_logger.info("%s %s", request.method, request.url)
    await next()


async def json_body(request: Request, response: Response, next: Next) -> None:
    """Decode a JSON body into ``request.body``.

    An empty body decodes to ``{}``. Malformed JSON sets status 400 and is
    passed on as :class:`BadRequest`.
    """
    raw = await request.read_body()
    try:
        request.body = json.loads(raw) if raw else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        response.status_code = 400
        err = BadRequest(detail="Invalid JSON body")
        err.__cause__ = exc
        await next(err)
        return
    await next()


def json_body_model(model: type[BaseModel]) -> Middleware:
    """Like :func:`json_body`, but validate the payload into *model*."""

    async def middleware(request: Request, response: Response, next: Next) -> None:
        raw = await request.read_body()
        try:
            request.body = model.model_validate_json(raw or b"{}")
        except ValidationError as exc:
            response.status_code = 400
            err = BadRequest(detail=f"Invalid {model.__name__} body: {exc.error_count()} error(s)")
            err.__cause__ = exc
            await next(err)
            return
        await next()

    middleware.__qualname__ = f"json_body_model({model.__name__})"
    return middleware


def log_errors(err: BaseException, request: Request, response: Response, next: Next) -> Any:
    """Log the error and, if nothing has answered yet, reply with its message."""
    error_logger.error("%s %s failed: %s", request.method, request.url, err, exc_info=err)
    if response.headers_sent:
        return
    status = err.status if isinstance(err, HTTPError) else 500
    response.text(str(err) or type(err).__name__, status_code=status)
