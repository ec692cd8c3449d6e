"""Minimal ASGI request dispatch: routes, middlewares, broadcast error handlers."""

__version__ = "0.1.0"

from dispatchly.app import Dispatchly
from dispatchly.chain import ChainRun, ChainState, MiddlewareChain, Pipeline
from dispatchly.config import AppConfig
from dispatchly.errors import (
    BadRequest,
    ConfigurationError,
    DispatchlyError,
    DuplicateRouteError,
    HTTPError,
    NotFound,
    RequestTimeout,
)
from dispatchly.request import Request
from dispatchly.response import Response
from dispatchly.routing import Route, Router, compile_pattern

__all__ = [
    "AppConfig",
    "BadRequest",
    "ChainRun",
    "ChainState",
    "ConfigurationError",
    "Dispatchly",
    "DispatchlyError",
    "DuplicateRouteError",
    "HTTPError",
    "MiddlewareChain",
    "NotFound",
    "Pipeline",
    "Request",
    "RequestTimeout",
    "Response",
    "Route",
    "Router",
    "compile_pattern",
]
