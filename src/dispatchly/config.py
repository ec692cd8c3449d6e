"""Application configuration.

AppConfig is a frozen dataclass, immutable after creation::

    config = AppConfig(port=8080, strict_routes=True)
    config = AppConfig.from_env()
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from dispatchly.errors import ConfigurationError

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3000


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation."""

    # Host name used only to build an absolute URL when splitting the
    # request target; never used for socket binding.
    host: str = DEFAULT_HOST

    # Server
    port: int = DEFAULT_PORT
    address: str = "127.0.0.1"
    log_routes: bool = True

    # Routing
    strict_routes: bool = False

    # Seconds to wait for a response before routing RequestTimeout into the
    # error handlers. None waits forever.
    request_timeout: float | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            msg = f"Port out of range: {self.port}"
            raise ConfigurationError(msg)
        if self.request_timeout is not None and self.request_timeout <= 0:
            msg = f"request_timeout must be positive, got {self.request_timeout!r}"
            raise ConfigurationError(msg)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> AppConfig:
        """Build a config from ``HOST`` and ``PORT``, then apply *overrides*."""
        env = os.environ if environ is None else environ
        values: dict[str, object] = {"host": env.get("HOST") or DEFAULT_HOST}
        port = env.get("PORT")
        if port:
            try:
                values["port"] = int(port)
            except ValueError as exc:
                msg = f"PORT must be an integer, got {port!r}"
                raise ConfigurationError(msg) from exc
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]
