"""Granian transport binding and the startup banner."""

import sys
from typing import Any


def serve(
    target: str,
    *,
    host: str = "127.0.0.1",
    port: int = 3000,
    dev: bool = False,
    reload: bool | None = None,
    workers: int = 1,
    log_level: str = "info",
    route_lines: list[str] | None = None,
    granian_kwargs: dict[str, Any] | None = None,
) -> None:
    """Bind *target* (a ``"module:var"`` import path) to Granian's ASGI interface.

    ``dev`` turns on reload, debug logging and access logs unless *reload*
    is given explicitly. *route_lines* are echoed in the banner.
    """
    from granian import Granian

    log_access = dev
    if dev:
        log_level = "debug"
    reload = dev if reload is None else reload

    _print_banner(target, host=host, port=port, workers=workers, reload=reload, route_lines=route_lines or [])

    server = Granian(
        target=target,
        address=host,
        port=port,
        interface="asgi",
        workers=workers,
        reload=reload,
        log_level=log_level,
        log_access=log_access,
        **(granian_kwargs or {}),
    )
    server.serve()


_BOLD = "\033[1m"
_DIM = "\033[2m"
_RESET = "\033[0m"


def _print_banner(
    target: str,
    *,
    host: str,
    port: int,
    workers: int,
    reload: bool,
    route_lines: list[str],
) -> None:
    color = sys.stdout.isatty()

    def style(code: str, text: str) -> str:
        return f"{code}{text}{_RESET}" if color else text

    lines = [
        style(_BOLD, f"Server running on port {port}"),
        style(_DIM, f"  {target} via Granian on http://{host}:{port}"),
        style(_DIM, f"  workers={workers} reload={'on' if reload else 'off'}"),
    ]
    if route_lines:
        lines.append(f"  {len(route_lines)} route(s):")
        lines.extend(f"    {line}" for line in route_lines)
    print("\n".join(lines), flush=True)
