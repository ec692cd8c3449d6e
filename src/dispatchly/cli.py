"""Dispatchly command-line interface powered by Typer."""

import importlib
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Annotated, Any

import typer

app = typer.Typer(name="dispatchly", add_completion=False, no_args_is_help=True)


# ------------------------------------------------------------------
# Target resolution
# ------------------------------------------------------------------


def _load_app(path: str) -> tuple[str, Any]:
    """Import *path* and return ``("module:var", app instance)``.

    Accepted forms:
    - ``module:var``   → imports ``module`` and reads ``var``
    - ``file.py``      → imports ``file``, scans for a Dispatchly instance
    """
    if ":" in path:
        module_name, var_name = path.split(":", 1)
        mod = _import(module_name)
        instance = getattr(mod, var_name, None)
        if instance is None:
            typer.echo(f"Error: {module_name!r} has no attribute {var_name!r}.", err=True)
            raise typer.Exit(1)
        return path, instance

    file = Path(path)
    if not file.exists():
        typer.echo(f"Error: file {path!r} not found.", err=True)
        raise typer.Exit(1)

    # Ensure the file's directory is on sys.path so we can import it.
    parent = str(file.resolve().parent)
    if parent not in sys.path:
        sys.path.insert(0, parent)

    mod = _import(file.stem)
    var_name = _find_dispatchly_var(mod)
    if var_name is None:
        typer.echo(
            f"Error: no Dispatchly instance found in {path!r}. Provide an explicit target, e.g. main:app",
            err=True,
        )
        raise typer.Exit(1)

    return f"{file.stem}:{var_name}", getattr(mod, var_name)


def _import(module_name: str) -> ModuleType:
    try:
        return importlib.import_module(module_name)
    except Exception as exc:
        typer.echo(f"Error importing {module_name!r}: {exc}", err=True)
        raise typer.Exit(1) from exc


def _find_dispatchly_var(mod: object) -> str | None:
    """Scan a module for a ``Dispatchly`` instance.

    Checks ``app`` and ``application`` first, then falls back to any attribute.
    """
    from dispatchly.app import Dispatchly

    for name in ("app", "application"):
        val = getattr(mod, name, None)
        if isinstance(val, Dispatchly):
            return name

    for name in dir(mod):
        if name.startswith("_"):
            continue
        if isinstance(getattr(mod, name, None), Dispatchly):
            return name

    return None


def _route_lines(instance: Any) -> list[str] | None:
    from dispatchly.routing import format_routes

    if not instance.config.log_routes:
        return None
    return format_routes(instance.router.routes)


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(levelname)s %(name)s: %(message)s")


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


@app.command()
def dev(
    path: Annotated[str, typer.Argument(help="Python file or module:var target.")] = "main.py",
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 3000,
    reload: Annotated[bool | None, typer.Option("--reload/--no-reload", help="Auto-reload on code changes.")] = None,
) -> None:
    """Start a development server with auto-reload and debug logging."""
    from dispatchly._server import serve

    _configure_logging("debug")
    target, instance = _load_app(path)
    serve(target, host=host, port=port, dev=True, reload=reload, route_lines=_route_lines(instance))


@app.command()
def run(
    path: Annotated[str, typer.Argument(help="Python file or module:var target.")] = "main.py",
    host: Annotated[str, typer.Option(help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Bind port.")] = 3000,
    workers: Annotated[int, typer.Option(help="Number of worker processes.")] = 1,
    log_level: Annotated[str, typer.Option(help="Logging level.")] = "info",
) -> None:
    """Start a production server."""
    from dispatchly._server import serve

    _configure_logging(log_level)
    target, instance = _load_app(path)
    serve(target, host=host, port=port, workers=workers, log_level=log_level, route_lines=_route_lines(instance))


@app.command()
def routes(
    path: Annotated[str, typer.Argument(help="Python file or module:var target.")] = "main.py",
) -> None:
    """Print the registered route table."""
    from dispatchly.routing import format_routes

    _target, instance = _load_app(path)
    lines = format_routes(instance.router.routes)
    if not lines:
        typer.echo("No routes registered.")
        return
    for line in lines:
        typer.echo(line)
