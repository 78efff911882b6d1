"""Optional Logfire reporting for the server.

Wraps the ASGI app, instruments the metadata index engine, opens spans
around uploads and sweeps, and reports unhandled exceptions. Every hook
does nothing unless ``logfire.enabled`` is set and the ``logfire`` extra
is installed.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from filecrab.config import LogfireConfig, Settings

_logfire = None
_configured = False


def is_available() -> bool:
    return _logfire is not None and _configured


def _configure_options(config: LogfireConfig, module: Any) -> dict[str, Any]:
    options: dict[str, Any] = {
        "service_name": config.service_name,
        "send_to_logfire": "if-token-present",
    }
    if config.environment:
        options["environment"] = config.environment
    if config.sample_rate < 1.0:
        options["trace_sample_rate"] = config.sample_rate
    if config.console:
        options["console"] = module.ConsoleOptions()
    return options


def configure(settings: Settings) -> bool:
    """Set up logfire from ``settings.logfire``. Returns whether reporting is on."""
    global _logfire, _configured

    if not settings.logfire.enabled:
        return False
    try:
        import logfire
    except ImportError:
        return False

    logfire.configure(**_configure_options(settings.logfire, logfire))
    _logfire = logfire
    _configured = True
    return True


def instrument_app(app):
    if not is_available():
        return app
    return _logfire.instrument_asgi(app)


def instrument_sqlalchemy(engine) -> None:
    if is_available():
        _logfire.instrument_sqlalchemy(engine=engine)


@contextmanager
def span(name: str, **attributes: Any):
    """Open a logfire span named *name*; yields None when reporting is off."""
    if not is_available():
        yield None
        return
    with _logfire.span(name, **attributes) as current:
        yield current


def exception(message: str, **attributes: Any) -> bool:
    """Report the active exception. Returns False when the caller must log it instead."""
    if not is_available():
        return False
    _logfire.exception(message, **attributes)
    return True
