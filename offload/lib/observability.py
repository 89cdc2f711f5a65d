"""Tracing for object-store round trips and hook dispatch.

Backed by Pydantic Logfire when it is installed and switched on in the
``logfire`` settings section. Otherwise every helper here does nothing, so
call sites never need to check.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from offload.config import LogfireConfig, Settings

logger = logging.getLogger(__name__)

_backend: Any = None


def is_available() -> bool:
    return _backend is not None


def _configure_kwargs(options: LogfireConfig, backend: Any) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "service_name": options.service_name,
        "send_to_logfire": "if-token-present",
    }
    if options.environment:
        kwargs["environment"] = options.environment
    if options.console:
        kwargs["console"] = backend.ConsoleOptions()
    return kwargs


def configure(settings: Settings) -> bool:
    """Start Logfire from ``settings.logfire``. Returns whether tracing is on."""
    global _backend

    options = settings.logfire
    if not options.enabled:
        return False

    try:
        import logfire
    except ImportError:
        logger.warning("Logfire tracing is enabled but the logfire package is not installed")
        return False

    logfire.configure(**_configure_kwargs(options, logfire))
    _backend = logfire
    return True


def reset() -> None:
    """Forget the configured backend; spans become no-ops again."""
    global _backend
    _backend = None


def instrument_sqlalchemy(engine) -> None:
    """Trace the queries the metadata store issues."""
    if _backend is not None:
        _backend.instrument_sqlalchemy(engine=engine)


def instrument_httpx() -> None:
    """Trace remote image fetches."""
    if _backend is not None:
        _backend.instrument_httpx()


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[Any]:
    """Trace one operation. Yields the span, or ``None`` when tracing is off.

    An exception leaving the block is tagged on the span and re-raised.
    """
    if _backend is None:
        yield None
        return

    with _backend.span(name, **attrs) as current:
        try:
            yield current
        except Exception as exc:
            current.set_attribute("offload.error", type(exc).__name__)
            raise
