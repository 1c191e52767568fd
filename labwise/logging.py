"""
structlog setup shared by the API and the scripts.

Events are JSON lines by default; LOG_FORMAT=console switches to the
human-readable renderer for one-shot scripts run from a terminal.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    from .config import settings

    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def sweep_context(trigger: str) -> Iterator[str]:
    """Tag every event logged inside one sweep with its sweep_id and trigger."""
    sweep_id = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(sweep_id=sweep_id, sweep_trigger=trigger)
    try:
        yield sweep_id
    finally:
        structlog.contextvars.unbind_contextvars("sweep_id", "sweep_trigger")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagates X-Request-ID and binds it to every event of the request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "path")
        response.headers["X-Request-ID"] = request_id
        return response
