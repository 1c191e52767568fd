import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import sessionmaker

from .config import Settings, settings
from .db import Base, create_db_engine, create_session_factory
from .errors import (
    DuplicateEmail,
    DuplicateInternalCode,
    DuplicateRuleKind,
    InvalidTransition,
    NotFound,
    ParseError,
)
from .logging import setup_logging, RequestIdMiddleware, structlog
from .models import models  # noqa: F401  registers tables on Base.metadata
from .auth.router import router as auth_router
from .routes.activity import router as activity_router
from .routes.equipment import router as equipment_router
from .routes.field import router as field_router
from .routes.maintenance import router as maintenance_router
from .routes.notifications import router as notifications_router
from .routes.users import router as users_router
from .services.mailer import MailTransport, build_transport
from .services.rules import seed_default_settings
from .services.sweep import SweepRunner, SweepScheduler


# domain error -> HTTP status
_ERROR_STATUS = (
    (NotFound, 404),
    (InvalidTransition, 409),
    (DuplicateRuleKind, 409),
    (DuplicateInternalCode, 409),
    (DuplicateEmail, 409),
    (ParseError, 422),
)


def _error_handler(status_code: int):
    async def _handle(request: Request, exc: Exception):
        structlog.get_logger().info(
            "request_rejected", path=request.url.path, error=type(exc).__name__, status=status_code
        )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return _handle


def create_app(
    app_settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    transport: Optional[MailTransport] = None,
) -> FastAPI:
    """
    Build the application and the process-wide handles it owns.

    Args:
        app_settings: Defaults to the environment-derived settings
        session_factory: Defaults to one bound to app_settings.database_url
        transport: Defaults to SMTP when configured, else a logging transport
    """
    setup_logging()
    app_settings = app_settings or settings
    app = FastAPI(title=app_settings.app_name)

    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(app_settings.database_url))
    transport = transport or build_transport(app_settings)
    runner = SweepRunner(session_factory, transport, app_settings)

    app.state.settings = app_settings
    app.state.session_factory = session_factory
    app.state.transport = transport
    app.state.sweep_runner = runner
    app.state.sweep_scheduler = None

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[app_settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    for exc_class, status_code in _ERROR_STATUS:
        app.add_exception_handler(exc_class, _error_handler(status_code))

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(equipment_router)
    app.include_router(maintenance_router)
    app.include_router(notifications_router)
    app.include_router(activity_router)
    app.include_router(field_router)

    # Metrics
    if app_settings.metrics_enabled:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger()
        # Ensure local SQLite directory exists
        if app_settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if app_settings.auto_create_db:
            engine = session_factory.kw["bind"]
            Base.metadata.create_all(bind=engine)
            db = session_factory()
            try:
                seed_default_settings(db, app_settings.default_recipients)
            finally:
                db.close()
        if app_settings.sweep_enabled:
            scheduler = SweepScheduler(runner, app_settings.sweep_time, app_settings.tz_default)
            scheduler.start()
            app.state.sweep_scheduler = scheduler
        log.info("startup_complete", sweep_enabled=app_settings.sweep_enabled)

    @app.on_event("shutdown")
    def _shutdown():
        scheduler = app.state.sweep_scheduler
        if scheduler is not None:
            scheduler.stop()
            app.state.sweep_scheduler = None

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
