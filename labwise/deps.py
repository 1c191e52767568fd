"""
Request-scoped access to the process-wide handles built in create_app().
"""
from fastapi import Depends
from sqlalchemy.orm import Session
from starlette.requests import Request

from .config import Settings
from .db import get_db
from .services.dispatcher import Dispatcher
from .services.mailer import MailTransport
from .services.sweep import SweepRunner


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_transport(request: Request) -> MailTransport:
    return request.app.state.transport


def get_dispatcher(
    request: Request,
    db: Session = Depends(get_db),
) -> Dispatcher:
    app_settings: Settings = request.app.state.settings
    return Dispatcher(
        db,
        request.app.state.transport,
        max_workers=app_settings.dispatch_max_workers,
        deadline_seconds=app_settings.dispatch_deadline_seconds,
    )


def get_sweep_runner(request: Request) -> SweepRunner:
    return request.app.state.sweep_runner
