import threading
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from labwise.auth.security import create_access_token, get_password_hash
from labwise.config import Settings
from labwise.db import Base, create_session_factory
from labwise.main import create_app
from labwise.models import models  # noqa: F401
from labwise.models.models import NotificationSetting, User
from labwise.services.equipment import create_equipment
from labwise.services.mailer import SendResult


class RecordingTransport:
    """Collects every send; recipients listed in fail_for get a failed result."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []
        self._lock = threading.Lock()

    def send(self, to, subject, html):
        with self._lock:
            self.sent.append((to, subject, html))
        if to in self.fail_for:
            return SendResult.failure("mailbox unavailable", recipient=to)
        return SendResult.success()

    @property
    def recipients(self):
        return [to for to, _, _ in self.sent]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def app_settings():
    return Settings(
        _env_file=None,
        auto_create_db=False,
        sweep_enabled=False,
        metrics_enabled=False,
        rate_limit="10000/minute",
        dispatch_max_workers=3,
        dispatch_deadline_seconds=5,
        sweep_deadline_seconds=60,
    )


@pytest.fixture
def client(app_settings, session_factory, transport):
    app = create_app(app_settings, session_factory=session_factory, transport=transport)
    with TestClient(app) as c:
        yield c


def make_user(db, role="admin", email=None, password="secret-pass", name=None, is_active=True):
    user = User(
        name=name or f"{role.title()} User",
        email=email or f"{role}@labwise.com",
        password_hash=get_password_hash(password),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id), roles=[user.role])}"}


def make_equipment(db, actor="Tester", **overrides):
    data = {
        "instrument": "Balanza Analítica",
        "internal_code": "EQ-001",
        "brand": "Mettler",
        "model": "XS205",
        "serial_number": "SN-1",
        "external_calibration_periodicity": "6 meses",
        "last_external_calibration": date(2024, 1, 1),
        "status": "operational",
    }
    data.update(overrides)
    return create_equipment(db, data, actor=actor)


def make_rule(db, kind, recipients, days_before=0, is_active=True, title=None):
    setting = NotificationSetting(
        type=kind,
        title=title or kind,
        days_before=days_before,
        is_active=is_active,
        recipients=list(recipients),
    )
    db.add(setting)
    db.commit()
    db.refresh(setting)
    return setting
