"""
Notification rule store.
Built-in rule kinds are seeded once; custom kinds are derived from a title and reserved before insert.
"""
from typing import List, Optional
import uuid

from slugify import slugify
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import DuplicateRuleKind, NotFound, ParseError
from ..logging import structlog
from ..models.models import NotificationSetting
from ..schemas.notifications import RuleKind
from .time_rules import utcnow


DEFAULT_SETTINGS = [
    {
        "type": RuleKind.calibration_due.value,
        "title": "Calibración Próxima",
        "description": "Notificación cuando una calibración externa está próxima a vencer.",
        "days_before": 7,
    },
    {
        "type": RuleKind.maintenance_reminder.value,
        "title": "Recordatorio Mantenimiento",
        "description": "Recordatorio de mantenimientos programados.",
        "days_before": 3,
    },
    {
        "type": RuleKind.maintenance_completed.value,
        "title": "Mantenimiento Completado",
        "description": "Notificación cuando se completa un mantenimiento.",
        "days_before": 0,
    },
    {
        "type": RuleKind.maintenance_overdue.value,
        "title": "Mantenimiento Vencido",
        "description": "Notificación cuando un mantenimiento está vencido.",
        "days_before": 0,
    },
]

BUILTIN_KINDS = frozenset(k.value for k in RuleKind)


def seed_default_settings(db: Session, recipients: Optional[List[str]] = None) -> int:
    """
    Create the built-in rules if the store is empty.

    Returns:
        Number of settings created (0 when any setting already exists)
    """
    log = structlog.get_logger()
    if db.query(NotificationSetting).first() is not None:
        log.info("notification_settings_seed_skipped")
        return 0
    recipients = list(recipients if recipients is not None else settings.default_recipients)
    for default in DEFAULT_SETTINGS:
        db.add(NotificationSetting(is_active=True, recipients=list(recipients), **default))
    db.commit()
    log.info("notification_settings_seeded", created=len(DEFAULT_SETTINGS))
    return len(DEFAULT_SETTINGS)


def list_settings(db: Session) -> List[NotificationSetting]:
    return db.query(NotificationSetting).order_by(NotificationSetting.type.asc()).all()


def get_setting(db: Session, setting_id: uuid.UUID) -> NotificationSetting:
    setting = db.query(NotificationSetting).filter(NotificationSetting.id == setting_id).first()
    if setting is None:
        raise NotFound("Notification setting", setting_id)
    return setting


def update_setting(db: Session, setting_id: uuid.UUID, changes: dict) -> NotificationSetting:
    """Apply a partial update; `type` is immutable."""
    setting = get_setting(db, setting_id)
    for field in ("title", "description", "days_before", "is_active", "recipients"):
        if field in changes and changes[field] is not None:
            value = changes[field]
            if field == "recipients":
                value = [str(r) for r in value]
            setattr(setting, field, value)
    setting.updated_at = utcnow()
    db.commit()
    db.refresh(setting)
    return setting


def slugify_rule_kind(title: str) -> str:
    """
    Candidate rule kind from a title: lower-case ASCII with accents stripped,
    runs of anything outside [a-z0-9] collapsed to one underscore.
    """
    candidate = slugify(title or "", separator="_")
    if not candidate:
        raise ParseError("Title does not produce a usable notification type", value=title)
    return candidate


def reserve_rule_kind(db: Session, candidate: str) -> str:
    """Return candidate if no built-in or stored rule uses it, else raise DuplicateRuleKind."""
    if candidate in BUILTIN_KINDS:
        raise DuplicateRuleKind(candidate)
    exists = db.query(NotificationSetting.id).filter(NotificationSetting.type == candidate).first()
    if exists is not None:
        raise DuplicateRuleKind(candidate)
    return candidate


def create_custom_setting(db: Session, title: str, description: Optional[str] = None) -> NotificationSetting:
    """
    Create a custom rule. It starts active, with no lead time and no recipients,
    and has no sweep semantics of its own.
    """
    kind = reserve_rule_kind(db, slugify_rule_kind(title))
    setting = NotificationSetting(
        type=kind,
        title=title,
        description=description,
        days_before=0,
        is_active=True,
        recipients=[],
    )
    db.add(setting)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same kind
        db.rollback()
        raise DuplicateRuleKind(kind)
    db.refresh(setting)
    structlog.get_logger().info("notification_setting_created", type=kind)
    return setting
