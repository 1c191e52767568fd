"""
Staff accounts. Every change is mirrored in the activity log.
"""
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..auth.security import get_password_hash
from ..errors import DuplicateEmail, NotFound
from ..models.models import User
from ..schemas.activity import ActionType, UserChangeDetails, UserStatusDetails
from .audit import append_activity
from .time_rules import utcnow


_PUBLIC_FIELDS = ("name", "email", "role", "document_type", "document_number", "is_active")


def _public(user: User) -> Dict[str, Any]:
    return {field: getattr(user, field) for field in _PUBLIC_FIELDS}


def _plain(value):
    return value.value if hasattr(value, "value") else value


def get_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound("User", user_id)
    return user


def list_users(db: Session, q: Optional[str] = None) -> List[User]:
    query = db.query(User)
    if q:
        like = f"%{q}%"
        query = query.filter((User.name.ilike(like)) | (User.email.ilike(like)))
    return query.order_by(User.name.asc()).all()


def create_user(db: Session, data: Dict[str, Any], actor: str) -> User:
    email = data["email"].lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise DuplicateEmail(email)
    user = User(
        name=data["name"],
        email=email,
        password_hash=get_password_hash(data["password"]),
        role=_plain(data.get("role") or "technician"),
        document_type=_plain(data.get("document_type")),
        document_number=data.get("document_number"),
        is_active=True,
    )
    db.add(user)
    db.flush()
    append_activity(
        db,
        actor,
        ActionType.USER_CREATED,
        f"Creó el usuario {user.name}",
        UserChangeDetails(user_id=str(user.id), user_name=user.name, after=_public(user)),
        commit=False,
    )
    db.commit()
    db.refresh(user)
    return user


def update_user(db: Session, user_id: uuid.UUID, changes: Dict[str, Any], actor: str) -> User:
    user = get_user(db, user_id)
    before = _public(user)
    for field in ("name", "role", "document_type", "document_number"):
        if field in changes and changes[field] is not None:
            setattr(user, field, _plain(changes[field]))
    if changes.get("email"):
        email = changes["email"].lower()
        taken = db.query(User.id).filter(User.email == email, User.id != user.id).first()
        if taken is not None:
            raise DuplicateEmail(email)
        user.email = email
    if changes.get("password"):
        user.password_hash = get_password_hash(changes["password"])
    user.updated_at = utcnow()
    append_activity(
        db,
        actor,
        ActionType.USER_UPDATED,
        f"Actualizó el usuario {user.name}",
        UserChangeDetails(user_id=str(user.id), user_name=user.name, before=before, after=_public(user)),
        commit=False,
    )
    db.commit()
    db.refresh(user)
    return user


def toggle_user_status(db: Session, user_id: uuid.UUID, actor: str) -> User:
    user = get_user(db, user_id)
    user.is_active = not user.is_active
    user.updated_at = utcnow()
    state = "activó" if user.is_active else "desactivó"
    append_activity(
        db,
        actor,
        ActionType.USER_STATUS_TOGGLED,
        f"Se {state} el usuario {user.name}",
        UserStatusDetails(user_id=str(user.id), user_name=user.name, is_active=user.is_active),
        commit=False,
    )
    db.commit()
    db.refresh(user)
    return user
