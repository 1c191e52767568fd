import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.auth import UserCreate, UserResponse, UserUpdate
from ..services import users as accounts


router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[UserResponse])
def list_users(
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles("supervisor")),
):
    return accounts.list_users(db, q=q)


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("admin")),
):
    return accounts.create_user(db, payload.model_dump(), actor=me.name)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_roles("supervisor")),
):
    return accounts.get_user(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("admin")),
):
    return accounts.update_user(db, user_id, payload.model_dump(exclude_unset=True), actor=me.name)


@router.post("/{user_id}/toggle-status", response_model=UserResponse)
def toggle_status(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("admin")),
):
    return accounts.toggle_user_status(db, user_id, actor=me.name)
