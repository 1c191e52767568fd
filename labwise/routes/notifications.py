import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..config import Settings
from ..db import get_db
from ..deps import get_settings, get_sweep_runner
from ..schemas.notifications import (
    NotificationLogResponse,
    NotificationSettingCreate,
    NotificationSettingResponse,
    NotificationSettingUpdate,
    SeedResponse,
    SweepReportResponse,
)
from ..services import rules
from ..services.dispatcher import list_notification_logs
from ..services.sweep import SweepRunner
from ..services.time_rules import to_naive_utc


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/settings", response_model=List[NotificationSettingResponse])
def list_settings(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return rules.list_settings(db)


@router.post("/settings/seed", response_model=SeedResponse)
def seed_settings(
    db: Session = Depends(get_db),
    app_settings: Settings = Depends(get_settings),
    _=Depends(require_roles("admin")),
):
    """Create the built-in rules; no-op when any rule already exists"""
    return SeedResponse(created=rules.seed_default_settings(db, app_settings.default_recipients))


@router.post("/settings", response_model=NotificationSettingResponse, status_code=201)
def create_custom_setting(
    payload: NotificationSettingCreate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    return rules.create_custom_setting(db, payload.title, payload.description)


@router.put("/settings/{setting_id}", response_model=NotificationSettingResponse)
def update_setting(
    setting_id: uuid.UUID,
    payload: NotificationSettingUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    return rules.update_setting(db, setting_id, payload.model_dump(exclude_unset=True))


@router.get("/logs", response_model=List[NotificationLogResponse])
def list_logs(
    since: Optional[datetime] = Query(None),
    notification_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Dispatch history, newest first"""
    return list_notification_logs(db, since=to_naive_utc(since), notification_type=notification_type, limit=limit)


@router.post("/sweep", response_model=SweepReportResponse)
async def run_sweep(
    runner: SweepRunner = Depends(get_sweep_runner),
    _=Depends(require_roles("admin")),
):
    """Run one sweep now; returns skipped when a sweep is already running"""
    report = await run_in_threadpool(runner.run)
    return SweepReportResponse(**report.__dict__)
