import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..deps import get_dispatcher
from ..models.models import User
from ..schemas.maintenance import (
    MaintenanceCreate,
    MaintenanceResponse,
    MaintenanceStatus,
    MaintenanceUpdate,
    StatusTransition,
)
from ..services import maintenance as tasks
from ..services.dispatcher import Dispatcher


router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.get("", response_model=List[MaintenanceResponse])
def list_tasks(
    status: Optional[MaintenanceStatus] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return tasks.list_all_tasks(db, status=status.value if status else None)


@router.post("", response_model=MaintenanceResponse, status_code=201)
def schedule_task(
    payload: MaintenanceCreate,
    db: Session = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    user: User = Depends(get_current_user),
):
    """Schedule maintenance; the reminder rule is sent right away for the new task"""
    return tasks.schedule_task(
        db,
        equipment_id=payload.equipment_id,
        action=payload.action,
        scheduled_date=payload.scheduled_date,
        performed_by=user.name,
        maintenance_type=payload.maintenance_type.value,
        priority=payload.priority.value,
        responsible=payload.responsible,
        description=payload.description,
        dispatcher=dispatcher,
    )


@router.get("/{task_id}", response_model=MaintenanceResponse)
def get_task(
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return tasks.get_task(db, task_id)


@router.put("/{task_id}", response_model=MaintenanceResponse)
def update_task(
    task_id: uuid.UUID,
    payload: MaintenanceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    return tasks.update_task_details(db, task_id, payload.model_dump(exclude_unset=True), actor=user.name)


@router.post("/{task_id}/status", response_model=MaintenanceResponse)
def transition_task(
    task_id: uuid.UUID,
    payload: StatusTransition,
    db: Session = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    user: User = Depends(get_current_user),
):
    return tasks.transition_task(
        db,
        task_id,
        payload.new_status.value,
        actor=user.name,
        completion_date=payload.completion_date,
        source=tasks.SOURCE_STAFF,
        dispatcher=dispatcher,
    )
