"""
Field check-in gateway.

No login: the equipment's QR token is the only credential, and it scopes
every operation to that one equipment. Tasks can be read, scheduled and
moved between states here, never edited.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_dispatcher
from ..errors import InvalidTransition, NotFound
from ..schemas.activity import ActionType, SystemErrorDetails
from ..schemas.maintenance import EquipmentWithHistory, FieldTaskCreate, FieldTransition
from ..services import maintenance as tasks
from ..services.audit import append_activity
from ..services.dispatcher import Dispatcher
from ..services.equipment import get_equipment_by_token
from .equipment import build_equipment_with_history


router = APIRouter(prefix="/m", tags=["field"])

FIELD_ACTOR = "Mobile User"


@router.get("/{token}", response_model=EquipmentWithHistory)
def field_view(token: str, db: Session = Depends(get_db)):
    return build_equipment_with_history(db, get_equipment_by_token(db, token))


@router.post("/{token}", response_model=EquipmentWithHistory)
def field_schedule(
    token: str,
    payload: FieldTaskCreate,
    db: Session = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    equipment = get_equipment_by_token(db, token)
    tasks.schedule_task(
        db,
        equipment_id=equipment.id,
        action=payload.action,
        scheduled_date=payload.scheduled_date,
        performed_by=payload.user or FIELD_ACTOR,
        maintenance_type=payload.maintenance_type.value,
        priority=payload.priority.value,
        responsible=payload.responsible,
        description=payload.description,
        dispatcher=dispatcher,
    )
    return build_equipment_with_history(db, equipment)


@router.put("/{token}", response_model=EquipmentWithHistory)
def field_transition(
    token: str,
    payload: FieldTransition,
    db: Session = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    equipment = get_equipment_by_token(db, token)
    actor = payload.user or FIELD_ACTOR
    try:
        tasks.transition_task(
            db,
            payload.task_id,
            payload.new_status.value,
            actor=actor,
            completion_date=payload.completion_date,
            source=tasks.SOURCE_FIELD,
            equipment_id=equipment.id,
            dispatcher=dispatcher,
        )
    except (InvalidTransition, NotFound) as e:
        # Field failures have no staff screen; the activity log is where they surface
        append_activity(
            db,
            actor,
            ActionType.SYSTEM_ERROR,
            "No se pudo actualizar el estado del mantenimiento desde la vista móvil",
            SystemErrorDetails(
                error=str(e),
                context={
                    "equipment_id": str(equipment.id),
                    "task_id": str(payload.task_id),
                    "new_status": payload.new_status.value,
                },
            ),
        )
        raise
    return build_equipment_with_history(db, equipment)
