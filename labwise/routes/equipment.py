import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User
from ..schemas.equipment import (
    EquipmentCreate,
    EquipmentImportRequest,
    EquipmentImportResponse,
    EquipmentResponse,
    EquipmentStatus,
    EquipmentUpdate,
)
from ..schemas.maintenance import EquipmentWithHistory, MaintenanceResponse
from ..services import equipment as registry
from ..services.maintenance import list_tasks_for_equipment


router = APIRouter(prefix="/equipment", tags=["equipment"])


def build_equipment_with_history(db: Session, equipment) -> EquipmentWithHistory:
    result = EquipmentWithHistory.model_validate(equipment)
    result.history = [MaintenanceResponse.model_validate(t) for t in list_tasks_for_equipment(db, equipment.id)]
    return result


@router.get("", response_model=List[EquipmentResponse])
def list_equipment(
    status: Optional[EquipmentStatus] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """List equipment with filters"""
    return registry.list_equipment(db, status=status.value if status else None, search=search)


@router.post("", response_model=EquipmentResponse, status_code=201)
def create_equipment(
    payload: EquipmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    return registry.create_equipment(db, payload.model_dump(), actor=user.name)


@router.post("/import", response_model=EquipmentImportResponse)
def import_equipment(
    payload: EquipmentImportRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    """Bulk upsert rows already read from a spreadsheet"""
    created, updated, warnings = registry.import_equipment(
        db, [row.model_dump() for row in payload.rows], actor=user.name
    )
    return EquipmentImportResponse(created=created, updated=updated, warnings=warnings)


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return registry.get_equipment(db, equipment_id)


@router.get("/{equipment_id}/history", response_model=List[MaintenanceResponse])
def equipment_history(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    registry.get_equipment(db, equipment_id)
    return list_tasks_for_equipment(db, equipment_id)


@router.get("/{equipment_id}/full", response_model=EquipmentWithHistory)
def equipment_with_history(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return build_equipment_with_history(db, registry.get_equipment(db, equipment_id))


@router.put("/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(
    equipment_id: uuid.UUID,
    payload: EquipmentUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("supervisor")),
):
    return registry.update_equipment(db, equipment_id, payload.model_dump(exclude_unset=True), actor=user.name)


@router.delete("/{equipment_id}")
def delete_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    """Delete equipment (soft delete by setting status to decommissioned)"""
    registry.decommission_equipment(db, equipment_id, actor=user.name)
    return {"message": "Equipment decommissioned successfully"}
