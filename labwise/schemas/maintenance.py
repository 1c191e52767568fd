import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .equipment import EquipmentResponse


class MaintenanceStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class MaintenanceType(str, Enum):
    preventive = "preventive"
    corrective = "corrective"
    predictive = "predictive"
    other = "other"


class MaintenancePriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class MaintenanceCreate(BaseModel):
    equipment_id: uuid.UUID
    action: str
    maintenance_type: MaintenanceType = MaintenanceType.other
    priority: MaintenancePriority = MaintenancePriority.medium
    scheduled_date: datetime
    responsible: Optional[str] = None
    description: Optional[str] = None

    @field_validator("action")
    @classmethod
    def _action_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("action is required")
        return v.strip()


class MaintenanceUpdate(BaseModel):
    action: Optional[str] = None
    maintenance_type: Optional[MaintenanceType] = None
    priority: Optional[MaintenancePriority] = None
    scheduled_date: Optional[datetime] = None
    responsible: Optional[str] = None
    description: Optional[str] = None


class StatusTransition(BaseModel):
    new_status: MaintenanceStatus
    completion_date: Optional[datetime] = None


class MaintenanceResponse(BaseModel):
    id: uuid.UUID
    equipment_id: uuid.UUID
    maintenance_type: MaintenanceType
    action: str
    description: Optional[str] = None
    priority: MaintenancePriority
    status: MaintenanceStatus
    scheduled_date: datetime
    completion_date: Optional[datetime] = None
    responsible: Optional[str] = None
    performed_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Field check-in gateway payloads: a technician at the instrument, authenticated only by its token
class FieldTaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: str
    maintenance_type: MaintenanceType = MaintenanceType.other
    priority: MaintenancePriority = MaintenancePriority.medium
    scheduled_date: datetime
    responsible: Optional[str] = None
    description: Optional[str] = None
    user: Optional[str] = None


class FieldTransition(BaseModel):
    # Status and completion date are the only task fields the gateway may touch
    model_config = ConfigDict(extra="forbid")

    task_id: uuid.UUID
    new_status: MaintenanceStatus
    completion_date: Optional[datetime] = None
    user: Optional[str] = None


class EquipmentWithHistory(EquipmentResponse):
    history: List[MaintenanceResponse] = []
