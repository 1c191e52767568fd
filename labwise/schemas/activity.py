import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


class ActionType(str, Enum):
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_STATUS_TOGGLED = "USER_STATUS_TOGGLED"
    EQUIPMENT_CREATED = "EQUIPMENT_CREATED"
    EQUIPMENT_UPDATED = "EQUIPMENT_UPDATED"
    MAINTENANCE_SCHEDULED = "MAINTENANCE_SCHEDULED"
    MAINTENANCE_STATUS_UPDATED = "MAINTENANCE_STATUS_UPDATED"
    MAINTENANCE_UPDATED = "MAINTENANCE_UPDATED"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    USER_LOGIN = "USER_LOGIN"


# Detail payloads, one shape per action kind
class UserChangeDetails(BaseModel):
    kind: Literal["user_change"] = "user_change"
    user_id: str
    user_name: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


class UserStatusDetails(BaseModel):
    kind: Literal["user_status"] = "user_status"
    user_id: str
    user_name: str
    is_active: bool


class EquipmentChangeDetails(BaseModel):
    kind: Literal["equipment_change"] = "equipment_change"
    entity_id: str
    entity_name: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changes: Optional[Dict[str, Any]] = None


class MaintenanceScheduledDetails(BaseModel):
    kind: Literal["maintenance_scheduled"] = "maintenance_scheduled"
    equipment_id: str
    equipment_name: str
    task_id: str
    task: str
    status: str
    type: str


class MaintenanceStatusDetails(BaseModel):
    kind: Literal["maintenance_status"] = "maintenance_status"
    equipment_id: str
    equipment_name: str
    task_id: str
    old_status: str
    new_status: str
    source: str  # staff|field
    completion_date: Optional[datetime] = None


class MaintenanceChangeDetails(BaseModel):
    kind: Literal["maintenance_change"] = "maintenance_change"
    equipment_id: str
    equipment_name: str
    task_id: str
    changes: Dict[str, Any] = Field(default_factory=dict)


class PasswordResetDetails(BaseModel):
    kind: Literal["password_reset"] = "password_reset"
    email: str
    user_found: bool


class LoginDetails(BaseModel):
    kind: Literal["login"] = "login"
    user_id: str
    email: str


class SystemErrorDetails(BaseModel):
    kind: Literal["system_error"] = "system_error"
    error: str
    context: Dict[str, Any] = Field(default_factory=dict)


ActivityDetails = Annotated[
    Union[
        UserChangeDetails,
        UserStatusDetails,
        EquipmentChangeDetails,
        MaintenanceScheduledDetails,
        MaintenanceStatusDetails,
        MaintenanceChangeDetails,
        PasswordResetDetails,
        LoginDetails,
        SystemErrorDetails,
    ],
    Field(discriminator="kind"),
]


DETAILS_BY_ACTION = {
    ActionType.USER_CREATED: UserChangeDetails,
    ActionType.USER_UPDATED: UserChangeDetails,
    ActionType.USER_STATUS_TOGGLED: UserStatusDetails,
    ActionType.EQUIPMENT_CREATED: EquipmentChangeDetails,
    ActionType.EQUIPMENT_UPDATED: EquipmentChangeDetails,
    ActionType.MAINTENANCE_SCHEDULED: MaintenanceScheduledDetails,
    ActionType.MAINTENANCE_STATUS_UPDATED: MaintenanceStatusDetails,
    ActionType.MAINTENANCE_UPDATED: MaintenanceChangeDetails,
    ActionType.SYSTEM_ERROR: SystemErrorDetails,
    ActionType.PASSWORD_RESET_REQUEST: PasswordResetDetails,
    ActionType.USER_LOGIN: LoginDetails,
}


class ActivityLogResponse(BaseModel):
    id: uuid.UUID
    timestamp: datetime
    user: str
    action_type: ActionType
    description: str
    details: Optional[ActivityDetails] = None

    class Config:
        from_attributes = True
