import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, field_validator


class RuleKind(str, Enum):
    calibration_due = "calibration_due"
    maintenance_reminder = "maintenance_reminder"
    maintenance_completed = "maintenance_completed"
    maintenance_overdue = "maintenance_overdue"


class DispatchStatus(str, Enum):
    sent = "sent"
    failed = "failed"


class NotificationSettingCreate(BaseModel):
    title: str
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("title is required")
        return v.strip()


class NotificationSettingUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    days_before: Optional[int] = None
    is_active: Optional[bool] = None
    recipients: Optional[List[EmailStr]] = None

    @field_validator("days_before")
    @classmethod
    def _days_not_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("days_before must be zero or positive")
        return v


class NotificationSettingResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    description: Optional[str] = None
    days_before: int
    is_active: bool
    recipients: List[str]

    class Config:
        from_attributes = True


class NotificationLogResponse(BaseModel):
    id: uuid.UUID
    notification_type: str
    equipment_id: Optional[uuid.UUID] = None
    equipment_name: Optional[str] = None
    equipment_internal_code: Optional[str] = None
    task_id: Optional[uuid.UUID] = None
    subject: str
    recipients: List[str]
    status: DispatchStatus
    error: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SeedResponse(BaseModel):
    created: int


class SweepReportResponse(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    firings: int
    dispatched: int
    sent: int
    failed: int
    skipped: bool
    truncated: bool
    error: Optional[str] = None
