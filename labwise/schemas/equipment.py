import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class EquipmentStatus(str, Enum):
    operational = "operational"
    in_repair = "in_repair"
    needs_calibration = "needs_calibration"
    decommissioned = "decommissioned"
    active = "active"  # legacy synonym of operational


class EquipmentBase(BaseModel):
    instrument: str
    internal_code: str
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    system_number: Optional[str] = None
    external_calibration_periodicity: Optional[str] = None
    internal_check_periodicity: Optional[str] = None
    last_external_calibration: Optional[date] = None
    status: EquipmentStatus = EquipmentStatus.operational
    image_url: Optional[str] = None
    purchase_date: Optional[date] = None
    notes: Optional[str] = None


class EquipmentCreate(EquipmentBase):
    pass


class EquipmentUpdate(BaseModel):
    # qr_token and next_external_calibration are not client-writable
    instrument: Optional[str] = None
    internal_code: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    system_number: Optional[str] = None
    external_calibration_periodicity: Optional[str] = None
    internal_check_periodicity: Optional[str] = None
    last_external_calibration: Optional[date] = None
    status: Optional[EquipmentStatus] = None
    image_url: Optional[str] = None
    purchase_date: Optional[date] = None
    notes: Optional[str] = None


class EquipmentResponse(EquipmentBase):
    id: uuid.UUID
    next_external_calibration: Optional[date] = None
    qr_token: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Bulk import: rows arrive as raw text from an external spreadsheet reader
class EquipmentImportRow(BaseModel):
    instrument: str
    internal_code: str
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    system_number: Optional[str] = None
    external_calibration_periodicity: Optional[str] = None
    internal_check_periodicity: Optional[str] = None
    last_external_calibration: Optional[str] = None
    status: Optional[EquipmentStatus] = None
    notes: Optional[str] = None


class EquipmentImportRequest(BaseModel):
    rows: List[EquipmentImportRow]


class EquipmentImportResponse(BaseModel):
    created: int
    updated: int
    warnings: List[str]
