import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base
from ..services.time_rules import utcnow


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class User(Base):
    """Staff members: actors for the activity log and the authenticated API"""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="technician")  # admin|supervisor|technician
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    document_type: Mapped[Optional[str]] = mapped_column(String(20))  # CC|TI|CE|Pasaporte
    document_number: Mapped[Optional[str]] = mapped_column(String(50))
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class Equipment(Base):
    """Laboratory instruments and their external calibration cadence"""
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = uuid_pk()
    instrument: Mapped[str] = mapped_column(String(255), nullable=False)
    internal_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    brand: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(255))
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    system_number: Mapped[Optional[str]] = mapped_column(String(100))
    external_calibration_periodicity: Mapped[Optional[str]] = mapped_column(String(100))  # e.g. "6 meses"
    internal_check_periodicity: Mapped[Optional[str]] = mapped_column(String(100))
    last_external_calibration: Mapped[Optional[date]] = mapped_column(Date)
    next_external_calibration: Mapped[Optional[date]] = mapped_column(Date, index=True)  # derived, persisted for queries
    status: Mapped[str] = mapped_column(String(50), default="operational", index=True)  # operational|in_repair|needs_calibration|decommissioned|active
    qr_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)  # immutable field-access token
    image_url: Mapped[Optional[str]] = mapped_column(String(1024))
    purchase_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    tasks = relationship("MaintenanceTask", back_populates="equipment", order_by="MaintenanceTask.scheduled_date.desc()")


class MaintenanceTask(Base):
    """Maintenance history entries: one unit of work against one equipment"""
    __tablename__ = "maintenance_tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id"), nullable=False, index=True)
    maintenance_type: Mapped[str] = mapped_column(String(50), default="other", index=True)  # preventive|corrective|predictive|other
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(20), default="medium")  # low|medium|high
    status: Mapped[str] = mapped_column(String(50), default="scheduled", index=True)  # scheduled|in_progress|completed|cancelled
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # set iff status == completed
    responsible: Mapped[Optional[str]] = mapped_column(String(255))
    performed_by: Mapped[Optional[str]] = mapped_column(String(255))  # who recorded it
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    equipment = relationship("Equipment", back_populates="tasks")

    # Indexes
    __table_args__ = (
        Index('idx_task_equipment_status', 'equipment_id', 'status'),
    )


class NotificationSetting(Base):
    """Configured notification rules"""
    __tablename__ = "notification_settings"

    id: Mapped[uuid.UUID] = uuid_pk()
    type: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)  # calibration_due|maintenance_reminder|maintenance_completed|maintenance_overdue|<custom slug>
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    days_before: Mapped[int] = mapped_column(Integer, default=0)  # lead time; 0 fires on state change
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    recipients: Mapped[list] = mapped_column(JSON, default=list)  # ordered e-mail addresses
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class NotificationLog(Base):
    """Append-only record of every dispatch attempt"""
    __tablename__ = "notification_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    notification_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Equipment is referenced by id only; name and code are snapshots taken at dispatch time
    equipment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    equipment_name: Mapped[Optional[str]] = mapped_column(String(255))
    equipment_internal_code: Mapped[Optional[str]] = mapped_column(String(100))
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    recipients: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # sent|failed
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Indexes
    __table_args__ = (
        Index('idx_notification_log_type_created', 'notification_type', 'created_at'),
    )


class ActivityLog(Base):
    """Append-only audit trail of domain mutations"""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user: Mapped[str] = mapped_column(String(255), nullable=False)  # actor display name
    action_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON)  # typed payload, see schemas.activity
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification
