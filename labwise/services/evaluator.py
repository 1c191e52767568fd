"""
Rule evaluator.

Decides which notification rules fire for a given instant. Pure: it works on
frozen snapshots of equipment, tasks and settings and never touches the
database, so running it twice on the same inputs yields the same firings.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ..schemas.notifications import RuleKind
from ..schemas.maintenance import MaintenanceStatus
from .time_rules import as_datetime, to_naive_utc


@dataclass(frozen=True)
class EquipmentSnapshot:
    id: uuid.UUID
    instrument: str
    internal_code: str
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    system_number: Optional[str] = None
    last_external_calibration: Optional[date] = None
    next_external_calibration: Optional[date] = None
    status: str = "operational"


@dataclass(frozen=True)
class TaskSnapshot:
    id: uuid.UUID
    equipment_id: uuid.UUID
    action: str
    maintenance_type: str
    priority: str
    status: str
    scheduled_date: datetime
    completion_date: Optional[datetime] = None
    responsible: Optional[str] = None
    performed_by: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class RuleConfig:
    id: uuid.UUID
    type: str
    days_before: int
    is_active: bool
    recipients: Tuple[str, ...]

    @property
    def can_fire(self) -> bool:
        return self.is_active and len(self.recipients) > 0


@dataclass(frozen=True)
class Firing:
    rule_kind: str
    equipment: EquipmentSnapshot
    recipients: Tuple[str, ...]
    task: Optional[TaskSnapshot] = None
    days_until_due: Optional[int] = None


def snapshot_equipment(equipment) -> EquipmentSnapshot:
    return EquipmentSnapshot(
        id=equipment.id,
        instrument=equipment.instrument,
        internal_code=equipment.internal_code,
        brand=equipment.brand,
        model=equipment.model,
        serial_number=equipment.serial_number,
        system_number=equipment.system_number,
        last_external_calibration=equipment.last_external_calibration,
        next_external_calibration=equipment.next_external_calibration,
        status=equipment.status,
    )


def snapshot_task(task) -> TaskSnapshot:
    return TaskSnapshot(
        id=task.id,
        equipment_id=task.equipment_id,
        action=task.action,
        maintenance_type=task.maintenance_type,
        priority=task.priority,
        status=task.status,
        scheduled_date=to_naive_utc(task.scheduled_date),
        completion_date=to_naive_utc(task.completion_date),
        responsible=task.responsible,
        performed_by=task.performed_by,
        description=task.description,
    )


def rule_config(setting) -> RuleConfig:
    return RuleConfig(
        id=setting.id,
        type=setting.type,
        days_before=setting.days_before or 0,
        is_active=bool(setting.is_active),
        recipients=tuple(setting.recipients or ()),
    )


def days_until(target: date, now: datetime) -> int:
    """Whole calendar days from now's date to target; negative when past."""
    return (target - now.date()).days


# Sweep order; maintenance_completed is fired inline on the transition, not here
_SWEEP_KINDS = (
    RuleKind.maintenance_overdue.value,
    RuleKind.calibration_due.value,
    RuleKind.maintenance_reminder.value,
)


def _rules_of_kind(rules: Iterable[RuleConfig], kind: str) -> List[RuleConfig]:
    return [r for r in rules if r.type == kind and r.can_fire]


def evaluate(
    now: Union[datetime, date],
    equipment: Sequence[EquipmentSnapshot],
    tasks: Sequence[TaskSnapshot],
    rules: Sequence[RuleConfig],
) -> List[Firing]:
    """
    Compute every firing for one sweep.

    Args:
        now: The sweep's logical instant (naive UTC)
        equipment: Whole fleet
        tasks: Every task of every equipment
        rules: Notification settings; inactive or recipient-less rules are ignored

    Returns:
        Firings ordered by rule kind, then equipment name, then scheduled date
    """
    now = as_datetime(now)
    fleet = sorted(equipment, key=lambda e: (e.instrument or "", str(e.id)))
    by_id = {e.id: e for e in fleet}
    pending = sorted(
        (t for t in tasks if t.status == MaintenanceStatus.scheduled.value and t.equipment_id in by_id),
        key=lambda t: (t.scheduled_date, str(t.id)),
    )
    ordered_rules = sorted(rules, key=lambda r: (r.type, str(r.id)))

    firings: List[Firing] = []
    for kind in _SWEEP_KINDS:
        for rule in _rules_of_kind(ordered_rules, kind):
            if kind == RuleKind.maintenance_overdue.value:
                # Lead time does not apply to overdue tasks
                for task in pending:
                    if task.scheduled_date < now:
                        firings.append(Firing(kind, by_id[task.equipment_id], rule.recipients, task=task))

            elif kind == RuleKind.calibration_due.value:
                # Calibrations already past due are not covered by any rule
                for item in fleet:
                    if item.next_external_calibration is None:
                        continue
                    remaining = days_until(item.next_external_calibration, now)
                    if 0 < remaining <= rule.days_before:
                        firings.append(Firing(kind, item, rule.recipients, days_until_due=remaining))

            elif kind == RuleKind.maintenance_reminder.value:
                # Lead time is informational only for reminders
                for task in pending:
                    firings.append(Firing(kind, by_id[task.equipment_id], rule.recipients, task=task))
    return firings


def inline_firings(
    kind: Union[RuleKind, str],
    equipment: EquipmentSnapshot,
    task: TaskSnapshot,
    rules: Sequence[RuleConfig],
) -> List[Firing]:
    """Firings for a rule evaluated at the moment of a task state change."""
    kind = RuleKind(kind).value
    return [
        Firing(kind, equipment, rule.recipients, task=task)
        for rule in _rules_of_kind(sorted(rules, key=lambda r: (r.type, str(r.id))), kind)
    ]
