"""
Maintenance task state machine.

scheduled -> in_progress -> completed | cancelled, plus scheduled -> completed
and scheduled -> cancelled. completed and cancelled are terminal. Every
mutation is appended to the activity log in the same transaction.
"""
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from sqlalchemy.orm import Session

from ..errors import InvalidTransition, MissingCompletionDate, NotFound
from ..logging import structlog
from ..models.models import Equipment, MaintenanceTask, NotificationSetting
from ..schemas.activity import (
    ActionType,
    MaintenanceChangeDetails,
    MaintenanceScheduledDetails,
    MaintenanceStatusDetails,
)
from ..schemas.maintenance import MaintenanceStatus
from ..schemas.notifications import RuleKind
from .audit import append_activity, compute_diff
from .dispatcher import DispatchOutcome, Dispatcher
from .evaluator import inline_firings, rule_config, snapshot_equipment, snapshot_task
from .time_rules import to_naive_utc, utcnow


S = MaintenanceStatus

LEGAL_TRANSITIONS = {
    S.scheduled.value: {S.in_progress.value, S.completed.value, S.cancelled.value},
    S.in_progress.value: {S.completed.value, S.cancelled.value},
    S.completed.value: set(),
    S.cancelled.value: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in LEGAL_TRANSITIONS.items() if not targets)

CREATION_ENTRY_ACTION = "Equipo Creado"

SOURCE_STAFF = "staff"
SOURCE_FIELD = "field"


def can_transition(current: str, requested: str) -> bool:
    return requested in LEGAL_TRANSITIONS.get(current, set())


class _TaskLocks:
    """
    Process-wide lock per task id; serializes transitions racing inside one worker.
    An entry lives only while some thread holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[uuid.UUID, List] = {}  # task_id -> [lock, users]

    @contextmanager
    def hold(self, task_id: uuid.UUID) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(task_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[task_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_task_locks = _TaskLocks()


def get_task(db: Session, task_id: uuid.UUID) -> MaintenanceTask:
    task = db.query(MaintenanceTask).filter(MaintenanceTask.id == task_id).first()
    if task is None:
        raise NotFound("Maintenance task", task_id)
    return task


def list_tasks_for_equipment(db: Session, equipment_id: uuid.UUID) -> List[MaintenanceTask]:
    """History of one equipment, latest scheduled first."""
    return (
        db.query(MaintenanceTask)
        .filter(MaintenanceTask.equipment_id == equipment_id)
        .order_by(MaintenanceTask.scheduled_date.desc(), MaintenanceTask.created_at.desc())
        .all()
    )


def list_all_tasks(db: Session, status: Optional[str] = None) -> List[MaintenanceTask]:
    query = db.query(MaintenanceTask)
    if status:
        query = query.filter(MaintenanceTask.status == MaintenanceStatus(status).value)
    return query.order_by(MaintenanceTask.scheduled_date.desc()).all()


def _dispatch_inline(
    db: Session,
    dispatcher: Optional[Dispatcher],
    kind: RuleKind,
    task: MaintenanceTask,
) -> List[DispatchOutcome]:
    if dispatcher is None:
        return []
    settings_rows = db.query(NotificationSetting).filter(NotificationSetting.type == kind.value).all()
    firings = inline_firings(
        kind,
        snapshot_equipment(task.equipment),
        snapshot_task(task),
        [rule_config(s) for s in settings_rows],
    )
    outcomes: List[DispatchOutcome] = []
    for firing in firings:
        outcomes.extend(dispatcher.dispatch(firing))
    return outcomes


def record_creation_entry(db: Session, equipment: Equipment, actor: str) -> MaintenanceTask:
    """Completed "Equipo Creado" entry that opens every equipment's history. Flushes, does not commit."""
    now = utcnow()
    entry = MaintenanceTask(
        equipment_id=equipment.id,
        maintenance_type="other",
        action=CREATION_ENTRY_ACTION,
        description=f"Registro inicial de {equipment.instrument}",
        priority="low",
        status=S.completed.value,
        scheduled_date=now,
        completion_date=now,
        responsible=actor,
        performed_by=actor,
    )
    db.add(entry)
    db.flush()
    return entry


def schedule_task(
    db: Session,
    equipment_id: uuid.UUID,
    action: str,
    scheduled_date: datetime,
    performed_by: str,
    maintenance_type: str = "other",
    priority: str = "medium",
    responsible: Optional[str] = None,
    description: Optional[str] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> MaintenanceTask:
    """
    Create a task in scheduled state.

    The task and its MAINTENANCE_SCHEDULED activity entry are committed
    together; the maintenance_reminder rule is then dispatched for the new task.

    Raises:
        NotFound: equipment does not exist
    """
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if equipment is None:
        raise NotFound("Equipment", equipment_id)

    task = MaintenanceTask(
        equipment_id=equipment.id,
        action=action.strip(),
        maintenance_type=maintenance_type,
        priority=priority,
        status=S.scheduled.value,
        scheduled_date=to_naive_utc(scheduled_date),
        responsible=responsible,
        performed_by=performed_by,
        description=description,
    )
    db.add(task)
    db.flush()
    append_activity(
        db,
        performed_by,
        ActionType.MAINTENANCE_SCHEDULED,
        f"Programó mantenimiento '{task.action}' para {equipment.instrument}",
        MaintenanceScheduledDetails(
            equipment_id=str(equipment.id),
            equipment_name=equipment.instrument,
            task_id=str(task.id),
            task=task.action,
            status=task.status,
            type=task.maintenance_type,
        ),
        commit=False,
    )
    db.commit()
    db.refresh(task)
    structlog.get_logger().info(
        "maintenance_scheduled", task_id=str(task.id), equipment_id=str(equipment.id)
    )

    _dispatch_inline(db, dispatcher, RuleKind.maintenance_reminder, task)
    return task


def transition_task(
    db: Session,
    task_id: uuid.UUID,
    new_status: str,
    actor: str,
    completion_date: Optional[datetime] = None,
    source: str = SOURCE_STAFF,
    equipment_id: Optional[uuid.UUID] = None,
    dispatcher: Optional[Dispatcher] = None,
) -> MaintenanceTask:
    """
    Move a task to a new status.

    The task is re-read under a row lock (and a per-task process lock) so the
    legality check always runs against its current state.

    Args:
        db: Database session
        task_id: Task to move
        new_status: Target status
        actor: Display name recorded in the activity log
        completion_date: Required when staff complete a task; field check-ins default to now
        source: "staff" or "field"
        equipment_id: When given, the task must belong to this equipment
        dispatcher: Sends maintenance_completed inline when the task is completed

    Raises:
        NotFound: unknown task, or task of another equipment
        InvalidTransition: target not reachable from the current status
        MissingCompletionDate: staff completion without a date
    """
    requested = MaintenanceStatus(new_status).value
    log = structlog.get_logger()

    with _task_locks.hold(task_id):
        task = (
            db.query(MaintenanceTask)
            .filter(MaintenanceTask.id == task_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if task is None or (equipment_id is not None and task.equipment_id != equipment_id):
            db.rollback()
            raise NotFound("Maintenance task", task_id)

        current = task.status
        if not can_transition(current, requested):
            db.rollback()
            log.info("maintenance_transition_rejected", task_id=str(task_id), current=current, requested=requested)
            raise InvalidTransition(current, requested)

        if requested == S.completed.value:
            if completion_date is None:
                if source != SOURCE_FIELD:
                    db.rollback()
                    raise MissingCompletionDate(current)
                completion_date = utcnow()
            task.completion_date = to_naive_utc(completion_date)

        task.status = requested
        task.updated_at = utcnow()
        equipment = task.equipment

        append_activity(
            db,
            actor,
            ActionType.MAINTENANCE_STATUS_UPDATED,
            f"Cambió el estado de '{task.action}' en {equipment.instrument} de {current} a {requested}",
            MaintenanceStatusDetails(
                equipment_id=str(equipment.id),
                equipment_name=equipment.instrument,
                task_id=str(task.id),
                old_status=current,
                new_status=requested,
                source=source,
                completion_date=task.completion_date,
            ),
            commit=False,
        )
        db.commit()

    db.refresh(task)
    log.info(
        "maintenance_transitioned",
        task_id=str(task.id),
        old_status=current,
        new_status=requested,
        source=source,
    )

    if requested == S.completed.value:
        _dispatch_inline(db, dispatcher, RuleKind.maintenance_completed, task)
    return task


_EDITABLE_TASK_FIELDS = ("action", "maintenance_type", "priority", "scheduled_date", "responsible", "description")


def _task_fields(task: MaintenanceTask) -> Dict[str, object]:
    out = {}
    for field in _EDITABLE_TASK_FIELDS:
        value = getattr(task, field)
        out[field] = value.isoformat() if isinstance(value, datetime) else value
    return out


def update_task_details(db: Session, task_id: uuid.UUID, changes: dict, actor: str) -> MaintenanceTask:
    """
    Edit descriptive fields of a task that is still open.
    Status and completion date only move through transition_task.
    The edit and its MAINTENANCE_UPDATED entry are committed together.

    Raises:
        NotFound: unknown task
        InvalidTransition: task is completed or cancelled
    """
    with _task_locks.hold(task_id):
        task = (
            db.query(MaintenanceTask)
            .filter(MaintenanceTask.id == task_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if task is None:
            db.rollback()
            raise NotFound("Maintenance task", task_id)
        if task.status in TERMINAL_STATUSES:
            db.rollback()
            raise InvalidTransition(
                task.status, task.status, message=f"Task is {task.status} and can no longer be edited"
            )

        before = _task_fields(task)
        for field in _EDITABLE_TASK_FIELDS:
            if field not in changes or changes[field] is None:
                continue
            value = changes[field]
            if hasattr(value, "value"):
                value = value.value
            if field == "scheduled_date":
                value = to_naive_utc(value)
            setattr(task, field, value)
        diff = compute_diff(before, _task_fields(task))
        if not diff:
            db.rollback()
            return get_task(db, task_id)

        task.updated_at = utcnow()
        equipment = task.equipment
        append_activity(
            db,
            actor,
            ActionType.MAINTENANCE_UPDATED,
            f"Editó el mantenimiento '{task.action}' de {equipment.instrument}",
            MaintenanceChangeDetails(
                equipment_id=str(equipment.id),
                equipment_name=equipment.instrument,
                task_id=str(task.id),
                changes=diff,
            ),
            commit=False,
        )
        db.commit()

    db.refresh(task)
    return task
