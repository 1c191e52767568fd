import threading
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine

from labwise.db import Base, create_session_factory
from labwise.errors import InvalidTransition, MissingCompletionDate, NotFound
from labwise.models.models import ActivityLog, MaintenanceTask, NotificationLog
from labwise.services.dispatcher import Dispatcher
from labwise.services.maintenance import (
    LEGAL_TRANSITIONS,
    _task_locks,
    can_transition,
    list_tasks_for_equipment,
    schedule_task,
    transition_task,
    update_task_details,
)
from labwise.services.time_rules import utcnow

from conftest import RecordingTransport, make_equipment, make_rule


ALL_STATES = ["scheduled", "in_progress", "completed", "cancelled"]


@pytest.fixture
def equipment(db):
    return make_equipment(db)


def _schedule(db, equipment, **kw):
    return schedule_task(
        db,
        equipment_id=equipment.id,
        action=kw.pop("action", "Limpieza general"),
        scheduled_date=kw.pop("scheduled_date", utcnow() + timedelta(days=3)),
        performed_by="Ana",
        **kw,
    )


def test_legal_transition_table():
    assert can_transition("scheduled", "in_progress")
    assert can_transition("scheduled", "completed")
    assert can_transition("scheduled", "cancelled")
    assert can_transition("in_progress", "completed")
    assert can_transition("in_progress", "cancelled")
    assert not can_transition("in_progress", "scheduled")
    for state in ALL_STATES:
        assert not can_transition(state, state)
    assert LEGAL_TRANSITIONS["completed"] == set()
    assert LEGAL_TRANSITIONS["cancelled"] == set()


@pytest.mark.parametrize("terminal", ["completed", "cancelled"])
@pytest.mark.parametrize("target", ALL_STATES)
def test_terminal_states_reject_every_transition(db, equipment, terminal, target):
    task = _schedule(db, equipment)
    transition_task(db, task.id, terminal, actor="Ana", completion_date=utcnow())

    with pytest.raises(InvalidTransition):
        transition_task(db, task.id, target, actor="Ana", completion_date=utcnow())

    db.expire_all()
    assert db.get(MaintenanceTask, task.id).status == terminal


def test_same_state_transition_is_rejected(db, equipment):
    task = _schedule(db, equipment)
    with pytest.raises(InvalidTransition):
        transition_task(db, task.id, "scheduled", actor="Ana")


def test_staff_completion_requires_date(db, equipment):
    task = _schedule(db, equipment)
    with pytest.raises(MissingCompletionDate):
        transition_task(db, task.id, "completed", actor="Ana")

    db.expire_all()
    refreshed = db.get(MaintenanceTask, task.id)
    assert refreshed.status == "scheduled"
    assert refreshed.completion_date is None


def test_missing_completion_date_is_an_invalid_transition():
    assert issubclass(MissingCompletionDate, InvalidTransition)


def test_completion_sets_date(db, equipment):
    task = _schedule(db, equipment)
    done_at = datetime(2024, 6, 20, 15, 30)
    completed = transition_task(db, task.id, "completed", actor="Ana", completion_date=done_at)
    assert completed.status == "completed"
    assert completed.completion_date == done_at


def test_field_completion_defaults_to_now(db, equipment):
    task = _schedule(db, equipment)
    before = utcnow()
    completed = transition_task(db, task.id, "completed", actor="Mobile User", source="field")
    assert completed.completion_date is not None
    assert completed.completion_date >= before.replace(microsecond=0)


def test_non_completed_targets_ignore_completion_date(db, equipment):
    task = _schedule(db, equipment)
    moved = transition_task(db, task.id, "in_progress", actor="Ana", completion_date=utcnow())
    assert moved.status == "in_progress"
    assert moved.completion_date is None


def test_transition_scoped_to_equipment(db, equipment):
    other = make_equipment(db, internal_code="EQ-999", instrument="pH-metro")
    task = _schedule(db, equipment)
    with pytest.raises(NotFound):
        transition_task(db, task.id, "in_progress", actor="Ana", source="field", equipment_id=other.id)


def test_transition_appends_activity(db, equipment):
    task = _schedule(db, equipment)
    transition_task(db, task.id, "in_progress", actor="Ana")

    entry = (
        db.query(ActivityLog)
        .filter(ActivityLog.action_type == "MAINTENANCE_STATUS_UPDATED")
        .one()
    )
    assert entry.user == "Ana"
    assert entry.details["old_status"] == "scheduled"
    assert entry.details["new_status"] == "in_progress"
    assert entry.details["source"] == "staff"
    assert entry.details["task_id"] == str(task.id)


def test_schedule_appends_activity_and_sends_reminder(db, equipment):
    make_rule(db, "maintenance_reminder", ["tech@x.com", "boss@x.com"], days_before=3)
    transport = RecordingTransport()

    task = _schedule(db, equipment, dispatcher=Dispatcher(db, transport))

    assert task.status == "scheduled"
    scheduled = db.query(ActivityLog).filter(ActivityLog.action_type == "MAINTENANCE_SCHEDULED").one()
    assert scheduled.details["task"] == "Limpieza general"
    assert sorted(transport.recipients) == ["boss@x.com", "tech@x.com"]
    assert all(subject.startswith("Recordatorio: Mantenimiento Programado") for _, subject, _ in transport.sent)
    assert db.query(NotificationLog).filter(NotificationLog.task_id == task.id).count() == 2


def test_completion_sends_completed_rule_inline(db, equipment):
    make_rule(db, "maintenance_completed", ["boss@x.com"])
    transport = RecordingTransport()
    dispatcher = Dispatcher(db, transport)
    task = _schedule(db, equipment, dispatcher=dispatcher)

    transition_task(db, task.id, "in_progress", actor="Ana", dispatcher=dispatcher)
    assert transport.sent == []

    transition_task(db, task.id, "completed", actor="Ana", completion_date=utcnow(), dispatcher=dispatcher)
    assert [(to, subject) for to, subject, _ in transport.sent] == [
        ("boss@x.com", "Mantenimiento COMPLETADO - Balanza Analítica")
    ]


def test_schedule_unknown_equipment(db):
    with pytest.raises(NotFound):
        schedule_task(
            db,
            equipment_id=uuid.uuid4(),
            action="Limpieza",
            scheduled_date=utcnow(),
            performed_by="Ana",
        )


def test_details_editable_only_while_open(db, equipment):
    task = _schedule(db, equipment)
    edited = update_task_details(db, task.id, {"action": "Limpieza profunda", "priority": "high"}, actor="Ana")
    assert edited.action == "Limpieza profunda"
    assert edited.priority == "high"

    transition_task(db, task.id, "cancelled", actor="Ana")
    with pytest.raises(InvalidTransition):
        update_task_details(db, task.id, {"action": "Otra cosa"}, actor="Ana")


def test_equipment_history_opens_with_creation_entry(db, equipment):
    history = list_tasks_for_equipment(db, equipment.id)
    assert len(history) == 1
    assert history[0].action == "Equipo Creado"
    assert history[0].status == "completed"
    assert history[0].completion_date is not None

    later = _schedule(db, equipment, scheduled_date=utcnow() + timedelta(days=10))
    assert list_tasks_for_equipment(db, equipment.id)[0].id == later.id


def test_detail_edit_appends_activity_with_diff(db, equipment):
    task = _schedule(db, equipment)
    before = db.query(ActivityLog).count()

    update_task_details(db, task.id, {"action": "Otra", "responsible": "Xiomara"}, actor="Supervisora")

    assert db.query(ActivityLog).count() == before + 1
    entry = db.query(ActivityLog).filter(ActivityLog.action_type == "MAINTENANCE_UPDATED").one()
    assert entry.user == "Supervisora"
    assert entry.details["task_id"] == str(task.id)
    assert entry.details["changes"]["action"] == {"before": "Limpieza general", "after": "Otra"}
    assert entry.details["changes"]["responsible"] == {"before": None, "after": "Xiomara"}


def test_detail_edit_without_changes_is_not_logged(db, equipment):
    task = _schedule(db, equipment)
    before = db.query(ActivityLog).count()
    update_task_details(db, task.id, {"action": "Limpieza general"}, actor="Ana")
    assert db.query(ActivityLog).count() == before


def test_transition_checks_current_state_not_session_cache(db, session_factory, equipment):
    task = _schedule(db, equipment)
    assert task.status == "scheduled"  # loaded into db's identity map

    other = session_factory()
    try:
        transition_task(other, task.id, "cancelled", actor="Luis")
    finally:
        other.close()

    with pytest.raises(InvalidTransition):
        transition_task(db, task.id, "completed", actor="Ana", completion_date=utcnow())
    db.expire_all()
    refreshed = db.get(MaintenanceTask, task.id)
    assert refreshed.status == "cancelled"
    assert refreshed.completion_date is None


def test_detail_edit_checks_current_state_not_session_cache(db, session_factory, equipment):
    task = _schedule(db, equipment)

    other = session_factory()
    try:
        transition_task(other, task.id, "cancelled", actor="Luis")
    finally:
        other.close()

    with pytest.raises(InvalidTransition):
        update_task_details(db, task.id, {"action": "Otra"}, actor="Ana")


def test_racing_completions_apply_once(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    factory = create_session_factory(engine)
    setup = factory()
    try:
        equipment = make_equipment(setup)
        task_id = _schedule(setup, equipment).id
    finally:
        setup.close()

    start = threading.Barrier(2)
    results = []

    def complete(actor):
        session = factory()
        try:
            session.get(MaintenanceTask, task_id)  # warm the identity map before racing
            start.wait()
            transition_task(session, task_id, "completed", actor=actor, completion_date=utcnow())
            results.append("ok")
        except InvalidTransition:
            results.append("rejected")
        finally:
            session.close()

    threads = [threading.Thread(target=complete, args=(name,)) for name in ("Ana", "Luis")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(results) == ["ok", "rejected"]
    check = factory()
    try:
        updates = check.query(ActivityLog).filter(ActivityLog.action_type == "MAINTENANCE_STATUS_UPDATED").count()
        assert updates == 1
    finally:
        check.close()
        engine.dispose()


def test_task_locks_are_released_after_use(db, equipment):
    task = _schedule(db, equipment)
    transition_task(db, task.id, "in_progress", actor="Ana")
    with pytest.raises(InvalidTransition):
        transition_task(db, task.id, "scheduled", actor="Ana")
    update_task_details(db, task.id, {"priority": "high"}, actor="Ana")
    assert len(_task_locks) == 0
