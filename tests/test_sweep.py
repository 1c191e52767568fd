from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import create_engine

from labwise.config import Settings
from labwise.db import create_session_factory
from labwise.logging import sweep_context
from labwise.models.models import ActivityLog, MaintenanceTask, NotificationLog
from labwise.services.sweep import SweepRunner, SweepScheduler

from conftest import RecordingTransport, make_equipment, make_rule


NOW = datetime(2024, 6, 25, 13, 0)


def _settings(**overrides):
    values = dict(_env_file=None, sweep_enabled=False, metrics_enabled=False, dispatch_deadline_seconds=5)
    values.update(overrides)
    return Settings(**values)


def test_calibration_due_end_to_end(db, session_factory):
    e1 = make_equipment(db, instrument="E1", internal_code="E1")
    assert e1.next_external_calibration == date(2024, 7, 1)
    make_rule(db, "calibration_due", ["a@x.com", "b@x.com"], days_before=7)

    transport = RecordingTransport()
    report = SweepRunner(session_factory, transport, _settings()).run(now=NOW)

    assert report.firings == 1
    assert report.dispatched == 1
    assert report.sent == 2
    assert report.failed == 0
    assert not report.skipped and not report.truncated

    logs = db.query(NotificationLog).all()
    assert len(logs) == 2
    assert {log.status for log in logs} == {"sent"}
    assert sorted(log.recipients[0] for log in logs) == ["a@x.com", "b@x.com"]
    assert {log.equipment_name for log in logs} == {"E1"}
    assert "6 días" in transport.sent[0][2]


def test_conditions_refire_on_every_sweep(db, session_factory):
    make_equipment(db, instrument="E1", internal_code="E1")
    make_rule(db, "calibration_due", ["a@x.com"], days_before=7)
    runner = SweepRunner(session_factory, RecordingTransport(), _settings())

    runner.run(now=NOW)
    runner.run(now=NOW + timedelta(days=1))

    assert db.query(NotificationLog).count() == 2


def test_sweep_never_mutates_tasks_or_equipment(db, session_factory):
    equipment = make_equipment(db)
    db.add(
        MaintenanceTask(
            equipment_id=equipment.id,
            action="Verificación",
            status="scheduled",
            scheduled_date=NOW - timedelta(days=2),
        )
    )
    db.commit()
    make_rule(db, "maintenance_overdue", ["a@x.com"])
    make_rule(db, "maintenance_reminder", ["a@x.com"], days_before=3)

    report = SweepRunner(session_factory, RecordingTransport(), _settings()).run(now=NOW)

    assert report.firings == 2
    db.expire_all()
    statuses = sorted(t.status for t in db.query(MaintenanceTask).all())
    assert statuses == ["completed", "scheduled"]
    assert db.query(ActivityLog).filter(ActivityLog.action_type == "MAINTENANCE_STATUS_UPDATED").count() == 0


def test_overlapping_sweep_is_skipped(session_factory):
    transport = RecordingTransport()
    runner = SweepRunner(session_factory, transport, _settings())

    runner._lock.acquire()
    try:
        report = runner.run(now=NOW)
    finally:
        runner._lock.release()

    assert report.skipped
    assert report.firings == 0
    assert transport.sent == []


def test_deadline_truncates_and_records_system_error(db, session_factory):
    make_equipment(db, instrument="E1", internal_code="E1")
    make_rule(db, "calibration_due", ["a@x.com"], days_before=7)

    report = SweepRunner(session_factory, RecordingTransport(), _settings(sweep_deadline_seconds=-1)).run(now=NOW)

    assert report.truncated
    assert report.dispatched == 0
    entry = db.query(ActivityLog).filter(ActivityLog.action_type == "SYSTEM_ERROR").one()
    assert entry.user == "System"
    assert entry.details["context"]["remaining"] == 1
    assert db.query(NotificationLog).count() == 0


def test_unreachable_store_ends_sweep_with_error(tmp_path):
    missing = tmp_path / "no-such-dir" / "labwise.db"
    broken = create_session_factory(create_engine(f"sqlite:///{missing}"))

    report = SweepRunner(broken, RecordingTransport(), _settings()).run(now=NOW)

    assert report.error
    assert report.firings == 0
    assert report.finished_at is not None


def test_scheduler_next_run_uses_local_wall_clock():
    scheduler = SweepScheduler(runner=None, sweep_time="08:00", timezone_str="America/Bogota")
    # 12:00 UTC is 07:00 in Bogota; the run is one hour later
    assert scheduler.next_run(datetime(2024, 6, 25, 12, 0)) == datetime(2024, 6, 25, 13, 0)
    # past today's slot rolls over to tomorrow
    assert scheduler.next_run(datetime(2024, 6, 25, 13, 0)) == datetime(2024, 6, 26, 13, 0)


def test_scheduler_stops_cleanly(session_factory):
    runner = SweepRunner(session_factory, RecordingTransport(), _settings())
    scheduler = SweepScheduler(runner, "08:00", "America/Bogota")
    scheduler.start()
    scheduler.stop(timeout=2)
    assert scheduler._thread is None


def test_sweep_context_binds_and_clears_ids():
    with sweep_context("scheduled") as sweep_id:
        bound = structlog.contextvars.get_contextvars()
        assert bound["sweep_id"] == sweep_id
        assert bound["sweep_trigger"] == "scheduled"
    assert "sweep_id" not in structlog.contextvars.get_contextvars()


def test_unexpected_fault_is_recorded_and_ends_sweep(db, session_factory, monkeypatch):
    equipment = make_equipment(db)
    db.add(
        MaintenanceTask(
            equipment_id=equipment.id,
            action="Verificación",
            status="scheduled",
            scheduled_date=NOW - timedelta(days=2),
        )
    )
    db.commit()
    make_rule(db, "maintenance_overdue", ["a@x.com"])

    def broken_render(firing, recipient_name=None):
        raise ValueError("render failed")

    monkeypatch.setattr("labwise.services.dispatcher.render_message", broken_render)
    transport = RecordingTransport()

    report = SweepRunner(session_factory, transport, _settings()).run(now=NOW)

    assert report.error == "ValueError: render failed"
    assert report.firings == 1
    assert report.dispatched == 0
    assert report.finished_at is not None
    assert transport.sent == []
    entry = db.query(ActivityLog).filter(ActivityLog.action_type == "SYSTEM_ERROR").one()
    assert entry.user == "System"
    assert entry.details["error"] == "ValueError: render failed"
    assert entry.details["context"] == {"dispatched": 0, "remaining": 1}
