import uuid
from datetime import date, datetime, timedelta

from labwise.services.evaluator import (
    EquipmentSnapshot,
    RuleConfig,
    TaskSnapshot,
    evaluate,
)


NOW = datetime(2024, 6, 25, 8, 0)
RECIPIENTS = ("a@x.com", "b@x.com")


def equipment(name="Balanza", next_cal=None, **kw):
    return EquipmentSnapshot(
        id=kw.pop("id", uuid.uuid4()),
        instrument=name,
        internal_code=kw.pop("internal_code", name.upper()),
        next_external_calibration=next_cal,
        **kw,
    )


def task(eq, status="scheduled", when=None, **kw):
    return TaskSnapshot(
        id=kw.pop("id", uuid.uuid4()),
        equipment_id=eq.id,
        action=kw.pop("action", "Limpieza"),
        maintenance_type="preventive",
        priority="medium",
        status=status,
        scheduled_date=when or NOW + timedelta(days=2),
        **kw,
    )


def rule(kind, days_before=0, is_active=True, recipients=RECIPIENTS):
    return RuleConfig(
        id=uuid.uuid4(),
        type=kind,
        days_before=days_before,
        is_active=is_active,
        recipients=tuple(recipients),
    )


def kinds(firings):
    return [f.rule_kind for f in firings]


def test_overdue_fires_for_scheduled_task_from_yesterday():
    eq = equipment()
    t = task(eq, when=NOW - timedelta(days=1))
    firings = evaluate(NOW, [eq], [t], [rule("maintenance_overdue")])
    assert len(firings) == 1
    assert firings[0].rule_kind == "maintenance_overdue"
    assert firings[0].task.id == t.id
    assert firings[0].recipients == RECIPIENTS


def test_overdue_ignores_completed_task_from_yesterday():
    eq = equipment()
    t = task(eq, status="completed", when=NOW - timedelta(days=1), completion_date=NOW)
    assert evaluate(NOW, [eq], [t], [rule("maintenance_overdue")]) == []


def test_overdue_ignores_future_and_in_progress_tasks():
    eq = equipment()
    future = task(eq, when=NOW + timedelta(hours=1))
    started = task(eq, status="in_progress", when=NOW - timedelta(days=3))
    assert evaluate(NOW, [eq], [future, started], [rule("maintenance_overdue")]) == []


def test_calibration_due_boundaries():
    at_lead = equipment("A", next_cal=date(2024, 7, 2))        # 7 days
    past_lead = equipment("B", next_cal=date(2024, 7, 3))      # 8 days
    due_today = equipment("C", next_cal=date(2024, 6, 25))     # 0 days
    already_late = equipment("D", next_cal=date(2024, 6, 1))   # negative
    tomorrow = equipment("E", next_cal=date(2024, 6, 26))      # 1 day
    no_date = equipment("F")

    firings = evaluate(
        NOW,
        [at_lead, past_lead, due_today, already_late, tomorrow, no_date],
        [],
        [rule("calibration_due", days_before=7)],
    )
    fired = {f.equipment.instrument: f.days_until_due for f in firings}
    assert fired == {"A": 7, "E": 1}


def test_calibration_due_counts_calendar_days_regardless_of_hour():
    eq = equipment(next_cal=date(2024, 7, 1))
    late_evening = datetime(2024, 6, 25, 23, 59)
    firings = evaluate(late_evening, [eq], [], [rule("calibration_due", days_before=7)])
    assert firings[0].days_until_due == 6


def test_reminder_fires_for_every_scheduled_task_regardless_of_date():
    eq = equipment()
    far = task(eq, when=NOW + timedelta(days=90))
    past = task(eq, when=NOW - timedelta(days=5))
    done = task(eq, status="cancelled")
    firings = evaluate(NOW, [eq], [far, past, done], [rule("maintenance_reminder", days_before=3)])
    assert sorted(f.task.id for f in firings) == sorted([far.id, past.id])


def test_completed_rule_never_fires_in_sweep():
    eq = equipment()
    t = task(eq, status="completed", completion_date=NOW)
    assert evaluate(NOW, [eq], [t], [rule("maintenance_completed")]) == []


def test_custom_kinds_never_fire_in_sweep():
    eq = equipment(next_cal=date(2024, 6, 27))
    t = task(eq, when=NOW - timedelta(days=1))
    assert evaluate(NOW, [eq], [t], [rule("alerta_personalizada", days_before=30)]) == []


def test_inactive_or_recipientless_rules_are_skipped():
    eq = equipment()
    t = task(eq, when=NOW - timedelta(days=1))
    rules = [
        rule("maintenance_overdue", is_active=False),
        rule("maintenance_reminder", recipients=()),
    ]
    assert evaluate(NOW, [eq], [t], rules) == []


def test_tasks_of_unknown_equipment_are_skipped():
    eq = equipment()
    orphan = TaskSnapshot(
        id=uuid.uuid4(),
        equipment_id=uuid.uuid4(),
        action="Revisión",
        maintenance_type="other",
        priority="low",
        status="scheduled",
        scheduled_date=NOW - timedelta(days=1),
    )
    assert evaluate(NOW, [eq], [orphan], [rule("maintenance_overdue")]) == []


def test_evaluation_is_deterministic_and_ordered():
    zeta = equipment("Zeta", next_cal=date(2024, 6, 28))
    alpha = equipment("Alpha", next_cal=date(2024, 6, 30))
    tasks = [
        task(zeta, when=NOW - timedelta(days=1)),
        task(alpha, when=NOW - timedelta(days=2)),
    ]
    rules = [
        rule("maintenance_reminder"),
        rule("calibration_due", days_before=7),
        rule("maintenance_overdue"),
    ]

    first = evaluate(NOW, [zeta, alpha], tasks, rules)
    second = evaluate(NOW, [alpha, zeta], list(reversed(tasks)), list(reversed(rules)))

    assert first == second
    assert kinds(first) == [
        "maintenance_overdue",
        "maintenance_overdue",
        "calibration_due",
        "calibration_due",
        "maintenance_reminder",
        "maintenance_reminder",
    ]
    # calibration firings follow equipment name order
    assert [f.equipment.instrument for f in first if f.rule_kind == "calibration_due"] == ["Alpha", "Zeta"]
    # task firings follow scheduled date order
    assert [f.equipment.instrument for f in first if f.rule_kind == "maintenance_overdue"] == ["Alpha", "Zeta"]


def test_date_only_now_is_start_of_day():
    eq = equipment()
    t = task(eq, when=datetime(2024, 6, 24, 12, 0))
    firings = evaluate(date(2024, 6, 25), [eq], [t], [rule("maintenance_overdue")])
    assert len(firings) == 1
