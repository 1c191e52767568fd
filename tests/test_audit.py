import pytest

from labwise.models.models import ActivityLog
from labwise.schemas.activity import (
    ActionType,
    LoginDetails,
    SystemErrorDetails,
    UserStatusDetails,
)
from labwise.services.audit import append_activity, compute_diff, list_activity, verify_activity


SECRET = "test-secret"


def test_append_stores_typed_details(db):
    entry = append_activity(
        db,
        "System",
        ActionType.SYSTEM_ERROR,
        "Barrido interrumpido",
        details=SystemErrorDetails(error="boom", context={"remaining": 2}),
        integrity_secret=SECRET,
    )
    assert entry.id is not None
    assert entry.user == "System"
    assert entry.action_type == "SYSTEM_ERROR"
    assert entry.details == {"kind": "system_error", "error": "boom", "context": {"remaining": 2}}
    assert entry.integrity_hash


def test_details_must_match_action_type(db):
    with pytest.raises(TypeError):
        append_activity(
            db,
            "Ana",
            ActionType.USER_LOGIN,
            "Inicio de sesión",
            details=UserStatusDetails(user_id="1", user_name="Ana", is_active=True),
        )
    assert db.query(ActivityLog).count() == 0


def test_unknown_action_type_is_rejected(db):
    with pytest.raises(ValueError):
        append_activity(db, "Ana", "DELETE_EVERYTHING", "nope")


def test_list_is_newest_first_and_filterable(db):
    append_activity(db, "Ana", ActionType.USER_LOGIN, "primero",
                    details=LoginDetails(user_id="1", email="ana@labwise.com"))
    append_activity(db, "System", ActionType.SYSTEM_ERROR, "segundo",
                    details=SystemErrorDetails(error="x"))
    append_activity(db, "Ana", ActionType.USER_LOGIN, "tercero",
                    details=LoginDetails(user_id="1", email="ana@labwise.com"))

    entries = list_activity(db)
    assert len(entries) == 3
    stamps = [e.timestamp for e in entries]
    assert stamps == sorted(stamps, reverse=True)

    logins = list_activity(db, action_type=ActionType.USER_LOGIN)
    assert {e.description for e in logins} == {"primero", "tercero"}

    assert len(list_activity(db, limit=1)) == 1
    assert len(list_activity(db, limit=10, offset=2)) == 1


def test_integrity_hash_detects_tampering(db):
    entry = append_activity(
        db,
        "Ana",
        ActionType.USER_LOGIN,
        "Inicio de sesión",
        details=LoginDetails(user_id="1", email="ana@labwise.com"),
        integrity_secret=SECRET,
    )
    db.expire_all()
    stored = db.get(ActivityLog, entry.id)
    assert verify_activity(stored, integrity_secret=SECRET)
    assert not verify_activity(stored, integrity_secret="other-secret")

    stored.description = "Inicio de sesión de otra persona"
    assert not verify_activity(stored, integrity_secret=SECRET)


def test_compute_diff_reports_changed_keys_only():
    before = {"status": "operational", "location": "Lab 1", "brand": "Mettler"}
    after = {"status": "maintenance", "location": "Lab 1", "brand": "Mettler", "model": "XS"}
    assert compute_diff(before, after) == {
        "model": {"before": None, "after": "XS"},
        "status": {"before": "operational", "after": "maintenance"},
    }
