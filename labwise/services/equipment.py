"""
Equipment registry.
Owns equipment records; next_external_calibration is only ever written through the calibration calculator.
"""
import secrets
import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..errors import DuplicateInternalCode, NotFound, ParseError
from ..logging import structlog
from ..models.models import Equipment
from ..schemas.activity import ActionType, EquipmentChangeDetails
from ..schemas.equipment import EquipmentStatus
from .audit import append_activity, compute_diff
from .calibration import next_calibration, parse_calendar_date
from .maintenance import record_creation_entry
from .time_rules import utcnow


EDITABLE_FIELDS = (
    "instrument",
    "internal_code",
    "brand",
    "model",
    "serial_number",
    "system_number",
    "external_calibration_periodicity",
    "internal_check_periodicity",
    "last_external_calibration",
    "status",
    "image_url",
    "purchase_date",
    "notes",
)

_CALIBRATION_INPUTS = ("last_external_calibration", "external_calibration_periodicity")


def _new_qr_token() -> str:
    return secrets.token_urlsafe(12)


def _plain(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def equipment_snapshot_dict(equipment: Equipment) -> Dict[str, Any]:
    data = {field: _plain(getattr(equipment, field)) for field in EDITABLE_FIELDS}
    data["next_external_calibration"] = _plain(equipment.next_external_calibration)
    return data


def refresh_next_calibration(equipment: Equipment) -> bool:
    """
    Recompute next_external_calibration from the stored inputs.

    Returns:
        True if a new value was computed; False if the inputs did not parse
        and the previous value was kept
    """
    computed = next_calibration(
        equipment.last_external_calibration, equipment.external_calibration_periodicity
    )
    if computed is None:
        if equipment.last_external_calibration or equipment.external_calibration_periodicity:
            structlog.get_logger().warning(
                "calibration_parse_failed",
                internal_code=equipment.internal_code,
                periodicity=equipment.external_calibration_periodicity,
                last_external_calibration=_plain(equipment.last_external_calibration),
            )
        return False
    equipment.next_external_calibration = computed
    return True


def _ensure_unique_code(db: Session, internal_code: str, exclude_id: Optional[uuid.UUID] = None) -> None:
    query = db.query(Equipment.id).filter(Equipment.internal_code == internal_code)
    if exclude_id is not None:
        query = query.filter(Equipment.id != exclude_id)
    if query.first() is not None:
        raise DuplicateInternalCode(internal_code)


def _apply(equipment: Equipment, changes: Dict[str, Any]) -> None:
    for field in EDITABLE_FIELDS:
        if field in changes:
            setattr(equipment, field, _plain(changes[field]) if field == "status" else changes[field])


def _create(db: Session, data: Dict[str, Any], actor: str) -> Equipment:
    _ensure_unique_code(db, data["internal_code"])
    equipment = Equipment(qr_token=_new_qr_token())
    _apply(equipment, data)
    if not equipment.status:
        equipment.status = EquipmentStatus.operational.value
    refresh_next_calibration(equipment)
    db.add(equipment)
    db.flush()

    record_creation_entry(db, equipment, actor)
    append_activity(
        db,
        actor,
        ActionType.EQUIPMENT_CREATED,
        f"Creó el equipo {equipment.instrument} ({equipment.internal_code})",
        EquipmentChangeDetails(
            entity_id=str(equipment.id),
            entity_name=equipment.instrument,
            after=equipment_snapshot_dict(equipment),
        ),
        commit=False,
    )
    return equipment


def _update(db: Session, equipment: Equipment, changes: Dict[str, Any], actor: str) -> Equipment:
    if "internal_code" in changes and changes["internal_code"] != equipment.internal_code:
        _ensure_unique_code(db, changes["internal_code"], exclude_id=equipment.id)
    before = equipment_snapshot_dict(equipment)
    _apply(equipment, changes)
    if any(field in changes for field in _CALIBRATION_INPUTS):
        refresh_next_calibration(equipment)
    equipment.updated_at = utcnow()
    after = equipment_snapshot_dict(equipment)
    diff = compute_diff(before, after)

    append_activity(
        db,
        actor,
        ActionType.EQUIPMENT_UPDATED,
        f"Actualizó el equipo {equipment.instrument} ({equipment.internal_code})",
        EquipmentChangeDetails(
            entity_id=str(equipment.id),
            entity_name=equipment.instrument,
            before=before,
            after=after,
            changes=diff,
        ),
        commit=False,
    )
    return equipment


def create_equipment(db: Session, data: Dict[str, Any], actor: str) -> Equipment:
    """
    Register a new equipment.

    A fresh field-access token is issued, the next calibration date is
    derived, and the history opens with a completed "Equipo Creado" entry.

    Raises:
        DuplicateInternalCode: another equipment already uses the code
    """
    equipment = _create(db, data, actor)
    db.commit()
    db.refresh(equipment)
    return equipment


def update_equipment(db: Session, equipment_id: uuid.UUID, changes: Dict[str, Any], actor: str) -> Equipment:
    equipment = get_equipment(db, equipment_id)
    _update(db, equipment, changes, actor)
    db.commit()
    db.refresh(equipment)
    return equipment


def decommission_equipment(db: Session, equipment_id: uuid.UUID, actor: str) -> Equipment:
    """Equipment is never deleted; it is marked decommissioned and keeps its history."""
    return update_equipment(db, equipment_id, {"status": EquipmentStatus.decommissioned.value}, actor)


def import_equipment(db: Session, rows: Iterable[Dict[str, Any]], actor: str) -> Tuple[int, int, List[str]]:
    """
    Upsert rows keyed by internal_code.

    Calibration dates arrive as text; a row whose date does not parse is
    still imported, keeping any previously stored calibration dates.

    Returns:
        (created, updated, warnings)
    """
    created = updated = 0
    warnings: List[str] = []
    for index, raw in enumerate(rows, start=1):
        row = {k: v for k, v in raw.items() if v is not None and v != ""}
        code = (row.get("internal_code") or "").strip()
        if not code or not (row.get("instrument") or "").strip():
            warnings.append(f"Fila {index}: falta instrumento o código interno; se omitió")
            continue
        row["internal_code"] = code

        if "last_external_calibration" in row:
            try:
                row["last_external_calibration"] = parse_calendar_date(row["last_external_calibration"])
            except ParseError:
                warnings.append(
                    f"Fila {index} ({code}): fecha de calibración inválida "
                    f"'{row['last_external_calibration']}'; se conserva el valor anterior"
                )
                row.pop("last_external_calibration")

        existing = db.query(Equipment).filter(Equipment.internal_code == code).first()
        if existing is None:
            _create(db, row, actor)
            created += 1
        else:
            _update(db, existing, row, actor)
            updated += 1
    db.commit()
    structlog.get_logger().info("equipment_imported", created=created, updated=updated, warnings=len(warnings))
    return created, updated, warnings


def list_equipment(
    db: Session,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Equipment]:
    query = db.query(Equipment)
    if status:
        query = query.filter(Equipment.status == status)
    if search:
        search_term = f"%{search}%"
        query = query.filter(
            or_(
                Equipment.instrument.ilike(search_term),
                Equipment.internal_code.ilike(search_term),
                Equipment.serial_number.ilike(search_term),
                Equipment.brand.ilike(search_term),
                Equipment.model.ilike(search_term),
            )
        )
    return query.order_by(Equipment.instrument.asc(), Equipment.id.asc()).all()


def get_equipment(db: Session, equipment_id: uuid.UUID) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if equipment is None:
        raise NotFound("Equipment", equipment_id)
    return equipment


def get_equipment_by_token(db: Session, token: str) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.qr_token == token).first() if token else None
    if equipment is None:
        raise NotFound("Equipment", token)
    return equipment
