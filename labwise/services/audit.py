"""
Activity logging service.
Append-only activity log with integrity hashing.
"""
import hashlib
import json
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from ..models.models import ActivityLog
from ..config import settings
from ..schemas.activity import ActionType, DETAILS_BY_ACTION
from .time_rules import utcnow, to_naive_utc


def _integrity_hash(
    actor: str,
    action_type: str,
    description: str,
    timestamp_iso: str,
    details: Optional[Dict[str, Any]],
    secret: str,
) -> str:
    # Create canonical JSON representation
    canonical_data = {
        "user": actor,
        "action_type": action_type,
        "description": description,
        "timestamp": timestamp_iso,
        "details": details,
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def append_activity(
    db: Session,
    actor: str,
    action_type: ActionType,
    description: str,
    details=None,
    integrity_secret: Optional[str] = None,
    commit: bool = True,
) -> ActivityLog:
    """
    Create an append-only activity log entry.

    Args:
        db: Database session
        actor: Display name of whoever performed the action ("System" for the sweep)
        action_type: One of ActionType
        description: Human readable summary
        details: Payload model matching the action type (see DETAILS_BY_ACTION)
        integrity_secret: Secret for integrity hash (defaults to JWT_SECRET)
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created ActivityLog object
    """
    action_type = ActionType(action_type)
    expected = DETAILS_BY_ACTION[action_type]
    if details is not None and not isinstance(details, expected):
        raise TypeError(
            f"{action_type.value} expects {expected.__name__} details, got {type(details).__name__}"
        )
    details_json = details.model_dump(mode="json") if details is not None else None

    timestamp = utcnow()
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    integrity_hash = None
    if secret:
        integrity_hash = _integrity_hash(
            actor, action_type.value, description, timestamp.isoformat(), details_json, secret
        )

    entry = ActivityLog(
        user=actor,
        action_type=action_type.value,
        description=description,
        details=details_json,
        timestamp=timestamp,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    return entry


def verify_activity(entry: ActivityLog, integrity_secret: Optional[str] = None) -> bool:
    """Recompute the integrity hash of a stored entry and compare."""
    if not entry.integrity_hash:
        return False
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    expected = _integrity_hash(
        entry.user,
        entry.action_type,
        entry.description,
        to_naive_utc(entry.timestamp).isoformat(),
        entry.details,
        secret,
    )
    return expected == entry.integrity_hash


def list_activity(
    db: Session,
    action_type: Optional[ActionType] = None,
    limit: int = 100,
    offset: int = 0
) -> List[ActivityLog]:
    """
    Get activity logs, newest first.

    Args:
        db: Database session
        action_type: Filter by action type
        limit: Maximum number of results
        offset: Offset for pagination
    """
    query = db.query(ActivityLog)

    if action_type:
        query = query.filter(ActivityLog.action_type == ActionType(action_type).value)

    query = query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in sorted(all_keys):
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
