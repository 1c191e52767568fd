from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..schemas.activity import ActionType, ActivityLogResponse
from ..services.audit import list_activity


router = APIRouter(prefix="/activity-logs", tags=["activity"])


@router.get("", response_model=List[ActivityLogResponse])
def list_activity_logs(
    action_type: Optional[ActionType] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _=Depends(require_roles("supervisor")),
):
    """System log, newest first"""
    return list_activity(db, action_type=action_type, limit=limit, offset=offset)
