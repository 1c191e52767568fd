"""
Notification dispatcher.
Fans a firing out to its recipients and records one NotificationLog row per attempt.
"""
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
import uuid

from sqlalchemy.orm import Session

from ..logging import structlog
from ..models.models import NotificationLog
from ..schemas.notifications import DispatchStatus
from .evaluator import Firing
from .mailer import MailTransport, SendResult
from .templates import render_message
from .time_rules import utcnow


@dataclass(frozen=True)
class DispatchOutcome:
    recipient: str
    status: DispatchStatus
    log_id: uuid.UUID
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DispatchStatus.sent


class Dispatcher:
    """
    Sends one firing to each of its recipients.

    Sends run concurrently on a small thread pool bounded by a per-dispatch
    deadline; log rows are written afterwards on the caller's session, one
    commit per row. A send still running at the deadline cannot be cancelled,
    so its row is failed with an "outcome unknown" error.
    """

    def __init__(
        self,
        db: Session,
        transport: MailTransport,
        max_workers: int = 4,
        deadline_seconds: float = 60.0,
    ):
        self.db = db
        self.transport = transport
        self.max_workers = max(1, max_workers)
        self.deadline_seconds = deadline_seconds
        self.log = structlog.get_logger()

    def _send(self, recipient: str, subject: str, html: str) -> SendResult:
        try:
            return self.transport.send(recipient, subject, html)
        except Exception as e:
            # Transports report failures as values; anything else is still one failed recipient
            return SendResult.failure(f"transport raised: {e}", recipient=recipient)

    def dispatch(self, firing: Firing) -> List[DispatchOutcome]:
        recipients = list(firing.recipients)
        if not recipients:
            return []
        subject, html = render_message(firing)

        results: Dict[int, SendResult] = {}
        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(recipients)))
        try:
            futures = {
                pool.submit(self._send, recipient, subject, html): i
                for i, recipient in enumerate(recipients)
            }
            done, _ = wait(futures, timeout=self.deadline_seconds)
            for future in done:
                results[futures[future]] = future.result()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        outcomes: List[DispatchOutcome] = []
        for i, recipient in enumerate(recipients):
            result = results.get(i)
            if result is None:
                result = SendResult.failure(
                    f"send timed out after {self.deadline_seconds}s; outcome unknown, "
                    "the message may still be delivered",
                    recipient=recipient,
                )
            outcomes.append(self._record(firing, recipient, subject, result))

        failed = sum(1 for o in outcomes if not o.ok)
        self.log.info(
            "notification_dispatched",
            rule_kind=firing.rule_kind,
            equipment_id=str(firing.equipment.id),
            task_id=str(firing.task.id) if firing.task else None,
            recipients=len(outcomes),
            failed=failed,
        )
        return outcomes

    def _record(self, firing: Firing, recipient: str, subject: str, result: SendResult) -> DispatchOutcome:
        now = utcnow()
        error = str(result.error) if result.error is not None else None
        if not result.ok:
            self.log.warning(
                "notification_send_failed",
                rule_kind=firing.rule_kind,
                recipient=recipient,
                error=error,
            )
        entry = NotificationLog(
            notification_type=firing.rule_kind,
            equipment_id=firing.equipment.id,
            equipment_name=firing.equipment.instrument,
            equipment_internal_code=firing.equipment.internal_code,
            task_id=firing.task.id if firing.task else None,
            subject=subject,
            recipients=[recipient],
            status=(DispatchStatus.sent if result.ok else DispatchStatus.failed).value,
            error=error,
            created_at=now,
            sent_at=now if result.ok else None,
        )
        self.db.add(entry)
        self.db.commit()
        return DispatchOutcome(
            recipient=recipient,
            status=DispatchStatus.sent if result.ok else DispatchStatus.failed,
            log_id=entry.id,
            error=error,
        )


def list_notification_logs(
    db: Session,
    since: Optional[datetime] = None,
    notification_type: Optional[str] = None,
    limit: int = 100,
) -> List[NotificationLog]:
    """
    Dispatch history, newest first.

    Args:
        db: Database session
        since: Only entries created at or after this instant
        notification_type: Filter by rule kind
        limit: Maximum number of results
    """
    query = db.query(NotificationLog)
    if since is not None:
        query = query.filter(NotificationLog.created_at >= since)
    if notification_type:
        query = query.filter(NotificationLog.notification_type == notification_type)
    return query.order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc()).limit(limit).all()
