"""
Notification sweep.

One sweep loads the whole fleet, evaluates every rule and dispatches the
firings under an overall deadline. Runs never overlap within a process;
there is no suppression between sweeps, so a condition that still holds
fires again on the next run.
"""
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..logging import structlog, sweep_context
from ..schemas.activity import ActionType, SystemErrorDetails
from .audit import append_activity
from .dispatcher import Dispatcher
from .equipment import list_equipment
from .evaluator import evaluate, rule_config, snapshot_equipment, snapshot_task
from .mailer import MailTransport
from .maintenance import list_all_tasks
from .rules import list_settings
from .time_rules import next_daily_run, to_naive_utc, utcnow


SYSTEM_ACTOR = "System"


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    firings: int = 0
    dispatched: int = 0
    sent: int = 0
    failed: int = 0
    skipped: bool = False
    truncated: bool = False
    error: Optional[str] = None


class SweepRunner:
    """
    Runs sweeps against a session factory and a mail transport.
    A second run requested while one is in progress returns a skipped report.
    """

    def __init__(self, session_factory: Callable[[], Session], transport: MailTransport, app_settings: Settings):
        self.session_factory = session_factory
        self.transport = transport
        self.settings = app_settings
        self._lock = threading.Lock()
        self.log = structlog.get_logger()

    def run(self, now: Optional[datetime] = None, trigger: str = "manual") -> SweepReport:
        if not self._lock.acquire(blocking=False):
            self.log.warning("sweep_skipped_overlap", trigger=trigger)
            stamp = utcnow()
            return SweepReport(started_at=stamp, finished_at=stamp, skipped=True)
        try:
            with sweep_context(trigger):
                return self._run(now)
        finally:
            self._lock.release()

    def _record_system_error(self, db: Session, description: str, error: str, **context) -> None:
        try:
            append_activity(
                db,
                SYSTEM_ACTOR,
                ActionType.SYSTEM_ERROR,
                description,
                SystemErrorDetails(error=error, context=context),
            )
        except SQLAlchemyError as e:
            db.rollback()
            self.log.error("sweep_error_not_recorded", error=str(e), original_error=error)

    def _run(self, now: Optional[datetime]) -> SweepReport:
        report = SweepReport(started_at=utcnow())
        now = to_naive_utc(now) if now is not None else report.started_at
        deadline = time.monotonic() + self.settings.sweep_deadline_seconds
        self.log.info("sweep_started", now=now.isoformat())

        db = self.session_factory()
        try:
            try:
                equipment = [snapshot_equipment(e) for e in list_equipment(db)]
                tasks = [snapshot_task(t) for t in list_all_tasks(db)]
                rules = [rule_config(s) for s in list_settings(db)]
            except SQLAlchemyError as e:
                db.rollback()
                report.error = str(e)
                self.log.error("sweep_load_failed", error=report.error)
                self._record_system_error(db, "La revisión de notificaciones no pudo cargar los datos", report.error)
                return report

            firings = evaluate(now, equipment, tasks, rules)
            report.firings = len(firings)
            dispatcher = Dispatcher(
                db,
                self.transport,
                max_workers=self.settings.dispatch_max_workers,
                deadline_seconds=self.settings.dispatch_deadline_seconds,
            )

            for index, firing in enumerate(firings):
                if time.monotonic() > deadline:
                    report.truncated = True
                    remaining = len(firings) - index
                    self.log.error("sweep_deadline_exceeded", dispatched=report.dispatched, remaining=remaining)
                    self._record_system_error(
                        db,
                        "La revisión de notificaciones superó el tiempo límite",
                        "deadline exceeded",
                        dispatched=report.dispatched,
                        remaining=remaining,
                        deadline_seconds=self.settings.sweep_deadline_seconds,
                    )
                    break
                try:
                    outcomes = dispatcher.dispatch(firing)
                except SQLAlchemyError as e:
                    db.rollback()
                    report.error = str(e)
                    self.log.error("sweep_dispatch_failed", error=report.error, rule_kind=firing.rule_kind)
                    self._record_system_error(
                        db,
                        "La revisión de notificaciones terminó por un error de base de datos",
                        report.error,
                        dispatched=report.dispatched,
                        remaining=len(firings) - index,
                    )
                    break
                report.dispatched += 1
                report.sent += sum(1 for o in outcomes if o.ok)
                report.failed += sum(1 for o in outcomes if not o.ok)
        except Exception as e:
            # Anything else is still a sweep-level fault: record it and end the run
            db.rollback()
            report.error = f"{type(e).__name__}: {e}"
            self.log.exception("sweep_failed", dispatched=report.dispatched)
            self._record_system_error(
                db,
                "La revisión de notificaciones terminó por un error inesperado",
                report.error,
                dispatched=report.dispatched,
                remaining=report.firings - report.dispatched,
            )
        finally:
            report.finished_at = utcnow()
            db.close()

        self.log.info(
            "sweep_finished",
            firings=report.firings,
            dispatched=report.dispatched,
            sent=report.sent,
            failed=report.failed,
            truncated=report.truncated,
        )
        return report


class SweepScheduler:
    """Background thread that runs the sweep once a day at a wall-clock time."""

    def __init__(self, runner: SweepRunner, sweep_time: str, timezone_str: str):
        self.runner = runner
        self.sweep_time = sweep_time
        self.timezone_str = timezone_str
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.log = structlog.get_logger()

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        return next_daily_run(now or utcnow(), self.sweep_time, self.timezone_str)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="labwise-sweep", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            run_at = self.next_run()
            self.log.info("sweep_scheduled", run_at=run_at.isoformat(), timezone=self.timezone_str)
            if self._stop.wait(max(0.0, (run_at - utcnow()).total_seconds())):
                break
            try:
                self.runner.run(trigger="scheduled")
            except Exception:
                # Keep the schedule alive; the next day's run starts fresh
                self.log.exception("sweep_crashed")
