"""Background retention worker that purges expired audit logs."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.config import settings
from app.core.context import SYSTEM_CONTEXT, RequestContext
from app.core.database import SessionLocal
from app.core.exceptions import ArchiveError, ValidationError
from app.core.metrics import AUDIT_CLEANUP_DELETED, AUDIT_CLEANUP_RUNS
from app.models.audit import AuditAction, AuditEvent, utcnow
from app.services.archive_service import ArchiveFormat, ArchiveService, archive_service
from app.services.audit_service import AuditService, audit_service
from app.services.retention_policy import RetentionPolicy, load_retention_policy, summarize

logger = logging.getLogger(__name__)

DELETE_CHUNK_SIZE = 500
MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 3650
SECONDS_PER_HOUR = 3600


@dataclass
class CleanupCycleResult:
    total_deleted: int = 0
    per_policy: Dict[str, int] = field(default_factory=dict)
    archive_files: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    finished_at: Optional[datetime] = None


@dataclass
class ManualCleanupResult:
    message: str
    deleted_count: int
    cutoff_date: datetime
    per_action: Dict[str, int] = field(default_factory=dict)
    archive_file_path: Optional[str] = None
    duration_ms: float = 0.0
    is_preview: bool = False


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class AuditCleanupService:
    """
    Periodically deletes audit logs past their retention window.

    One thread per process; a cycle always finishes before the next wait
    begins. Within a cycle each policy batch is archived (when enabled)
    before it is deleted, and all deletions commit together.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        recorder: AuditService = audit_service,
        archiver: ArchiveService = archive_service,
        policy_loader: Callable[[], RetentionPolicy] = load_retention_policy,
        enabled: Optional[bool] = None,
        interval_hours: Optional[float] = None,
        retry_delay_hours: Optional[float] = None,
        archive_before_delete: Optional[bool] = None,
        archive_format: Optional[str] = None,
        archive_compress: Optional[bool] = None,
    ) -> None:
        self._session_factory = session_factory
        self._recorder = recorder
        self._archiver = archiver
        self._policy_loader = policy_loader

        self.enabled = settings.AUDIT_CLEANUP_ENABLED if enabled is None else enabled
        self.interval_hours = (
            settings.AUDIT_CLEANUP_INTERVAL_HOURS if interval_hours is None else interval_hours
        )
        self.retry_delay_hours = (
            settings.AUDIT_CLEANUP_RETRY_DELAY_HOURS if retry_delay_hours is None else retry_delay_hours
        )
        self.archive_before_delete = (
            settings.AUDIT_ARCHIVE_BEFORE_DELETE if archive_before_delete is None else archive_before_delete
        )
        self.archive_format = ArchiveFormat((archive_format or settings.AUDIT_ARCHIVE_FORMAT).lower())
        self.archive_compress = (
            settings.AUDIT_ARCHIVE_COMPRESS if archive_compress is None else archive_compress
        )

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._heartbeat: float = 0.0
        self._cycles: int = 0
        self._last_result: Optional[CleanupCycleResult] = None
        self._last_error: Optional[str] = None

        logger.info(
            "Audit cleanup configured - enabled=%s interval=%sh archive=%s",
            self.enabled,
            self.interval_hours,
            self.archive_before_delete,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="audit-cleanup", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5) -> None:
        logger.info("Stopping audit cleanup worker")
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Audit cleanup worker stopped")

    def status(self) -> dict:
        last = self._last_result
        return {
            "running": self.is_running(),
            "enabled": self.enabled,
            "interval_hours": self.interval_hours,
            "archive_before_delete": self.archive_before_delete,
            "last_heartbeat": self._heartbeat,
            "cycles": self._cycles,
            "last_deleted": last.total_deleted if last else None,
            "last_finished_at": last.finished_at.isoformat() if last and last.finished_at else None,
            "last_error": self._last_error,
        }

    def _run_loop(self) -> None:
        if not self.enabled:
            logger.info("Automatic audit cleanup disabled by configuration")
            return

        logger.info("Audit cleanup worker started")
        while not self._stop_event.is_set():
            delay_hours = self.interval_hours
            try:
                self.run_cycle()
            except Exception:
                logger.exception(
                    "Audit cleanup cycle failed, retrying in %sh", self.retry_delay_hours
                )
                delay_hours = self.retry_delay_hours
            self._heartbeat = time.time()
            logger.debug("Next audit cleanup in %sh", delay_hours)
            if self._stop_event.wait(delay_hours * SECONDS_PER_HOUR):
                break
        logger.info("Audit cleanup worker exiting")

    # ------------------------------------------------------------------
    # Policy-driven cycle
    # ------------------------------------------------------------------

    def run_cycle(
        self,
        summary_action: str = AuditAction.AUDIT_CLEANUP,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> CleanupCycleResult:
        """
        Run one retention pass over the current policy table.

        Cycles are serialized: a forced cycle requested while the scheduler
        is mid-cycle waits for it and then sees only what is still expired.
        Raises whatever the store raises; nothing is committed in that case.
        """
        with self._cycle_lock:
            return self._run_cycle_locked(summary_action, context)

    def _run_cycle_locked(self, summary_action: str, context: RequestContext) -> CleanupCycleResult:
        started = time.monotonic()
        now = utcnow()
        result = CleanupCycleResult()
        logger.info("Audit cleanup started at %s", now.isoformat())

        try:
            policy = self._policy_loader()
            db = self._session_factory()
            try:
                for rule in policy.rules():
                    cutoff = rule.cutoff(now)
                    logger.debug(
                        "Checking %s logs older than %s (%s days)",
                        rule.pattern,
                        cutoff.isoformat(),
                        rule.retention_days,
                    )
                    batch = (
                        db.query(AuditEvent)
                        .filter(policy.match_clause(rule.pattern), AuditEvent.created_at < cutoff)
                        .order_by(AuditEvent.created_at.asc())
                        .all()
                    )
                    if not batch:
                        continue

                    if self.archive_before_delete:
                        archived = self._archive_batch(batch, rule.pattern)
                        if archived:
                            result.archive_files.append(archived)

                    deleted = self._delete_batch(db, batch)
                    if not deleted:
                        continue
                    result.per_policy[rule.pattern] = deleted
                    logger.info(
                        "%s %s logs marked for deletion (> %s days)",
                        deleted,
                        rule.pattern,
                        rule.retention_days,
                    )

                if result.per_policy:
                    db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
        except Exception as exc:
            AUDIT_CLEANUP_RUNS.labels("failure").inc()
            self._last_error = f"{type(exc).__name__}: {exc}"
            raise

        result.total_deleted, breakdown = summarize(result.per_policy)
        result.duration_ms = _elapsed_ms(started)
        result.finished_at = utcnow()

        if result.total_deleted:
            for pattern, count in result.per_policy.items():
                AUDIT_CLEANUP_DELETED.labels(pattern).inc(count)
                logger.info("%s: %s logs deleted", pattern, count)
            logger.info(
                "Audit cleanup finished: %s logs deleted in %sms",
                result.total_deleted,
                result.duration_ms,
            )
            self._recorder.record(
                summary_action,
                f"Audit log cleanup: {result.total_deleted} entries deleted. Breakdown: {breakdown}",
                context,
            )
        else:
            logger.info("No audit logs to delete (checked in %sms)", result.duration_ms)

        AUDIT_CLEANUP_RUNS.labels("success").inc()
        with self._lock:
            self._cycles += 1
            self._last_result = result
            self._last_error = None
        return result

    def force_cleanup_now(self, context: RequestContext) -> CleanupCycleResult:
        """Run one policy-driven cycle immediately on behalf of an operator."""
        logger.info("Forced audit cleanup requested by %s", context.actor_id)
        return self.run_cycle(summary_action=AuditAction.FORCED_AUTO_CLEANUP, context=context)

    def _archive_batch(self, batch: Sequence[AuditEvent], pattern: str) -> Optional[str]:
        try:
            return self._archiver.archive(
                batch, pattern, fmt=self.archive_format, compress=self.archive_compress
            )
        except Exception:
            # Archive failure never blocks deletion.
            logger.exception("Archiving %s logs failed, deleting without archive", pattern)
            return None

    @staticmethod
    def _delete_batch(db: Session, batch: Sequence[AuditEvent]) -> int:
        """Delete ``batch`` by id and return the number of rows actually removed."""
        ids = [event.id for event in batch]
        deleted = 0
        for start in range(0, len(ids), DELETE_CHUNK_SIZE):
            chunk = ids[start:start + DELETE_CHUNK_SIZE]
            deleted += db.query(AuditEvent).filter(AuditEvent.id.in_(chunk)).delete(synchronize_session=False)
        return deleted

    # ------------------------------------------------------------------
    # Manual cleanup
    # ------------------------------------------------------------------

    def cleanup(
        self,
        retention_days: int,
        action_type: Optional[str] = None,
        archive_first: bool = False,
        preview_only: bool = False,
        context: Optional[RequestContext] = None,
    ) -> ManualCleanupResult:
        """
        Delete (or preview deleting) every log older than ``retention_days``.

        Args:
            retention_days: Logs created before ``now - retention_days`` qualify
            action_type: Optional action substring filter
            archive_first: Write a JSON archive before deleting
            preview_only: Count and break down without touching storage
            context: Operator requesting the cleanup

        Raises:
            ValidationError: If retention_days is out of range
            ArchiveError: If the requested archive could not be written
        """
        if not MIN_RETENTION_DAYS <= retention_days <= MAX_RETENTION_DAYS:
            raise ValidationError(
                f"Retention must be between {MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS} days"
            )

        started = time.monotonic()
        cutoff = utcnow() - timedelta(days=retention_days)
        logger.info("Manual audit cleanup - retention=%s days cutoff=%s", retention_days, cutoff.isoformat())

        db = self._session_factory()
        try:
            query = db.query(AuditEvent).filter(AuditEvent.created_at < cutoff)
            if action_type:
                query = query.filter(AuditEvent.action.contains(action_type, autoescape=True))
            events = query.order_by(AuditEvent.created_at.asc()).all()
            per_action = dict(Counter(event.action or "UNKNOWN" for event in events))

            if not events:
                return ManualCleanupResult(
                    message="No audit logs match the cleanup criteria",
                    deleted_count=0,
                    cutoff_date=cutoff,
                    duration_ms=_elapsed_ms(started),
                    is_preview=preview_only,
                )

            if preview_only:
                return ManualCleanupResult(
                    message=f"Preview: {len(events)} logs would be deleted",
                    deleted_count=len(events),
                    cutoff_date=cutoff,
                    per_action=per_action,
                    duration_ms=_elapsed_ms(started),
                    is_preview=True,
                )

            archive_path = None
            if archive_first:
                try:
                    archive_path = self._archiver.archive(
                        events, action_type or "MANUAL_CLEANUP", fmt=ArchiveFormat.JSON
                    )
                except OSError as exc:
                    raise ArchiveError(f"Archive failed, nothing deleted: {exc}") from exc

            deleted = self._delete_batch(db, events)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        duration_ms = _elapsed_ms(started)
        logger.info("Manual audit cleanup finished: %s logs deleted in %sms", deleted, duration_ms)
        self._recorder.record(
            AuditAction.MANUAL_AUDIT_CLEANUP,
            f"Manual cleanup: {deleted} logs deleted. Type: {action_type or 'ALL'}, "
            f"retention: {retention_days} days",
            context,
        )
        return ManualCleanupResult(
            message=f"Cleanup finished: {deleted} logs deleted",
            deleted_count=deleted,
            cutoff_date=cutoff,
            per_action=per_action,
            archive_file_path=archive_path,
            duration_ms=duration_ms,
            is_preview=False,
        )


audit_cleanup_service = AuditCleanupService()
