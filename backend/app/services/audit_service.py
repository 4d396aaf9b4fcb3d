"""Audit service - best-effort writer for the audit trail."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.core.context import RequestContext
from app.core.database import SessionLocal
from app.core.metrics import AUDIT_EVENTS_RECORDED, AUDIT_RECORD_FAILURES
from app.models.audit import (
    ACTION_MAX_LENGTH,
    IP_ADDRESS_MAX_LENGTH,
    MESSAGE_MAX_LENGTH,
    USER_ID_MAX_LENGTH,
    AuditEvent,
    utcnow,
)

logger = logging.getLogger(__name__)


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


class AuditService:
    """
    Append-only recorder for audit events.

    Every call runs in its own session so the audit insert never commits or
    rolls back the caller's work. Failures are logged and swallowed: an
    unavailable audit store must not break a login or a download.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def record(
        self,
        action: str,
        message: str,
        context: Optional[RequestContext] = None,
    ) -> None:
        """
        Persist one audit event.

        Args:
            action: Classification tag, see ``AuditAction``
            message: Human-readable detail, truncated to the column size
            context: Actor and source address; ``None`` for background jobs
        """
        ctx = context or RequestContext()
        db = None
        try:
            db = self._session_factory()
            db.add(
                AuditEvent(
                    user_id=_clip(ctx.actor_id, USER_ID_MAX_LENGTH),
                    action=_clip(action, ACTION_MAX_LENGTH),
                    message=_clip(message or "", MESSAGE_MAX_LENGTH),
                    ip_address=_clip(ctx.source_address, IP_ADDRESS_MAX_LENGTH),
                    created_at=utcnow(),
                )
            )
            db.commit()
            AUDIT_EVENTS_RECORDED.labels(action[:ACTION_MAX_LENGTH]).inc()
        except Exception:
            AUDIT_RECORD_FAILURES.inc()
            logger.exception("Failed to record audit event %s: %s", action, message)
            if db is not None:
                try:
                    db.rollback()
                except Exception:
                    logger.debug("Rollback after failed audit write also failed", exc_info=True)
        finally:
            if db is not None:
                try:
                    db.close()
                except Exception:
                    logger.debug("Closing audit session failed", exc_info=True)


audit_service = AuditService()
