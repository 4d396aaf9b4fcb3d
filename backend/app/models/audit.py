"""Audit log model for the library catalog."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Index

from app.core.database import Base

USER_ID_MAX_LENGTH = 450
ACTION_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 500
IP_ADDRESS_MAX_LENGTH = 45


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditAction:
    """Conventional action tags. Retention patterns match these by substring."""

    # Users
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PROFILE_UPDATED = "PROFILE_UPDATED"

    # Books and magazines
    BOOK_CREATED = "BOOK_CREATED"
    BOOK_UPDATED = "BOOK_UPDATED"
    BOOK_DELETED = "BOOK_DELETED"
    BOOK_DOWNLOADED = "BOOK_DOWNLOADED"
    BOOK_VIEWED = "BOOK_VIEWED"
    BOOK_RATED = "BOOK_RATED"
    BOOK_COMMENTED = "BOOK_COMMENTED"

    # Favorites
    FAVORITE_ADDED = "FAVORITE_ADDED"
    FAVORITE_REMOVED = "FAVORITE_REMOVED"

    # Administration
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    USER_DELETED = "USER_DELETED"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"

    # Security
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"

    # System
    SYSTEM_ERROR = "SYSTEM_ERROR"
    SYSTEM_STARTUP = "SYSTEM_STARTUP"
    SYSTEM_SHUTDOWN = "SYSTEM_SHUTDOWN"

    # Audit housekeeping
    AUDIT_CLEANUP = "AUDIT_CLEANUP"
    MANUAL_AUDIT_CLEANUP = "MANUAL_AUDIT_CLEANUP"
    FORCED_AUTO_CLEANUP = "FORCED_AUTO_CLEANUP"
    AUDIT_EXPORT = "AUDIT_EXPORT"


class AuditEvent(Base):
    """Immutable audit log entry. Rows are only ever inserted or batch-deleted."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(USER_ID_MAX_LENGTH), nullable=False)
    action = Column(String(ACTION_MAX_LENGTH), nullable=False)
    message = Column(String(MESSAGE_MAX_LENGTH), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    ip_address = Column(String(IP_ADDRESS_MAX_LENGTH), nullable=True)

    __table_args__ = (
        Index("idx_audit_logs_created_at", "created_at"),
        Index("idx_audit_logs_action", "action"),
        Index("idx_audit_logs_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<AuditEvent(id={self.id}, action='{self.action}', user_id='{self.user_id}')>"

    def to_dict(self):
        """Convert to dictionary"""
        created_at = as_utc(self.created_at)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "message": self.message,
            "created_at": created_at.isoformat() if created_at else None,
            "ip_address": self.ip_address,
        }
