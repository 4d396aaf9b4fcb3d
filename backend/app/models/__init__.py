"""Database models"""

from app.models.audit import AuditEvent, AuditAction

__all__ = ["AuditEvent", "AuditAction"]
