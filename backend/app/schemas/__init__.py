"""Pydantic schemas for API validation"""

from app.schemas.audit import (
    AuditEventResponse,
    AuditLogPage,
    CleanupRequest,
    CleanupResponse,
    ForceCleanupResponse,
    ExportRequest,
    AuditDatabaseStats,
    QuickStats,
    RetentionConfigResponse,
    ArchiveFileResponse,
    ArchivePruneResponse,
)
from app.schemas.response import ErrorResponse, HealthResponse

__all__ = [
    "AuditEventResponse", "AuditLogPage",
    "CleanupRequest", "CleanupResponse", "ForceCleanupResponse",
    "ExportRequest", "AuditDatabaseStats", "QuickStats", "RetentionConfigResponse",
    "ArchiveFileResponse", "ArchivePruneResponse",
    "ErrorResponse", "HealthResponse",
]
