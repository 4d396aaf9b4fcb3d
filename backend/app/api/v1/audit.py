"""Admin audit routes - log queries, retention cleanup and archive management"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
import logging

from app.api.deps import (
    Principal,
    get_archive_service,
    get_audit_service,
    get_cleanup_service,
    get_current_admin,
    get_request_context,
)
from app.config import settings
from app.core.context import RequestContext
from app.core.database import get_db
from app.core.exceptions import BusinessLogicError, NoMatchingLogsError
from app.models.audit import AuditAction
from app.schemas.audit import (
    ArchiveFileResponse,
    ArchivePruneResponse,
    AuditDatabaseStats,
    AuditLogPage,
    CleanupRequest,
    CleanupResponse,
    ExportFormat,
    ExportRequest,
    ForceCleanupResponse,
    QuickStats,
    RetentionConfigResponse,
)
from app.services.archive_service import ArchiveFormat, ArchiveService
from app.services.audit_cleanup_service import AuditCleanupService
from app.services.audit_query_service import AuditLogFilters, audit_query_service
from app.services.audit_service import AuditService
from app.services.retention_policy import load_retention_policy

logger = logging.getLogger(__name__)

router = APIRouter()

_MEDIA_TYPES = {
    ".csv": "text/csv",
    ".json": "application/json",
    ".gz": "application/gzip",
}


def _media_type(file_name: str) -> str:
    return _MEDIA_TYPES.get(Path(file_name).suffix, "application/octet-stream")


@router.get("/logs", response_model=AuditLogPage)
def get_logs(
    page: int = 1,
    size: int = 50,
    current_admin: Principal = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Audit logs, newest first, paginated (size 1-200)."""
    return audit_query_service.search(db, page=page, size=size)


@router.get("/search", response_model=AuditLogPage)
def search_logs(
    query: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    size: int = 50,
    current_admin: Principal = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """
    Search audit logs

    Args:
        query: Substring of the message or action
        action: Substring of the action
        user_id: Exact actor id
        start_date: Inclusive lower bound on creation time
        end_date: Inclusive upper bound on creation time
        page: Page number
        size: Page size

    Returns:
        Matching logs with pagination metadata
    """
    filters = AuditLogFilters(
        query=query,
        action=action,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    return audit_query_service.search(db, filters, page=page, size=size)


@router.get("/stats", response_model=QuickStats)
def get_quick_stats(
    current_admin: Principal = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Dashboard counters."""
    return audit_query_service.quick_stats(db)


@router.get("/database-size", response_model=AuditDatabaseStats)
def get_database_stats(
    current_admin: Principal = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Detailed statistics on the audit store, with a size estimate."""
    return audit_query_service.database_stats(db, policy=load_retention_policy())


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup_logs(
    payload: CleanupRequest,
    context: RequestContext = Depends(get_request_context),
    current_admin: Principal = Depends(get_current_admin),
    cleanup_service: AuditCleanupService = Depends(get_cleanup_service),
):
    """
    Manual cleanup of audit logs older than ``retention_days``

    Args:
        payload: Retention, optional action filter, archive and preview flags

    Returns:
        Deleted (or would-be-deleted) count and per-action breakdown
    """
    result = cleanup_service.cleanup(
        retention_days=payload.retention_days,
        action_type=payload.action_type,
        archive_first=payload.archive_before_delete,
        preview_only=payload.preview_only,
        context=context,
    )
    return CleanupResponse(
        message=result.message,
        deleted_count=result.deleted_count,
        cutoff_date=result.cutoff_date,
        detailed_stats=result.per_action,
        archive_file_path=result.archive_file_path,
        duration_ms=result.duration_ms,
        is_preview=result.is_preview,
    )


@router.post("/force-cleanup", response_model=ForceCleanupResponse)
def force_cleanup(
    context: RequestContext = Depends(get_request_context),
    current_admin: Principal = Depends(get_current_admin),
    cleanup_service: AuditCleanupService = Depends(get_cleanup_service),
):
    """Run the policy-driven retention cycle now."""
    result = cleanup_service.force_cleanup_now(context)
    return ForceCleanupResponse(
        message="Forced retention cleanup finished",
        deleted_count=result.total_deleted,
        detailed_stats=result.per_policy,
        archive_files=result.archive_files,
        duration_ms=result.duration_ms,
    )


@router.get("/retention-config", response_model=RetentionConfigResponse)
def get_retention_config(
    current_admin: Principal = Depends(get_current_admin),
    cleanup_service: AuditCleanupService = Depends(get_cleanup_service),
    archiver: ArchiveService = Depends(get_archive_service),
):
    """Effective retention table and scheduler settings."""
    policy = load_retention_policy()
    return RetentionConfigResponse(
        policies=policy.as_dict(),
        default_retention_days=policy.default_days,
        auto_cleanup_enabled=cleanup_service.enabled,
        cleanup_interval_hours=cleanup_service.interval_hours,
        archive_before_delete=cleanup_service.archive_before_delete,
        archive_path=str(archiver.archive_dir),
        scheduler=cleanup_service.status(),
    )


@router.post("/export")
def export_logs(
    payload: ExportRequest,
    context: RequestContext = Depends(get_request_context),
    current_admin: Principal = Depends(get_current_admin),
    db: Session = Depends(get_db),
    archiver: ArchiveService = Depends(get_archive_service),
    recorder: AuditService = Depends(get_audit_service),
):
    """
    Export filtered audit logs as a CSV or JSON file

    Args:
        payload: Filters, format, compression and record cap

    Returns:
        The archive file as an attachment
    """
    filters = AuditLogFilters(
        action=payload.action_type,
        user_id=payload.user_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    max_records = min(payload.max_records, settings.AUDIT_EXPORT_MAX_RECORDS)
    logs = audit_query_service.select_for_export(db, filters, max_records)
    if not logs:
        raise NoMatchingLogsError()

    fmt = ArchiveFormat.JSON if payload.format == ExportFormat.JSON else ArchiveFormat.CSV
    file_path = archiver.archive(
        logs,
        payload.action_type or "CUSTOM_EXPORT",
        fmt=fmt,
        compress=payload.compress,
    )
    recorder.record(
        AuditAction.AUDIT_EXPORT,
        f"Exported {len(logs)} audit logs as {fmt.value}" + (" (gzip)" if payload.compress else ""),
        context,
    )

    file_name = Path(file_path).name
    return FileResponse(
        path=file_path,
        media_type="application/gzip" if payload.compress else fmt.media_type,
        filename=file_name,
    )


@router.get("/archives", response_model=List[ArchiveFileResponse])
def list_archives(
    current_admin: Principal = Depends(get_current_admin),
    archiver: ArchiveService = Depends(get_archive_service),
):
    """Archive files, newest first."""
    return [info.to_dict() for info in archiver.list_archives()]


@router.get("/archives/download/{file_name:path}")
def download_archive(
    file_name: str,
    current_admin: Principal = Depends(get_current_admin),
    archiver: ArchiveService = Depends(get_archive_service),
):
    """Download one archive file; names resolving outside the archive directory are refused."""
    file_path = archiver.resolve_archive(file_name)
    return FileResponse(path=str(file_path), media_type=_media_type(file_path.name), filename=file_path.name)


@router.delete("/archives/cleanup", response_model=ArchivePruneResponse)
def prune_archives(
    max_age_days: int = Query(default=365),
    current_admin: Principal = Depends(get_current_admin),
    archiver: ArchiveService = Depends(get_archive_service),
):
    """Delete archive files older than ``max_age_days``."""
    if max_age_days < 1:
        raise BusinessLogicError("max_age_days must be at least 1")

    deleted = archiver.cleanup_old_archives(timedelta(days=max_age_days))
    return ArchivePruneResponse(
        message="Archive cleanup finished",
        deleted_count=deleted,
        max_age_days=max_age_days,
    )
