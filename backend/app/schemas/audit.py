"""Audit request/response schemas."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    action: str
    message: str
    created_at: datetime
    ip_address: Optional[str] = None


class Pagination(BaseModel):
    page: int
    size: int
    total_items: int
    total_pages: int


class SearchFilters(BaseModel):
    query: Optional[str] = None
    action: Optional[str] = None
    user_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class AuditLogPage(BaseModel):
    logs: List[AuditEventResponse]
    pagination: Pagination
    filters: SearchFilters


class CleanupRequest(BaseModel):
    """Manual cleanup parameters"""
    retention_days: int = Field(default=90, ge=1, le=3650)
    action_type: Optional[str] = Field(default=None, max_length=100)
    archive_before_delete: bool = False
    preview_only: bool = False


class CleanupResponse(BaseModel):
    message: str
    deleted_count: int
    cutoff_date: datetime
    detailed_stats: Dict[str, int] = {}
    archive_file_path: Optional[str] = None
    duration_ms: float
    is_preview: bool


class ForceCleanupResponse(BaseModel):
    message: str
    deleted_count: int
    detailed_stats: Dict[str, int] = {}
    archive_files: List[str] = []
    duration_ms: float


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class ExportRequest(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    action_type: Optional[str] = Field(default=None, max_length=100)
    user_id: Optional[str] = None
    format: ExportFormat = ExportFormat.CSV
    compress: bool = False
    max_records: int = Field(default=5000, ge=1)


class ActionStatistic(BaseModel):
    action: str
    count: int
    percentage: float
    first_occurrence: Optional[datetime] = None
    last_occurrence: Optional[datetime] = None
    retention_policy: Optional[str] = None


class MonthlyStatistic(BaseModel):
    year_month: str
    count: int
    top_actions: List[str] = []


class SizeEstimate(BaseModel):
    estimated_size_kb: int
    average_size_per_log: float
    daily_growth_kb: float
    predicted_30_days_kb: float


class AuditDatabaseStats(BaseModel):
    total_logs: int
    logs_last_7_days: int
    logs_last_30_days: int
    oldest_log: Optional[datetime] = None
    newest_log: Optional[datetime] = None
    top_actions: List[ActionStatistic] = []
    monthly_distribution: List[MonthlyStatistic] = []
    size_estimate: SizeEstimate


class QuickStats(BaseModel):
    total_logs: int
    logs_today: int
    logs_last_7_days: int
    login_attempts: int
    book_actions: int
    security_events: int


class RetentionConfigResponse(BaseModel):
    policies: Dict[str, int]
    default_retention_days: int
    auto_cleanup_enabled: bool
    cleanup_interval_hours: float
    archive_before_delete: bool
    archive_path: str
    scheduler: Dict[str, object] = {}


class ArchiveFileResponse(BaseModel):
    file_name: str
    file_path: str
    size_bytes: int
    size_formatted: str
    created_at: datetime
    is_compressed: bool
    action_type: Optional[str] = None
    archive_timestamp: Optional[datetime] = None


class ArchivePruneResponse(BaseModel):
    message: str
    deleted_count: int
    max_age_days: int
