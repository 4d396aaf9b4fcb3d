"""Audit query service - paging, search, statistics and export selection."""

from __future__ import annotations

import logging
import math
import time
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from app.core.exceptions import ValidationError
from app.models.audit import AuditEvent, as_utc, utcnow
from app.services.retention_policy import RetentionPolicy

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200
EXPORT_HARD_LIMIT = 10000
TOP_ACTIONS_LIMIT = 10
MONTHS_IN_DISTRIBUTION = 6
# Fixed per-row overhead (id, dates, address, user id) on top of the message.
ROW_OVERHEAD_BYTES = 70


@dataclass
class AuditLogFilters:
    query: Optional[str] = None
    action: Optional[str] = None
    user_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "action": self.action,
            "user_id": self.user_id,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }


def _contains(column, value: str):
    return column.contains(value, autoescape=True)


def _months_back(now: datetime, months: int) -> datetime:
    """First instant of the month ``months - 1`` months before ``now``."""
    year, month = now.year, now.month - (months - 1)
    while month <= 0:
        month += 12
        year -= 1
    return now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


class AuditQueryService:
    """Read-only access to the audit store for administrators."""

    @staticmethod
    def validate_paging(page: int, size: int) -> None:
        if page < 1 or size < 1 or size > MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 1 and size between 1 and {MAX_PAGE_SIZE}")

    @staticmethod
    def apply_filters(query: Query, filters: AuditLogFilters) -> Query:
        if filters.query:
            query = query.filter(
                or_(_contains(AuditEvent.message, filters.query), _contains(AuditEvent.action, filters.query))
            )
        if filters.action:
            query = query.filter(_contains(AuditEvent.action, filters.action))
        if filters.user_id:
            query = query.filter(AuditEvent.user_id == filters.user_id)
        if filters.start_date:
            query = query.filter(AuditEvent.created_at >= as_utc(filters.start_date))
        if filters.end_date:
            query = query.filter(AuditEvent.created_at <= as_utc(filters.end_date))
        return query

    @staticmethod
    def search(
        db: Session,
        filters: Optional[AuditLogFilters] = None,
        page: int = 1,
        size: int = 50,
    ) -> Dict[str, Any]:
        """
        Page through audit logs, newest first.

        Args:
            db: Database session
            filters: Optional search criteria
            page: 1-based page number
            size: Page size (max 200)

        Returns:
            Logs, pagination block and echoed filters
        """
        AuditQueryService.validate_paging(page, size)
        filters = filters or AuditLogFilters()
        query = AuditQueryService.apply_filters(db.query(AuditEvent), filters)

        total_items = query.count()
        logs = (
            query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all()
        )
        return {
            "logs": logs,
            "pagination": {
                "page": page,
                "size": size,
                "total_items": total_items,
                "total_pages": math.ceil(total_items / size) if total_items else 0,
            },
            "filters": filters.to_dict(),
        }

    @staticmethod
    def select_for_export(db: Session, filters: AuditLogFilters, max_records: int) -> List[AuditEvent]:
        """Oldest-first batch for export, capped at 10 000 rows."""
        limit = max(1, min(max_records, EXPORT_HARD_LIMIT))
        query = AuditQueryService.apply_filters(db.query(AuditEvent), filters)
        return query.order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc()).limit(limit).all()

    @staticmethod
    def quick_stats(db: Session) -> Dict[str, int]:
        now = utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        base = db.query(AuditEvent)
        return {
            "total_logs": base.count(),
            "logs_today": base.filter(AuditEvent.created_at >= today).count(),
            "logs_last_7_days": base.filter(AuditEvent.created_at >= now - timedelta(days=7)).count(),
            "login_attempts": base.filter(_contains(AuditEvent.action, "LOGIN")).count(),
            "book_actions": base.filter(_contains(AuditEvent.action, "BOOK")).count(),
            "security_events": base.filter(
                or_(
                    _contains(AuditEvent.action, "UNAUTHORIZED"),
                    _contains(AuditEvent.action, "RATE_LIMIT"),
                    _contains(AuditEvent.action, "SYSTEM_ERROR"),
                )
            ).count(),
        }

    @staticmethod
    def database_stats(db: Session, policy: Optional[RetentionPolicy] = None) -> Dict[str, Any]:
        """Totals, top actions, six-month distribution and a size estimate."""
        started = time.monotonic()
        now = utcnow()

        total = db.query(func.count(AuditEvent.id)).scalar() or 0
        last_7 = db.query(func.count(AuditEvent.id)).filter(
            AuditEvent.created_at >= now - timedelta(days=7)
        ).scalar() or 0
        last_30 = db.query(func.count(AuditEvent.id)).filter(
            AuditEvent.created_at >= now - timedelta(days=30)
        ).scalar() or 0
        oldest, newest = db.query(func.min(AuditEvent.created_at), func.max(AuditEvent.created_at)).one()

        grouped = (
            db.query(
                AuditEvent.action,
                func.count(AuditEvent.id).label("count"),
                func.min(AuditEvent.created_at),
                func.max(AuditEvent.created_at),
            )
            .group_by(AuditEvent.action)
            .order_by(func.count(AuditEvent.id).desc(), AuditEvent.action.asc())
            .limit(TOP_ACTIONS_LIMIT)
            .all()
        )
        top_actions = []
        for action, count, first, last in grouped:
            entry = {
                "action": action or "UNKNOWN",
                "count": count,
                "percentage": round(count / total * 100, 2) if total else 0.0,
                "first_occurrence": as_utc(first),
                "last_occurrence": as_utc(last),
            }
            if policy is not None:
                entry["retention_policy"] = policy.resolve(action or "")
            top_actions.append(entry)

        # Month bucketing differs per dialect, so group the (action, date) pairs here.
        window_start = _months_back(now, MONTHS_IN_DISTRIBUTION)
        months: Dict[str, Counter] = defaultdict(Counter)
        for action, created_at in (
            db.query(AuditEvent.action, AuditEvent.created_at)
            .filter(AuditEvent.created_at >= window_start)
            .yield_per(1000)
        ):
            months[as_utc(created_at).strftime("%Y-%m")][action or "UNKNOWN"] += 1
        monthly_distribution = [
            {
                "year_month": year_month,
                "count": sum(counter.values()),
                "top_actions": [action for action, _ in counter.most_common(3)],
            }
            for year_month, counter in sorted(months.items())
        ]

        avg_message_length = float(
            db.query(func.avg(func.length(AuditEvent.message))).scalar() or 0
        ) if total else 0.0
        size_per_log = ROW_OVERHEAD_BYTES + avg_message_length
        daily_growth_kb = (last_7 / 7.0) * size_per_log / 1024 if last_7 else 0.0

        stats = {
            "total_logs": total,
            "logs_last_7_days": last_7,
            "logs_last_30_days": last_30,
            "oldest_log": as_utc(oldest),
            "newest_log": as_utc(newest),
            "top_actions": top_actions,
            "monthly_distribution": monthly_distribution,
            "size_estimate": {
                "estimated_size_kb": int(total * size_per_log / 1024),
                "average_size_per_log": round(size_per_log, 2),
                "daily_growth_kb": round(daily_growth_kb, 2),
                "predicted_30_days_kb": round(daily_growth_kb * 30, 2),
            },
        }
        logger.info("Audit statistics computed in %sms", round((time.monotonic() - started) * 1000, 2))
        return stats


audit_query_service = AuditQueryService()
