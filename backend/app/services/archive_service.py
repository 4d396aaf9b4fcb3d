"""Archive service - serialize audit log batches to CSV/JSON files."""

from __future__ import annotations

import csv
import gzip
import io
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.core.exceptions import PathTraversalError, ResourceNotFoundError
from app.core.metrics import AUDIT_ARCHIVES_WRITTEN
from app.models.audit import AuditEvent, as_utc, utcnow

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "audit_archive_"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
CSV_HEADER = ["Id", "UserId", "Action", "Message", "CreatedAt", "IpAddress"]
ARCHIVE_EXTENSIONS = (".csv", ".json", ".gz")

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\s]')
_ARCHIVE_NAME = re.compile(
    r"^audit_archive_(?P<action>.+)_(?P<timestamp>\d{8}_\d{6})"
    r"(?:_with_metadata)?\.(?:csv|json)(?:\.gz)?$"
)


class ArchiveFormat(str, Enum):
    CSV = "csv"
    JSON = "json"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def media_type(self) -> str:
        return "text/csv" if self is ArchiveFormat.CSV else "application/json"


@dataclass
class ArchiveFileInfo:
    file_name: str
    file_path: str
    size_bytes: int
    created_at: datetime
    is_compressed: bool
    action_type: Optional[str] = None
    archive_timestamp: Optional[datetime] = None

    @property
    def size_formatted(self) -> str:
        return format_bytes(self.size_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "file_path": self.file_path,
            "size_bytes": self.size_bytes,
            "size_formatted": self.size_formatted,
            "created_at": self.created_at,
            "is_compressed": self.is_compressed,
            "action_type": self.action_type,
            "archive_timestamp": self.archive_timestamp,
        }


@dataclass
class ArchiveStatistics:
    total_logs: int = 0
    unique_users: int = 0
    unique_actions: int = 0
    top_actions: Dict[str, int] = field(default_factory=dict)
    date_span_seconds: float = 0.0


def format_bytes(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        order += 1
        value /= 1024
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[order]}"


def sanitize_action_label(label: Optional[str]) -> str:
    cleaned = _INVALID_FILENAME_CHARS.sub("", label or "").strip(".")
    return cleaned or "UNKNOWN"


def _iso_millis(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _sorted(events: Sequence[AuditEvent]) -> List[AuditEvent]:
    return sorted(events, key=lambda e: (as_utc(e.created_at), e.id or 0))


def _event_json(event: AuditEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "userId": event.user_id,
        "action": event.action,
        "message": event.message,
        "createdAt": _iso_millis(event.created_at),
        "ipAddress": event.ip_address,
    }


class ArchiveService:
    """
    Write audit batches to durable files and manage those files.

    Write failures propagate; listing and pruning are best-effort and only log.
    """

    def __init__(self, archive_dir: Optional[str] = None) -> None:
        self.archive_dir = Path(archive_dir or settings.get_archive_dir())

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def to_csv(events: Sequence[AuditEvent]) -> str:
        buffer = io.StringIO()
        buffer.write(",".join(CSV_HEADER) + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for event in _sorted(events):
            created_at = as_utc(event.created_at)
            writer.writerow([
                event.id,
                event.user_id or "",
                event.action or "",
                event.message or "",
                created_at.strftime("%Y-%m-%d %H:%M:%S") if created_at else "",
                event.ip_address or "",
            ])
        return buffer.getvalue()

    @staticmethod
    def to_json(events: Sequence[AuditEvent]) -> str:
        return json.dumps([_event_json(e) for e in _sorted(events)], indent=2, ensure_ascii=False)

    @staticmethod
    def statistics(events: Sequence[AuditEvent]) -> ArchiveStatistics:
        if not events:
            return ArchiveStatistics()
        actions = Counter(e.action or "UNKNOWN" for e in events)
        dates = [as_utc(e.created_at) for e in events]
        return ArchiveStatistics(
            total_logs=len(events),
            unique_users=len({e.user_id for e in events}),
            unique_actions=len(actions),
            top_actions=dict(actions.most_common(5)),
            date_span_seconds=(max(dates) - min(dates)).total_seconds(),
        )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _ensure_archive_dir(self) -> None:
        if not self.archive_dir.exists():
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            logger.info("Created archive directory %s", self.archive_dir)

    def _build_path(self, action_label: str, suffix: str) -> Path:
        timestamp = utcnow().strftime(TIMESTAMP_FORMAT)
        name = f"{ARCHIVE_PREFIX}{sanitize_action_label(action_label)}_{timestamp}{suffix}"
        return (self.archive_dir / name).resolve()

    def archive(
        self,
        events: Sequence[AuditEvent],
        action_label: str,
        fmt: ArchiveFormat = ArchiveFormat.CSV,
        compress: bool = False,
    ) -> str:
        """
        Serialize ``events`` into a new archive file.

        Args:
            events: Batch to archive
            action_label: Used in the file name (retention pattern or export label)
            fmt: CSV or JSON
            compress: Write through gzip and append ``.gz``

        Returns:
            Absolute path of the written file, or "" for an empty batch
        """
        if not events:
            logger.warning("No audit logs to archive for %s", action_label)
            return ""

        fmt = ArchiveFormat(fmt)
        suffix = f".{fmt.extension}" + (".gz" if compress else "")
        try:
            self._ensure_archive_dir()
            file_path = self._build_path(action_label, suffix)
            content = self.to_csv(events) if fmt is ArchiveFormat.CSV else self.to_json(events)

            if compress:
                with gzip.open(file_path, "wt", encoding="utf-8", newline="") as handle:
                    handle.write(content)
            else:
                file_path.write_text(content, encoding="utf-8", newline="")
        except Exception:
            logger.exception("Failed to archive %s audit logs for %s", len(events), action_label)
            raise

        AUDIT_ARCHIVES_WRITTEN.labels(fmt.value).inc()
        logger.info(
            "Archived %s %s audit logs to %s (%s)",
            len(events),
            action_label,
            file_path.name,
            format_bytes(file_path.stat().st_size),
        )
        return str(file_path)

    def archive_with_metadata(
        self,
        events: Sequence[AuditEvent],
        action_label: str,
        cutoff_date: datetime,
        fmt: ArchiveFormat = ArchiveFormat.JSON,
    ) -> str:
        """Archive ``events`` inside a JSON envelope describing the batch."""
        if ArchiveFormat(fmt) is not ArchiveFormat.JSON:
            raise ValueError("Metadata archives are only written as JSON")

        stats = self.statistics(events)
        dates = [as_utc(e.created_at) for e in events]
        envelope = {
            "metadata": {
                "actionType": action_label,
                "cutoffDate": _iso_millis(cutoff_date),
                "archiveDate": _iso_millis(utcnow()),
                "logCount": len(events),
                "dateRange": {
                    "startDate": _iso_millis(min(dates)),
                    "endDate": _iso_millis(max(dates)),
                } if dates else None,
                "statistics": {
                    "totalLogs": stats.total_logs,
                    "uniqueUsers": stats.unique_users,
                    "uniqueActions": stats.unique_actions,
                    "topActions": stats.top_actions,
                    "dateSpanSeconds": stats.date_span_seconds,
                },
            },
            "logs": [_event_json(e) for e in _sorted(events)],
        }

        try:
            self._ensure_archive_dir()
            file_path = self._build_path(action_label, "_with_metadata.json")
            file_path.write_text(json.dumps(envelope, indent=2, ensure_ascii=False), encoding="utf-8")
        except Exception:
            logger.exception("Failed to archive %s audit logs with metadata for %s", len(events), action_label)
            raise

        AUDIT_ARCHIVES_WRITTEN.labels(ArchiveFormat.JSON.value).inc()
        logger.info("Archived %s %s audit logs with metadata to %s", len(events), action_label, file_path.name)
        return str(file_path)

    # ------------------------------------------------------------------
    # Archive file management
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_file_name(info: ArchiveFileInfo) -> None:
        match = _ARCHIVE_NAME.match(info.file_name)
        if not match:
            logger.debug("Archive file name %s does not follow the naming convention", info.file_name)
            return
        info.action_type = match.group("action")
        try:
            info.archive_timestamp = datetime.strptime(
                match.group("timestamp"), TIMESTAMP_FORMAT
            ).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug("Unparseable timestamp in archive file name %s", info.file_name)

    def list_archives(self) -> List[ArchiveFileInfo]:
        """Archive files in the archive directory, newest first."""
        archives: List[ArchiveFileInfo] = []
        if not self.archive_dir.is_dir():
            return archives

        try:
            for path in self.archive_dir.glob(f"{ARCHIVE_PREFIX}*"):
                if not path.is_file() or not path.name.endswith(ARCHIVE_EXTENSIONS):
                    continue
                stat = path.stat()
                info = ArchiveFileInfo(
                    file_name=path.name,
                    file_path=str(path.resolve()),
                    size_bytes=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    is_compressed=path.suffix == ".gz",
                )
                self._parse_file_name(info)
                archives.append(info)
        except Exception:
            logger.exception("Failed to list archive files in %s", self.archive_dir)

        archives.sort(key=lambda a: a.created_at, reverse=True)
        return archives

    def cleanup_old_archives(self, max_age: timedelta) -> int:
        """
        Delete archive files older than ``max_age``.

        Returns:
            Number of files actually removed
        """
        cutoff = utcnow() - max_age
        deleted = 0
        try:
            for info in self.list_archives():
                if info.created_at > cutoff:
                    continue
                try:
                    Path(info.file_path).unlink()
                    deleted += 1
                    logger.info("Deleted archive file %s", info.file_name)
                except OSError as exc:
                    logger.warning("Could not delete archive file %s: %s", info.file_name, exc)
            if deleted:
                logger.info("Pruned %s archive files older than %s", deleted, max_age)
        except Exception:
            logger.exception("Archive pruning failed")
        return deleted

    def resolve_archive(self, file_name: str) -> Path:
        """
        Map a client-supplied archive name to a file inside the archive directory.

        Raises:
            PathTraversalError: If the name resolves outside the archive directory
            ResourceNotFoundError: If no such archive exists
        """
        root = self.archive_dir.resolve()
        candidate = (root / file_name.replace("\\", "/")).resolve()
        if candidate == root or root not in candidate.parents:
            logger.warning("Rejected archive path outside %s: %s", root, file_name)
            raise PathTraversalError(file_name)
        if not candidate.is_file():
            raise ResourceNotFoundError("Archive file")
        return candidate

    def read_archive(self, file_name: str) -> bytes:
        return self.resolve_archive(file_name).read_bytes()


archive_service = ArchiveService()
