import csv
import gzip
import io
import json
import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.core.exceptions import PathTraversalError, ResourceNotFoundError
from app.models.audit import AuditEvent
from app.services.archive_service import (
    CSV_HEADER,
    ArchiveFormat,
    ArchiveService,
    format_bytes,
    sanitize_action_label,
)


def _event(event_id, action="LOGIN_SUCCESS", message="ok", minutes_ago=0, user_id="user-1"):
    return AuditEvent(
        id=event_id,
        user_id=user_id,
        action=action,
        message=message,
        created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago),
        ip_address="10.0.0.1",
    )


def _age_file(path, days):
    old = time.time() - days * 86400
    os.utime(path, (old, old))


def test_csv_keeps_commas_quotes_and_newlines():
    message = 'Title "Dune, Part 2"\nsecond line'
    text = ArchiveService.to_csv([_event(1, message=message)])

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == CSV_HEADER
    assert rows[1] == ["1", "user-1", "LOGIN_SUCCESS", message, "2024-03-01 12:00:00", "10.0.0.1"]


def test_csv_rows_are_oldest_first():
    events = [_event(1, minutes_ago=0), _event(2, minutes_ago=30)]

    rows = list(csv.reader(io.StringIO(ArchiveService.to_csv(events))))

    assert [row[0] for row in rows[1:]] == ["2", "1"]


def test_json_archive_compressed(archiver):
    events = [_event(1), _event(2, action="LOGIN_FAILED", minutes_ago=5), _event(3, minutes_ago=1)]

    file_path = archiver.archive(events, "LOGIN", fmt=ArchiveFormat.JSON, compress=True)

    assert file_path.endswith(".json.gz")
    assert Path(file_path).name.startswith("audit_archive_LOGIN_")
    with gzip.open(file_path, "rt", encoding="utf-8") as handle:
        data = json.load(handle)
    assert [item["id"] for item in data] == [2, 3, 1]
    assert data[0] == {
        "id": 2,
        "userId": "user-1",
        "action": "LOGIN_FAILED",
        "message": "ok",
        "createdAt": "2024-03-01T11:55:00.000Z",
        "ipAddress": "10.0.0.1",
    }


def test_archive_creates_missing_directory(archiver):
    assert not archiver.archive_dir.exists()

    file_path = archiver.archive([_event(1)], "BOOK_VIEWED")

    assert archiver.archive_dir.is_dir()
    assert Path(file_path).parent == archiver.archive_dir.resolve()
    assert Path(file_path).read_text(encoding="utf-8").startswith("Id,UserId,Action")


def test_archive_of_empty_batch_writes_nothing(archiver):
    assert archiver.archive([], "LOGIN") == ""
    assert not archiver.archive_dir.exists()


def test_archive_write_failure_propagates(tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("x", encoding="utf-8")
    service = ArchiveService(str(blocker / "archives"))

    with pytest.raises(OSError):
        service.archive([_event(1)], "LOGIN")


def test_archive_with_metadata_envelope(archiver):
    cutoff = datetime(2024, 2, 1, tzinfo=timezone.utc)
    events = [_event(1, minutes_ago=10), _event(2, user_id="user-2")]

    file_path = archiver.archive_with_metadata(events, "LOGIN", cutoff)

    assert file_path.endswith("_with_metadata.json")
    envelope = json.loads(Path(file_path).read_text(encoding="utf-8"))
    assert envelope["metadata"]["logCount"] == 2
    assert envelope["metadata"]["cutoffDate"] == "2024-02-01T00:00:00.000Z"
    assert envelope["metadata"]["statistics"]["uniqueUsers"] == 2
    assert envelope["metadata"]["statistics"]["dateSpanSeconds"] == 600
    assert [item["id"] for item in envelope["logs"]] == [1, 2]


def test_archive_with_metadata_rejects_csv(archiver):
    with pytest.raises(ValueError):
        archiver.archive_with_metadata([_event(1)], "LOGIN", datetime.now(timezone.utc), fmt=ArchiveFormat.CSV)


def test_list_archives_parses_names(archiver):
    archiver.archive_dir.mkdir(parents=True)
    (archiver.archive_dir / "audit_archive_LOGIN_20240101_120000.csv.gz").write_bytes(b"x")
    (archiver.archive_dir / "audit_archive_oddname.json").write_text("[]", encoding="utf-8")
    (archiver.archive_dir / "notes.txt").write_text("ignore me", encoding="utf-8")

    archives = {info.file_name: info for info in archiver.list_archives()}

    assert set(archives) == {"audit_archive_LOGIN_20240101_120000.csv.gz", "audit_archive_oddname.json"}
    parsed = archives["audit_archive_LOGIN_20240101_120000.csv.gz"]
    assert parsed.action_type == "LOGIN"
    assert parsed.archive_timestamp == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert parsed.is_compressed is True
    assert archives["audit_archive_oddname.json"].action_type is None


def test_list_archives_newest_first(archiver):
    archiver.archive_dir.mkdir(parents=True)
    older = archiver.archive_dir / "audit_archive_A_20240101_000000.csv"
    newer = archiver.archive_dir / "audit_archive_B_20240102_000000.csv"
    older.write_text("a", encoding="utf-8")
    newer.write_text("b", encoding="utf-8")
    _age_file(older, 3)

    assert [info.file_name for info in archiver.list_archives()] == [newer.name, older.name]


def test_list_archives_without_directory(archiver):
    assert archiver.list_archives() == []


def test_prune_removes_only_old_files(archiver):
    archiver.archive_dir.mkdir(parents=True)
    old = archiver.archive_dir / "audit_archive_LOGIN_20230101_000000.csv"
    recent = archiver.archive_dir / "audit_archive_LOGIN_20240101_000000.csv"
    old.write_text("old", encoding="utf-8")
    recent.write_text("recent", encoding="utf-8")
    _age_file(old, 400)

    assert archiver.cleanup_old_archives(timedelta(days=365)) == 1
    assert not old.exists()
    assert recent.exists()


def test_prune_with_zero_age_removes_everything(archiver):
    archiver.archive([_event(1)], "LOGIN")
    archiver.archive([_event(2)], "BOOK", fmt=ArchiveFormat.JSON)

    assert archiver.cleanup_old_archives(timedelta(0)) == 2
    assert archiver.list_archives() == []


def test_resolve_archive_returns_file_inside_directory(archiver):
    file_path = archiver.archive([_event(1)], "LOGIN")

    resolved = archiver.resolve_archive(Path(file_path).name)

    assert resolved == Path(file_path)
    assert archiver.read_archive(resolved.name).startswith(b"Id,UserId")


@pytest.mark.parametrize(
    "file_name",
    ["../secret.txt", "..\\..\\secret.txt", "/etc/passwd", "sub/../../secret.txt", "."],
)
def test_resolve_archive_rejects_traversal(archiver, tmp_path, file_name):
    archiver.archive_dir.mkdir(parents=True)
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")

    with pytest.raises(PathTraversalError):
        archiver.resolve_archive(file_name)


def test_resolve_archive_missing_file(archiver):
    archiver.archive_dir.mkdir(parents=True)

    with pytest.raises(ResourceNotFoundError):
        archiver.resolve_archive("audit_archive_LOGIN_20240101_000000.csv")


def test_sanitize_action_label():
    assert sanitize_action_label('LOGIN/ADMIN:*?"x y') == "LOGINADMINxy"
    assert sanitize_action_label("") == "UNKNOWN"
    assert sanitize_action_label("..") == "UNKNOWN"
    assert sanitize_action_label(None) == "UNKNOWN"


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 * 1024) == "5 MB"
