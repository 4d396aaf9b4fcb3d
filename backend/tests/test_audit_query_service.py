from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ValidationError
from app.models.audit import AuditEvent, utcnow
from app.services.audit_query_service import AuditLogFilters, AuditQueryService
from app.services.retention_policy import RetentionPolicy


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def test_search_pages_newest_first(db, add_event):
    ids = [add_event("LOGIN_SUCCESS", days_old=days) for days in (5, 4, 3, 2, 1)]

    first = AuditQueryService.search(db, page=1, size=2)
    last = AuditQueryService.search(db, page=3, size=2)

    assert [log.id for log in first["logs"]] == [ids[4], ids[3]]
    assert first["pagination"] == {"page": 1, "size": 2, "total_items": 5, "total_pages": 3}
    assert [log.id for log in last["logs"]] == [ids[0]]


@pytest.mark.parametrize("page,size", [(0, 10), (1, 0), (1, 201)])
def test_search_rejects_bad_paging(db, page, size):
    with pytest.raises(ValidationError):
        AuditQueryService.search(db, page=page, size=size)


def test_search_filters(db, add_event):
    add_event("BOOK_DOWNLOADED", message="Downloaded Dune", user_id="reader-1", days_old=1)
    add_event("BOOK_VIEWED", message="Viewed Dune", user_id="reader-2", days_old=10)
    add_event("LOGIN_SUCCESS", message="Welcome back", user_id="reader-1", days_old=1)

    by_text = AuditQueryService.search(db, AuditLogFilters(query="Dune"))
    by_action = AuditQueryService.search(db, AuditLogFilters(action="BOOK", user_id="reader-1"))
    by_date = AuditQueryService.search(db, AuditLogFilters(start_date=utcnow() - timedelta(days=5)))

    assert by_text["pagination"]["total_items"] == 2
    assert [log.action for log in by_action["logs"]] == ["BOOK_DOWNLOADED"]
    assert by_action["filters"]["user_id"] == "reader-1"
    assert {log.action for log in by_date["logs"]} == {"BOOK_DOWNLOADED", "LOGIN_SUCCESS"}


def test_select_for_export_is_oldest_first_and_capped(db, add_event):
    ids = [add_event("BOOK_VIEWED", days_old=days) for days in (1, 3, 2)]

    logs = AuditQueryService.select_for_export(db, AuditLogFilters(), max_records=2)

    assert [log.id for log in logs] == [ids[1], ids[2]]


def test_quick_stats(db, add_event):
    add_event("LOGIN_SUCCESS")
    add_event("LOGIN_FAILED", days_old=3)
    add_event("BOOK_VIEWED", days_old=20)
    add_event("UNAUTHORIZED_ACCESS")
    add_event("RATE_LIMIT_EXCEEDED", days_old=2)

    stats = AuditQueryService.quick_stats(db)

    assert stats["total_logs"] == 5
    assert stats["logs_last_7_days"] == 4
    assert stats["login_attempts"] == 2
    assert stats["book_actions"] == 1
    assert stats["security_events"] == 2


def test_database_stats(db, add_event):
    for _ in range(3):
        add_event("LOGIN_SUCCESS", message="x" * 30, days_old=1)
    add_event("BOOK_VIEWED", message="x" * 30, days_old=40)

    stats = AuditQueryService.database_stats(db, policy=RetentionPolicy({"LOGIN": 180, "DEFAULT": 90}))

    assert stats["total_logs"] == 4
    assert stats["logs_last_7_days"] == 3
    assert stats["logs_last_30_days"] == 3
    top = stats["top_actions"][0]
    assert top["action"] == "LOGIN_SUCCESS"
    assert top["count"] == 3
    assert top["percentage"] == 75.0
    assert top["retention_policy"] == "LOGIN"
    assert stats["top_actions"][1]["retention_policy"] == "DEFAULT"
    assert sum(month["count"] for month in stats["monthly_distribution"]) == 4
    assert stats["size_estimate"]["average_size_per_log"] == 100.0


def test_database_stats_on_empty_store(db):
    stats = AuditQueryService.database_stats(db)

    assert stats["total_logs"] == 0
    assert stats["oldest_log"] is None
    assert stats["top_actions"] == []
    assert stats["size_estimate"]["estimated_size_kb"] == 0


def test_date_bounds_with_offset_compare_in_utc(db):
    db.add(
        AuditEvent(
            user_id="reader-1",
            action="BOOK_VIEWED",
            message="Viewed Dune",
            created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        )
    )
    db.commit()
    plus_two = timezone(timedelta(hours=2))

    # 13:30+02:00 is 11:30Z, before the event.
    after = AuditQueryService.search(db, AuditLogFilters(start_date=datetime(2024, 3, 1, 13, 30, tzinfo=plus_two)))
    # 13:00+02:00 is 11:00Z, also before the event.
    before = AuditQueryService.search(db, AuditLogFilters(end_date=datetime(2024, 3, 1, 13, 0, tzinfo=plus_two)))
    naive = AuditQueryService.search(db, AuditLogFilters(start_date=datetime(2024, 3, 1, 12, 30)))

    assert after["pagination"]["total_items"] == 1
    assert before["pagination"]["total_items"] == 0
    assert naive["pagination"]["total_items"] == 0


def test_database_stats_reports_lower_case_pattern(db, add_event):
    add_event("BOOK_VIEWED", days_old=1)

    stats = AuditQueryService.database_stats(db, policy=RetentionPolicy({"book": 30, "DEFAULT": 90}))

    assert stats["top_actions"][0]["retention_policy"] == "book"
