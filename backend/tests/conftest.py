from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.audit import AuditEvent, utcnow
from app.services.archive_service import ArchiveService
from app.services.audit_service import AuditService


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def recorder(session_factory):
    return AuditService(session_factory)


@pytest.fixture
def archiver(tmp_path):
    return ArchiveService(str(tmp_path / "archives"))


@pytest.fixture
def add_event(session_factory):
    """Insert one audit event ``days_old`` days in the past and return its id."""

    def _add(action, days_old=0, user_id="user-1", message=None, ip_address="10.0.0.1"):
        db = session_factory()
        try:
            event = AuditEvent(
                user_id=user_id,
                action=action,
                message=message or f"{action} happened",
                created_at=utcnow() - timedelta(days=days_old),
                ip_address=ip_address,
            )
            db.add(event)
            db.commit()
            return event.id
        finally:
            db.close()

    return _add


@pytest.fixture
def fetch_events(session_factory):
    def _fetch():
        db = session_factory()
        try:
            return db.query(AuditEvent).order_by(AuditEvent.id.asc()).all()
        finally:
            db.close()

    return _fetch
