import pydantic
import pytest

from app.config import Settings


def test_retention_policies_from_json():
    config = Settings(_env_file=None, AUDIT_RETENTION_POLICIES='{"LOGIN": 180, "DEFAULT": 30}')
    assert config.AUDIT_RETENTION_POLICIES == {"LOGIN": 180, "DEFAULT": 30}


def test_retention_policies_from_pairs():
    config = Settings(_env_file=None, AUDIT_RETENTION_POLICIES="LOGIN=180, BOOK_VIEWED=30,broken")
    assert config.AUDIT_RETENTION_POLICIES == {"LOGIN": "180", "BOOK_VIEWED": "30"}


def test_retention_policies_from_environment(monkeypatch):
    monkeypatch.setenv("AUDIT_RETENTION_POLICIES", "LOGOUT=90")
    assert Settings(_env_file=None).AUDIT_RETENTION_POLICIES == {"LOGOUT": "90"}


def test_cors_origins_accept_comma_separated():
    config = Settings(_env_file=None, CORS_ORIGINS="http://a.test, http://b.test")
    assert config.CORS_ORIGINS == ["http://a.test", "http://b.test"]


def test_relative_archive_path_is_kept():
    config = Settings(_env_file=None, AUDIT_ARCHIVE_PATH="data/archives")
    assert config.get_archive_dir() == "data/archives"


def test_empty_archive_path_falls_back_to_project_dir():
    config = Settings(_env_file=None, AUDIT_ARCHIVE_PATH="")
    assert config.get_archive_dir().endswith("archives/audit")


def test_production_rejects_default_secret():
    config = Settings(_env_file=None, ENVIRONMENT="production")
    with pytest.raises(ValueError, match="SECRET_KEY"):
        config.validate_security_settings()


@pytest.mark.parametrize("field", ["AUDIT_CLEANUP_INTERVAL_HOURS", "AUDIT_CLEANUP_RETRY_DELAY_HOURS"])
@pytest.mark.parametrize("hours", [0, -1])
def test_scheduler_intervals_must_be_positive(field, hours):
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, **{field: hours})
