from unittest.mock import patch

import pytest
from pydantic import ValidationError

from switchyard.config.settings import PeriodicSchedule, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "Switchyard"
    assert settings.version == "1.0.0"
    assert settings.environment == "development"
    assert settings.debug is True
    assert settings.database_url is None
    assert settings.redis_url is None


def test_job_defaults():
    """Test the enqueue and worker defaults."""
    settings = Settings(_env_file=None)

    assert settings.job_default_max_attempts == 3
    assert settings.job_default_priority == 0
    assert settings.job_default_timeout_ms == 300_000
    assert settings.job_poll_interval_ms == 1000
    assert settings.job_concurrency == 5
    assert settings.job_stuck_after_minutes == 10
    assert settings.job_startup_reclaim_minutes == 5
    assert settings.job_cleanup_after_days == 30
    assert settings.job_retry_backoff_base_ms == 0
    assert settings.job_periodic_schedule == {}


def test_production_requires_database():
    """Test that production refuses the in-memory job store."""
    with pytest.raises(ValueError, match="DATABASE_URL is required in production"):
        Settings(_env_file=None, environment="production")


def test_production_with_database():
    settings = Settings(
        _env_file=None,
        environment="production",
        database_url="postgresql+asyncpg://localhost/switchyard",
    )
    assert settings.environment == "production"


def test_concurrency_must_be_positive():
    """Test that a worker needs at least one consumer."""
    with pytest.raises(ValueError, match="JOB_CONCURRENCY must be at least 1"):
        Settings(_env_file=None, job_concurrency=0)


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Switchyard"


@patch.dict(
    "os.environ",
    {
        "JOB_CONCURRENCY": "8",
        "JOB_POLL_INTERVAL_MS": "250",
        "REDIS_URL": "redis://localhost:6379/0",
        "JOB_PERIODIC_SCHEDULE": '{"fx_rate_update": 3600}',
    },
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings(_env_file=None)
    assert settings.job_concurrency == 8
    assert settings.job_poll_interval_ms == 250
    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.job_periodic_schedule == {"fx_rate_update": PeriodicSchedule(interval_s=3600)}


@patch.dict(
    "os.environ",
    {
        "JOB_PERIODIC_SCHEDULE": (
            '{"nightly-audit": {"job_type": "audit_cleanup", "interval_s": 86400,'
            ' "payload": {"olderThanDays": 90}, "priority": -1}}'
        ),
    },
)
def test_periodic_schedule_with_payload():
    settings = Settings(_env_file=None)

    schedule = settings.job_periodic_schedule["nightly-audit"]
    assert schedule.job_type == "audit_cleanup"
    assert schedule.interval_s == 86400
    assert schedule.payload == {"olderThanDays": 90}
    assert schedule.priority == -1


def test_periodic_schedule_interval_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, job_periodic_schedule={"fx_rate_update": 0})
