"""Unit tests for marketplace/config.py."""

from decimal import Decimal

from marketplace.config import Settings


def test_default_settings_testable() -> None:
    """Default settings should have development-friendly defaults."""
    s = Settings()
    assert s.env != "production"
    assert s.is_production is False
    assert s.email_backend == "log"
    assert s.blob_backend == "log"


def test_job_lifecycle_defaults() -> None:
    s = Settings()
    assert s.default_max_proposals == 10
    assert s.job_ttl_days == 30
    assert s.max_price == Decimal("10000000")


def test_env_overrides(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("DEFAULT_MAX_PROPOSALS", "25")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("ENV", "production")
    s = Settings()
    assert s.default_max_proposals == 25
    assert s.rate_limit_enabled is False
    assert s.is_production is True


def test_upload_types_from_env(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("ALLOWED_UPLOAD_TYPES", '["image/png"]')
    assert Settings().allowed_upload_types == ["image/png"]
