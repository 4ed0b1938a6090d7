"""
Tests for application configuration and settings validation.
"""

import os
import pytest
from unittest.mock import patch


def test_settings_loads_defaults():
    """Settings should load with sensible defaults in development."""
    from trackprofit.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        assert settings.environment == "development"
        assert settings.is_production is False
        assert settings.ads_api_version == "v18.0"
        assert settings.provider_timeout_seconds == 30.0
        get_settings.cache_clear()


def test_database_url_rewritten_for_asyncpg():
    from trackprofit.config import Settings
    settings = Settings(database_url="postgres://user:pw@db-host/shop")
    assert settings.database_url == "postgresql+asyncpg://user:pw@db-host/shop"


def test_settings_cors_origin_list():
    """CORS origins string should be split into a list."""
    from trackprofit.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
        "CORS_ORIGINS": "http://localhost:3000, http://example.com",
        "APP_URL": "http://localhost:3000",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        origins = settings.cors_origin_list
        assert len(origins) == 2
        assert "http://localhost:3000" in origins
        assert "http://example.com" in origins
        get_settings.cache_clear()


def test_production_rejects_default_secret():
    """Production mode should reject the default session secret."""
    from trackprofit.config import Settings

    with pytest.raises(ValueError, match="SESSION_SECRET must be set"):
        Settings(
            environment="production",
            session_secret="change-me-in-production",
            encryption_key="x" * 44,
            database_url="postgresql+asyncpg://prod-host/db",
        )


def test_production_requires_encryption_key():
    from trackprofit.config import Settings

    with pytest.raises(ValueError, match="ENCRYPTION_KEY must be set"):
        Settings(
            environment="production",
            session_secret="a-real-secret",
            encryption_key="",
            database_url="postgresql+asyncpg://prod-host/db",
        )


def test_production_accepts_real_secrets():
    from trackprofit.config import Settings
    settings = Settings(
        environment="production",
        session_secret="a-real-secret-that-is-not-the-default",
        encryption_key="x" * 44,
        database_url="postgresql+asyncpg://prod-host/db",
    )
    assert settings.is_production is True
