"""
Unit Tests for the startup configuration check
"""
import pytest

from masada import main
from masada.core.config import settings

STRONG_SECRET = 'x' * 32


@pytest.fixture
def strong_settings(monkeypatch):
    monkeypatch.setattr(settings, 'DATABASE_URL', 'postgresql+asyncpg://masada@db/masada')
    monkeypatch.setattr(settings, 'JWT_SECRET_KEY', STRONG_SECRET)
    monkeypatch.setattr(settings, 'JWT_REFRESH_SECRET_KEY', STRONG_SECRET + 'r')
    return monkeypatch


class TestProduction:
    def test_strong_settings_pass(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'production')

        errors, _ = main.check_config()

        assert errors == []

    def test_missing_refresh_secret_fails(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'production')
        strong_settings.setattr(settings, 'JWT_REFRESH_SECRET_KEY', '')

        errors, _ = main.check_config()

        assert errors == ['JWT_REFRESH_SECRET_KEY is not set or using default value']

    def test_short_secret_fails(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'production')
        strong_settings.setattr(settings, 'JWT_SECRET_KEY', 'too-short')

        errors, _ = main.check_config()

        assert errors == ['JWT_SECRET_KEY must be at least 32 characters']

    def test_missing_database_url_fails(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'production')
        strong_settings.setattr(settings, 'DATABASE_URL', '')

        errors, _ = main.check_config()

        assert 'DATABASE_URL is not set' in errors

    def test_validate_raises(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'production')
        strong_settings.setattr(settings, 'JWT_SECRET_KEY', 'CHANGE_ME')

        with pytest.raises(RuntimeError, match='JWT_SECRET_KEY'):
            main.validate_critical_config()


class TestDevelopment:
    def test_weak_secrets_only_warn(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'development')
        strong_settings.setattr(settings, 'JWT_SECRET_KEY', 'CHANGE_ME')
        strong_settings.setattr(settings, 'JWT_REFRESH_SECRET_KEY', '')

        errors, warnings = main.check_config()

        assert errors == []
        assert 'JWT_SECRET_KEY is not set or using default value' in warnings
        assert 'JWT_REFRESH_SECRET_KEY is not set or using default value' in warnings

    def test_validate_does_not_raise(self, strong_settings):
        strong_settings.setattr(settings, 'ENVIRONMENT', 'development')
        strong_settings.setattr(settings, 'JWT_SECRET_KEY', 'short')

        main.validate_critical_config()
