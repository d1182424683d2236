"""
Test suite for application settings validation.
"""

import pytest
from pydantic import ValidationError

from agrimarket.core.config import DEFAULT_SECRET_KEY, Settings

VALID_KEY = "a-sufficiently-long-secret-key-for-tests"


class TestSettingsValidation:
    """Test environment-driven settings."""

    def test_short_secret_key_rejected(self):
        with pytest.raises(ValidationError):
            Settings(secret_key="too-short")

    def test_default_secret_key_rejected_in_production(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(secret_key=DEFAULT_SECRET_KEY, environment="production")
        assert "Default secret key" in str(exc_info.value)

    def test_default_secret_key_allowed_in_development(self):
        settings = Settings(secret_key=DEFAULT_SECRET_KEY, environment="development")

        assert settings.is_development

    def test_unsupported_database_url_rejected(self):
        with pytest.raises(ValidationError):
            Settings(secret_key=VALID_KEY, database_url="mysql://localhost/agrimarket")

    def test_unknown_time_zone_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Settings(secret_key=VALID_KEY, booking_timezone="Mars/Olympus_Mons")
        assert "Unknown time zone" in str(exc_info.value)

    def test_booking_tz(self):
        settings = Settings(secret_key=VALID_KEY, booking_timezone="Asia/Colombo")

        assert settings.booking_tz.key == "Asia/Colombo"

    def test_cors_origins_from_comma_separated_string(self):
        settings = Settings(
            secret_key=VALID_KEY,
            cors_origins="https://agri.example.lk, https://admin.example.lk,",
        )

        assert settings.cors_origins == [
            "https://agri.example.lk",
            "https://admin.example.lk",
        ]

    def test_modification_window_bounds(self):
        with pytest.raises(ValidationError):
            Settings(secret_key=VALID_KEY, booking_modification_window_hours=-1)
