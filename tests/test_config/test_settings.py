"""Tests for environment-driven settings."""

import pytest

from src.alerts.config import AlertConfig
from src.config.settings import Settings
from src.jobs.config import JobsConfig
from src.scheduler.config import SchedulerConfig


class TestSettings:

    def test_defaults(self, test_settings):
        assert not test_settings.is_production
        assert not test_settings.tracing_enabled
        assert not test_settings.cron_configured
        assert not test_settings.pagespeed_configured

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        monkeypatch.setenv("PAGESPEED_API_KEY", "key")
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://otel:4317")

        settings = Settings()

        assert settings.cron_configured
        assert settings.pagespeed_configured
        assert settings.tracing_enabled

    def test_mock_search_disables_live_provider(self, monkeypatch):
        monkeypatch.setenv("SEARCH_API_ACCESS_TOKEN", "token")
        assert Settings().search_provider_configured

        monkeypatch.setenv("MOCK_SEARCH_DATA", "true")
        assert not Settings().search_provider_configured


class TestComponentConfigs:

    def test_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("ALERTS_CRITICAL_RATIO", "2.5")
        monkeypatch.setenv("SCHEDULER_CRAWL_CRON", "0 3 * * sat")
        monkeypatch.setenv("JOBS_DEAD_LETTER_ALERT_THRESHOLD", "25")

        assert AlertConfig().critical_ratio == 2.5
        assert SchedulerConfig().cron_for("site-crawl") == "0 3 * * sat"
        assert JobsConfig().dead_letter_alert_threshold == 25

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("JOBS_DEAD_LETTER_ALERT_THRESHOLD", "0")
        with pytest.raises(ValueError):
            JobsConfig()
