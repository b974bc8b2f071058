"""Tests for settings loading."""

from scopeguard.core.config import Settings, get_settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("EVENT_BUS_URL", raising=False)
        settings = Settings(_env_file=None)

        assert settings.event_bus_url is None
        assert settings.default_page_limit == 20
        assert settings.max_page_limit == 100
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EVENT_BUS_URL", "http://bus.local/events")
        monkeypatch.setenv("max_page_limit", "50")
        monkeypatch.setenv("SOMETHING_UNRELATED", "ignored")

        settings = Settings(_env_file=None)

        assert settings.event_bus_url == "http://bus.local/events"
        assert settings.max_page_limit == 50

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
