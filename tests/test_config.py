"""Tests for Settings configuration model."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from automations.config import Settings


class TestDefaults:
    def test_default_database_path(self):
        s = Settings()
        assert s.database_path == Path("data/automations.db")

    def test_default_tick_interval(self):
        s = Settings()
        assert s.tick_interval_minutes == 5

    def test_default_timezone(self):
        s = Settings()
        assert s.scheduler_timezone == "UTC"

    def test_admin_api_disabled_by_default(self):
        s = Settings()
        assert s.admin_token == ""
        assert s.api_port == 8080


class TestOverrides:
    def test_explicit_values(self):
        s = Settings(tick_interval_minutes=1, scheduler_timezone="Asia/Kolkata")
        assert s.tick_interval_minutes == 1
        assert s.scheduler_timezone == "Asia/Kolkata"

    def test_tick_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(tick_interval_minutes=0)

    def test_environment_ignored_under_pytest(self, monkeypatch):
        monkeypatch.setenv("ADMIN_TOKEN", "from-env")
        assert Settings().admin_token == ""
