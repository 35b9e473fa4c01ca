"""Tests for taskbot.config — Settings parsing and load_settings()."""

import pytest
from pydantic import ValidationError

from taskbot.config import Settings, load_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.TIMEZONE == "Asia/Karachi"
        assert [lead.minutes for lead in settings.REMINDER_LEAD_TIMES] == [1440, 240, 60, 30]
        assert settings.REMINDER_LEAD_TIMES[0].label == "1 day"
        assert settings.REMINDER_LEAD_TIMES[0].key == "1440"
        assert "manager" in settings.MANAGER_ROLES
        assert not settings.TWILIO_ACCOUNT_SID
        assert not settings.llm_configured

    def test_lead_times_sorted_longest_first(self):
        settings = Settings(REMINDER_LEAD_TIMES="30:half an hour,2880:2 days,60")
        assert [lead.minutes for lead in settings.REMINDER_LEAD_TIMES] == [2880, 60, 30]
        assert settings.REMINDER_LEAD_TIMES[1].label == "60 minutes"

    def test_roles_normalized(self):
        settings = Settings(MANAGER_ROLES=" Admin , HR,,")
        assert settings.MANAGER_ROLES == ["admin", "hr"]

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("yes", True), ("false", False), ("", False)])
    def test_flags(self, raw, expected):
        assert Settings(OVERDUE_NOTICES_ENABLED=raw).OVERDUE_NOTICES_ENABLED is expected

    def test_digest_time_padded(self):
        assert Settings(DAILY_DIGEST_TIME="9:05").DAILY_DIGEST_TIME == "09:05"

    def test_bad_digest_time(self):
        with pytest.raises(ValidationError):
            Settings(DAILY_DIGEST_TIME="25:00")

    def test_placeholder_llm_key_ignored(self):
        assert not Settings(LLM_API_KEY="your-key-here").llm_configured
        assert Settings(LLM_API_KEY="sk-real").llm_configured


class TestLoadSettings:
    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TWILIO_ACCOUNT_SID", "ACenv")
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "tok")
        monkeypatch.setenv("CHECK_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("REMINDER_LEAD_TIMES", "120:2 hours")
        settings = load_settings(tmp_path / "missing.env")

        assert settings.TWILIO_ACCOUNT_SID == "ACenv"
        assert settings.CHECK_INTERVAL_SECONDS == 15
        assert [lead.label for lead in settings.REMINDER_LEAD_TIMES] == ["2 hours"]

    def test_env_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TIMEZONE", "placeholder")
        monkeypatch.delenv("TIMEZONE")
        env = tmp_path / ".env"
        env.write_text("TIMEZONE=Asia/Dubai\n")
        assert load_settings(env).TIMEZONE == "Asia/Dubai"
