"""
taskbot — Centralized configuration.

Loads all settings from .env into one Settings object. The object is built
once at startup by `load_settings()` and passed to every service that needs
it; nothing reads the environment after that.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load .env from project root (two levels up from taskbot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"

_DEFAULT_LEAD_TIMES = "1440:1 day,240:4 hours,60:1 hour,30:30 minutes"
_DEFAULT_MANAGER_ROLES = "admin,manager,hr,chairman,executive,director,hod,teamlead"
_DEFAULT_TASK_ADMIN_ROLES = "admin,manager,chairman"


class LeadTime(BaseModel):
    """A deadline reminder offset: fire `minutes` before the deadline."""

    minutes: int
    label: str

    @property
    def key(self) -> str:
        return str(self.minutes)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Twilio WhatsApp channel (optional — outbound is disabled when unset)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_WHATSAPP_NUMBER: str = "whatsapp:+14155238886"

    # Webhook security
    WEBHOOK_VALIDATE_SIGNATURE: bool = False
    WEBHOOK_PUBLIC_URL: str = ""   # URL Twilio signs; empty → request URL
    ADMIN_TOKEN: str = ""          # empty → admin triggers are open

    # LLM fallback parser — provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""        # empty → rule-based parsing only
    LLM_TIMEOUT_SECONDS: float = 15.0

    # Audio — OpenAI Whisper (voice notes)
    OPENAI_API_KEY: str = ""
    WHISPER_LANGUAGE: str = "en"

    # SQLite
    DATABASE_PATH: str = "data/taskbot.db"

    # Locale
    TIMEZONE: str = "Asia/Karachi"
    DEFAULT_COUNTRY_CODE: str = "92"

    # Permissions
    MANAGER_ROLES: list[str] = _DEFAULT_MANAGER_ROLES.split(",")
    TASK_ADMIN_ROLES: list[str] = _DEFAULT_TASK_ADMIN_ROLES.split(",")

    # Reminder dispatcher
    REMINDER_LEAD_TIMES: list[LeadTime] = Field(default=_DEFAULT_LEAD_TIMES, validate_default=True)
    CHECK_INTERVAL_SECONDS: int = 60
    DEADLINE_WINDOW_SECONDS: int = 30
    REMINDER_CATCHUP_MINUTES: int = 5
    OVERDUE_NOTICES_ENABLED: bool = False

    # Daily digest
    DAILY_DIGEST_ENABLED: bool = True
    DAILY_DIGEST_TIME: str = "10:30"

    # Multi-turn slot filling
    CONVERSATION_TTL_MINUTES: int = 5

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    @field_validator("MANAGER_ROLES", "TASK_ADMIN_ROLES", mode="before")
    @classmethod
    def parse_roles(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return [r.strip().lower() for r in v if r.strip()]
        if isinstance(v, str) and v.strip():
            return [r.strip().lower() for r in v.split(",") if r.strip()]
        return []

    @field_validator("REMINDER_LEAD_TIMES", mode="before")
    @classmethod
    def parse_lead_times(cls, v: str | list | None) -> list:
        """Accept "1440:1 day,60:1 hour" and order the result longest lead first."""
        if v is None or v == "":
            v = _DEFAULT_LEAD_TIMES
        if isinstance(v, str):
            items = []
            for chunk in v.split(","):
                if not chunk.strip():
                    continue
                minutes, _, label = chunk.partition(":")
                minutes = int(minutes.strip())
                items.append({"minutes": minutes, "label": label.strip() or f"{minutes} minutes"})
            v = items
        leads = [LeadTime(**item) if isinstance(item, dict) else item for item in v]
        return sorted(leads, key=lambda lead: lead.minutes, reverse=True)

    @field_validator(
        "WEBHOOK_VALIDATE_SIGNATURE", "OVERDUE_NOTICES_ENABLED", "DAILY_DIGEST_ENABLED",
        mode="before",
    )
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("DAILY_DIGEST_TIME")
    @classmethod
    def check_digest_time(cls, v: str) -> str:
        hour, _, minute = v.partition(":")
        if not (hour.isdigit() and minute.isdigit() and int(hour) < 24 and int(minute) < 60):
            raise ValueError(f"DAILY_DIGEST_TIME must be HH:MM, got {v!r}")
        return f"{int(hour):02d}:{int(minute):02d}"

    @property
    def llm_configured(self) -> bool:
        return bool(self.LLM_API_KEY) and not self.LLM_API_KEY.startswith("your-")


def load_settings(env_path: Path | None = None) -> Settings:
    """Load settings from .env + environment. Call once at startup."""
    load_dotenv(env_path or _ENV_PATH)

    return Settings(
        TWILIO_ACCOUNT_SID=os.getenv("TWILIO_ACCOUNT_SID", ""),
        TWILIO_AUTH_TOKEN=os.getenv("TWILIO_AUTH_TOKEN", ""),
        TWILIO_WHATSAPP_NUMBER=os.getenv("TWILIO_WHATSAPP_NUMBER", "whatsapp:+14155238886"),
        WEBHOOK_VALIDATE_SIGNATURE=os.getenv("WEBHOOK_VALIDATE_SIGNATURE", "false"),
        WEBHOOK_PUBLIC_URL=os.getenv("WEBHOOK_PUBLIC_URL", ""),
        ADMIN_TOKEN=os.getenv("ADMIN_TOKEN", ""),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "15"),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        WHISPER_LANGUAGE=os.getenv("WHISPER_LANGUAGE", "en"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/taskbot.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Karachi"),
        DEFAULT_COUNTRY_CODE=os.getenv("DEFAULT_COUNTRY_CODE", "92"),
        MANAGER_ROLES=os.getenv("MANAGER_ROLES", _DEFAULT_MANAGER_ROLES),
        TASK_ADMIN_ROLES=os.getenv("TASK_ADMIN_ROLES", _DEFAULT_TASK_ADMIN_ROLES),
        REMINDER_LEAD_TIMES=os.getenv("REMINDER_LEAD_TIMES", _DEFAULT_LEAD_TIMES),
        CHECK_INTERVAL_SECONDS=os.getenv("CHECK_INTERVAL_SECONDS", "60"),
        DEADLINE_WINDOW_SECONDS=os.getenv("DEADLINE_WINDOW_SECONDS", "30"),
        REMINDER_CATCHUP_MINUTES=os.getenv("REMINDER_CATCHUP_MINUTES", "5"),
        OVERDUE_NOTICES_ENABLED=os.getenv("OVERDUE_NOTICES_ENABLED", "false"),
        DAILY_DIGEST_ENABLED=os.getenv("DAILY_DIGEST_ENABLED", "true"),
        DAILY_DIGEST_TIME=os.getenv("DAILY_DIGEST_TIME", "10:30"),
        CONVERSATION_TTL_MINUTES=os.getenv("CONVERSATION_TTL_MINUTES", "5"),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8000"),
    )
