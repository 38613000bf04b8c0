"""
MedMinder — Centralized configuration.

Loads all settings from .env and validates required keys.
Only the composition root and adapter factories read these settings;
core modules receive what they need through constructors.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Security, and the chats reminders are delivered to
    ALLOWED_USER_IDS: list[int] = []

    # Shown to the emergency contact in escalation messages
    USER_DISPLAY_NAME: str = "User"

    # SQLite
    DATABASE_PATH: str = "data/medications.db"

    # Reminders
    GRACE_WINDOW_MINUTES: int = 2     # before a missed dose is escalated
    POSTPONE_MINUTES: int = 10
    SWEEP_ENABLED: bool = False       # periodic missed-reminder sweep (fallback)
    SWEEP_INTERVAL_MINUTES: int = 5

    # E-mail channel (Mailgun)
    MAILGUN_API_KEY: str = ""
    MAILGUN_API_URL: str = ""
    MAIL_FROM: str = "MedMinder <noreply@medminder.local>"

    # SMS channel (Twilio)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "GRACE_WINDOW_MINUTES", "POSTPONE_MINUTES", "SWEEP_INTERVAL_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_minutes(cls, v: str | int) -> int:
        minutes = int(v)
        if minutes < 1:
            raise ValueError(f"must be at least 1 minute, got {minutes}")
        return minutes

    @field_validator("SWEEP_ENABLED", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        USER_DISPLAY_NAME=os.getenv("USER_DISPLAY_NAME", "User"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/medications.db"),
        GRACE_WINDOW_MINUTES=os.getenv("GRACE_WINDOW_MINUTES", "2"),
        POSTPONE_MINUTES=os.getenv("POSTPONE_MINUTES", "10"),
        SWEEP_ENABLED=os.getenv("SWEEP_ENABLED", "false"),
        SWEEP_INTERVAL_MINUTES=os.getenv("SWEEP_INTERVAL_MINUTES", "5"),
        MAILGUN_API_KEY=os.getenv("MAILGUN_API_KEY", ""),
        MAILGUN_API_URL=os.getenv("MAILGUN_API_URL", ""),
        MAIL_FROM=os.getenv("MAIL_FROM", "MedMinder <noreply@medminder.local>"),
        TWILIO_ACCOUNT_SID=os.getenv("TWILIO_ACCOUNT_SID", ""),
        TWILIO_AUTH_TOKEN=os.getenv("TWILIO_AUTH_TOKEN", ""),
        TWILIO_PHONE_NUMBER=os.getenv("TWILIO_PHONE_NUMBER", ""),
    )


# Singleton — imported by the bot and adapter factories as:
#   from src.config import settings
settings = _load_settings()
