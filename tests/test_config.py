"""Tests for src.config — Settings validation."""

import pytest
from pydantic import ValidationError

from src.config import Settings, settings


class TestSettings:
    def test_loaded_from_env(self):
        assert settings.TELEGRAM_BOT_TOKEN
        assert settings.ALLOWED_USER_IDS == [12345]

    def test_user_ids_from_csv(self):
        s = Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS="1, 2,3")
        assert s.ALLOWED_USER_IDS == [1, 2, 3]

    def test_empty_user_ids(self):
        assert Settings(TELEGRAM_BOT_TOKEN="t", ALLOWED_USER_IDS="").ALLOWED_USER_IDS == []

    def test_defaults(self):
        s = Settings(TELEGRAM_BOT_TOKEN="t")
        assert s.GRACE_WINDOW_MINUTES == 2
        assert s.POSTPONE_MINUTES == 10
        assert s.SWEEP_ENABLED is False

    def test_minutes_parsed_from_string(self):
        assert Settings(TELEGRAM_BOT_TOKEN="t", GRACE_WINDOW_MINUTES="5").GRACE_WINDOW_MINUTES == 5

    def test_zero_minutes_rejected(self):
        with pytest.raises(ValidationError):
            Settings(TELEGRAM_BOT_TOKEN="t", POSTPONE_MINUTES="0")

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("Yes", True), ("false", False), ("", False),
    ])
    def test_sweep_flag(self, raw, expected):
        assert Settings(TELEGRAM_BOT_TOKEN="t", SWEEP_ENABLED=raw).SWEEP_ENABLED is expected
