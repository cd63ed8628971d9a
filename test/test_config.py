from unittest.mock import patch

import pytest

from servicefinder.core.config import Config


def test_allowed_origins_merges_env_and_local(monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://servicefinder.example, http://localhost:3000")
    origins = Config.allowed_origins(["https://admin.servicefinder.example"])
    assert origins == [
        "https://servicefinder.example",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "https://admin.servicefinder.example",
    ]


def test_validate_names_every_missing_setting():
    with patch.object(Config, "SUPABASE_URL", ""), patch.object(Config, "SUPABASE_SERVICE_KEY", ""):
        with pytest.raises(ValueError) as exc_info:
            Config.validate()
    assert "SUPABASE_URL" in str(exc_info.value)
    assert "SUPABASE_SERVICE_KEY" in str(exc_info.value)
    assert "SUPABASE_ANON_KEY" not in str(exc_info.value)


def test_debounce_interval_in_seconds():
    with patch.object(Config, "SEARCH_DEBOUNCE_MS", 250):
        assert Config.debounce_seconds() == 0.25
