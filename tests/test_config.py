"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from flowchat.config import Settings, load_settings

_VARS = (
    "FLOWCHAT_DB_PATH",
    "FLOWCHAT_EMBEDDING_DIMENSIONS",
    "FLOWCHAT_VIEW_STATE_DEBOUNCE_MS",
    "FLOWCHAT_LOG_LEVEL",
    "FLOWCHAT_CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv then delenv so monkeypatch restores the absence of anything
    # a .env file writes during the test.
    for name in _VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.env")
    assert settings == Settings()
    assert settings.view_state_debounce_seconds == pytest.approx(0.2)


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("FLOWCHAT_DB_PATH", "/tmp/chat.db")
    monkeypatch.setenv("FLOWCHAT_EMBEDDING_DIMENSIONS", "384")
    monkeypatch.setenv("FLOWCHAT_CORS_ORIGINS", "http://a.test, http://b.test,")

    settings = load_settings(tmp_path / "missing.env")

    assert settings.db_path == "/tmp/chat.db"
    assert settings.embedding_dimensions == 384
    assert settings.cors_origins == ["http://a.test", "http://b.test"]


def test_env_file_does_not_override_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("FLOWCHAT_LOG_LEVEL=DEBUG\nFLOWCHAT_DB_PATH=from-file.db\n")
    monkeypatch.setenv("FLOWCHAT_DB_PATH", "from-env.db")

    settings = load_settings(env_file)

    assert settings.log_level == "DEBUG"
    assert settings.db_path == "from-env.db"


def test_invalid_value_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("FLOWCHAT_VIEW_STATE_DEBOUNCE_MS", "-5")
    with pytest.raises(ValidationError):
        load_settings(tmp_path / "missing.env")
