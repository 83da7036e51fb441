import json

import pytest

from listen_analytics import app_settings


def test_missing_file_gives_defaults(tmp_path):
    settings = app_settings.load_settings(tmp_path / "settings.json")

    assert settings["analytics"]["repeat_threshold"] == 5
    assert settings["analytics"]["history_page_size"] == 50
    assert settings["analytics"]["remote_enabled"] is True


def test_file_values_are_deep_merged(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"analytics": {"repeat_threshold": 3}}), encoding="utf-8")

    settings = app_settings.load_settings(path)

    assert settings["analytics"]["repeat_threshold"] == 3
    assert settings["analytics"]["top_limit"] == 5
    assert "database" in settings


def test_corrupt_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert app_settings.load_settings(path)["analytics"]["repeat_threshold"] == 5


def test_update_settings_persists(tmp_path):
    path = tmp_path / "nested" / "settings.json"

    app_settings.update_settings({"analytics": {"remote_enabled": False}}, path)

    assert app_settings.load_settings(path)["analytics"]["remote_enabled"] is False


def test_analytics_settings_rejects_bad_values():
    resolved = app_settings.analytics_settings({
        "analytics": {
            "repeat_threshold": 0,
            "top_limit": "ten",
            "history_page_size": True,
            "remote_enabled": "yes",
            "top_repeat_tracks": 3,
        }
    })

    assert resolved == {
        "repeat_threshold": 5,
        "top_limit": 5,
        "history_page_size": 50,
        "top_repeat_tracks": 3,
        "remote_enabled": True,
    }


def test_empty_settings_use_defaults():
    assert app_settings.analytics_settings({})["repeat_threshold"] == 5


def test_database_url_required(monkeypatch):
    monkeypatch.delenv("LISTEN_ANALYTICS_DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        app_settings.database_url()

    monkeypatch.setenv("LISTEN_ANALYTICS_DATABASE_URL", "postgresql://localhost/listens")
    assert app_settings.database_url() == "postgresql://localhost/listens"
