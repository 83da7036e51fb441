from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_METADATA_DIR = Path(
    os.environ.get("LISTEN_ANALYTICS_METADATA_DIR", REPO_ROOT / ".metadata")
)
SETTINGS_PATH = Path(
    os.environ.get("LISTEN_ANALYTICS_SETTINGS", DEFAULT_METADATA_DIR / "settings.json")
)


def _default_settings() -> dict[str, Any]:
    return {
        "analytics": {
            "repeat_threshold": 5,
            "top_limit": 5,
            "history_page_size": 50,
            "top_repeat_tracks": 5,
            "remote_enabled": True,
        },
        "database": {
            "pool_min": int(os.environ.get("LISTEN_ANALYTICS_DB_POOL_MIN", "2")),
            "pool_max": int(os.environ.get("LISTEN_ANALYTICS_DB_POOL_MAX", "10")),
            "pool_timeout": float(os.environ.get("LISTEN_ANALYTICS_DB_POOL_TIMEOUT", "30")),
            "pool_max_idle": float(os.environ.get("LISTEN_ANALYTICS_DB_POOL_MAX_IDLE", "300")),
        },
    }


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _deep_merge(base[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Path | None = None) -> dict[str, Any]:
    path = path or SETTINGS_PATH
    defaults = _default_settings()
    if not path.exists():
        return defaults
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return defaults
    if not isinstance(data, dict):
        return defaults
    return _deep_merge(defaults, data)


def update_settings(patch: dict[str, Any], path: Path | None = None) -> dict[str, Any]:
    path = path or SETTINGS_PATH
    current = load_settings(path)
    updated = _deep_merge(current, patch)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(updated, indent=2, sort_keys=True, ensure_ascii=True) + "\n",
        encoding="utf-8",
    )
    return updated


def analytics_settings(settings: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return the analytics section, falling back to defaults for bad values."""
    if settings is None:
        settings = load_settings()
    defaults = _default_settings()["analytics"]
    section = settings.get("analytics") if isinstance(settings, dict) else {}
    if not isinstance(section, dict):
        section = {}

    resolved: dict[str, Any] = {}
    for key, default in defaults.items():
        value = section.get(key, default)
        if isinstance(default, bool):
            resolved[key] = value if isinstance(value, bool) else default
        elif isinstance(value, int) and not isinstance(value, bool) and value > 0:
            resolved[key] = value
        else:
            resolved[key] = default
    return resolved


def database_url() -> str:
    url = os.environ.get("LISTEN_ANALYTICS_DATABASE_URL")
    if not url:
        raise RuntimeError("LISTEN_ANALYTICS_DATABASE_URL is not set.")
    return url
