from __future__ import annotations

from flowcanvas.config import (
    MAX_QUEUE_DEPTH,
    MAX_SESSIONS,
    SESSION_TIMEOUT_S,
    CorrelatorSettings,
    detect_language,
)


def test_detect_language() -> None:
    assert detect_language("src/app.js") == "javascript"
    assert detect_language("App.JSX") == "javascript"
    assert detect_language("snippet") == "javascript"
    assert detect_language("notes.txt") == "javascript"


def test_settings_defaults(monkeypatch) -> None:
    for name in (
        "FLOWCANVAS_SESSION_TTL_S",
        "FLOWCANVAS_MAX_SESSIONS",
        "FLOWCANVAS_MAX_QUEUE_DEPTH",
        "FLOWCANVAS_SWEEP_INTERVAL_S",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = CorrelatorSettings.from_env()
    assert settings.session_ttl_s == SESSION_TIMEOUT_S
    assert settings.max_sessions == MAX_SESSIONS
    assert settings.max_queue_depth == MAX_QUEUE_DEPTH
    assert settings.channel_capacity > MAX_QUEUE_DEPTH


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("FLOWCANVAS_SESSION_TTL_S", "30.5")
    monkeypatch.setenv("FLOWCANVAS_MAX_SESSIONS", "7")
    monkeypatch.setenv("FLOWCANVAS_MAX_QUEUE_DEPTH", "not-a-number")
    monkeypatch.setenv("FLOWCANVAS_SWEEP_INTERVAL_S", "")
    settings = CorrelatorSettings.from_env()
    assert settings.session_ttl_s == 30.5
    assert settings.max_sessions == 7
    assert settings.max_queue_depth == MAX_QUEUE_DEPTH
    assert settings.sweep_interval_s == CorrelatorSettings().sweep_interval_s
