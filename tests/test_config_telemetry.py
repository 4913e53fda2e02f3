# FILE: tests/test_config_telemetry.py
"""
Settings validation and telemetry events
"""
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from exam_engine.config import Settings, reload_settings
from exam_engine.services.telemetry import get_telemetry_summary, record_event, reset_telemetry


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("TIMER_GRACE_SECONDS", "5")
    monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")

    settings = reload_settings()

    assert settings.environment == "test"
    assert settings.timer_grace_seconds == 5
    assert settings.sweep_interval_seconds == 2.5
    assert settings.redis_url == "redis://cache:6379/0"
    assert settings.sweep_enabled is False


@pytest.mark.parametrize("overrides", [
    {"SWEEP_INTERVAL_SECONDS": 0},
    {"TIMER_GRACE_SECONDS": -1},
    {"ENVIRONMENT": "staging"},
])
def test_settings_validation(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_record_event_writes_daily_jsonl(settings):
    record_event("exam_started", attempt_id="a1", paper_id="p1")

    files = list((Path(settings.logs_dir) / "telemetry").glob("events-*.jsonl"))
    assert len(files) == 1
    line = json.loads(files[0].read_text(encoding="utf-8").strip())
    assert line["event"] == "exam_started"
    assert line["attempt_id"] == "a1"

    summary = get_telemetry_summary()
    assert summary["counters_in_memory"] == {"exam_started": 1}
    assert summary["recent_events"][-1]["paper_id"] == "p1"


def test_disabled_telemetry_records_nothing(monkeypatch):
    monkeypatch.setenv("TELEMETRY_ENABLED", "false")
    reload_settings()
    reset_telemetry()

    record_event("exam_started", attempt_id="a1")

    assert get_telemetry_summary()["total_events_in_memory"] == 0
