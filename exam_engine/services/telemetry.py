# FILE: exam_engine/services/telemetry.py
"""
Telemetry for exam lifecycle and grading events (daily JSONL)

- Appends summary-only events to {LOGS_DIR}/telemetry/events-YYYY-MM-DD.jsonl
- Keeps a small in-memory tail and per-event counters for /metrics/summary
- Never raises into the caller; write failures are logged
"""
from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict

from exam_engine.config import get_settings

logger = logging.getLogger(__name__)

_MAX_IN_MEMORY_EVENTS = 200
_recent_events: Deque[Dict[str, Any]] = deque(maxlen=_MAX_IN_MEMORY_EVENTS)
_counters: Dict[str, int] = defaultdict(int)
_write_lock = threading.Lock()


def _telemetry_dir() -> Path:
    d = Path(get_settings().logs_dir) / "telemetry"
    d.mkdir(parents=True, exist_ok=True)
    return d


def _event_file_path(now_utc: datetime) -> Path:
    return _telemetry_dir() / f"events-{now_utc.date().isoformat()}.jsonl"


def init_telemetry() -> None:
    """Initialize telemetry (create dirs)."""
    settings = get_settings()
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled")
        return

    _telemetry_dir()
    logger.info(f"Telemetry initialized (dir={settings.logs_dir})")


def record_event(event: str, **fields: Any) -> None:
    """Record telemetry event (summary-only)."""
    if not get_settings().telemetry_enabled:
        return

    now_utc = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {"ts": now_utc.isoformat(), "event": event, **fields}

    _recent_events.append(payload)
    _counters[event] += 1

    try:
        path = _event_file_path(now_utc)
        line = json.dumps(payload, ensure_ascii=False, default=str)
        with _write_lock, open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError as e:
        logger.warning(f"Failed to write telemetry event {event}: {e}")


def get_telemetry_summary() -> Dict[str, Any]:
    """
    Lightweight summary (does NOT scan JSONL files).
    """
    return {
        "enabled": get_settings().telemetry_enabled,
        "total_events_in_memory": len(_recent_events),
        "counters_in_memory": dict(_counters),
        "recent_events": list(_recent_events)[-10:],
    }


def reset_telemetry() -> None:
    """Clear in-memory state (tests)"""
    _recent_events.clear()
    _counters.clear()
