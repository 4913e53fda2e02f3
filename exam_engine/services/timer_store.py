# FILE: exam_engine/services/timer_store.py
"""
Exam deadline records kept outside the request lifecycle
"""
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import List, Optional

from exam_engine.config import get_settings
from exam_engine.services.kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

TIMER_PREFIX = "timer:"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TimerRecord:
    attempt_id: str
    paper_id: str
    student_id: str
    end_time: int  # epoch ms

    def is_expired(self, at_ms: Optional[int] = None) -> bool:
        return (now_ms() if at_ms is None else at_ms) >= self.end_time

    def seconds_remaining(self, at_ms: Optional[int] = None) -> int:
        remaining_ms = self.end_time - (now_ms() if at_ms is None else at_ms)
        # ceil division, as the countdown shown to students rounds up
        return -(-remaining_ms // 1000)


class TimerStore:
    """Timer records keyed by "timer:<attempt_id>" with automatic expiry"""

    def __init__(self, kv: KeyValueStore, grace_seconds: int = 60):
        self.kv = kv
        self.grace_seconds = grace_seconds

    @staticmethod
    def key_for(attempt_id: str) -> str:
        return f"{TIMER_PREFIX}{attempt_id}"

    def start(
        self,
        attempt_id: str,
        paper_id: str,
        student_id: str,
        duration_minutes: int,
        started_at_ms: Optional[int] = None
    ) -> TimerRecord:
        """Register a deadline duration_minutes after started_at_ms (default: now)"""
        current = now_ms()
        record = TimerRecord(
            attempt_id=attempt_id,
            paper_id=paper_id,
            student_id=student_id,
            end_time=(current if started_at_ms is None else started_at_ms) + duration_minutes * 60 * 1000
        )
        remaining_seconds = max(0, -(-(record.end_time - current) // 1000))
        self.put(record, ttl_seconds=remaining_seconds + max(1, self.grace_seconds))
        logger.debug(f"Timer set: attempt={attempt_id} duration={duration_minutes}m")
        return record

    def put(self, record: TimerRecord, ttl_seconds: int):
        self.kv.set_with_ttl(self.key_for(record.attempt_id), json.dumps(asdict(record)), ttl_seconds)

    def get(self, attempt_id: str) -> Optional[TimerRecord]:
        """Absent (or expired) means no active deadline"""
        return self.load(self.key_for(attempt_id))

    def load(self, key: str) -> Optional[TimerRecord]:
        raw = self.kv.get(key)
        if raw is None:
            return None
        data = json.loads(raw)
        return TimerRecord(
            attempt_id=data["attempt_id"],
            paper_id=data["paper_id"],
            student_id=data["student_id"],
            end_time=int(data["end_time"])
        )

    def delete(self, attempt_id: str):
        self.kv.delete(self.key_for(attempt_id))

    def delete_key(self, key: str):
        self.kv.delete(key)

    def keys(self) -> List[str]:
        return self.kv.scan(f"{TIMER_PREFIX}*")


_timer_store: Optional[TimerStore] = None


def get_timer_store() -> TimerStore:
    """Get or create global timer store"""
    global _timer_store
    if _timer_store is None:
        _timer_store = TimerStore(get_kv_store(), grace_seconds=get_settings().timer_grace_seconds)
    return _timer_store
