# FILE: exam_engine/jobs/timer_sweep.py
"""
Background sweep that auto-submits attempts whose deadline has passed

Runs as an asyncio task started from the app lifespan. Each iteration runs
its blocking work in a worker thread; a failed iteration is logged and the
loop continues.
"""
import asyncio
import logging
from typing import Optional

from exam_engine.config import get_settings
from exam_engine.services.exam_service import ExamService, get_exam_service
from exam_engine.services.telemetry import record_event
from exam_engine.services.timer_store import TimerStore, get_timer_store

logger = logging.getLogger(__name__)


class TimerSweeper:
    """Finds expired timer records and forces submission of their attempts"""

    def __init__(self, timer_store: TimerStore, exam_service: ExamService, interval_seconds: float = 10.0):
        self.timer_store = timer_store
        self.exam_service = exam_service
        self.interval_seconds = interval_seconds

    def sweep_once(self, at_ms: Optional[int] = None) -> int:
        """
        Process every expired timer once.

        Returns the number of attempts that were auto-submitted. A record is
        removed only after its auto-submit ran, so a failed submit is retried
        on the next sweep; auto-submit itself ignores attempts that are
        already terminal or gone.
        """
        submitted = 0
        expired = 0

        for key in self.timer_store.keys():
            try:
                record = self.timer_store.load(key)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Dropping unreadable timer record {key}: {e}")
                self.timer_store.delete_key(key)
                continue

            if record is None or not record.is_expired(at_ms):
                continue

            expired += 1
            try:
                result = self.exam_service.auto_submit_exam(record.attempt_id, record.student_id)
            except Exception as e:
                logger.error(f"Auto-submit failed for attempt {record.attempt_id}: {e}", exc_info=True)
                continue

            self.timer_store.delete_key(key)
            if result is not None:
                submitted += 1

        if expired:
            logger.info(f"Timer sweep: {expired} expired, {submitted} auto-submitted")
            record_event("timer_sweep", expired=expired, auto_submitted=submitted)
        return submitted

    async def run_forever(self):
        logger.info(f"Exam timer sweep started (interval={self.interval_seconds}s)")
        try:
            while True:
                try:
                    await asyncio.to_thread(self.sweep_once)
                except Exception as e:
                    logger.error(f"Exam timer sweep error: {e}", exc_info=True)
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Exam timer sweep stopped")
            raise

    def start(self) -> asyncio.Task:
        return asyncio.create_task(self.run_forever(), name="exam-timer-sweep")


def build_timer_sweeper() -> TimerSweeper:
    return TimerSweeper(
        timer_store=get_timer_store(),
        exam_service=get_exam_service(),
        interval_seconds=get_settings().sweep_interval_seconds
    )
