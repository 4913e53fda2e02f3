# FILE: exam_engine/services/scoring.py
"""
Score and aggregate a submitted attempt

Shared by manual submit and timer auto-submit. The attempt update and the
paper statistics are written in one transaction; timer cleanup and rank
cache invalidation run only after it commits.
"""
import logging
from typing import Any, Dict

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from exam_engine.db import utcnow
from exam_engine.errors import EXAM_NOT_FOUND, EXAM_NOT_ONGOING, BadRequestError, InternalError, NotFoundError
from exam_engine.models.orm import TERMINAL_STATUSES, AttemptStatus, ExamAttempt, Paper, StudentAnswer
from exam_engine.services.rank_cache import RankCache
from exam_engine.services.serializers import attempt_to_dict
from exam_engine.services.telemetry import record_event
from exam_engine.services.timer_store import TimerStore

logger = logging.getLogger(__name__)


class ScoringService:
    """Final scoring transaction for exam attempts"""

    def __init__(self, session_factory: sessionmaker, timer_store: TimerStore, rank_cache: RankCache):
        self.session_factory = session_factory
        self.timer_store = timer_store
        self.rank_cache = rank_cache

    def calculate_and_submit(self, attempt_id: str, is_auto_submit: bool = False) -> Dict[str, Any]:
        """
        Recompute the attempt's score, make it terminal and refresh the paper's
        aggregates atomically.

        Raises:
            NotFoundError: attempt does not exist
            BadRequestError: attempt is no longer ONGOING (lost a submit race)
            InternalError: the transaction could not be committed
        """
        now = utcnow()
        status = AttemptStatus.AUTO_SUBMITTED if is_auto_submit else AttemptStatus.SUBMITTED

        try:
            with self.session_factory() as session, session.begin():
                attempt = session.get(ExamAttempt, attempt_id)
                if attempt is None:
                    raise NotFoundError(EXAM_NOT_FOUND)

                answers = session.scalars(
                    select(StudentAnswer).where(StudentAnswer.attempt_id == attempt_id)
                ).all()
                total_score = sum(a.marks_obtained or 0.0 for a in answers if a.is_answered)
                percentage = (total_score / attempt.total_marks * 100) if attempt.total_marks > 0 else 0.0
                time_spent = int((now - attempt.started_at).total_seconds())

                result = session.execute(
                    update(ExamAttempt)
                    .where(ExamAttempt.id == attempt_id, ExamAttempt.status == AttemptStatus.ONGOING)
                    .values(
                        status=status,
                        submitted_at=now,
                        total_score=total_score,
                        percentage=percentage,
                        time_spent=time_spent
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise BadRequestError(EXAM_NOT_ONGOING)

                # Serialize aggregate refreshes for the same paper
                session.execute(select(Paper.id).where(Paper.id == attempt.paper_id).with_for_update())
                total_attempts, average_score = session.execute(
                    select(func.count(ExamAttempt.id), func.avg(ExamAttempt.total_score))
                    .where(ExamAttempt.paper_id == attempt.paper_id, ExamAttempt.status.in_(TERMINAL_STATUSES))
                ).one()
                session.execute(
                    update(Paper)
                    .where(Paper.id == attempt.paper_id)
                    .values(total_attempts=total_attempts, average_score=float(average_score or 0.0))
                    .execution_options(synchronize_session=False)
                )

                session.refresh(attempt)
                submitted = attempt_to_dict(attempt)
        except (NotFoundError, BadRequestError):
            raise
        except SQLAlchemyError as e:
            logger.error(f"Scoring transaction failed for attempt {attempt_id}: {e}", exc_info=True)
            raise InternalError("Failed to submit exam, please retry") from e

        logger.info(
            f"Attempt {attempt_id} {status.value}: score={total_score}/{submitted['total_marks']} "
            f"time_spent={time_spent}s"
        )
        record_event(
            "exam_submitted",
            attempt_id=attempt_id,
            paper_id=submitted["paper_id"],
            auto=is_auto_submit,
            percentage=round(percentage, 2)
        )

        self._after_commit(attempt_id)
        return submitted

    def _after_commit(self, attempt_id: str):
        try:
            self.timer_store.delete(attempt_id)
        except Exception as e:
            logger.warning(f"Failed to clear timer for attempt {attempt_id}: {e}")

        try:
            self.rank_cache.invalidate_all()
        except Exception as e:
            logger.error(f"Failed to invalidate rankings cache: {e}")
