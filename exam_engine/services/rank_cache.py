# FILE: exam_engine/services/rank_cache.py
"""
Student rank cache with lazy recomputation

Ranks are cached per student under "student:<id>:rank" with a TTL and
wiped system-wide after every submission. Cache trouble is never surfaced
to callers: a failed read behaves like a miss.
"""
import logging
import math
from typing import Any, Dict, List, Optional

import redis
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from exam_engine.config import get_settings
from exam_engine.db import get_session_factory
from exam_engine.models.orm import TERMINAL_STATUSES, ExamAttempt
from exam_engine.services.kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

RANK_KEY_PATTERN = "student:*:rank"


def percentile_from_rank(rank: int, total: int) -> int:
    """Share of ranked students placed below this rank, in [0, 100]"""
    if total == 1:
        return 100
    if total <= 0 or rank <= 0:
        return 0
    # Halves round up
    percentile = int(math.floor((total - rank) / total * 100 + 0.5))
    return max(0, min(100, percentile))


class RankCache:
    """Rank lookups backed by the key/value store and the attempts table"""

    def __init__(self, kv: KeyValueStore, session_factory: sessionmaker, ttl_seconds: int = 3600):
        self.kv = kv
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(student_id: str) -> str:
        return f"student:{student_id}:rank"

    def _read_cached(self, student_id: str) -> int:
        try:
            cached = self.kv.get(self.key_for(student_id))
            return int(cached) if cached else 0
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Rank cache read failed for {student_id} (continuing without cache): {e}")
            return 0

    def ranking(self) -> List[str]:
        """Student ids ordered by mean percentage over terminal attempts, best first"""
        avg_percentage = func.avg(ExamAttempt.percentage)
        stmt = (
            select(ExamAttempt.student_id)
            .where(ExamAttempt.status.in_(TERMINAL_STATUSES))
            .group_by(ExamAttempt.student_id)
            .order_by(avg_percentage.desc(), ExamAttempt.student_id)
        )
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def has_terminal_attempt(self, student_id: str) -> bool:
        stmt = (
            select(func.count(ExamAttempt.id))
            .where(ExamAttempt.student_id == student_id, ExamAttempt.status.in_(TERMINAL_STATUSES))
        )
        with self.session_factory() as session:
            return (session.scalar(stmt) or 0) > 0

    def compute_and_cache(self, student_id: str) -> int:
        try:
            ranking = self.ranking()
        except SQLAlchemyError as e:
            logger.error(f"Error calculating rank for {student_id}: {e}")
            return 0

        rank = ranking.index(student_id) + 1 if student_id in ranking else 0
        if rank:
            try:
                self.kv.set_with_ttl(self.key_for(student_id), str(rank), self.ttl_seconds)
            except redis.RedisError as e:
                logger.warning(f"Rank cache write failed for {student_id}: {e}")
        return rank

    def get_rank(self, student_id: str) -> int:
        rank = self._read_cached(student_id)
        if rank:
            return rank
        try:
            ranked = self.has_terminal_attempt(student_id)
        except SQLAlchemyError as e:
            logger.error(f"Error checking attempts of {student_id} for ranking: {e}")
            return 0
        return self.compute_and_cache(student_id) if ranked else 0

    def get_standing(self, student_id: str) -> Dict[str, Any]:
        """Rank, ranked population and percentile for dashboards"""
        rank = self.get_rank(student_id)
        total = len(self.ranking()) if rank else 0
        return {
            "rank": rank,
            "total_students": total,
            "percentile": percentile_from_rank(rank, total)
        }

    def invalidate_all(self) -> int:
        """Drop every cached rank so the next read recomputes"""
        removed = self.kv.delete_pattern(RANK_KEY_PATTERN)
        logger.debug(f"Invalidated {removed} cached ranks")
        return removed


_rank_cache: Optional[RankCache] = None


def get_rank_cache() -> RankCache:
    """Get or create global rank cache"""
    global _rank_cache
    if _rank_cache is None:
        _rank_cache = RankCache(
            get_kv_store(),
            get_session_factory(),
            ttl_seconds=get_settings().rank_cache_ttl_seconds
        )
    return _rank_cache
