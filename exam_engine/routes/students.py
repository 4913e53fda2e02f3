# FILE: exam_engine/routes/students.py
"""
Student dashboard endpoints
"""
import logging

from fastapi import APIRouter, Depends

from exam_engine.routes.deps import Caller, require_student
from exam_engine.services.rank_cache import RankCache, get_rank_cache

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/me/standing")
def get_my_standing(
    caller: Caller = Depends(require_student),
    rank_cache: RankCache = Depends(get_rank_cache)
):
    """Rank and percentile over submitted attempts (rank 0 = not ranked yet)"""
    return {
        "status": "success",
        "student_id": caller.user_id,
        **rank_cache.get_standing(caller.user_id)
    }
