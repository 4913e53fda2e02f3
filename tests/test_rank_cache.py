# FILE: tests/test_rank_cache.py
"""
Rank caching, invalidation and percentile computation
"""
import pytest
import redis
from sqlalchemy.exc import OperationalError

from exam_engine.grading.policies import AnswerSubmission
from exam_engine.services.exam_service import ExamService
from exam_engine.services.rank_cache import RankCache, percentile_from_rank
from exam_engine.services.timer_store import TimerStore


def _finish(exam_service, seed, student_id, selected_option):
    attempt_id = exam_service.start_exam(seed.timed_paper_id, student_id)["attempt_id"]
    exam_service.save_answer(
        attempt_id, student_id, seed.questions["mcq"], AnswerSubmission(selected_option=selected_option)
    )
    exam_service.save_answer(attempt_id, student_id, seed.questions["blanks"], AnswerSubmission("Paris|Seine"))
    return exam_service.submit_exam(attempt_id, student_id)


@pytest.mark.parametrize("rank, total, expected", [
    (1, 1, 100),
    (1, 2, 50),
    (2, 2, 0),
    (1, 4, 75),
    (3, 8, 63),
    (0, 5, 0),
    (1, 0, 0),
])
def test_percentile_from_rank(rank, total, expected):
    assert percentile_from_rank(rank, total) == expected


def test_student_without_terminal_attempts_is_unranked(rank_cache, seed, kv):
    assert rank_cache.get_rank(seed.student_id) == 0
    assert kv.get(rank_cache.key_for(seed.student_id)) is None


def test_single_student_is_at_the_top(exam_service, rank_cache, seed):
    _finish(exam_service, seed, seed.student_id, selected_option=1)

    assert rank_cache.get_standing(seed.student_id) == {"rank": 1, "total_students": 1, "percentile": 100}


def test_rank_is_computed_once_then_served_from_cache(exam_service, rank_cache, seed, kv):
    _finish(exam_service, seed, seed.student_id, selected_option=1)
    _finish(exam_service, seed, seed.other_student_id, selected_option=0)

    assert rank_cache.get_rank(seed.other_student_id) == 2
    assert kv.get(rank_cache.key_for(seed.other_student_id)) == "2"

    kv.set_with_ttl(rank_cache.key_for(seed.other_student_id), "7", 60)
    assert rank_cache.get_rank(seed.other_student_id) == 7


def test_submission_invalidates_every_cached_rank(exam_service, rank_cache, seed, kv):
    _finish(exam_service, seed, seed.other_student_id, selected_option=0)
    assert rank_cache.get_rank(seed.other_student_id) == 1

    _finish(exam_service, seed, seed.student_id, selected_option=1)

    assert kv.get(rank_cache.key_for(seed.other_student_id)) is None
    assert rank_cache.get_rank(seed.other_student_id) == 2
    assert rank_cache.get_rank(seed.student_id) == 1


def test_unreadable_cache_entry_is_recomputed(exam_service, rank_cache, seed, kv):
    _finish(exam_service, seed, seed.student_id, selected_option=1)
    kv.set_with_ttl(rank_cache.key_for(seed.student_id), "not-a-number", 60)

    assert rank_cache.get_rank(seed.student_id) == 1


class UnreachableKeyValueStore:
    """Every call fails the way redis-py does when the server is down"""

    def _down(self, *args, **kwargs):
        raise redis.ConnectionError("Error 111 connecting to cache:6379. Connection refused.")

    set_with_ttl = get = delete = scan = delete_pattern = _down


@pytest.fixture
def cacheless_service(session_factory, grader):
    kv = UnreachableKeyValueStore()
    rank_cache = RankCache(kv, session_factory)
    service = ExamService(
        session_factory=session_factory,
        grader=grader,
        timer_store=TimerStore(kv),
        rank_cache=rank_cache
    )
    return service, rank_cache


def test_unreachable_cache_never_fails_submit_or_rank(cacheless_service, seed):
    service, rank_cache = cacheless_service

    submitted = _finish(service, seed, seed.student_id, selected_option=1)

    assert submitted["status"] == "SUBMITTED"
    assert rank_cache.get_rank(seed.student_id) == 1
    assert rank_cache.get_standing(seed.student_id) == {"rank": 1, "total_students": 1, "percentile": 100}


def test_database_error_during_rank_lookup_degrades_to_unranked(rank_cache, seed, monkeypatch):
    def broken_session():
        raise OperationalError("SELECT count(exam_attempts.id)", {}, Exception("database is locked"))

    monkeypatch.setattr(rank_cache, "session_factory", broken_session)

    assert rank_cache.get_rank(seed.student_id) == 0
    assert rank_cache.get_standing(seed.student_id)["rank"] == 0
