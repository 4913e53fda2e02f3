# FILE: tests/conftest.py

import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Keep settings side effects (dirs, DB file) out of the working tree
_test_home = Path(tempfile.mkdtemp(prefix="exam_engine_tests_"))
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATA_DIR", str(_test_home / "data"))
os.environ.setdefault("LOGS_DIR", str(_test_home / "logs"))
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SWEEP_ENABLED"] = "false"
os.environ["AI_GRADING_ENABLED"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from exam_engine.config import reload_settings
from exam_engine.db import build_session_factory, init_db
from exam_engine.grading.ai_client import AIGradingFailure, AIOutcome, FailureKind
from exam_engine.grading.policies import AnswerGrader
from exam_engine.models.orm import (
    Paper, PaperPurchase, PaperStatus, PaperType, Question, QuestionType, User, UserRole
)
from exam_engine.services.exam_service import ExamService
from exam_engine.services.kv_store import MemoryKeyValueStore
from exam_engine.services.rank_cache import RankCache
from exam_engine.services.telemetry import reset_telemetry
from exam_engine.services.timer_store import TimerStore


class ScriptedEvaluator:
    """Returns queued AI outcomes in order; UNAVAILABLE once the queue is empty"""

    def __init__(self):
        self.outcomes: List[AIOutcome] = []
        self.calls: List[Tuple[str, str, float]] = []

    def queue(self, outcome: AIOutcome):
        self.outcomes.append(outcome)

    def evaluate(self, reference_solution: str, student_answer: str, max_marks: float) -> AIOutcome:
        self.calls.append((reference_solution, student_answer, max_marks))
        if self.outcomes:
            return self.outcomes.pop(0)
        return AIGradingFailure(FailureKind.UNAVAILABLE, "no scripted outcome")


class RecordingNotifier:
    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    def notify(self, subject: str, message: str):
        self.messages.append((subject, message))


@dataclass
class Seed:
    student_id: str
    other_student_id: str
    teacher_id: str
    timed_paper_id: str
    open_paper_id: str
    paid_paper_id: str
    draft_paper_id: str
    questions: Dict[str, str]


@pytest.fixture(autouse=True)
def settings(tmp_path, monkeypatch):
    """Fresh settings per test, with telemetry written under tmp_path"""
    monkeypatch.setenv("LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    reset_telemetry()
    return reload_settings()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def timer_store(kv):
    return TimerStore(kv, grace_seconds=60)


@pytest.fixture
def rank_cache(kv, session_factory):
    return RankCache(kv, session_factory, ttl_seconds=3600)


@pytest.fixture
def evaluator():
    return ScriptedEvaluator()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def grader(evaluator, notifier):
    return AnswerGrader(evaluator, notifier)


@pytest.fixture
def exam_service(session_factory, grader, timer_store, rank_cache):
    return ExamService(
        session_factory=session_factory,
        grader=grader,
        timer_store=timer_store,
        rank_cache=rank_cache
    )


@pytest.fixture
def seed(session_factory) -> Seed:
    """
    Two students, a teacher and four papers:
    - timed: free, 30 minutes, MCQ / keyed blanks / free blank / open text (6 marks)
    - open: free, no time limit, one 4-mark MCQ
    - paid: price 99, 10 minutes, one MCQ
    - draft: unpublished
    """
    with session_factory() as session:
        student = User(name="Asha", email="asha@example.com", role=UserRole.STUDENT)
        other = User(name="Ravi", email="ravi@example.com", role=UserRole.STUDENT)
        teacher = User(name="Meera", email="meera@example.com", role=UserRole.TEACHER)

        timed = Paper(
            title="Physics Mock 1", status=PaperStatus.PUBLISHED, price=0,
            type=PaperType.TIME_BOUND, duration=30
        )
        mcq = Question(
            paper=timed, order=0, type=QuestionType.MCQ, question_text="2 + 2 = ?",
            options=["3", "4", "5", "6"], correct_option=1, marks=1, difficulty="EASY"
        )
        blanks = Question(
            paper=timed, order=1, type=QuestionType.FILL_IN_THE_BLANKS,
            question_text="The capital of France is ___ and its river is ___.",
            options=[["Paris"], ["Seine"]], marks=2, difficulty="MEDIUM"
        )
        free_blank = Question(
            paper=timed, order=2, type=QuestionType.FILL_IN_THE_BLANKS,
            question_text="Name any noble gas: ___", options=None, marks=1, difficulty="MEDIUM"
        )
        text = Question(
            paper=timed, order=3, type=QuestionType.TEXT, question_text="State Newton's second law.",
            solution_text="force equals mass times acceleration", marks=2, difficulty="HARD"
        )

        open_paper = Paper(title="Practice Set", status=PaperStatus.PUBLISHED, type=PaperType.NO_LIMIT)
        open_mcq = Question(
            paper=open_paper, order=0, type=QuestionType.MCQ, question_text="Largest planet?",
            options=["Jupiter", "Mars"], correct_option=0, marks=4
        )

        paid = Paper(
            title="Premium Mock", status=PaperStatus.PUBLISHED, price=99,
            type=PaperType.TIME_BOUND, duration=10
        )
        paid_mcq = Question(
            paper=paid, order=0, type=QuestionType.MCQ, question_text="H2O is?",
            options=["Water", "Salt"], correct_option=0, marks=1
        )

        draft = Paper(title="Unreleased", status=PaperStatus.DRAFT, type=PaperType.NO_LIMIT)

        session.add_all([
            student, other, teacher, timed, mcq, blanks, free_blank, text,
            open_paper, open_mcq, paid, paid_mcq, draft
        ])
        session.commit()

        return Seed(
            student_id=student.id,
            other_student_id=other.id,
            teacher_id=teacher.id,
            timed_paper_id=timed.id,
            open_paper_id=open_paper.id,
            paid_paper_id=paid.id,
            draft_paper_id=draft.id,
            questions={
                "mcq": mcq.id,
                "blanks": blanks.id,
                "free_blank": free_blank.id,
                "text": text.id,
                "open_mcq": open_mcq.id,
                "paid_mcq": paid_mcq.id,
            }
        )


@pytest.fixture
def purchase(session_factory):
    def _purchase(paper_id: str, student_id: str):
        with session_factory() as session:
            session.add(PaperPurchase(paper_id=paper_id, student_id=student_id))
            session.commit()
    return _purchase
