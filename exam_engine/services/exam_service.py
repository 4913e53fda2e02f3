# FILE: exam_engine/services/exam_service.py
"""
Exam attempt lifecycle: start/resume, navigation, answers, submission

ONGOING -> SUBMITTED (student) or ONGOING -> AUTO_SUBMITTED (timer sweep).
Both end states are terminal. All session state lives in the database and
the timer store; the service itself is stateless.
"""
import logging
from datetime import timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from exam_engine.db import get_session_factory
from exam_engine.errors import (
    EXAM_NOT_FOUND, EXAM_NOT_ONGOING, PAPER_NOT_FOUND, QUESTION_NOT_FOUND,
    BadRequestError, ForbiddenError, NotFoundError
)
from exam_engine.grading.ai_client import get_ai_grader
from exam_engine.grading.policies import AnswerGrader, AnswerSubmission, GradeResult, answer_key_for
from exam_engine.models.exam import StartExamRequest
from exam_engine.models.orm import (
    AttemptStatus, Doubt, ExamAttempt, Paper, PaperPurchase, PaperStatus,
    PaperType, Question, QuestionType, StudentAnswer, User, UserRole
)
from exam_engine.services.notifier import get_admin_notifier
from exam_engine.services.rank_cache import RankCache, get_rank_cache
from exam_engine.services.scoring import ScoringService
from exam_engine.services.serializers import answer_to_dict, attempt_to_dict, public_question_dict
from exam_engine.services.telemetry import record_event
from exam_engine.services.timer_store import TimerStore, get_timer_store

logger = logging.getLogger(__name__)

MAX_DOUBT_LENGTH = 2000


class ExamService:
    """State machine for student exam attempts"""

    def __init__(
        self,
        session_factory: sessionmaker,
        grader: AnswerGrader,
        timer_store: TimerStore,
        rank_cache: RankCache
    ):
        self.session_factory = session_factory
        self.grader = grader
        self.timer_store = timer_store
        self.rank_cache = rank_cache
        self.scoring = ScoringService(session_factory, timer_store, rank_cache)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _owned_attempt(
        session: Session,
        attempt_id: str,
        student_id: str,
        for_update: bool = False
    ) -> ExamAttempt:
        """Foreign attempts are reported as missing so their existence does not leak"""
        attempt = session.get(ExamAttempt, attempt_id, with_for_update=for_update)
        if attempt is None or attempt.student_id != student_id:
            raise NotFoundError(EXAM_NOT_FOUND)
        return attempt

    @staticmethod
    def _require_ongoing(attempt: ExamAttempt):
        if attempt.status != AttemptStatus.ONGOING:
            raise BadRequestError(EXAM_NOT_ONGOING)

    @staticmethod
    def _ensure_still_ongoing(session: Session, attempt_id: str):
        """Re-read the stored status inside the write transaction, bypassing the identity map"""
        status = session.scalar(select(ExamAttempt.status).where(ExamAttempt.id == attempt_id))
        if status != AttemptStatus.ONGOING:
            raise BadRequestError(EXAM_NOT_ONGOING)

    @staticmethod
    def _find_ongoing(session: Session, paper_id: str, student_id: str) -> Optional[ExamAttempt]:
        return session.scalar(
            select(ExamAttempt).where(
                ExamAttempt.paper_id == paper_id,
                ExamAttempt.student_id == student_id,
                ExamAttempt.status == AttemptStatus.ONGOING
            )
        )

    @staticmethod
    def _find_answer(session: Session, attempt_id: str, question_id: str) -> Optional[StudentAnswer]:
        return session.scalar(
            select(StudentAnswer).where(
                StudentAnswer.attempt_id == attempt_id,
                StudentAnswer.question_id == question_id
            )
        )

    @staticmethod
    def _paper_question(session: Session, attempt: ExamAttempt, question_id: str) -> Question:
        question = session.get(Question, question_id)
        if question is None or question.paper_id != attempt.paper_id:
            raise NotFoundError(QUESTION_NOT_FOUND)
        return question

    def _arm_timer(self, attempt: ExamAttempt, paper: Paper):
        """Write the deadline for time-bound attempts; re-arms a lost record on resume"""
        if paper.type != PaperType.TIME_BOUND or not paper.duration or attempt.no_time_limit:
            return
        try:
            if self.timer_store.get(attempt.id) is not None:
                return
            started_at_ms = int(attempt.started_at.replace(tzinfo=timezone.utc).timestamp() * 1000)
            self.timer_store.start(
                attempt_id=attempt.id,
                paper_id=paper.id,
                student_id=attempt.student_id,
                duration_minutes=paper.duration,
                started_at_ms=started_at_ms
            )
        except Exception as e:
            # Next resume re-arms; the attempt itself is already committed
            logger.error(f"Failed to set timer for attempt {attempt.id}: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_exam(
        self,
        paper_id: str,
        student_id: str,
        settings: Optional[StartExamRequest] = None
    ) -> Dict[str, Any]:
        """Create a new attempt, or return the student's ONGOING one unchanged"""
        settings = settings or StartExamRequest()

        with self.session_factory() as session:
            student = session.get(User, student_id)
            if student is None:
                raise NotFoundError("Student not found. Please log in again.")
            if student.role != UserRole.STUDENT:
                raise ForbiddenError("Only students can start exams")

            paper = session.get(Paper, paper_id)
            if paper is None or paper.status != PaperStatus.PUBLISHED:
                raise NotFoundError(PAPER_NOT_FOUND)

            # Free papers (price null or 0) are always accessible
            if paper.price and paper.price > 0:
                purchase = session.scalar(
                    select(PaperPurchase).where(
                        PaperPurchase.paper_id == paper_id,
                        PaperPurchase.student_id == student_id
                    )
                )
                if purchase is None:
                    raise ForbiddenError("Paper not purchased")

            existing = self._find_ongoing(session, paper_id, student_id)
            if existing is not None:
                logger.info(f"Resuming attempt {existing.id} for student {student_id}")
                self._arm_timer(existing, paper)
                return attempt_to_dict(existing)

            previous = session.scalar(
                select(func.count(ExamAttempt.id)).where(
                    ExamAttempt.paper_id == paper_id,
                    ExamAttempt.student_id == student_id
                )
            ) or 0

            attempt = ExamAttempt(
                paper_id=paper_id,
                student_id=student_id,
                status=AttemptStatus.ONGOING,
                total_marks=sum((q.marks or 1) for q in paper.questions),
                attempt_number=previous + 1,
                no_time_limit=settings.no_time_limit,
                show_answer_after_wrong=settings.show_answer_after_wrong,
                enable_solution_view=settings.enable_solution_view
            )
            session.add(attempt)
            try:
                session.commit()
            except IntegrityError:
                # Concurrent start won the ONGOING slot
                session.rollback()
                existing = self._find_ongoing(session, paper_id, student_id)
                if existing is None:
                    raise
                return attempt_to_dict(existing)

            self._arm_timer(attempt, paper)
            result = attempt_to_dict(attempt)

        logger.info(
            f"Started attempt {result['attempt_id']} (#{result['attempt_number']}) "
            f"paper={paper_id} student={student_id}"
        )
        record_event("exam_started", attempt_id=result["attempt_id"], paper_id=paper_id)
        return result

    def get_question(self, attempt_id: str, student_id: str, question_index: int) -> Dict[str, Any]:
        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)
            self._require_ongoing(attempt)

            questions = attempt.paper.questions
            if question_index < 0 or question_index >= len(questions):
                raise BadRequestError("Invalid question index")

            question = questions[question_index]
            answer = self._find_answer(session, attempt_id, question.id)

            return {
                **public_question_dict(question),
                "student_answer": answer_to_dict(answer),
                "question_number": question_index + 1,
                "total_questions": len(questions),
            }

    def save_answer(
        self,
        attempt_id: str,
        student_id: str,
        question_id: str,
        submission: AnswerSubmission
    ) -> Dict[str, Any]:
        """Grade the submission and upsert the (attempt, question) answer row"""
        has_text = submission.answer_text is not None and submission.answer_text.strip() != ""
        if not has_text and submission.selected_option is None:
            raise BadRequestError("Either answer_text or selected_option must be provided")

        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)
            self._require_ongoing(attempt)
            key = answer_key_for(self._paper_question(session, attempt, question_id))

        # Graded outside any transaction; the AI call may take a while
        grade = self.grader.grade(key, submission)

        with self.session_factory() as session:
            # Row lock: a concurrent submit either commits first or waits for this write
            attempt = self._owned_attempt(session, attempt_id, student_id, for_update=True)
            self._require_ongoing(attempt)

            answer = self._find_answer(session, attempt_id, question_id)
            if answer is None:
                answer = StudentAnswer(attempt_id=attempt_id, question_id=question_id, student_id=student_id)
                session.add(answer)
            self._apply_grade(answer, submission, grade)
            self._ensure_still_ongoing(session, attempt_id)

            try:
                session.commit()
            except IntegrityError:
                # Another request created the row first; last write wins
                session.rollback()
                self._owned_attempt(session, attempt_id, student_id, for_update=True)
                self._ensure_still_ongoing(session, attempt_id)
                answer = self._find_answer(session, attempt_id, question_id)
                self._apply_grade(answer, submission, grade)
                session.commit()

            result = answer_to_dict(answer)

        if grade.feedback:
            result["feedback"] = grade.feedback
        return result

    @staticmethod
    def _apply_grade(answer: StudentAnswer, submission: AnswerSubmission, grade: GradeResult):
        answer.answer_text = submission.answer_text
        answer.selected_option = submission.selected_option
        answer.is_correct = grade.is_correct
        answer.marks_obtained = grade.marks_obtained

    def mark_for_review(self, attempt_id: str, student_id: str, question_id: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            self._owned_attempt(session, attempt_id, student_id)

            answer = self._find_answer(session, attempt_id, question_id)
            if answer is None:
                raise NotFoundError("Answer not found")

            answer.marked_for_review = not answer.marked_for_review
            session.commit()
            return answer_to_dict(answer)

    def mark_too_hard(self, attempt_id: str, student_id: str, question_id: str, is_too_hard: Any) -> Dict[str, Any]:
        """Set the too-hard flag, creating an empty answer row when needed"""
        if not isinstance(is_too_hard, bool):
            raise BadRequestError("is_too_hard must be a boolean value")

        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id, for_update=True)
            self._paper_question(session, attempt, question_id)

            answer = self._find_answer(session, attempt_id, question_id)
            if answer is None:
                answer = StudentAnswer(attempt_id=attempt_id, question_id=question_id, student_id=student_id)
                session.add(answer)
            answer.marked_too_hard = is_too_hard
            session.commit()
            return answer_to_dict(answer)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _navigate(self, attempt_id: str, student_id: str, step: int) -> Dict[str, Any]:
        """
        Move one question from the current position.

        The current position is the question of the most recently created
        answer row, not a stored cursor.
        """
        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)
            self._require_ongoing(attempt)

            questions = attempt.paper.questions
            if not questions:
                raise BadRequestError("No questions in paper")

            answers = attempt.answers
            if answers:
                current_id = answers[-1].question_id
                current_index = next((i for i, q in enumerate(questions) if q.id == current_id), -1)
            else:
                current_index = -1 if step > 0 else 0

            target_index = current_index + step
            if target_index >= len(questions):
                raise BadRequestError("Already at last question")
            if target_index < 0:
                raise BadRequestError("Already at first question")

            question = questions[target_index]
            answer = self._find_answer(session, attempt_id, question.id)

            return {
                **public_question_dict(question),
                "question_number": target_index + 1,
                "total_questions": len(questions),
                "is_answered": bool(answer and answer.is_answered),
                "is_marked": bool(answer and answer.marked_for_review),
            }

    def get_next_question(self, attempt_id: str, student_id: str) -> Dict[str, Any]:
        return self._navigate(attempt_id, student_id, 1)

    def get_previous_question(self, attempt_id: str, student_id: str) -> Dict[str, Any]:
        return self._navigate(attempt_id, student_id, -1)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_exam(self, attempt_id: str, student_id: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)
            self._require_ongoing(attempt)

        submitted = self.scoring.calculate_and_submit(attempt_id, is_auto_submit=False)
        return {**submitted, **self._answer_summary(attempt_id)}

    def auto_submit_exam(self, attempt_id: str, student_id: str) -> Optional[Dict[str, Any]]:
        """Timer-forced submit; quietly does nothing unless the attempt is ONGOING"""
        with self.session_factory() as session:
            attempt = session.get(ExamAttempt, attempt_id)
            if attempt is None or attempt.status != AttemptStatus.ONGOING:
                return None
            if attempt.student_id != student_id:
                logger.warning(f"Timer for attempt {attempt_id} names student {student_id}; ignoring")
                return None

        try:
            submitted = self.scoring.calculate_and_submit(attempt_id, is_auto_submit=True)
        except BadRequestError:
            # Submitted by the student between the check and the transaction
            return None
        logger.info(f"Auto-submitted attempt {attempt_id}")
        return submitted

    def _answer_summary(self, attempt_id: str) -> Dict[str, int]:
        with self.session_factory() as session:
            attempt = session.get(ExamAttempt, attempt_id)
            answered = [a for a in attempt.answers if a.is_answered]
            total_questions = len(attempt.paper.questions)
            return {
                "total_questions": total_questions,
                "correct_count": sum(1 for a in answered if a.is_correct is True),
                "incorrect_count": sum(1 for a in answered if a.is_correct is False),
                "pending_review_count": sum(1 for a in answered if a.is_correct is None),
                "unanswered_count": total_questions - len(answered),
            }

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_exam_data(self, attempt_id: str, student_id: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)

            time_remaining = None
            if attempt.status == AttemptStatus.ONGOING and attempt.paper.type == PaperType.TIME_BOUND:
                try:
                    timer = self.timer_store.get(attempt_id)
                except Exception as e:
                    logger.warning(f"Timer lookup failed for attempt {attempt_id}: {e}")
                    timer = None
                if timer is not None:
                    time_remaining = max(0, timer.seconds_remaining())

            answers = attempt.answers
            return {
                "attempt": attempt_to_dict(attempt),
                "answers": [answer_to_dict(a) for a in answers],
                "time_remaining": time_remaining,
                "progress": {
                    "answered": sum(1 for a in answers if a.is_answered),
                    "marked_for_review": sum(1 for a in answers if a.marked_for_review),
                    "total": len(attempt.paper.questions),
                },
            }

    def get_result(self, attempt_id: str, student_id: str) -> Dict[str, Any]:
        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)
            if attempt.status == AttemptStatus.ONGOING:
                raise BadRequestError("Exam is still ongoing")

            paper = attempt.paper
            questions = paper.questions
            number_of = {q.id: i + 1 for i, q in enumerate(questions)}

            by_difficulty: Dict[str, Dict[str, int]] = {}
            for q in questions:
                by_difficulty.setdefault(q.difficulty, {"total": 0, "correct": 0})["total"] += 1

            detailed: List[Dict[str, Any]] = []
            for answer in attempt.answers:
                q = answer.question
                if answer.is_correct:
                    by_difficulty.setdefault(q.difficulty, {"total": 0, "correct": 0})["correct"] += 1
                detailed.append({
                    "question_id": q.id,
                    "question_number": number_of.get(q.id),
                    "question_text": q.question_text,
                    "question_image": q.question_image,
                    "type": q.type.value,
                    "difficulty": q.difficulty,
                    "marks": q.marks,
                    "student_answer": answer.selected_option if answer.selected_option is not None else answer.answer_text,
                    "correct_answer": q.correct_option if q.type == QuestionType.MCQ else (q.options or q.solution_text),
                    "is_correct": answer.is_correct,
                    "marks_obtained": answer.marks_obtained,
                    "marked_for_review": answer.marked_for_review,
                    "status": _answer_status(answer),
                })

            attempted = sum(1 for a in attempt.answers if a.is_answered)
            return {
                "attempt_id": attempt.id,
                "paper_id": paper.id,
                "paper_title": paper.title,
                "status": attempt.status.value,
                "attempt_number": attempt.attempt_number,
                "total_questions": len(questions),
                "questions_attempted": attempted,
                "correct_answers": sum(1 for a in attempt.answers if a.is_correct),
                "score": attempt.total_score,
                "total_marks": attempt.total_marks,
                "percentage": attempt.percentage,
                "time_taken": attempt.time_spent,
                "duration": paper.duration,
                "started_at": attempt.started_at.isoformat(),
                "submitted_at": attempt.submitted_at.isoformat() if attempt.submitted_at else None,
                "answers": detailed,
                "statistics": {
                    "by_difficulty": by_difficulty,
                    "marked_for_review": sum(1 for a in attempt.answers if a.marked_for_review),
                    "not_attempted": len(questions) - attempted,
                },
            }

    # ------------------------------------------------------------------
    # Doubts
    # ------------------------------------------------------------------

    def raise_doubt(self, attempt_id: str, student_id: str, question_id: str, doubt_text: str) -> Dict[str, Any]:
        text = (doubt_text or "").strip()
        if not text:
            raise BadRequestError("Doubt text is required")
        if len(text) > MAX_DOUBT_LENGTH:
            raise BadRequestError(f"Doubt text must not exceed {MAX_DOUBT_LENGTH} characters")

        with self.session_factory() as session:
            attempt = self._owned_attempt(session, attempt_id, student_id)
            self._paper_question(session, attempt, question_id)

            doubt = Doubt(attempt_id=attempt_id, question_id=question_id, student_id=student_id, doubt_text=text)
            session.add(doubt)
            session.commit()
            logger.info(f"Doubt raised on attempt {attempt_id} question {question_id}")
            return {
                "doubt_id": doubt.id,
                "attempt_id": attempt_id,
                "question_id": question_id,
                "doubt_text": doubt.doubt_text,
                "created_at": doubt.created_at.isoformat(),
            }


def _answer_status(answer: StudentAnswer) -> str:
    if not answer.is_answered:
        return "Unanswered"
    if answer.is_correct is None:
        return "PendingReview"
    return "Correct" if answer.is_correct else "Incorrect"


_service: Optional[ExamService] = None


def get_exam_service() -> ExamService:
    """Get or create global exam service"""
    global _service
    if _service is None:
        _service = ExamService(
            session_factory=get_session_factory(),
            grader=AnswerGrader(get_ai_grader(), get_admin_notifier()),
            timer_store=get_timer_store(),
            rank_cache=get_rank_cache()
        )
    return _service
