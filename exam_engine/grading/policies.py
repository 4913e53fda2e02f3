# FILE: exam_engine/grading/policies.py
"""
Answer grading policies

Each question is reduced to an answer key, a tagged union of
MultipleChoiceKey | BlankFillKeyedKey | BlankFillFreeKey | OpenTextKey,
and graded by the one policy registered for its kind. A result with
is_correct=None is pending manual review and always carries zero marks.
"""
import enum
import logging
import math
from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, Optional, Protocol, Tuple, Union

from exam_engine.grading.ai_client import AIGradingFailure, AIOutcome
from exam_engine.models.orm import Question, QuestionType
from exam_engine.services.telemetry import record_event

logger = logging.getLogger(__name__)

BLANK_SEPARATOR = "|"


class KeyKind(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    BLANK_FILL_KEYED = "blank_fill_keyed"
    BLANK_FILL_FREE = "blank_fill_free"
    OPEN_TEXT = "open_text"


@dataclass(frozen=True)
class AnswerSubmission:
    answer_text: Optional[str] = None
    selected_option: Optional[int] = None


@dataclass(frozen=True)
class GradeResult:
    is_correct: Optional[bool]
    marks_obtained: float
    feedback: Optional[str] = None
    fallback_used: bool = False


@dataclass(frozen=True)
class MultipleChoiceKey:
    kind: ClassVar[KeyKind] = KeyKind.MULTIPLE_CHOICE
    marks: float
    correct_option: Optional[int]


@dataclass(frozen=True)
class BlankFillKeyedKey:
    kind: ClassVar[KeyKind] = KeyKind.BLANK_FILL_KEYED
    marks: float
    alternatives: Tuple[Tuple[str, ...], ...]
    case_sensitive: bool = False


@dataclass(frozen=True)
class BlankFillFreeKey:
    kind: ClassVar[KeyKind] = KeyKind.BLANK_FILL_FREE
    marks: float


@dataclass(frozen=True)
class OpenTextKey:
    kind: ClassVar[KeyKind] = KeyKind.OPEN_TEXT
    marks: float
    reference_solution: str
    question_id: Optional[str] = None


AnswerKey = Union[MultipleChoiceKey, BlankFillKeyedKey, BlankFillFreeKey, OpenTextKey]


def answer_key_for(question: Question) -> AnswerKey:
    """Build the answer key variant for a stored question"""
    marks = question.marks or 1
    if question.type == QuestionType.MCQ:
        return MultipleChoiceKey(marks=marks, correct_option=question.correct_option)

    if question.type == QuestionType.FILL_IN_THE_BLANKS:
        if not question.options:
            return BlankFillFreeKey(marks=marks)
        alternatives = tuple(
            tuple(a for a in blank if isinstance(a, str)) if isinstance(blank, list) else ()
            for blank in question.options
        )
        return BlankFillKeyedKey(
            marks=marks,
            alternatives=alternatives,
            case_sensitive=bool(question.case_sensitive)
        )

    if question.type == QuestionType.TEXT:
        return OpenTextKey(
            marks=marks,
            reference_solution=question.solution_text or "",
            question_id=question.id
        )

    raise ValueError(f"Unsupported question type: {question.type}")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_marks(raw: float, max_marks: float) -> float:
    """Round to a whole mark, then clamp into [0, max_marks]"""
    return float(min(max_marks, max(0, round_half_up(raw))))


def fallback_score(reference_solution: str, student_answer: str, max_marks: float) -> float:
    """
    Word-overlap score: share of reference words found in the answer.

    Matching is substring containment against the lower-cased answer.
    """
    reference_words = reference_solution.lower().split()
    if not reference_words:
        return 0.0
    answer = student_answer.lower()
    matched = sum(1 for word in reference_words if word in answer)
    return clamp_marks(matched / len(reference_words) * max_marks, max_marks)


def grade_multiple_choice(key: MultipleChoiceKey, submission: AnswerSubmission) -> GradeResult:
    is_correct = submission.selected_option is not None and submission.selected_option == key.correct_option
    return GradeResult(is_correct=is_correct, marks_obtained=key.marks if is_correct else 0.0)


def grade_blank_fill_keyed(key: BlankFillKeyedKey, submission: AnswerSubmission) -> GradeResult:
    parts = [p.strip() for p in (submission.answer_text or "").split(BLANK_SEPARATOR)]

    all_matched = len(parts) == len(key.alternatives)
    if all_matched:
        for part, acceptable in zip(parts, key.alternatives):
            if key.case_sensitive:
                matched = any(a.strip() == part for a in acceptable)
            else:
                matched = any(a.strip().lower() == part.lower() for a in acceptable)
            if not matched:
                all_matched = False
                break

    return GradeResult(is_correct=all_matched, marks_obtained=key.marks if all_matched else 0.0)


def grade_blank_fill_free(key: BlankFillFreeKey, submission: AnswerSubmission) -> GradeResult:
    return GradeResult(is_correct=None, marks_obtained=0.0)


class OpenTextEvaluator(Protocol):
    def evaluate(self, reference_solution: str, student_answer: str, max_marks: float) -> AIOutcome: ...


class Notifier(Protocol):
    def notify(self, subject: str, message: str) -> None: ...


class AnswerGrader:
    """Dispatches a submission to the policy for its answer key"""

    def __init__(self, evaluator: OpenTextEvaluator, notifier: Optional[Notifier] = None):
        self.evaluator = evaluator
        self.notifier = notifier
        self._policies: Dict[KeyKind, Callable[..., GradeResult]] = {
            KeyKind.MULTIPLE_CHOICE: grade_multiple_choice,
            KeyKind.BLANK_FILL_KEYED: grade_blank_fill_keyed,
            KeyKind.BLANK_FILL_FREE: grade_blank_fill_free,
            KeyKind.OPEN_TEXT: self.grade_open_text,
        }

    def grade(self, key: AnswerKey, submission: AnswerSubmission) -> GradeResult:
        return self._policies[key.kind](key, submission)

    def grade_question(self, question: Question, submission: AnswerSubmission) -> GradeResult:
        return self.grade(answer_key_for(question), submission)

    def grade_open_text(self, key: OpenTextKey, submission: AnswerSubmission) -> GradeResult:
        answer = submission.answer_text or ""
        if not answer.strip():
            return GradeResult(is_correct=False, marks_obtained=0.0)

        outcome = self.evaluator.evaluate(key.reference_solution, answer, key.marks)

        if isinstance(outcome, AIGradingFailure):
            marks = fallback_score(key.reference_solution, answer, key.marks)
            self._report_fallback(key, outcome, marks)
            return GradeResult(is_correct=marks >= 1, marks_obtained=marks, fallback_used=True)

        marks = clamp_marks(outcome.marks_obtained, key.marks)
        return GradeResult(is_correct=marks >= 1, marks_obtained=marks, feedback=outcome.feedback or None)

    def _report_fallback(self, key: OpenTextKey, failure: AIGradingFailure, marks: float):
        logger.warning(
            f"AI grading unavailable ({failure.kind.value}: {failure.detail}); "
            f"fallback scored question={key.question_id} marks={marks}/{key.marks}"
        )
        record_event("grading_fallback", question_id=key.question_id, reason=failure.kind.value)

        if self.notifier is None:
            return
        try:
            self.notifier.notify(
                subject="AI grading fallback used",
                message=(
                    f"Open-text answer for question {key.question_id} was scored with the "
                    f"word-overlap fallback ({failure.kind.value}: {failure.detail})."
                )
            )
        except Exception as e:
            logger.warning(f"Admin notification for grading fallback failed: {e}")
