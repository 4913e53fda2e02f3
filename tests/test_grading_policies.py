# FILE: tests/test_grading_policies.py
"""
Deterministic grading policies and answer-key construction
"""
import pytest

from exam_engine.grading.policies import (
    AnswerSubmission, BlankFillFreeKey, BlankFillKeyedKey, MultipleChoiceKey, OpenTextKey,
    answer_key_for, clamp_marks, fallback_score, grade_blank_fill_free, grade_blank_fill_keyed,
    grade_multiple_choice, round_half_up
)
from exam_engine.models.orm import Question, QuestionType

CAPITAL_AND_RIVER = BlankFillKeyedKey(marks=2, alternatives=(("Paris",), ("Seine",)))


@pytest.mark.parametrize("selected, expected", [(1, (True, 2)), (0, (False, 0)), (None, (False, 0))])
def test_multiple_choice_awards_full_marks_or_nothing(selected, expected):
    key = MultipleChoiceKey(marks=2, correct_option=1)

    result = grade_multiple_choice(key, AnswerSubmission(selected_option=selected))

    assert (result.is_correct, result.marks_obtained) == expected
    assert result.is_correct is not None


def test_blank_fill_matches_every_part_case_insensitively():
    assert grade_blank_fill_keyed(CAPITAL_AND_RIVER, AnswerSubmission("Paris|Seine")).is_correct is True
    assert grade_blank_fill_keyed(CAPITAL_AND_RIVER, AnswerSubmission(" paris | SEINE ")).marks_obtained == 2


def test_blank_fill_with_one_wrong_part_is_incorrect():
    result = grade_blank_fill_keyed(CAPITAL_AND_RIVER, AnswerSubmission("paris|rhine"))

    assert result.is_correct is False
    assert result.marks_obtained == 0


def test_blank_fill_part_count_mismatch_is_incorrect():
    assert grade_blank_fill_keyed(CAPITAL_AND_RIVER, AnswerSubmission("Paris")).is_correct is False
    assert grade_blank_fill_keyed(CAPITAL_AND_RIVER, AnswerSubmission("Paris|Seine|Loire")).is_correct is False


def test_blank_fill_accepts_any_listed_alternative():
    key = BlankFillKeyedKey(marks=1, alternatives=(("colour", "color"),))

    assert grade_blank_fill_keyed(key, AnswerSubmission("Color")).is_correct is True


def test_case_sensitive_blank_fill():
    key = BlankFillKeyedKey(marks=1, alternatives=(("NaCl",),), case_sensitive=True)

    assert grade_blank_fill_keyed(key, AnswerSubmission("NaCl")).is_correct is True
    assert grade_blank_fill_keyed(key, AnswerSubmission("nacl")).is_correct is False


def test_free_entry_blank_is_pending_review():
    result = grade_blank_fill_free(BlankFillFreeKey(marks=1), AnswerSubmission("Argon"))

    assert result.is_correct is None
    assert result.marks_obtained == 0


def test_answer_key_variants():
    mcq = Question(type=QuestionType.MCQ, options=["a", "b"], correct_option=1, marks=3)
    keyed = Question(type=QuestionType.FILL_IN_THE_BLANKS, options=[["x"], ["y", "z"]], marks=2)
    free_none = Question(type=QuestionType.FILL_IN_THE_BLANKS, options=None)
    free_empty = Question(type=QuestionType.FILL_IN_THE_BLANKS, options=[])
    text = Question(id="q-text", type=QuestionType.TEXT, solution_text="ref", marks=5)

    assert answer_key_for(mcq) == MultipleChoiceKey(marks=3, correct_option=1)
    assert answer_key_for(keyed).alternatives == (("x",), ("y", "z"))
    assert isinstance(answer_key_for(free_none), BlankFillFreeKey)
    assert isinstance(answer_key_for(free_empty), BlankFillFreeKey)
    assert answer_key_for(text) == OpenTextKey(marks=5, reference_solution="ref", question_id="q-text")


def test_missing_marks_default_to_one():
    assert answer_key_for(Question(type=QuestionType.MCQ, correct_option=0)).marks == 1


def test_rounding_is_half_up_then_clamped():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(1.49) == 1
    assert clamp_marks(1.5, 2) == 2
    assert clamp_marks(7.6, 2) == 2
    assert clamp_marks(-3, 2) == 0


def test_fallback_score_counts_reference_words_in_answer():
    marks = fallback_score("force equals mass times acceleration", "force = mass * acceleration", 2)

    # 3 of 5 reference words present -> 1.2 -> 1
    assert marks == 1


def test_fallback_score_with_empty_reference_is_zero():
    assert fallback_score("", "anything", 5) == 0
