# FILE: exam_engine/services/serializers.py
"""
Dict projections of ORM rows returned by the exam services
"""
from datetime import datetime
from typing import Any, Dict, Optional

from exam_engine.models.orm import ExamAttempt, Question, QuestionType, StudentAnswer


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def attempt_to_dict(attempt: ExamAttempt) -> Dict[str, Any]:
    return {
        "attempt_id": attempt.id,
        "paper_id": attempt.paper_id,
        "student_id": attempt.student_id,
        "status": attempt.status.value,
        "attempt_number": attempt.attempt_number,
        "started_at": _iso(attempt.started_at),
        "submitted_at": _iso(attempt.submitted_at),
        "total_score": attempt.total_score,
        "total_marks": attempt.total_marks,
        "percentage": attempt.percentage,
        "time_spent": attempt.time_spent,
        "no_time_limit": attempt.no_time_limit,
        "show_answer_after_wrong": attempt.show_answer_after_wrong,
        "enable_solution_view": attempt.enable_solution_view,
    }


def answer_to_dict(answer: Optional[StudentAnswer]) -> Optional[Dict[str, Any]]:
    if answer is None:
        return None
    return {
        "id": answer.id,
        "attempt_id": answer.attempt_id,
        "question_id": answer.question_id,
        "selected_option": answer.selected_option,
        "answer_text": answer.answer_text,
        "is_correct": answer.is_correct,
        "marks_obtained": answer.marks_obtained,
        "marked_for_review": answer.marked_for_review,
        "marked_too_hard": answer.marked_too_hard,
        "created_at": _iso(answer.created_at),
        "updated_at": _iso(answer.updated_at),
    }


def public_question_dict(question: Question) -> Dict[str, Any]:
    """Question as shown during an exam: no answer key, no solution"""
    return {
        "question_id": question.id,
        "type": question.type.value,
        "question_text": question.question_text,
        "question_image": question.question_image,
        "difficulty": question.difficulty,
        "marks": question.marks,
        "options": question.options if question.type == QuestionType.MCQ else None,
    }
