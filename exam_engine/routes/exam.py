# FILE: exam_engine/routes/exam.py
"""
Exam attempt endpoints (student only)

Handlers are sync so FastAPI runs them in its threadpool; answer saving
may wait on the AI grader.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from exam_engine.grading.policies import AnswerSubmission
from exam_engine.models.exam import DoubtRequest, MarkHardRequest, SaveAnswerRequest, StartExamRequest
from exam_engine.routes.deps import Caller, require_student
from exam_engine.services.exam_service import ExamService, get_exam_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _ok(message: str, data):
    return {"status": "success", "message": message, "data": data}


@router.post("/start/{paper_id}")
def start_exam(
    paper_id: str,
    request: Optional[StartExamRequest] = None,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    """Start (or resume) an attempt"""
    attempt = service.start_exam(paper_id, caller.user_id, request or StartExamRequest())
    return _ok("Exam started successfully", attempt)


@router.get("/{attempt_id}/data")
def get_exam_data(
    attempt_id: str,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    return _ok("Exam data fetched successfully", service.get_exam_data(attempt_id, caller.user_id))


@router.get("/{attempt_id}/question")
def get_question(
    attempt_id: str,
    question_index: int = Query(default=0, ge=0),
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    question = service.get_question(attempt_id, caller.user_id, question_index)
    return _ok("Question fetched successfully", question)


@router.post("/{attempt_id}/answer/{question_id}")
def save_answer(
    attempt_id: str,
    question_id: str,
    request: SaveAnswerRequest,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    answer = service.save_answer(
        attempt_id,
        caller.user_id,
        question_id,
        AnswerSubmission(answer_text=request.answer_text, selected_option=request.selected_option)
    )
    return _ok("Answer saved successfully", answer)


@router.patch("/{attempt_id}/{question_id}/mark-review")
def mark_for_review(
    attempt_id: str,
    question_id: str,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    answer = service.mark_for_review(attempt_id, caller.user_id, question_id)
    return _ok("Question marked for review", answer)


@router.post("/{attempt_id}/{question_id}/mark-hard")
def mark_question_as_hard(
    attempt_id: str,
    question_id: str,
    request: MarkHardRequest,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    answer = service.mark_too_hard(attempt_id, caller.user_id, question_id, request.is_too_hard)
    message = "Question marked as too hard" if request.is_too_hard else "Hard marking removed"
    return _ok(message, answer)


@router.post("/{attempt_id}/next-question")
def next_question(
    attempt_id: str,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    return _ok("Next question fetched successfully", service.get_next_question(attempt_id, caller.user_id))


@router.post("/{attempt_id}/previous-question")
def previous_question(
    attempt_id: str,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    question = service.get_previous_question(attempt_id, caller.user_id)
    return _ok("Previous question fetched successfully", question)


@router.post("/{attempt_id}/submit")
def submit_exam(
    attempt_id: str,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    logger.info(f"Submit attempt: {attempt_id}")
    return _ok("Exam submitted successfully", service.submit_exam(attempt_id, caller.user_id))


@router.get("/{attempt_id}/result")
def get_result(
    attempt_id: str,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    return _ok("Exam result fetched successfully", service.get_result(attempt_id, caller.user_id))


@router.post("/{attempt_id}/{question_id}/doubt", status_code=201)
def raise_doubt(
    attempt_id: str,
    question_id: str,
    request: DoubtRequest,
    caller: Caller = Depends(require_student),
    service: ExamService = Depends(get_exam_service)
):
    doubt = service.raise_doubt(attempt_id, caller.user_id, question_id, request.doubt_text)
    return _ok("Doubt raised successfully", doubt)
