# FILE: exam_engine/errors.py
"""
Exam engine error kinds
"""


class ExamError(Exception):
    """Base error carrying the HTTP status the presentation layer should use"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ExamError):
    status_code = 404


class ForbiddenError(ExamError):
    status_code = 403


class BadRequestError(ExamError):
    status_code = 400


class InternalError(ExamError):
    status_code = 500


EXAM_NOT_FOUND = "Exam not found"
PAPER_NOT_FOUND = "Paper not found"
QUESTION_NOT_FOUND = "Question not found"
EXAM_NOT_ONGOING = "Exam is not ongoing"
