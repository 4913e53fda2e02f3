# FILE: exam_engine/models/exam.py
"""
Exam request models
"""
from typing import Any, Optional
from pydantic import BaseModel, Field


class StartExamRequest(BaseModel):
    """Exam-mode settings chosen by the student at start"""
    no_time_limit: bool = False
    show_answer_after_wrong: bool = False
    enable_solution_view: bool = False


class SaveAnswerRequest(BaseModel):
    """Answer payload; at least one field must be present"""
    answer_text: Optional[str] = None
    selected_option: Optional[int] = Field(default=None, ge=0)


class MarkHardRequest(BaseModel):
    """Too-hard flag; type is checked by the service so bad input is a 400"""
    is_too_hard: Any = None


class DoubtRequest(BaseModel):
    """Doubt raised against a question during an attempt"""
    doubt_text: str = ""
