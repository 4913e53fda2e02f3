# FILE: exam_engine/models/orm.py
"""
Relational models for papers, attempts and answers
"""
import enum
import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Enum as SAEnum, Float, ForeignKey, Index,
    Integer, String, Text, UniqueConstraint, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_engine.db import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class PaperStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class PaperType(str, enum.Enum):
    TIME_BOUND = "TIME_BOUND"
    NO_LIMIT = "NO_LIMIT"


class QuestionType(str, enum.Enum):
    MCQ = "MCQ"
    FILL_IN_THE_BLANKS = "FILL_IN_THE_BLANKS"
    TEXT = "TEXT"


class AttemptStatus(str, enum.Enum):
    ONGOING = "ONGOING"
    SUBMITTED = "SUBMITTED"
    AUTO_SUBMITTED = "AUTO_SUBMITTED"


TERMINAL_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.AUTO_SUBMITTED)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(150))
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, native_enum=False, length=20))


class Paper(Base):
    __tablename__ = "papers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(300))
    status: Mapped[PaperStatus] = mapped_column(
        SAEnum(PaperStatus, native_enum=False, length=20), default=PaperStatus.DRAFT
    )
    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    type: Mapped[PaperType] = mapped_column(
        SAEnum(PaperType, native_enum=False, length=20), default=PaperType.NO_LIMIT
    )
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[float] = mapped_column(Float, default=0.0)

    questions: Mapped[List["Question"]] = relationship(
        back_populates="paper", order_by="Question.order"
    )


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    paper_id: Mapped[str] = mapped_column(ForeignKey("papers.id"), index=True)
    order: Mapped[int] = mapped_column(Integer, default=0)
    type: Mapped[QuestionType] = mapped_column(SAEnum(QuestionType, native_enum=False, length=30))
    question_text: Mapped[str] = mapped_column(Text)
    question_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    # MCQ: option labels. Blanks: one list of acceptable strings per blank.
    options: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    correct_option: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    solution_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    solution_image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    marks: Mapped[float] = mapped_column(Float, default=1.0)
    difficulty: Mapped[str] = mapped_column(String(20), default="MEDIUM")
    case_sensitive: Mapped[bool] = mapped_column(Boolean, default=False)

    paper: Mapped[Paper] = relationship(back_populates="questions")


class PaperPurchase(Base):
    __tablename__ = "paper_purchases"
    __table_args__ = (UniqueConstraint("paper_id", "student_id", name="uq_purchase_paper_student"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    paper_id: Mapped[str] = mapped_column(ForeignKey("papers.id"))
    student_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        # At most one ONGOING attempt per (paper, student)
        Index(
            "uq_attempt_ongoing",
            "paper_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'ONGOING'"),
            postgresql_where=text("status = 'ONGOING'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    paper_id: Mapped[str] = mapped_column(ForeignKey("papers.id"), index=True)
    student_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    status: Mapped[AttemptStatus] = mapped_column(
        SAEnum(AttemptStatus, native_enum=False, length=20), default=AttemptStatus.ONGOING
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    total_score: Mapped[float] = mapped_column(Float, default=0.0)
    total_marks: Mapped[float] = mapped_column(Float, default=0.0)
    percentage: Mapped[float] = mapped_column(Float, default=0.0)
    time_spent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer, default=1)
    no_time_limit: Mapped[bool] = mapped_column(Boolean, default=False)
    show_answer_after_wrong: Mapped[bool] = mapped_column(Boolean, default=False)
    enable_solution_view: Mapped[bool] = mapped_column(Boolean, default=False)

    paper: Mapped[Paper] = relationship()
    answers: Mapped[List["StudentAnswer"]] = relationship(
        back_populates="attempt", order_by="StudentAnswer.id"
    )


class StudentAnswer(Base):
    __tablename__ = "student_answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),)

    # Autoincrement id doubles as insertion order for the navigation cursor
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[str] = mapped_column(ForeignKey("exam_attempts.id"), index=True)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id"))
    student_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    selected_option: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    answer_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    marks_obtained: Mapped[float] = mapped_column(Float, default=0.0)
    marked_for_review: Mapped[bool] = mapped_column(Boolean, default=False)
    marked_too_hard: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    attempt: Mapped[ExamAttempt] = relationship(back_populates="answers")
    question: Mapped[Question] = relationship()

    @property
    def is_answered(self) -> bool:
        """A selection or non-empty text; flag-only rows are untouched"""
        return self.selected_option is not None or bool(self.answer_text and self.answer_text.strip())


class Doubt(Base):
    __tablename__ = "doubts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    attempt_id: Mapped[str] = mapped_column(ForeignKey("exam_attempts.id"), index=True)
    question_id: Mapped[str] = mapped_column(ForeignKey("questions.id"))
    student_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    doubt_text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
