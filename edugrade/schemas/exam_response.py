from datetime import datetime

from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field

from edugrade.models.exam_response import AttemptStatus


def _answers_as_text(value):
    # answers arrive as option indexes, booleans or text; store them as strings
    if not isinstance(value, dict):
        return value
    return {
        str(k): (None if v is None else str(v).lower() if isinstance(v, bool) else str(v))
        for k, v in value.items()
    }


AnswerMap = Annotated[dict[str, str | None], BeforeValidator(_answers_as_text)]


class ExamAnswersIn(BaseModel):
    exam_id: str
    answers: AnswerMap = {}
    time_spent: int | None = Field(default=None, ge=0)


class ExamResponsePublic(BaseModel):
    """Attempt as the student sees it."""
    id: str
    exam_id: str
    student_id: str
    course_id: str
    attempt_number: int
    status: AttemptStatus
    answers: dict[str, str | None] = {}

    started_at: datetime
    submitted_at: datetime | None = None
    time_spent: int | None = None
    late_submission: bool = False

    total_score: int = 0
    max_score: int = 0
    percentage: float = 0.0
    passed: bool = False
    graded: bool = False
    instructor_feedback: str | None = None

    model_config = {"from_attributes": True}


class ExamResponseDetail(ExamResponsePublic):
    """Attempt as the grading instructor sees it."""
    question_scores: dict[str, int] = {}
    auto_graded: bool = False
    graded_by: str | None = None
    graded_at: datetime | None = None
    flagged_for_review: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ExamGradeRequest(BaseModel):
    question_scores: dict[str, int] = {}
    instructor_feedback: str | None = None
    flagged_for_review: bool | None = None


class QuestionScoreUpdate(BaseModel):
    score: int
    feedback: str | None = None


class FlagRequest(BaseModel):
    reason: str
    priority: str | None = None


class BatchGradeRequest(BaseModel):
    response_ids: list[str]
    instructor_feedback: str | None = None
    flag_for_review: bool = False


class EligibilityPublic(BaseModel):
    can_take: bool
    reason: str
    reason_code: str
    attempts_used: int
    max_attempts: int
    remaining_attempts: int
    has_active_attempt: bool
    active_attempt_id: str | None = None


class ResumePublic(BaseModel):
    response: ExamResponsePublic
    remaining_minutes: int
    exam_id: str
    exam_title: str
    duration: int
    end_time: datetime


class StudentExamResult(BaseModel):
    response_id: str
    exam_id: str
    exam_title: str
    attempt_number: int
    total_score: int
    max_score: int
    percentage: float
    passed: bool
    submitted_at: datetime | None = None
    graded_at: datetime | None = None
    instructor_feedback: str | None = None
    question_scores: dict[str, int] = {}
