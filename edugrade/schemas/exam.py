from datetime import datetime

from typing import Annotated

from pydantic import BaseModel, BeforeValidator

from edugrade.models.exam import QuestionType


def _parse_question_type(value):
    if value is None:
        return value
    question_type = QuestionType.parse(value)
    if question_type is None:
        raise ValueError(f"Unsupported question type: {value!r}")
    return question_type


# accepts any spelling from the synonym table, e.g. "Multiple_Choice"
QuestionTypeField = Annotated[QuestionType, BeforeValidator(_parse_question_type)]


class ExamQuestionBase(BaseModel):
    type: QuestionTypeField
    prompt: str
    options: list[str] | None = None
    points: int = 1
    required: bool = True
    case_sensitive: bool = False


class ExamQuestionCreate(ExamQuestionBase):
    correct_answer: str | None = None
    correct_answer_index: int | None = None
    acceptable_answers: list[str] | None = None
    explanation: str | None = None


class ExamQuestionUpdate(BaseModel):
    type: QuestionTypeField | None = None
    prompt: str | None = None
    options: list[str] | None = None
    correct_answer: str | None = None
    correct_answer_index: int | None = None
    acceptable_answers: list[str] | None = None
    points: int | None = None
    required: bool | None = None
    case_sensitive: bool | None = None
    explanation: str | None = None


class ExamQuestionStudentView(ExamQuestionBase):
    """Question as shown to a student: no answer key."""
    id: str
    display_order: int

    model_config = {"from_attributes": True}


class ExamQuestionPublic(ExamQuestionCreate):
    id: str
    display_order: int

    model_config = {"from_attributes": True}


class ExamSettings(BaseModel):
    max_attempts: int = 1
    pass_percentage: float = 60.0
    visible_to_students: bool = False
    shuffle_questions: bool = False
    shuffle_options: bool = False
    allow_navigation: bool = True
    show_timer: bool = True
    auto_submit: bool = True
    require_safe_browser: bool = False
    show_results: bool = True


class ExamCreate(ExamSettings):
    course_id: str
    title: str
    description: str | None = None
    instructions: str | None = None
    duration: int
    start_time: datetime
    end_time: datetime
    publish_time: datetime | None = None
    grade_category: str = "exam"


class ExamUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    instructions: str | None = None
    duration: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    publish_time: datetime | None = None
    max_attempts: int | None = None
    pass_percentage: float | None = None
    visible_to_students: bool | None = None
    shuffle_questions: bool | None = None
    shuffle_options: bool | None = None
    allow_navigation: bool | None = None
    show_timer: bool | None = None
    auto_submit: bool | None = None
    require_safe_browser: bool | None = None
    show_results: bool | None = None


class QuestionReorder(BaseModel):
    question_ids: list[str]


class ExamStudentView(ExamSettings):
    id: str
    course_id: str
    title: str
    description: str | None = None
    instructions: str | None = None
    duration: int
    start_time: datetime
    end_time: datetime
    total_points: int
    questions: list[ExamQuestionStudentView] = []

    model_config = {"from_attributes": True}


class ExamPublic(ExamStudentView):
    instructor_id: str
    status: str
    publish_time: datetime | None = None
    grade_category: str
    questions: list[ExamQuestionPublic] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ExamStats(BaseModel):
    exam_id: str
    exam_title: str
    total_responses: int
    submitted_responses: int
    graded_responses: int
    passed_responses: int
    average_score: float
    pass_rate: float
    completion_rate: float


class ExamGradingStats(BaseModel):
    total_responses: int = 0
    graded_responses: int = 0
    auto_graded_responses: int = 0
    manually_graded_responses: int = 0
    needs_grading: int = 0
    flagged_responses: int = 0
    passed_responses: int = 0
    in_progress_responses: int = 0
    submitted_responses: int = 0
    grading_progress: float = 0.0
