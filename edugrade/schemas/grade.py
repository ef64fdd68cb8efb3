from datetime import datetime

from pydantic import BaseModel, Field

from edugrade.models.grade_column import GradeColumnType


class GradeColumnBase(BaseModel):
    name: str
    description: str | None = None
    type: GradeColumnType = GradeColumnType.ASSIGNMENT
    percentage: int
    max_points: int = 100


class GradeColumnCreate(GradeColumnBase):
    course_id: str
    is_active: bool = True
    linked_assignment_id: str | None = None


class GradeColumnUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    type: GradeColumnType | None = None
    percentage: int | None = None
    max_points: int | None = None
    is_active: bool | None = None
    display_order: int | None = None


class GradeColumnPublic(GradeColumnBase):
    id: str
    course_id: str
    is_active: bool
    display_order: int
    linked_assignment_id: str | None = None
    auto_created: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class StudentGradeUpdate(BaseModel):
    student_id: str
    column_id: str
    # None clears the score
    score: float | None = Field(default=None, ge=0, le=100, allow_inf_nan=False)


class StudentGradePublic(BaseModel):
    id: str
    student_id: str
    course_id: str
    grades: dict[str, float]
    final_grade: float | None = None
    final_letter_grade: str | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class FinalGradePublic(BaseModel):
    student_id: str
    course_id: str
    final_grade: float
    letter_grade: str


class PercentageValidation(BaseModel):
    course_id: str
    percentage: int
    valid: bool


class RecalculationSummary(BaseModel):
    course_id: str
    updated_records: int
