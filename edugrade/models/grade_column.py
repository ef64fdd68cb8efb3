# edugrade/models/grade_column.py
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from edugrade.core.utils import utcnow
from edugrade.db.base import Base


class GradeColumnType(str, enum.Enum):
    HOMEWORK = "homework"
    ASSIGNMENT = "assignment"
    PROJECT = "project"
    ESSAY = "essay"
    LAB = "lab"
    PRESENTATION = "presentation"
    QUIZ = "quiz"
    MIDTERM = "midterm"
    EXAM = "exam"
    PARTICIPATION = "participation"


class GradeColumn(Base):
    __tablename__ = "grade_columns"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    course_id = Column(String(64), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(30), nullable=False, default=GradeColumnType.ASSIGNMENT.value)

    # weight inside the course's final grade, 0-100
    percentage = Column(Integer, nullable=False)
    max_points = Column(Integer, nullable=False, default=100)

    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=1)

    # exam (or task) this column mirrors
    linked_assignment_id = Column(String(36), nullable=True, index=True)
    auto_created = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
