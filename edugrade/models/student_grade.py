# edugrade/models/student_grade.py
import uuid

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String
from sqlalchemy.ext.mutable import MutableDict

from edugrade.core.utils import utcnow
from edugrade.db.base import Base


class StudentGradeRecord(Base):
    """
    One logical row per (student_id, course_id).

    Legacy data may hold duplicates, so there is no unique constraint here;
    grade_service merges them whenever it reads the pair.
    """
    __tablename__ = "student_grades"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    student_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False, index=True)

    # grade column id -> score (0-100); missing key means ungraded
    grades = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    final_grade = Column(Float, nullable=True)
    final_letter_grade = Column(String(2), nullable=True)

    updated_at = Column(DateTime, nullable=True, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def set_grade(self, column_id: str, score: float) -> None:
        if self.grades is None:
            self.grades = {}
        self.grades[column_id] = score

    def remove_grade(self, column_id: str) -> bool:
        if not self.grades or column_id not in self.grades:
            return False
        del self.grades[column_id]
        return True
