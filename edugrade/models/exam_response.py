# edugrade/models/exam_response.py
import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.ext.mutable import MutableDict

from edugrade.core.utils import round_half_up, utcnow
from edugrade.db.base import Base


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADING_IN_PROGRESS = "GRADING_IN_PROGRESS"
    PARTIALLY_GRADED = "PARTIALLY_GRADED"
    GRADED = "GRADED"
    AUTO_GRADE_FAILED = "AUTO_GRADE_FAILED"


class ExamResponse(Base):
    __tablename__ = "exam_responses"
    __table_args__ = (
        UniqueConstraint(
            "exam_id", "student_id", "attempt_number", name="uq_exam_responses_attempt"
        ),
        # at most one open attempt per student per exam
        Index(
            "uq_exam_responses_active_attempt",
            "exam_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'IN_PROGRESS'"),
            postgresql_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    exam_id = Column(String(36), nullable=False, index=True)
    student_id = Column(String(64), nullable=False, index=True)
    course_id = Column(String(64), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)

    status = Column(
        SAEnum(AttemptStatus, native_enum=False, length=30),
        nullable=False,
        default=AttemptStatus.IN_PROGRESS,
        index=True,
    )

    # question id -> raw answer string / awarded points
    answers = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    question_scores = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    started_at = Column(DateTime, nullable=False, default=utcnow)
    submitted_at = Column(DateTime, nullable=True)
    time_spent = Column(Integer, nullable=True)  # seconds

    total_score = Column(Integer, nullable=False, default=0)
    max_score = Column(Integer, nullable=False, default=0)
    percentage = Column(Float, nullable=False, default=0.0)
    passed = Column(Boolean, nullable=False, default=False)

    graded = Column(Boolean, nullable=False, default=False)
    auto_graded = Column(Boolean, nullable=False, default=False)
    graded_by = Column(String(64), nullable=True)
    graded_at = Column(DateTime, nullable=True)
    instructor_feedback = Column(Text, nullable=True)
    flagged_for_review = Column(Boolean, nullable=False, default=False)
    late_submission = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    @property
    def is_submitted(self) -> bool:
        return self.status not in (AttemptStatus.IN_PROGRESS,)

    def recalculate_total(self) -> None:
        scores = self.question_scores or {}
        self.total_score = int(sum(scores.values()))
        if self.max_score and self.max_score > 0:
            self.percentage = round_half_up(self.total_score / self.max_score * 100.0)
        else:
            self.percentage = 0.0
