# edugrade/models/exam.py
import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import relationship

from edugrade.core.utils import utcnow
from edugrade.db.base import Base


class ExamStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"

    @classmethod
    def parse(cls, raw) -> "QuestionType | None":
        """
        Map any accepted spelling ("Multiple_Choice", "boolean", "text",
        "paragraph", ...) to a QuestionType. Returns None if unrecognized.
        """
        if raw is None:
            return None
        if isinstance(raw, cls):
            return raw
        key = str(raw).strip().lower().replace("_", "-").replace(" ", "-")
        return _QUESTION_TYPE_SYNONYMS.get(key)


_QUESTION_TYPE_SYNONYMS = {
    "multiple-choice": QuestionType.MULTIPLE_CHOICE,
    "multiplechoice": QuestionType.MULTIPLE_CHOICE,
    "true-false": QuestionType.TRUE_FALSE,
    "truefalse": QuestionType.TRUE_FALSE,
    "boolean": QuestionType.TRUE_FALSE,
    "short-answer": QuestionType.SHORT_ANSWER,
    "shortanswer": QuestionType.SHORT_ANSWER,
    "text": QuestionType.SHORT_ANSWER,
    "fill-in-the-blank": QuestionType.SHORT_ANSWER,
    "fill-in-blank": QuestionType.SHORT_ANSWER,
    "essay": QuestionType.ESSAY,
    "long-answer": QuestionType.ESSAY,
    "paragraph": QuestionType.ESSAY,
}


class Exam(Base):
    __tablename__ = "exams"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    course_id = Column(String(64), nullable=False, index=True)
    instructor_id = Column(String(64), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)

    duration = Column(Integer, nullable=False)  # minutes
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    publish_time = Column(DateTime, nullable=True)

    max_attempts = Column(Integer, nullable=False, default=1)
    pass_percentage = Column(Float, nullable=False, default=60.0)
    total_points = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=ExamStatus.DRAFT.value, index=True)
    visible_to_students = Column(Boolean, nullable=False, default=False)

    shuffle_questions = Column(Boolean, nullable=False, default=False)
    shuffle_options = Column(Boolean, nullable=False, default=False)
    allow_navigation = Column(Boolean, nullable=False, default=True)
    show_timer = Column(Boolean, nullable=False, default=True)
    auto_submit = Column(Boolean, nullable=False, default=True)
    require_safe_browser = Column(Boolean, nullable=False, default=False)
    show_results = Column(Boolean, nullable=False, default=True)

    # grade column type used when the linked column is auto-created
    grade_category = Column(String(30), nullable=False, default="exam")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    questions = relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.display_order",
    )

    @property
    def is_published(self) -> bool:
        return self.status == ExamStatus.PUBLISHED.value

    @property
    def ordered_questions(self) -> list["ExamQuestion"]:
        return sorted(self.questions, key=lambda q: (q.display_order or 0))

    def find_question(self, question_id: str) -> "ExamQuestion | None":
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def recalculate_total_points(self) -> int:
        self.total_points = sum((q.points or 0) for q in self.questions)
        return self.total_points


class ExamQuestion(Base):
    __tablename__ = "exam_questions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    exam_id = Column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)

    # canonical QuestionType value
    type = Column(String(30), nullable=False)
    prompt = Column(Text, nullable=False)
    options = Column(MutableList.as_mutable(JSON), nullable=True)

    correct_answer = Column(Text, nullable=True)
    correct_answer_index = Column(Integer, nullable=True)
    acceptable_answers = Column(MutableList.as_mutable(JSON), nullable=True)

    points = Column(Integer, nullable=False, default=1)
    required = Column(Boolean, nullable=False, default=True)
    case_sensitive = Column(Boolean, nullable=False, default=False)
    explanation = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=1)

    exam = relationship("Exam", back_populates="questions")
