"""
Shared fixtures: an in-memory SQLite database per test, users, and
factories for courses, columns and exams.
"""

import os
from datetime import timedelta

# settings are read at import time; keep tests off Postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edugrade import models  # noqa
from edugrade.core.security import CurrentUser, Role
from edugrade.core.utils import utcnow
from edugrade.db.base import Base
from edugrade.models.exam import Exam, ExamQuestion, ExamStatus
from edugrade.models.grade_column import GradeColumn

TEST_DATABASE_URL = "sqlite://"


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    """Fresh database session for each test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def no_job_queue(monkeypatch):
    """Record reconciliation jobs instead of talking to Redis."""
    enqueued = []

    def fake_enqueue(name):
        def _enqueue(*args):
            enqueued.append((name, args))
            return f"job-{len(enqueued)}"
        return _enqueue

    monkeypatch.setattr("edugrade.services.grade_service.enqueue_course_recalculation",
                        fake_enqueue("recalculate_course"))
    monkeypatch.setattr("edugrade.services.exam_service.enqueue_exam_resync",
                        fake_enqueue("resync_exam"))
    monkeypatch.setattr("edugrade.services.grading_service.enqueue_exam_resync",
                        fake_enqueue("resync_exam"))
    monkeypatch.setattr("edugrade.api.v1.endpoints.grading.enqueue_auto_grade_all",
                        fake_enqueue("auto_grade_all"))
    monkeypatch.setattr("edugrade.api.v1.endpoints.grades.enqueue_fix_all_grades",
                        fake_enqueue("fix_all_grades"))
    return enqueued


@pytest.fixture
def course_id():
    return "course-101"


@pytest.fixture
def instructor():
    return CurrentUser(id="lecturer-1", role=Role.LECTURER)


@pytest.fixture
def other_instructor():
    return CurrentUser(id="lecturer-2", role=Role.LECTURER)


@pytest.fixture
def admin():
    return CurrentUser(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def student():
    return CurrentUser(id="student-1", role=Role.STUDENT)


@pytest.fixture
def make_column(db_session, course_id):
    def _make(name, percentage, *, course=None, is_active=True, **kwargs):
        column = GradeColumn(
            course_id=course or course_id,
            name=name,
            type=kwargs.pop("type", "quiz"),
            percentage=percentage,
            max_points=kwargs.pop("max_points", 100),
            is_active=is_active,
            display_order=kwargs.pop("display_order", 1),
            **kwargs,
        )
        db_session.add(column)
        db_session.commit()
        db_session.refresh(column)
        return column
    return _make


def _question(**kwargs):
    defaults = dict(points=1, required=True, case_sensitive=False)
    defaults.update(kwargs)
    return ExamQuestion(**defaults)


@pytest.fixture
def make_exam(db_session, course_id, instructor):
    """
    Published exam that is open right now, with one question of each
    auto-gradable type (mc 2 pts, tf 1 pt, short answer 2 pts).
    """
    def _make(*, questions=None, published=True, **kwargs):
        now = utcnow()
        exam = Exam(
            course_id=kwargs.pop("course_id", course_id),
            instructor_id=kwargs.pop("instructor_id", instructor.id),
            title=kwargs.pop("title", "Midterm"),
            duration=kwargs.pop("duration", 60),
            start_time=kwargs.pop("start_time", now - timedelta(hours=1)),
            end_time=kwargs.pop("end_time", now + timedelta(hours=2)),
            max_attempts=kwargs.pop("max_attempts", 1),
            pass_percentage=kwargs.pop("pass_percentage", 60.0),
            status=ExamStatus.PUBLISHED.value if published else ExamStatus.DRAFT.value,
            visible_to_students=kwargs.pop("visible_to_students", published),
            **kwargs,
        )
        if questions is None:
            questions = [
                _question(
                    type="multiple-choice",
                    prompt="2 + 2 = ?",
                    options=["3", "4", "5"],
                    correct_answer_index=1,
                    points=2,
                    display_order=1,
                ),
                _question(
                    type="true-false",
                    prompt="The sky is blue.",
                    correct_answer="true",
                    points=1,
                    display_order=2,
                ),
                _question(
                    type="short-answer",
                    prompt="Capital of France?",
                    acceptable_answers=["Paris"],
                    points=2,
                    display_order=3,
                ),
            ]
        exam.questions = questions
        exam.recalculate_total_points()
        db_session.add(exam)
        db_session.commit()
        db_session.refresh(exam)
        return exam
    return _make


@pytest.fixture
def make_question():
    return _question


@pytest.fixture
def answers_for():
    """Map an exam's questions, in order, to the given answers."""
    def _answers(exam, *values):
        return {q.id: v for q, v in zip(exam.ordered_questions, values)}
    return _answers
