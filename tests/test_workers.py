import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.orm import sessionmaker

from edugrade.models.exam_response import AttemptStatus, ExamResponse
from edugrade.services import grade_service
from edugrade.workers import queue, tasks


@pytest.fixture
def task_sessions(engine, monkeypatch):
    """Point the worker tasks at the test database."""
    monkeypatch.setattr(tasks, "SessionLocal", sessionmaker(bind=engine, autoflush=False))


class TestEnqueue:

    def test_unreachable_redis_returns_none(self, monkeypatch):
        class DownQueue:
            def enqueue(self, func, *args, **kwargs):
                raise RedisConnectionError("connection refused")

        monkeypatch.setattr(queue, "get_queue", lambda name=None: DownQueue())
        assert queue.enqueue_course_recalculation("course-101") is None

    def test_returns_job_id(self, monkeypatch):
        enqueued = []

        class FakeJob:
            id = "job-1"

        class FakeQueue:
            def enqueue(self, func, *args, **kwargs):
                enqueued.append((func.__name__, args))
                return FakeJob()

        monkeypatch.setattr(queue, "get_queue", lambda name=None: FakeQueue())
        assert queue.enqueue_exam_resync("exam-1") == "job-1"
        assert enqueued == [("resync_exam_grades_task", ("exam-1",))]


class TestTasks:

    def test_recalculate_course(self, db_session, make_column, task_sessions):
        column = make_column("Quiz", 50)
        grade_service.update_student_grade(db_session, student_id="s1", column_id=column.id, score=80)
        column.percentage = 100
        db_session.commit()

        result = tasks.recalculate_course_task("course-101")

        assert result == {"status": "success", "course_id": "course-101", "updated_records": 1}
        record = grade_service.get_student_grade_record(db_session, "s1", "course-101")
        db_session.refresh(record)
        assert record.final_grade == 80.0

    def test_auto_grade_exam(self, db_session, make_exam, task_sessions):
        exam = make_exam()
        db_session.add(ExamResponse(
            exam_id=exam.id, student_id="s1", course_id=exam.course_id,
            status=AttemptStatus.SUBMITTED, answers={}, question_scores={},
        ))
        db_session.commit()

        result = tasks.auto_grade_exam_task(exam.id)
        assert result == {"status": "success", "exam_id": exam.id, "graded_responses": 1}

    def test_resync_unknown_exam(self, task_sessions):
        result = tasks.resync_exam_grades_task("missing")
        assert result["status"] == "error"
        assert "missing" in result["error"]

    def test_fix_all_grades(self, task_sessions):
        assert tasks.fix_all_grades_task() == {
            "status": "success",
            "courses": 0,
            "duplicates_merged": 0,
            "records_updated": 0,
        }
