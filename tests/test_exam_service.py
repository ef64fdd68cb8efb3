from datetime import timedelta

import pytest

from edugrade.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from edugrade.core.utils import utcnow
from edugrade.models.exam import ExamQuestion, ExamStatus
from edugrade.models.exam_response import AttemptStatus, ExamResponse
from edugrade.models.grade_column import GradeColumn
from edugrade.schemas.exam import (
    ExamCreate,
    ExamQuestionCreate,
    ExamQuestionUpdate,
    ExamUpdate,
)
from edugrade.services import exam_service, grade_service


def exam_create(**kwargs):
    now = utcnow()
    data = dict(
        course_id="course-101",
        title="Final Exam",
        duration=90,
        start_time=now + timedelta(days=1),
        end_time=now + timedelta(days=2),
    )
    data.update(kwargs)
    return ExamCreate(**data)


def mc_create(**kwargs):
    data = dict(
        type="Multiple_Choice",
        prompt="Pick B",
        options=["A", "B", "C"],
        correct_answer_index=1,
        points=4,
    )
    data.update(kwargs)
    return ExamQuestionCreate(**data)


def linked_column(db, exam):
    return grade_service.find_linked_column(db, exam.course_id, exam.id)


class TestCreateExam:

    def test_creates_draft_with_linked_column(self, db_session, instructor):
        exam = exam_service.create_exam(db_session, instructor=instructor, obj_in=exam_create())

        assert exam.status == ExamStatus.DRAFT.value
        assert exam.instructor_id == instructor.id
        column = linked_column(db_session, exam)
        assert column is not None
        assert column.auto_created
        assert column.type == "exam"
        assert column.percentage == 20
        assert column.max_points == 100

    def test_linked_column_capped_by_remaining_percentage(
        self, db_session, instructor, make_column
    ):
        make_column("Homework", 90)
        exam = exam_service.create_exam(
            db_session, instructor=instructor, obj_in=exam_create(grade_category="quiz")
        )
        column = linked_column(db_session, exam)
        assert column.type == "quiz"
        assert column.percentage == 5

        make_column("Project", 5)
        second = exam_service.create_exam(
            db_session, instructor=instructor, obj_in=exam_create(title="Retake")
        )
        assert linked_column(db_session, second).percentage == 1

    def test_end_before_start(self, db_session, instructor):
        now = utcnow()
        with pytest.raises(ValidationError):
            exam_service.create_exam(
                db_session,
                instructor=instructor,
                obj_in=exam_create(start_time=now + timedelta(hours=2), end_time=now + timedelta(hours=1)),
            )

    def test_start_too_far_in_past(self, db_session, instructor):
        now = utcnow()
        with pytest.raises(ValidationError):
            exam_service.create_exam(
                db_session,
                instructor=instructor,
                obj_in=exam_create(start_time=now - timedelta(hours=3), end_time=now + timedelta(hours=1)),
            )

    def test_start_within_grace_period(self, db_session, instructor):
        now = utcnow()
        exam = exam_service.create_exam(
            db_session,
            instructor=instructor,
            obj_in=exam_create(start_time=now - timedelta(minutes=30), end_time=now + timedelta(hours=1)),
        )
        assert exam.id

    @pytest.mark.parametrize(
        "overrides",
        [{"duration": 0}, {"max_attempts": 0}, {"pass_percentage": 120}],
    )
    def test_invalid_settings(self, db_session, instructor, overrides):
        with pytest.raises(ValidationError):
            exam_service.create_exam(
                db_session, instructor=instructor, obj_in=exam_create(**overrides)
            )


class TestUpdateAndDelete:

    def test_only_owner_may_update(self, db_session, make_exam, other_instructor, admin):
        exam = make_exam()
        with pytest.raises(AuthorizationError):
            exam_service.update_exam(
                db_session, exam_id=exam.id, instructor=other_instructor, obj_in=ExamUpdate(title="x")
            )
        updated = exam_service.update_exam(
            db_session, exam_id=exam.id, instructor=admin, obj_in=ExamUpdate(title="Renamed")
        )
        assert updated.title == "Renamed"

    def test_update_renames_linked_column(self, db_session, make_exam, instructor):
        exam = make_exam()
        exam_service.update_exam(
            db_session, exam_id=exam.id, instructor=instructor, obj_in=ExamUpdate(title="Midterm 2")
        )
        assert linked_column(db_session, exam).name == "Midterm 2"

    def test_update_revalidates_timing(self, db_session, make_exam, instructor):
        exam = make_exam()
        with pytest.raises(ValidationError):
            exam_service.update_exam(
                db_session,
                exam_id=exam.id,
                instructor=instructor,
                obj_in=ExamUpdate(end_time=exam.start_time - timedelta(minutes=1)),
            )

    def test_delete_cascades(self, db_session, make_exam, instructor):
        exam = make_exam()
        exam_service.sync_linked_column(db_session, exam)
        column_id = linked_column(db_session, exam).id
        grade_service.update_student_grade(db_session, student_id="s1", column_id=column_id, score=90)
        db_session.add(ExamResponse(
            exam_id=exam.id, student_id="s1", course_id=exam.course_id,
            status=AttemptStatus.GRADED, answers={}, question_scores={},
        ))
        db_session.commit()
        exam_id = exam.id

        exam_service.delete_exam(db_session, exam_id=exam_id, instructor=instructor)

        assert db_session.query(ExamResponse).count() == 0
        assert db_session.query(ExamQuestion).count() == 0
        assert db_session.get(GradeColumn, column_id) is None
        record = grade_service.get_student_grade_record(db_session, "s1", "course-101")
        assert column_id not in record.grades
        with pytest.raises(NotFoundError):
            exam_service.get_exam(db_session, exam_id)


class TestPublish:

    def test_publish_without_questions_fails(self, db_session, make_exam, instructor):
        exam = make_exam(questions=[], published=False)
        with pytest.raises(ValidationError):
            exam_service.publish_exam(db_session, exam_id=exam.id, instructor=instructor)
        db_session.refresh(exam)
        assert exam.status == ExamStatus.DRAFT.value

    def test_publish_sets_visibility_and_syncs_column(self, db_session, make_exam, instructor):
        exam = make_exam(published=False)
        published = exam_service.publish_exam(db_session, exam_id=exam.id, instructor=instructor)

        assert published.status == ExamStatus.PUBLISHED.value
        assert published.visible_to_students
        assert published.publish_time is not None
        assert linked_column(db_session, exam).max_points == 5

    def test_unpublish(self, db_session, make_exam, instructor):
        exam = make_exam()
        exam = exam_service.unpublish_exam(db_session, exam_id=exam.id, instructor=instructor)
        assert exam.status == ExamStatus.DRAFT.value
        assert not exam.visible_to_students

    def test_student_view_requires_published(self, db_session, make_exam):
        draft = make_exam(published=False)
        with pytest.raises(NotFoundError):
            exam_service.get_student_exam_view(db_session, draft.id)


class TestQuestionBank:

    def test_add_question_recomputes_total(self, db_session, make_exam, instructor):
        exam = make_exam()
        question = exam_service.add_question(
            db_session, exam_id=exam.id, instructor=instructor, obj_in=mc_create()
        )

        db_session.refresh(exam)
        assert question.type == "multiple-choice"
        assert question.display_order == 4
        assert exam.total_points == 9
        assert linked_column(db_session, exam).max_points == 9

    @pytest.mark.parametrize(
        "overrides",
        [
            {"options": ["only one"], "correct_answer_index": 0},
            {"correct_answer_index": 3},
            {"correct_answer_index": None},
        ],
    )
    def test_invalid_multiple_choice(self, db_session, make_exam, instructor, overrides):
        exam = make_exam()
        with pytest.raises(ValidationError):
            exam_service.add_question(
                db_session, exam_id=exam.id, instructor=instructor, obj_in=mc_create(**overrides)
            )

    def test_unknown_type_rejected_by_schema(self):
        with pytest.raises(ValueError):
            mc_create(type="matching")

    def test_update_question(self, db_session, make_exam, instructor):
        exam = make_exam()
        first = exam.ordered_questions[0]
        exam_service.update_question(
            db_session,
            exam_id=exam.id,
            question_id=first.id,
            instructor=instructor,
            obj_in=ExamQuestionUpdate(points=10),
        )
        db_session.refresh(exam)
        assert exam.total_points == 13

    def test_update_missing_question(self, db_session, make_exam, instructor):
        exam = make_exam()
        with pytest.raises(NotFoundError):
            exam_service.update_question(
                db_session, exam_id=exam.id, question_id="nope",
                instructor=instructor, obj_in=ExamQuestionUpdate(points=1),
            )

    def test_delete_question_renumbers(self, db_session, make_exam, instructor):
        exam = make_exam()
        first = exam.ordered_questions[0]
        exam = exam_service.delete_question(
            db_session, exam_id=exam.id, question_id=first.id, instructor=instructor
        )
        assert [q.display_order for q in exam.ordered_questions] == [1, 2]
        assert exam.total_points == 3

    def test_reorder_appends_unlisted(self, db_session, make_exam, instructor):
        exam = make_exam()
        q1, q2, q3 = exam.ordered_questions
        exam = exam_service.reorder_questions(
            db_session, exam_id=exam.id, question_ids=[q3.id], instructor=instructor
        )
        assert [q.id for q in exam.ordered_questions] == [q3.id, q1.id, q2.id]

    def test_reorder_unknown_question(self, db_session, make_exam, instructor):
        exam = make_exam()
        with pytest.raises(NotFoundError):
            exam_service.reorder_questions(
                db_session, exam_id=exam.id, question_ids=["nope"], instructor=instructor
            )


class TestLinkedColumnSyncFailure:

    def test_failure_is_logged_and_reconciled(self, db_session, make_exam, no_job_queue, monkeypatch):
        exam = make_exam()

        def broken_sync(db, exam):
            return grade_service.SyncResult(
                error=grade_service.TransientStoreError("store unavailable")
            )

        monkeypatch.setattr(grade_service, "sync_linked_column", broken_sync)
        exam_service.sync_linked_column(db_session, exam)

        assert no_job_queue == [("resync_exam", (exam.id,))]
