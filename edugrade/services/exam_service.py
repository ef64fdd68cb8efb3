# edugrade/services/exam_service.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import List

from sqlalchemy.orm import Session

from edugrade.core.config import settings
from edugrade.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from edugrade.core.security import CurrentUser
from edugrade.core.utils import to_naive_utc, utcnow
from edugrade.models.exam import Exam, ExamQuestion, ExamStatus, QuestionType
from edugrade.models.exam_response import ExamResponse
from edugrade.schemas.exam import (
    ExamCreate,
    ExamQuestionCreate,
    ExamQuestionUpdate,
    ExamUpdate,
)
from edugrade.services import grade_service
from edugrade.workers.queue import enqueue_exam_resync

logger = logging.getLogger(__name__)


def get_exam(db: Session, exam_id: str) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise NotFoundError(f"Exam not found with ID: {exam_id}")
    return exam


def list_exams_for_course(db: Session, course_id: str) -> List[Exam]:
    return (
        db.query(Exam)
        .filter(Exam.course_id == course_id)
        .order_by(Exam.created_at.desc())
        .all()
    )


def _ensure_owner(exam: Exam, instructor: CurrentUser, action: str) -> None:
    if instructor.is_admin:
        return
    if exam.instructor_id != instructor.id:
        raise AuthorizationError(f"Not authorized to {action} this exam")


def _validate_exam_settings(exam: Exam) -> None:
    if exam.end_time <= exam.start_time:
        raise ValidationError("End time must be after start time")
    if exam.duration is None or exam.duration <= 0:
        raise ValidationError("Duration must be a positive number of minutes")
    if exam.max_attempts is None or exam.max_attempts < 1:
        raise ValidationError("Max attempts must be at least 1")
    if exam.pass_percentage is None or not 0 <= exam.pass_percentage <= 100:
        raise ValidationError("Pass percentage must be between 0 and 100")


def sync_linked_column(db: Session, exam: Exam) -> None:
    """Linked column follow-up; a failure is logged and left for reconciliation."""
    result = grade_service.sync_linked_column(db, exam)
    if not result.ok:
        logger.warning(f"{result.error}", exc_info=result.error)
        enqueue_exam_resync(exam.id)


# ---------------------------------------------------------------------------
# Exam lifecycle
# ---------------------------------------------------------------------------

def create_exam(
    db: Session,
    *,
    instructor: CurrentUser,
    obj_in: ExamCreate,
) -> Exam:
    start_time = to_naive_utc(obj_in.start_time)
    end_time = to_naive_utc(obj_in.end_time)

    if start_time < utcnow() - timedelta(minutes=settings.EXAM_START_GRACE_MINUTES):
        raise ValidationError(
            f"Start time cannot be more than {settings.EXAM_START_GRACE_MINUTES} minutes in the past"
        )

    exam = Exam(
        course_id=obj_in.course_id,
        instructor_id=instructor.id,
        title=obj_in.title,
        description=obj_in.description,
        instructions=obj_in.instructions,
        duration=obj_in.duration,
        start_time=start_time,
        end_time=end_time,
        publish_time=to_naive_utc(obj_in.publish_time),
        max_attempts=obj_in.max_attempts,
        pass_percentage=obj_in.pass_percentage,
        total_points=0,
        status=ExamStatus.DRAFT.value,
        visible_to_students=obj_in.visible_to_students,
        shuffle_questions=obj_in.shuffle_questions,
        shuffle_options=obj_in.shuffle_options,
        allow_navigation=obj_in.allow_navigation,
        show_timer=obj_in.show_timer,
        auto_submit=obj_in.auto_submit,
        require_safe_browser=obj_in.require_safe_browser,
        show_results=obj_in.show_results,
        grade_category=(obj_in.grade_category or "exam").strip().lower(),
    )
    if not exam.title or not exam.title.strip():
        raise ValidationError("Exam title is required")
    _validate_exam_settings(exam)

    db.add(exam)
    db.commit()
    db.refresh(exam)
    logger.info(f"Created exam {exam.id} in course {exam.course_id}")

    sync_linked_column(db, exam)
    return exam


def update_exam(
    db: Session,
    *,
    exam_id: str,
    instructor: CurrentUser,
    obj_in: ExamUpdate,
) -> Exam:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "update")

    update_data = obj_in.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None:
            continue
        if field in ("start_time", "end_time", "publish_time"):
            value = to_naive_utc(value)
        setattr(exam, field, value)

    try:
        _validate_exam_settings(exam)
    except ValidationError:
        db.rollback()
        raise

    db.add(exam)
    db.commit()
    db.refresh(exam)

    sync_linked_column(db, exam)
    return exam


def delete_exam(db: Session, *, exam_id: str, instructor: CurrentUser) -> None:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "delete")

    grade_service.remove_linked_columns(db, course_id=exam.course_id, assignment_id=exam.id)

    db.query(ExamResponse).filter(ExamResponse.exam_id == exam_id).delete(
        synchronize_session=False
    )
    db.delete(exam)
    db.commit()
    logger.info(f"Deleted exam {exam_id}")


def publish_exam(db: Session, *, exam_id: str, instructor: CurrentUser) -> Exam:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "publish")

    if not exam.questions:
        raise ValidationError("Cannot publish exam without questions")

    exam.recalculate_total_points()
    exam.status = ExamStatus.PUBLISHED.value
    exam.visible_to_students = True
    if exam.publish_time is None:
        exam.publish_time = utcnow()

    db.add(exam)
    db.commit()
    db.refresh(exam)
    logger.info(f"Published exam {exam.id} ({len(exam.questions)} questions, {exam.total_points} points)")

    sync_linked_column(db, exam)
    return exam


def unpublish_exam(db: Session, *, exam_id: str, instructor: CurrentUser) -> Exam:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "unpublish")

    exam.status = ExamStatus.DRAFT.value
    exam.visible_to_students = False

    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


def get_student_exam_view(db: Session, exam_id: str) -> Exam:
    """Exam as a student may see it; the schema layer strips the answer key."""
    exam = get_exam(db, exam_id)
    if not exam.is_published or not exam.visible_to_students:
        raise NotFoundError("Exam is not available for students")
    return exam


# ---------------------------------------------------------------------------
# Question bank
# ---------------------------------------------------------------------------

def validate_question(question: ExamQuestion) -> None:
    question_type = QuestionType.parse(question.type)
    if question_type is None:
        raise ValidationError(f"Unsupported question type: {question.type!r}")
    if not question.prompt or not question.prompt.strip():
        raise ValidationError("Question text is required")
    if question.points is None or question.points < 0:
        raise ValidationError("Question points must be zero or more")

    if question_type is QuestionType.MULTIPLE_CHOICE:
        options = question.options or []
        if len(options) < 2:
            raise ValidationError("Multiple choice questions need at least 2 options")
        index = question.correct_answer_index
        if index is None or index < 0 or index >= len(options):
            raise ValidationError("Invalid correct answer index")


def _after_question_change(db: Session, exam: Exam) -> None:
    exam.recalculate_total_points()
    db.add(exam)
    db.commit()
    db.refresh(exam)
    sync_linked_column(db, exam)


def _renumber(exam: Exam) -> None:
    for order, question in enumerate(exam.ordered_questions, start=1):
        question.display_order = order


def add_question(
    db: Session,
    *,
    exam_id: str,
    instructor: CurrentUser,
    obj_in: ExamQuestionCreate,
) -> ExamQuestion:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "modify")

    data = obj_in.model_dump()
    data["type"] = QuestionType.parse(data["type"]).value
    question = ExamQuestion(**data)
    question.display_order = len(exam.questions) + 1
    validate_question(question)

    exam.questions.append(question)
    _after_question_change(db, exam)
    db.refresh(question)
    return question


def update_question(
    db: Session,
    *,
    exam_id: str,
    question_id: str,
    instructor: CurrentUser,
    obj_in: ExamQuestionUpdate,
) -> ExamQuestion:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "modify")

    question = exam.find_question(question_id)
    if question is None:
        raise NotFoundError(f"Question not found with ID: {question_id}")

    for field, value in obj_in.model_dump(exclude_unset=True).items():
        if field == "type" and value is not None:
            value = QuestionType.parse(value).value
        setattr(question, field, value)

    try:
        validate_question(question)
    except ValidationError:
        db.rollback()
        raise

    _after_question_change(db, exam)
    db.refresh(question)
    return question


def delete_question(
    db: Session,
    *,
    exam_id: str,
    question_id: str,
    instructor: CurrentUser,
) -> Exam:
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "modify")

    question = exam.find_question(question_id)
    if question is None:
        raise NotFoundError(f"Question not found with ID: {question_id}")

    exam.questions.remove(question)
    _renumber(exam)
    _after_question_change(db, exam)
    return exam


def reorder_questions(
    db: Session,
    *,
    exam_id: str,
    question_ids: List[str],
    instructor: CurrentUser,
) -> Exam:
    """
    Put the listed questions first, in the given order. Questions left out
    keep their relative order after them.
    """
    exam = get_exam(db, exam_id)
    _ensure_owner(exam, instructor, "modify")

    by_id = {q.id: q for q in exam.questions}
    unknown = [qid for qid in question_ids if qid not in by_id]
    if unknown:
        raise NotFoundError(f"Questions not found in exam: {', '.join(unknown)}")
    if len(set(question_ids)) != len(question_ids):
        raise ValidationError("Question order contains duplicates")

    listed = [by_id[qid] for qid in question_ids]
    rest = [q for q in exam.ordered_questions if q.id not in set(question_ids)]
    for order, question in enumerate(listed + rest, start=1):
        question.display_order = order

    _after_question_change(db, exam)
    return exam

