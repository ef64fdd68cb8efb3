# edugrade/services/attempt_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from edugrade.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpiredError,
    GradingError,
    NotFoundError,
)
from edugrade.core.utils import utcnow
from edugrade.models.exam import Exam
from edugrade.models.exam_response import AttemptStatus, ExamResponse
from edugrade.schemas.exam_response import ExamAnswersIn, StudentExamResult
from edugrade.services import grading_service
from edugrade.services.exam_service import get_exam

logger = logging.getLogger(__name__)


@dataclass
class Eligibility:
    can_take: bool
    reason: str
    reason_code: str
    attempts_used: int
    max_attempts: int
    has_active_attempt: bool = False
    active_attempt_id: Optional[str] = None

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts_used)


def evaluate_eligibility(
    exam: Exam,
    attempt_count: int,
    active_attempt: Optional[ExamResponse],
    now: datetime,
) -> Eligibility:
    """
    Decide whether a student may start a new attempt.

    Checks run in a fixed order and the first failing one supplies the
    reason, so the same inputs always give the same message.
    """
    max_attempts = exam.max_attempts or 1

    def result(can_take: bool, reason: str, code: str) -> Eligibility:
        return Eligibility(
            can_take=can_take,
            reason=reason,
            reason_code=code,
            attempts_used=attempt_count,
            max_attempts=max_attempts,
            has_active_attempt=active_attempt is not None,
            active_attempt_id=active_attempt.id if active_attempt is not None else None,
        )

    if not exam.is_published:
        return result(False, "Exam is not published", "NOT_PUBLISHED")
    if not exam.visible_to_students:
        return result(False, "Exam is not visible to students", "NOT_VISIBLE")
    if now < exam.start_time:
        return result(False, "Exam has not started yet", "NOT_STARTED")
    if now > exam.end_time:
        return result(False, "Exam has ended", "ENDED")
    if active_attempt is not None:
        return result(False, "You already have an attempt in progress", "ACTIVE_ATTEMPT")
    if attempt_count >= max_attempts:
        return result(False, "Maximum attempts reached", "MAX_ATTEMPTS")
    return result(True, "You can take this exam", "ELIGIBLE")


def _active_attempt(db: Session, exam_id: str, student_id: str) -> Optional[ExamResponse]:
    return (
        db.query(ExamResponse)
        .filter(
            ExamResponse.exam_id == exam_id,
            ExamResponse.student_id == student_id,
            ExamResponse.status == AttemptStatus.IN_PROGRESS,
        )
        .first()
    )


def _attempt_count(db: Session, exam_id: str, student_id: str) -> int:
    return (
        db.query(func.count(ExamResponse.id))
        .filter(ExamResponse.exam_id == exam_id, ExamResponse.student_id == student_id)
        .scalar()
        or 0
    )


def _last_attempt_number(db: Session, exam_id: str, student_id: str) -> int:
    return (
        db.query(func.max(ExamResponse.attempt_number))
        .filter(ExamResponse.exam_id == exam_id, ExamResponse.student_id == student_id)
        .scalar()
        or 0
    )


def check_exam_eligibility(db: Session, exam_id: str, student_id: str) -> Eligibility:
    exam = get_exam(db, exam_id)
    return evaluate_eligibility(
        exam,
        _attempt_count(db, exam_id, student_id),
        _active_attempt(db, exam_id, student_id),
        utcnow(),
    )


_EXPIRED_CODES = {"ENDED"}


def start_exam(db: Session, *, exam_id: str, student_id: str) -> ExamResponse:
    exam = get_exam(db, exam_id)
    eligibility = check_exam_eligibility(db, exam_id, student_id)
    if not eligibility.can_take:
        if eligibility.reason_code in _EXPIRED_CODES:
            raise ExpiredError(eligibility.reason)
        raise ConflictError(eligibility.reason)

    response = ExamResponse(
        exam_id=exam.id,
        student_id=student_id,
        course_id=exam.course_id,
        attempt_number=_last_attempt_number(db, exam_id, student_id) + 1,
        status=AttemptStatus.IN_PROGRESS,
        answers={},
        question_scores={},
        started_at=utcnow(),
        max_score=exam.total_points or 0,
    )
    db.add(response)
    try:
        db.flush()
    except IntegrityError:
        # a concurrent start won the race for the active-attempt slot
        db.rollback()
        raise ConflictError("You already have an attempt in progress")
    db.commit()
    db.refresh(response)

    logger.info(
        f"Student {student_id} started attempt {response.attempt_number} of exam {exam_id}"
    )
    return response


def _require_active_attempt(db: Session, exam_id: str, student_id: str) -> ExamResponse:
    response = _active_attempt(db, exam_id, student_id)
    if response is None:
        raise NotFoundError("No active exam attempt found")
    return response


def _merge_answers(response: ExamResponse, obj_in: ExamAnswersIn) -> None:
    for question_id, answer in (obj_in.answers or {}).items():
        response.answers[question_id] = answer
    if obj_in.time_spent is not None:
        response.time_spent = obj_in.time_spent


def save_progress(db: Session, *, student_id: str, obj_in: ExamAnswersIn) -> ExamResponse:
    response = _require_active_attempt(db, obj_in.exam_id, student_id)
    _merge_answers(response, obj_in)

    db.add(response)
    db.commit()
    db.refresh(response)
    return response


def submit_exam(db: Session, *, student_id: str, obj_in: ExamAnswersIn) -> ExamResponse:
    """
    Finalize the active attempt and try to auto-grade it right away.

    A late submission is accepted and flagged. The submission stands even
    if auto-grading fails.
    """
    exam = get_exam(db, obj_in.exam_id)
    response = _require_active_attempt(db, exam.id, student_id)
    _merge_answers(response, obj_in)

    now = utcnow()
    response.status = AttemptStatus.SUBMITTED
    response.submitted_at = now
    response.late_submission = now > exam.end_time
    if obj_in.time_spent is None and response.started_at is not None:
        response.time_spent = int((now - response.started_at).total_seconds())

    db.add(response)
    db.commit()
    db.refresh(response)
    logger.info(
        f"Student {student_id} submitted attempt {response.attempt_number} of exam {exam.id}"
        + (" (late)" if response.late_submission else "")
    )

    try:
        grading_service.auto_grade_response(db, response.id)
    except (GradingError, SQLAlchemyError) as e:
        db.rollback()
        logger.warning(f"Auto-grading after submit failed for response {response.id}: {e}")

    db.refresh(response)
    return response


def resume_exam_attempt(db: Session, *, exam_id: str, student_id: str):
    """
    Returns (response, remaining_minutes, exam) for the active attempt.
    """
    exam = get_exam(db, exam_id)
    response = _require_active_attempt(db, exam_id, student_id)

    now = utcnow()
    if now > exam.end_time:
        raise ExpiredError("Exam has ended")

    elapsed_minutes = int((now - response.started_at).total_seconds() // 60)
    remaining_minutes = max(0, (exam.duration or 0) - elapsed_minutes)
    if remaining_minutes <= 0:
        raise ExpiredError("Exam time has expired")

    return response, remaining_minutes, exam


def get_student_attempt_history(db: Session, exam_id: str, student_id: str) -> List[ExamResponse]:
    return (
        db.query(ExamResponse)
        .filter(ExamResponse.exam_id == exam_id, ExamResponse.student_id == student_id)
        .order_by(ExamResponse.attempt_number)
        .all()
    )


def get_student_exam_results(db: Session, *, response_id: str, student_id: str) -> StudentExamResult:
    response = db.get(ExamResponse, response_id)
    if response is None:
        raise NotFoundError(f"Exam response not found with ID: {response_id}")
    if response.student_id != student_id:
        raise AuthorizationError("Not authorized to view this exam result")

    exam = get_exam(db, response.exam_id)
    if not exam.show_results:
        raise ConflictError("Results are not released for this exam")
    if not response.graded:
        raise ConflictError("Exam has not been graded yet")

    return StudentExamResult(
        response_id=response.id,
        exam_id=exam.id,
        exam_title=exam.title,
        attempt_number=response.attempt_number,
        total_score=response.total_score,
        max_score=response.max_score,
        percentage=response.percentage,
        passed=response.passed,
        submitted_at=response.submitted_at,
        graded_at=response.graded_at,
        instructor_feedback=response.instructor_feedback,
        question_scores=dict(response.question_scores or {}),
    )
