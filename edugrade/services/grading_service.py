# edugrade/services/grading_service.py
from __future__ import annotations

import logging
import re
from typing import Dict, List

from sqlalchemy.orm import Session

from edugrade.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GradingError,
    NotFoundError,
    ValidationError,
)
from edugrade.core.security import CurrentUser
from edugrade.core.utils import round_half_up, utcnow
from edugrade.models.exam import Exam
from edugrade.models.exam_response import AttemptStatus, ExamResponse
from edugrade.schemas.exam import ExamGradingStats, ExamStats
from edugrade.schemas.exam_response import (
    BatchGradeRequest,
    ExamGradeRequest,
    QuestionScoreUpdate,
)
from edugrade.services import grade_service
from edugrade.services.autograder import can_question_be_auto_graded, grade_question
from edugrade.services.exam_service import get_exam
from edugrade.workers.queue import enqueue_exam_resync

logger = logging.getLogger(__name__)

_FLAG_MARKER = re.compile(r"\n?\[FLAGGED:[^\]]*\]")

# responses picked up by a batch auto-grading run
_AUTO_GRADABLE_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.AUTO_GRADE_FAILED)


def get_response(db: Session, response_id: str, *, grader: CurrentUser | None = None) -> ExamResponse:
    response = db.get(ExamResponse, response_id)
    if response is None:
        raise NotFoundError(f"Exam response not found with ID: {response_id}")
    if grader is not None:
        _ensure_grader(get_exam(db, response.exam_id), grader)
    return response


def list_responses_for_exam(
    db: Session, exam_id: str, *, grader: CurrentUser | None = None
) -> List[ExamResponse]:
    if grader is not None:
        get_exam_for_grader(db, exam_id, grader)
    return (
        db.query(ExamResponse)
        .filter(ExamResponse.exam_id == exam_id)
        .order_by(ExamResponse.student_id, ExamResponse.attempt_number)
        .all()
    )


def _ensure_grader(exam: Exam, grader: CurrentUser) -> None:
    if grader.is_admin:
        return
    if exam.instructor_id != grader.id:
        raise AuthorizationError("Not authorized to grade responses for this exam")


def get_exam_for_grader(db: Session, exam_id: str, grader: CurrentUser | None) -> Exam:
    """Load an exam, checking ownership when a user is acting. Jobs pass None."""
    exam = get_exam(db, exam_id)
    if grader is not None:
        _ensure_grader(exam, grader)
    return exam


def _ensure_gradable(response: ExamResponse) -> None:
    if response.status == AttemptStatus.IN_PROGRESS:
        raise ConflictError("Cannot grade an attempt that is still in progress")
    if response.status == AttemptStatus.GRADED:
        raise ConflictError("Response is already graded")


def _sync_to_ledger(db: Session, response: ExamResponse, exam: Exam) -> None:
    result = grade_service.sync_exam_score(db, response=response, exam=exam)
    if not result.ok:
        logger.warning(
            f"Ledger sync failed for response {response.id}: {result.error}",
            exc_info=result.error,
        )
        enqueue_exam_resync(exam.id)


def _finish_if_complete(response: ExamResponse, exam: Exam, graded_by: str | None) -> bool:
    """
    Mark the response GRADED once every question has a score, otherwise
    PARTIALLY_GRADED. Returns whether it is now fully graded.
    """
    scores = response.question_scores or {}
    complete = all(q.id in scores for q in exam.questions)

    response.graded = complete
    if complete:
        response.status = AttemptStatus.GRADED
        response.passed = response.percentage >= (exam.pass_percentage or 0)
        response.graded_at = utcnow()
        if graded_by:
            response.graded_by = graded_by
    else:
        response.status = AttemptStatus.PARTIALLY_GRADED
        response.passed = False
    return complete


# ---------------------------------------------------------------------------
# Auto-grading
# ---------------------------------------------------------------------------

def auto_grade_response(
    db: Session, response_id: str, *, grader: CurrentUser | None = None
) -> ExamResponse:
    response = get_response(db, response_id)
    exam = get_exam_for_grader(db, response.exam_id, grader)
    _ensure_gradable(response)

    exam.recalculate_total_points()
    response.max_score = exam.total_points

    answers = response.answers or {}
    auto_scores: Dict[str, int] = {}
    manual_pending = False
    for question in exam.ordered_questions:
        if can_question_be_auto_graded(question):
            auto_scores[question.id] = grade_question(question, answers.get(question.id))
        elif question.id not in (response.question_scores or {}):
            manual_pending = True

    if response.question_scores is None:
        response.question_scores = {}
    # manual scores for the other questions stay as they are
    for question_id, points in auto_scores.items():
        response.question_scores[question_id] = points
    response.recalculate_total()

    response.auto_graded = True
    response.graded = not manual_pending
    if manual_pending:
        response.status = AttemptStatus.PARTIALLY_GRADED
        response.passed = False
    else:
        response.status = AttemptStatus.GRADED
        response.passed = response.percentage >= (exam.pass_percentage or 0)
        response.graded_at = utcnow()

    db.add(exam)
    db.add(response)
    db.commit()
    db.refresh(response)
    logger.info(
        f"Auto-graded response {response.id}: {response.total_score}/{response.max_score} "
        f"({response.percentage}%), status {response.status.value}"
    )

    if response.graded:
        _sync_to_ledger(db, response, exam)
    return response


def auto_grade_all_responses(
    db: Session, exam_id: str, *, grader: CurrentUser | None = None
) -> List[ExamResponse]:
    """
    Auto-grade every ungraded submission of an exam.

    Each response is committed on its own. A response that fails is marked
    AUTO_GRADE_FAILED with the error in its feedback and the run continues.
    Responses an instructor is grading by hand are left alone.
    """
    get_exam_for_grader(db, exam_id, grader)
    response_ids = [
        r.id
        for r in db.query(ExamResponse.id)
        .filter(
            ExamResponse.exam_id == exam_id,
            ExamResponse.graded.is_(False),
            ExamResponse.status.in_(_AUTO_GRADABLE_STATUSES),
        )
        .all()
    ]

    graded: List[ExamResponse] = []
    failed = 0
    for response_id in response_ids:
        try:
            graded.append(auto_grade_response(db, response_id))
        except Exception as e:
            db.rollback()
            failed += 1
            logger.error(f"Auto-grading failed for response {response_id}: {e}", exc_info=True)
            response = db.get(ExamResponse, response_id)
            if response is not None:
                response.status = AttemptStatus.AUTO_GRADE_FAILED
                response.instructor_feedback = f"Auto-grading failed: {e}"
                db.commit()

    logger.info(
        f"Batch auto-grading of exam {exam_id}: {len(graded)} graded, {failed} failed"
    )
    return graded


# ---------------------------------------------------------------------------
# Manual grading
# ---------------------------------------------------------------------------

def _check_score(exam: Exam, question_id: str, score: int) -> None:
    question = exam.find_question(question_id)
    if question is None:
        raise NotFoundError(f"Question not found with ID: {question_id}")
    if score < 0 or score > (question.points or 0):
        raise ValidationError(
            f"Score for question {question_id} must be between 0 and {question.points}"
        )


def grade_response(
    db: Session,
    *,
    response_id: str,
    grader: CurrentUser,
    obj_in: ExamGradeRequest,
) -> ExamResponse:
    response = get_response(db, response_id)
    exam = get_exam(db, response.exam_id)
    _ensure_grader(exam, grader)

    if response.status == AttemptStatus.IN_PROGRESS:
        raise ConflictError("Cannot grade an attempt that is still in progress")
    if response.status == AttemptStatus.GRADED and obj_in.question_scores:
        raise ConflictError("Response is already graded")

    for question_id, score in obj_in.question_scores.items():
        _check_score(exam, question_id, score)

    was_graded = response.graded
    for question_id, score in obj_in.question_scores.items():
        response.question_scores[question_id] = score
    if obj_in.question_scores:
        response.max_score = exam.recalculate_total_points()
        response.recalculate_total()
        _finish_if_complete(response, exam, grader.id)

    if obj_in.instructor_feedback is not None:
        response.instructor_feedback = obj_in.instructor_feedback
    if obj_in.flagged_for_review is not None:
        response.flagged_for_review = obj_in.flagged_for_review

    db.add(response)
    db.commit()
    db.refresh(response)
    logger.info(f"Response {response.id} graded by {grader.id}, status {response.status.value}")

    if response.graded and not was_graded:
        _sync_to_ledger(db, response, exam)
    return response


def update_question_score(
    db: Session,
    *,
    response_id: str,
    question_id: str,
    grader: CurrentUser,
    obj_in: QuestionScoreUpdate,
) -> ExamResponse:
    response = get_response(db, response_id)
    exam = get_exam(db, response.exam_id)
    _ensure_grader(exam, grader)
    _ensure_gradable(response)
    _check_score(exam, question_id, obj_in.score)

    response.question_scores[question_id] = obj_in.score
    response.max_score = exam.recalculate_total_points()
    response.recalculate_total()
    if obj_in.feedback:
        response.instructor_feedback = obj_in.feedback
    _finish_if_complete(response, exam, grader.id)

    db.add(response)
    db.commit()
    db.refresh(response)

    if response.graded:
        _sync_to_ledger(db, response, exam)
    return response


def begin_manual_grading(db: Session, *, response_id: str, grader: CurrentUser) -> ExamResponse:
    """Claim a response for hand grading so batch auto-grading skips it."""
    response = get_response(db, response_id)
    exam = get_exam(db, response.exam_id)
    _ensure_grader(exam, grader)
    _ensure_gradable(response)

    response.status = AttemptStatus.GRADING_IN_PROGRESS
    response.graded_by = grader.id
    db.add(response)
    db.commit()
    db.refresh(response)
    return response


def flag_response_for_review(
    db: Session,
    *,
    response_id: str,
    grader: CurrentUser,
    reason: str,
    priority: str | None = None,
) -> ExamResponse:
    response = get_response(db, response_id)
    _ensure_grader(get_exam(db, response.exam_id), grader)

    response.flagged_for_review = True
    response.instructor_feedback = (response.instructor_feedback or "") + f"\n[FLAGGED: {reason}]"

    db.add(response)
    db.commit()
    db.refresh(response)
    logger.info(f"Response {response.id} flagged for review ({priority or 'normal'}): {reason}")
    return response


def unflag_response(db: Session, *, response_id: str, grader: CurrentUser) -> ExamResponse:
    response = get_response(db, response_id)
    _ensure_grader(get_exam(db, response.exam_id), grader)

    response.flagged_for_review = False
    if response.instructor_feedback is not None:
        response.instructor_feedback = _FLAG_MARKER.sub("", response.instructor_feedback) or None

    db.add(response)
    db.commit()
    db.refresh(response)
    return response


def batch_grade_responses(
    db: Session,
    *,
    grader: CurrentUser,
    obj_in: BatchGradeRequest,
) -> List[ExamResponse]:
    """
    Apply shared feedback and review flag to several responses. A response
    that cannot be updated is logged and skipped.
    """
    updated: List[ExamResponse] = []
    for response_id in obj_in.response_ids:
        try:
            response = get_response(db, response_id)
            _ensure_grader(get_exam(db, response.exam_id), grader)

            if obj_in.instructor_feedback and obj_in.instructor_feedback.strip():
                response.instructor_feedback = obj_in.instructor_feedback
            if obj_in.flag_for_review:
                response.flagged_for_review = True
            response.graded_by = grader.id
            response.graded_at = utcnow()

            db.add(response)
            db.commit()
            db.refresh(response)
            updated.append(response)
        except GradingError as e:
            db.rollback()
            logger.error(f"Batch grading skipped response {response_id}: {e}")

    logger.info(f"Batch grading updated {len(updated)} of {len(obj_in.response_ids)} responses")
    return updated


# ---------------------------------------------------------------------------
# Statistics and reconciliation
# ---------------------------------------------------------------------------

def get_exam_stats(db: Session, exam_id: str, *, grader: CurrentUser | None = None) -> ExamStats:
    exam = get_exam_for_grader(db, exam_id, grader)
    responses = list_responses_for_exam(db, exam_id)

    graded = [r for r in responses if r.graded]
    submitted = [r for r in responses if r.is_submitted]
    passed = [r for r in graded if r.passed]

    average = sum(r.percentage for r in graded) / len(graded) if graded else 0.0
    return ExamStats(
        exam_id=exam.id,
        exam_title=exam.title,
        total_responses=len(responses),
        submitted_responses=len(submitted),
        graded_responses=len(graded),
        passed_responses=len(passed),
        average_score=round_half_up(average),
        pass_rate=round_half_up(len(passed) * 100.0 / len(graded)) if graded else 0.0,
        completion_rate=(
            round_half_up(len(submitted) * 100.0 / len(responses)) if responses else 0.0
        ),
    )


def get_exam_grading_stats(
    db: Session, exam_id: str, *, grader: CurrentUser | None = None
) -> ExamGradingStats:
    get_exam_for_grader(db, exam_id, grader)
    responses = list_responses_for_exam(db, exam_id)
    if not responses:
        return ExamGradingStats()

    stats = ExamGradingStats(total_responses=len(responses))
    for response in responses:
        if response.graded:
            stats.graded_responses += 1
            if response.auto_graded:
                stats.auto_graded_responses += 1
            else:
                stats.manually_graded_responses += 1
        elif response.status == AttemptStatus.SUBMITTED:
            stats.needs_grading += 1
        if response.flagged_for_review:
            stats.flagged_responses += 1
        if response.passed:
            stats.passed_responses += 1
        if response.status == AttemptStatus.IN_PROGRESS:
            stats.in_progress_responses += 1
        if response.status == AttemptStatus.SUBMITTED:
            stats.submitted_responses += 1

    stats.grading_progress = round_half_up(stats.graded_responses * 100.0 / len(responses))
    return stats


def resync_exam_grades(db: Session, exam_id: str, *, grader: CurrentUser | None = None) -> int:
    """
    Reconciliation: push each student's latest graded attempt into the
    ledger again, then recalculate the course. Returns the students synced.
    """
    exam = get_exam_for_grader(db, exam_id, grader)
    latest: Dict[str, ExamResponse] = {}
    for response in list_responses_for_exam(db, exam_id):
        if response.graded:
            latest[response.student_id] = response

    synced = 0
    for response in latest.values():
        result = grade_service.sync_exam_score(db, response=response, exam=exam)
        if result.ok:
            synced += 1
        else:
            logger.error(f"Resync of response {response.id} failed: {result.error}")

    grade_service.recalculate_all_grades_for_course(db, exam.course_id)
    logger.info(f"Resynced {synced} student grades for exam {exam_id}")
    return synced
