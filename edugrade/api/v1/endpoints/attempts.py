# edugrade/api/v1/endpoints/attempts.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from edugrade.core.security import CurrentUser, get_current_student
from edugrade.db.session import get_db
from edugrade.schemas.exam_response import (
    EligibilityPublic,
    ExamAnswersIn,
    ExamResponsePublic,
    ResumePublic,
    StudentExamResult,
)
from edugrade.services import attempt_service

router = APIRouter(prefix="/attempts", tags=["attempts"])


@router.get("/exams/{exam_id}/eligibility", response_model=EligibilityPublic)
def check_eligibility(
    exam_id: str,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    eligibility = attempt_service.check_exam_eligibility(db, exam_id, current_student.id)
    return EligibilityPublic(
        can_take=eligibility.can_take,
        reason=eligibility.reason,
        reason_code=eligibility.reason_code,
        attempts_used=eligibility.attempts_used,
        max_attempts=eligibility.max_attempts,
        remaining_attempts=eligibility.remaining_attempts,
        has_active_attempt=eligibility.has_active_attempt,
        active_attempt_id=eligibility.active_attempt_id,
    )


@router.post(
    "/exams/{exam_id}/start",
    response_model=ExamResponsePublic,
    status_code=status.HTTP_201_CREATED,
)
def start_exam(
    exam_id: str,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    return attempt_service.start_exam(db, exam_id=exam_id, student_id=current_student.id)


@router.put("/progress", response_model=ExamResponsePublic)
def save_progress(
    obj_in: ExamAnswersIn,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    """
    Merge answers into the active attempt; answers not sent are kept.
    """
    return attempt_service.save_progress(db, student_id=current_student.id, obj_in=obj_in)


@router.post("/submit", response_model=ExamResponsePublic)
def submit_exam(
    obj_in: ExamAnswersIn,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    """
    Submit the active attempt. Auto-grading runs right after; the
    submission is kept even when grading fails.
    """
    return attempt_service.submit_exam(db, student_id=current_student.id, obj_in=obj_in)


@router.get("/exams/{exam_id}/resume", response_model=ResumePublic)
def resume_exam(
    exam_id: str,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    response, remaining_minutes, exam = attempt_service.resume_exam_attempt(
        db, exam_id=exam_id, student_id=current_student.id
    )
    return ResumePublic(
        response=ExamResponsePublic.model_validate(response),
        remaining_minutes=remaining_minutes,
        exam_id=exam.id,
        exam_title=exam.title,
        duration=exam.duration,
        end_time=exam.end_time,
    )


@router.get("/exams/{exam_id}/history", response_model=List[ExamResponsePublic])
def attempt_history(
    exam_id: str,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    return attempt_service.get_student_attempt_history(db, exam_id, current_student.id)


@router.get("/{response_id}/results", response_model=StudentExamResult)
def exam_results(
    response_id: str,
    db: Session = Depends(get_db),
    current_student: CurrentUser = Depends(get_current_student),
):
    return attempt_service.get_student_exam_results(
        db, response_id=response_id, student_id=current_student.id
    )
