# edugrade/api/v1/endpoints/grading.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from edugrade.core.security import CurrentUser, get_current_instructor
from edugrade.db.session import get_db
from edugrade.schemas.exam import ExamGradingStats, ExamStats
from edugrade.schemas.exam_response import (
    BatchGradeRequest,
    ExamGradeRequest,
    ExamResponseDetail,
    FlagRequest,
    QuestionScoreUpdate,
)
from edugrade.services import grading_service
from edugrade.workers.queue import enqueue_auto_grade_all

router = APIRouter(prefix="/grading", tags=["grading"])


@router.get("/exams/{exam_id}/responses", response_model=List[ExamResponseDetail])
def list_exam_responses(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.list_responses_for_exam(db, exam_id, grader=current_instructor)


@router.get("/responses/{response_id}", response_model=ExamResponseDetail)
def get_response(
    response_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.get_response(db, response_id, grader=current_instructor)


@router.post("/responses/{response_id}/auto-grade", response_model=ExamResponseDetail)
def auto_grade_response(
    response_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.auto_grade_response(db, response_id, grader=current_instructor)


@router.post("/exams/{exam_id}/auto-grade", response_model=List[ExamResponseDetail])
def auto_grade_all(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Auto-grade every ungraded submission now. Failed responses are
    marked AUTO_GRADE_FAILED and left out of the result.
    """
    return grading_service.auto_grade_all_responses(db, exam_id, grader=current_instructor)


@router.post("/exams/{exam_id}/auto-grade/async", status_code=status.HTTP_202_ACCEPTED)
def auto_grade_all_async(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    grading_service.get_exam_for_grader(db, exam_id, current_instructor)
    return {"exam_id": exam_id, "job_id": enqueue_auto_grade_all(exam_id)}


@router.put("/responses/{response_id}", response_model=ExamResponseDetail)
def grade_response(
    response_id: str,
    obj_in: ExamGradeRequest,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.grade_response(
        db, response_id=response_id, grader=current_instructor, obj_in=obj_in
    )


@router.put("/responses/{response_id}/questions/{question_id}", response_model=ExamResponseDetail)
def update_question_score(
    response_id: str,
    question_id: str,
    obj_in: QuestionScoreUpdate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.update_question_score(
        db,
        response_id=response_id,
        question_id=question_id,
        grader=current_instructor,
        obj_in=obj_in,
    )


@router.post("/responses/{response_id}/start", response_model=ExamResponseDetail)
def begin_manual_grading(
    response_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.begin_manual_grading(
        db, response_id=response_id, grader=current_instructor
    )


@router.post("/responses/{response_id}/flag", response_model=ExamResponseDetail)
def flag_response(
    response_id: str,
    obj_in: FlagRequest,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.flag_response_for_review(
        db,
        response_id=response_id,
        grader=current_instructor,
        reason=obj_in.reason,
        priority=obj_in.priority,
    )


@router.delete("/responses/{response_id}/flag", response_model=ExamResponseDetail)
def unflag_response(
    response_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.unflag_response(db, response_id=response_id, grader=current_instructor)


@router.post("/batch", response_model=List[ExamResponseDetail])
def batch_grade(
    obj_in: BatchGradeRequest,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.batch_grade_responses(db, grader=current_instructor, obj_in=obj_in)


@router.get("/exams/{exam_id}/stats", response_model=ExamStats)
def exam_stats(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.get_exam_stats(db, exam_id, grader=current_instructor)


@router.get("/exams/{exam_id}/grading-stats", response_model=ExamGradingStats)
def exam_grading_stats(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grading_service.get_exam_grading_stats(db, exam_id, grader=current_instructor)


@router.post("/exams/{exam_id}/resync")
def resync_exam_grades(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Push the latest graded attempt of every student back into the ledger.
    """
    synced = grading_service.resync_exam_grades(db, exam_id, grader=current_instructor)
    return {"exam_id": exam_id, "synced_students": synced}
