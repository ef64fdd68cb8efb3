# edugrade/api/v1/endpoints/exams.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from edugrade.core.security import CurrentUser, get_current_instructor, get_current_user
from edugrade.db.session import get_db
from edugrade.schemas.exam import (
    ExamCreate,
    ExamPublic,
    ExamQuestionCreate,
    ExamQuestionPublic,
    ExamQuestionUpdate,
    ExamStudentView,
    ExamUpdate,
    QuestionReorder,
)
from edugrade.services import exam_service

router = APIRouter(prefix="/exams", tags=["exams"])


@router.post("/", response_model=ExamPublic, status_code=status.HTTP_201_CREATED)
def create_exam(
    obj_in: ExamCreate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Create a draft exam; its grade column is created alongside it.
    """
    return exam_service.create_exam(db, instructor=current_instructor, obj_in=obj_in)


@router.get("/course/{course_id}", response_model=List[ExamPublic])
def list_course_exams(
    course_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.list_exams_for_course(db, course_id)


@router.get("/{exam_id}", response_model=ExamPublic)
def get_exam(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.get_exam(db, exam_id)


@router.get("/{exam_id}/student-view", response_model=ExamStudentView)
def get_exam_for_student(
    exam_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Published exam without the answer key.
    """
    return exam_service.get_student_exam_view(db, exam_id)


@router.put("/{exam_id}", response_model=ExamPublic)
def update_exam(
    exam_id: str,
    obj_in: ExamUpdate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.update_exam(
        db, exam_id=exam_id, instructor=current_instructor, obj_in=obj_in
    )


@router.delete("/{exam_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_exam(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    exam_service.delete_exam(db, exam_id=exam_id, instructor=current_instructor)


@router.post("/{exam_id}/publish", response_model=ExamPublic)
def publish_exam(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.publish_exam(db, exam_id=exam_id, instructor=current_instructor)


@router.post("/{exam_id}/unpublish", response_model=ExamPublic)
def unpublish_exam(
    exam_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.unpublish_exam(db, exam_id=exam_id, instructor=current_instructor)


@router.post(
    "/{exam_id}/questions",
    response_model=ExamQuestionPublic,
    status_code=status.HTTP_201_CREATED,
)
def add_question(
    exam_id: str,
    obj_in: ExamQuestionCreate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.add_question(
        db, exam_id=exam_id, instructor=current_instructor, obj_in=obj_in
    )


@router.put("/{exam_id}/questions/{question_id}", response_model=ExamQuestionPublic)
def update_question(
    exam_id: str,
    question_id: str,
    obj_in: ExamQuestionUpdate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.update_question(
        db,
        exam_id=exam_id,
        question_id=question_id,
        instructor=current_instructor,
        obj_in=obj_in,
    )


@router.delete("/{exam_id}/questions/{question_id}", response_model=ExamPublic)
def delete_question(
    exam_id: str,
    question_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.delete_question(
        db, exam_id=exam_id, question_id=question_id, instructor=current_instructor
    )


@router.put("/{exam_id}/questions-order", response_model=ExamPublic)
def reorder_questions(
    exam_id: str,
    obj_in: QuestionReorder,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return exam_service.reorder_questions(
        db,
        exam_id=exam_id,
        question_ids=obj_in.question_ids,
        instructor=current_instructor,
    )
