# edugrade/api/v1/endpoints/grades.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from edugrade.core.security import CurrentUser, get_current_instructor, get_current_user
from edugrade.db.session import get_db
from edugrade.schemas.grade import (
    FinalGradePublic,
    GradeColumnCreate,
    GradeColumnPublic,
    GradeColumnUpdate,
    PercentageValidation,
    RecalculationSummary,
    StudentGradePublic,
    StudentGradeUpdate,
)
from edugrade.services import grade_service
from edugrade.workers.queue import enqueue_fix_all_grades

router = APIRouter(prefix="/grades", tags=["grades"])


@router.get("/courses/{course_id}/columns", response_model=List[GradeColumnPublic])
def list_grade_columns(
    course_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return grade_service.get_grade_columns_by_course(db, course_id)


@router.post("/columns", response_model=GradeColumnPublic, status_code=status.HTTP_201_CREATED)
def create_grade_column(
    obj_in: GradeColumnCreate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Add a weighted column to a course. Rejected if the active columns
    would add up to more than 100%.
    """
    return grade_service.create_grade_column(db, obj_in=obj_in, created_by=current_instructor.id)


@router.put("/columns/{column_id}", response_model=GradeColumnPublic)
def update_grade_column(
    column_id: str,
    obj_in: GradeColumnUpdate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grade_service.update_grade_column(db, column_id=column_id, obj_in=obj_in)


@router.delete("/columns/{column_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_grade_column(
    column_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Delete a column and drop its score from every student in the course.
    """
    grade_service.delete_grade_column(db, column_id=column_id)


@router.get("/courses/{course_id}/validate-percentage", response_model=PercentageValidation)
def validate_percentage(
    course_id: str,
    percentage: int,
    exclude_column_id: str | None = None,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    valid = grade_service.validate_grade_column_percentage(
        db, course_id, percentage, exclude_column_id
    )
    return PercentageValidation(course_id=course_id, percentage=percentage, valid=valid)


@router.get("/courses/{course_id}", response_model=List[StudentGradePublic])
def list_course_grades(
    course_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    return grade_service.get_grades_by_course(db, course_id)


@router.put("/student", response_model=StudentGradePublic)
def update_student_grade(
    obj_in: StudentGradeUpdate,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Set one column score for a student; a null score clears it.
    """
    return grade_service.update_student_grade(
        db, student_id=obj_in.student_id, column_id=obj_in.column_id, score=obj_in.score
    )


@router.get("/courses/{course_id}/students/{student_id}/final", response_model=FinalGradePublic)
def get_final_grade(
    course_id: str,
    student_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if not current_user.is_instructor and current_user.id != student_id:
        raise HTTPException(status_code=403, detail="Not allowed to view these grades")

    final_grade = grade_service.calculate_final_grade(db, student_id, course_id)
    return FinalGradePublic(
        student_id=student_id,
        course_id=course_id,
        final_grade=final_grade,
        letter_grade=grade_service.calculate_letter_grade(final_grade),
    )


@router.delete("/courses/{course_id}/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
def reset_student_grades(
    course_id: str,
    student_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    grade_service.delete_student_grades(db, student_id, course_id)


@router.post("/courses/{course_id}/recalculate", response_model=RecalculationSummary)
def recalculate_course(
    course_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    updated = grade_service.recalculate_all_grades_for_course(db, course_id)
    return RecalculationSummary(course_id=course_id, updated_records=updated)


@router.post("/courses/{course_id}/cleanup")
def cleanup_course_grades(
    course_id: str,
    db: Session = Depends(get_db),
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    """
    Merge duplicate student records and drop scores of removed columns.
    """
    merged = grade_service.cleanup_duplicates_for_course(db, course_id)
    db.commit()
    orphaned = grade_service.cleanup_orphaned_grades(db, course_id)
    return {"course_id": course_id, "duplicates_merged": merged, "records_cleaned": orphaned}


@router.post("/admin/fix-all", status_code=status.HTTP_202_ACCEPTED)
def fix_all_grades(
    current_instructor: CurrentUser = Depends(get_current_instructor),
):
    if not current_instructor.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    job_id = enqueue_fix_all_grades()
    if job_id is None:
        raise HTTPException(status_code=503, detail="Job queue unavailable")
    return {"job_id": job_id}
