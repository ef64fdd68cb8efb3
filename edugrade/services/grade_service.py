# edugrade/services/grade_service.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from edugrade.core.config import settings
from edugrade.core.exceptions import (
    GradingError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from edugrade.core.utils import round_half_up
from edugrade.models.exam import Exam
from edugrade.models.exam_response import ExamResponse
from edugrade.models.grade_column import GradeColumn, GradeColumnType
from edugrade.models.student_grade import StudentGradeRecord
from edugrade.schemas.grade import GradeColumnCreate, GradeColumnUpdate
from edugrade.workers.queue import enqueue_course_recalculation

logger = logging.getLogger(__name__)

# default weight for an auto-created column, by task type
SUGGESTED_PERCENTAGES = {
    "homework": 10,
    "assignment": 15,
    "project": 25,
    "essay": 15,
    "lab": 10,
    "presentation": 15,
    "quiz": 5,
    "midterm": 15,
    "exam": 20,
    "final": 20,
    "participation": 5,
}
DEFAULT_SUGGESTED_PERCENTAGE = 10

LETTER_GRADE_BANDS = [
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (63, "D"),
    (60, "D-"),
]


@dataclass
class SyncResult:
    """
    Outcome of a derived-effect sync into the grade ledger.

    Sync never raises: a failure is carried in ``error`` so the caller can log
    it and schedule reconciliation without rolling back its own write.
    """
    column: Optional[GradeColumn] = None
    record: Optional[StudentGradeRecord] = None
    created: bool = False
    error: Optional[TransientStoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def calculate_letter_grade(percentage: float | None) -> str:
    if percentage is None or percentage < 0:
        return "F"
    for threshold, letter in LETTER_GRADE_BANDS:
        if percentage >= threshold:
            return letter
    return "F"


def suggested_percentage(task_type: str | None) -> int:
    if not task_type:
        return DEFAULT_SUGGESTED_PERCENTAGE
    return SUGGESTED_PERCENTAGES.get(task_type.strip().lower(), DEFAULT_SUGGESTED_PERCENTAGE)


def compute_final_grade(columns: List[GradeColumn], grades: dict | None) -> float:
    """
    Weighted final grade over the active columns.

    When the columns' percentages add up to more than 100 each weight is
    scaled down proportionally. Ungraded columns contribute nothing.
    """
    if not columns or not grades:
        return 0.0

    total_percentage = float(sum(c.percentage or 0 for c in columns))

    weighted_score = 0.0
    graded_items = 0
    for column in columns:
        score = grades.get(column.id)
        if score is None or score < 0:
            continue
        weight = float(column.percentage or 0)
        if total_percentage > 100.0:
            weight = weight / total_percentage * 100.0
        weighted_score += score * weight / 100.0
        graded_items += 1

    if graded_items == 0:
        return 0.0

    return round_half_up(max(0.0, min(100.0, weighted_score)))


# ---------------------------------------------------------------------------
# Grade columns
# ---------------------------------------------------------------------------

def get_grade_column(db: Session, column_id: str) -> GradeColumn:
    column = db.get(GradeColumn, column_id)
    if column is None:
        raise NotFoundError(f"Grade column not found with ID: {column_id}")
    return column


def get_grade_columns_by_course(db: Session, course_id: str) -> List[GradeColumn]:
    return (
        db.query(GradeColumn)
        .filter(GradeColumn.course_id == course_id, GradeColumn.is_active.is_(True))
        .order_by(GradeColumn.display_order.asc())
        .all()
    )


def find_linked_column(db: Session, course_id: str, assignment_id: str) -> Optional[GradeColumn]:
    return (
        db.query(GradeColumn)
        .filter(
            GradeColumn.course_id == course_id,
            GradeColumn.linked_assignment_id == assignment_id,
        )
        .order_by(GradeColumn.display_order.asc())
        .first()
    )


def _active_percentage_total(db: Session, course_id: str, exclude_column_id: str | None = None) -> int:
    return sum(
        c.percentage or 0
        for c in get_grade_columns_by_course(db, course_id)
        if exclude_column_id is None or c.id != exclude_column_id
    )


def _next_display_order(db: Session, course_id: str) -> int:
    current = (
        db.query(func.max(GradeColumn.display_order))
        .filter(GradeColumn.course_id == course_id)
        .scalar()
    )
    return (current or 0) + 1


def validate_grade_column_percentage(
    db: Session,
    course_id: str,
    percentage: int | None,
    exclude_column_id: str | None = None,
) -> bool:
    if percentage is None or percentage < 0 or percentage > 100:
        return False
    return _active_percentage_total(db, course_id, exclude_column_id) + percentage <= 100


def create_grade_column(
    db: Session,
    *,
    obj_in: GradeColumnCreate,
    created_by: str | None = None,
) -> GradeColumn:
    if not obj_in.name or not obj_in.name.strip():
        raise ValidationError("Grade column name is required")
    if not obj_in.course_id or not obj_in.course_id.strip():
        raise ValidationError("Course ID is required")
    if obj_in.percentage is None or obj_in.percentage <= 0:
        raise ValidationError("Valid percentage is required")
    if not validate_grade_column_percentage(db, obj_in.course_id, obj_in.percentage):
        raise ValidationError("Total percentage would exceed 100%")

    column = GradeColumn(
        course_id=obj_in.course_id,
        name=obj_in.name.strip(),
        description=obj_in.description,
        type=obj_in.type.value,
        percentage=obj_in.percentage,
        max_points=obj_in.max_points,
        is_active=obj_in.is_active,
        display_order=_next_display_order(db, obj_in.course_id),
        linked_assignment_id=obj_in.linked_assignment_id,
        auto_created=False,
        created_by=created_by,
    )
    db.add(column)
    db.commit()
    db.refresh(column)
    logger.info(f"Created grade column {column.id} ({column.percentage}%) in course {column.course_id}")

    _recalculate_after_column_change(db, column.course_id)
    return column


def update_grade_column(
    db: Session,
    *,
    column_id: str,
    obj_in: GradeColumnUpdate,
) -> GradeColumn:
    column = get_grade_column(db, column_id)
    update_data = obj_in.model_dump(exclude_unset=True)

    percentage = update_data.get("percentage")
    if percentage is not None:
        if percentage <= 0:
            raise ValidationError("Valid percentage is required")
        if not validate_grade_column_percentage(db, column.course_id, percentage, column_id):
            raise ValidationError("Total percentage would exceed 100%")

    name = update_data.pop("name", None)
    if name is not None and name.strip():
        column.name = name.strip()
    column_type = update_data.pop("type", None)
    if column_type is not None:
        column.type = GradeColumnType(column_type).value
    max_points = update_data.pop("max_points", None)
    if max_points is not None and max_points > 0:
        column.max_points = max_points
    for field, value in update_data.items():
        if value is not None or field == "description":
            setattr(column, field, value)

    db.add(column)
    db.commit()
    db.refresh(column)

    _recalculate_after_column_change(db, column.course_id)
    return column


def delete_grade_column(db: Session, *, column_id: str) -> None:
    column = get_grade_column(db, column_id)
    course_id = column.course_id

    for record in db.query(StudentGradeRecord).filter(StudentGradeRecord.course_id == course_id):
        record.remove_grade(column_id)

    db.delete(column)
    db.commit()
    logger.info(f"Deleted grade column {column_id} from course {course_id}")

    _recalculate_after_column_change(db, course_id)


def remove_linked_columns(db: Session, *, course_id: str, assignment_id: str) -> int:
    linked = (
        db.query(GradeColumn)
        .filter(
            GradeColumn.course_id == course_id,
            GradeColumn.linked_assignment_id == assignment_id,
        )
        .all()
    )
    for column in linked:
        delete_grade_column(db, column_id=column.id)
    return len(linked)


def _recalculate_after_column_change(db: Session, course_id: str) -> None:
    try:
        recalculate_all_grades_for_course(db, course_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Grade recalculation for course {course_id} failed: {e}", exc_info=True)
        enqueue_course_recalculation(course_id)


# ---------------------------------------------------------------------------
# Student grade records
# ---------------------------------------------------------------------------

def _newest_first_key(record: StudentGradeRecord):
    # reversed sort: dated records newest first, undated last, id breaks ties
    return (record.updated_at is not None, record.updated_at or datetime.min, record.id)


def merge_duplicate_records(db: Session, duplicates: List[StudentGradeRecord]) -> StudentGradeRecord:
    """
    Fold several records for the same (student, course) into the newest one.

    The primary record's scores always win. A column missing from the primary
    takes its score from the most recently updated other record that has one.
    Other records are deleted; the caller commits.
    """
    if not duplicates:
        raise ValueError("No records to merge")

    ordered = sorted(duplicates, key=_newest_first_key, reverse=True)
    primary = ordered[0]

    merged = {k: v for k, v in (primary.grades or {}).items() if v is not None}
    for record in ordered[1:]:
        for column_id, score in (record.grades or {}).items():
            if score is not None and column_id not in merged:
                merged[column_id] = score

    primary.grades = merged
    for record in ordered[1:]:
        db.delete(record)

    logger.info(
        f"Merged {len(ordered)} grade records for student {primary.student_id} "
        f"in course {primary.course_id} into {primary.id}"
    )
    return primary


def find_or_create_student_grade_record(
    db: Session,
    student_id: str,
    course_id: str,
) -> StudentGradeRecord:
    existing = (
        db.query(StudentGradeRecord)
        .filter(
            StudentGradeRecord.student_id == student_id,
            StudentGradeRecord.course_id == course_id,
        )
        .all()
    )
    if not existing:
        record = StudentGradeRecord(student_id=student_id, course_id=course_id, grades={})
        db.add(record)
        return record
    if len(existing) == 1:
        return existing[0]
    return merge_duplicate_records(db, existing)


def calculate_final_grade_from_record(
    db: Session,
    record: StudentGradeRecord,
    course_id: str,
) -> float:
    return compute_final_grade(get_grade_columns_by_course(db, course_id), record.grades)


def calculate_final_grade(db: Session, student_id: str, course_id: str) -> float:
    try:
        record = get_student_grade_record(db, student_id, course_id)
    except NotFoundError:
        return 0.0
    return calculate_final_grade_from_record(db, record, course_id)


def get_grades_by_course(db: Session, course_id: str) -> List[StudentGradeRecord]:
    if cleanup_duplicates_for_course(db, course_id):
        db.commit()
    return (
        db.query(StudentGradeRecord)
        .filter(StudentGradeRecord.course_id == course_id)
        .order_by(StudentGradeRecord.student_id.asc())
        .all()
    )


def get_student_grade_record(db: Session, student_id: str, course_id: str) -> StudentGradeRecord:
    records = (
        db.query(StudentGradeRecord)
        .filter(
            StudentGradeRecord.student_id == student_id,
            StudentGradeRecord.course_id == course_id,
        )
        .all()
    )
    if not records:
        raise NotFoundError(f"No grades recorded for student {student_id} in course {course_id}")
    if len(records) == 1:
        return records[0]
    record = merge_duplicate_records(db, records)
    db.commit()
    db.refresh(record)
    return record


def update_student_grade(
    db: Session,
    *,
    student_id: str,
    column_id: str,
    score: float | None,
) -> StudentGradeRecord:
    """
    Set (or clear, with ``score=None``) one column score for a student and
    recompute the final grade from the in-memory record.

    A concurrent write to the same record shows up as a stale version on
    commit; the whole read-modify-write is then retried.
    """
    column = get_grade_column(db, column_id)
    if not column.is_active:
        raise ValidationError(f"Cannot update grade for inactive column: {column_id}")
    if score is not None and (not math.isfinite(score) or score < 0 or score > 100):
        raise ValidationError(f"Grade must be between 0 and 100, got: {score}")

    course_id = column.course_id
    max_retries = max(1, settings.GRADE_WRITE_MAX_RETRIES)

    for attempt in range(1, max_retries + 1):
        try:
            record = find_or_create_student_grade_record(db, student_id, course_id)
            if score is None:
                record.remove_grade(column_id)
            else:
                record.set_grade(column_id, float(score))

            final_grade = calculate_final_grade_from_record(db, record, course_id)
            record.final_grade = final_grade
            record.final_letter_grade = calculate_letter_grade(final_grade)

            db.add(record)
            db.commit()
            db.refresh(record)
            return record
        except StaleDataError:
            db.rollback()
            logger.warning(
                f"Concurrent update on grades of student {student_id} in course {course_id}, "
                f"retry {attempt}/{max_retries}"
            )

    raise TransientStoreError(
        f"Could not update grade of student {student_id} for column {column_id} "
        f"after {max_retries} attempts"
    )


def delete_student_grades(db: Session, student_id: str, course_id: str) -> int:
    deleted = 0
    for record in (
        db.query(StudentGradeRecord)
        .filter(
            StudentGradeRecord.student_id == student_id,
            StudentGradeRecord.course_id == course_id,
        )
        .all()
    ):
        db.delete(record)
        deleted += 1
    db.commit()
    return deleted


def recalculate_all_grades_for_course(db: Session, course_id: str) -> int:
    """
    Recompute every student's final grade in a course. Only records whose
    final grade or letter actually changed are written.
    """
    columns = get_grade_columns_by_course(db, course_id)
    student_ids = [
        row[0]
        for row in db.query(StudentGradeRecord.student_id)
        .filter(StudentGradeRecord.course_id == course_id)
        .distinct()
        .all()
    ]

    updated = 0
    for student_id in student_ids:
        record = find_or_create_student_grade_record(db, student_id, course_id)
        final_grade = compute_final_grade(columns, record.grades)
        letter = calculate_letter_grade(final_grade)
        if record.final_grade != final_grade or record.final_letter_grade != letter:
            record.final_grade = final_grade
            record.final_letter_grade = letter
            updated += 1

    db.commit()
    if updated:
        logger.info(f"Recalculated {updated} final grades in course {course_id}")
    return updated


def cleanup_duplicates_for_course(db: Session, course_id: str) -> int:
    """Merge duplicate records in a course. The caller commits."""
    by_student: dict[str, list[StudentGradeRecord]] = {}
    for record in db.query(StudentGradeRecord).filter(StudentGradeRecord.course_id == course_id):
        by_student.setdefault(record.student_id, []).append(record)

    fixed = 0
    for records in by_student.values():
        if len(records) > 1:
            merge_duplicate_records(db, records)
            fixed += 1
    return fixed


def cleanup_orphaned_grades(db: Session, course_id: str) -> int:
    """Drop scores that point at columns no longer active in the course."""
    columns = get_grade_columns_by_course(db, course_id)
    valid_ids = {c.id for c in columns}

    cleaned = 0
    for record in db.query(StudentGradeRecord).filter(StudentGradeRecord.course_id == course_id):
        grades = record.grades or {}
        kept = {k: v for k, v in grades.items() if k in valid_ids}
        if kept != grades:
            record.grades = kept
            record.final_grade = compute_final_grade(columns, kept)
            record.final_letter_grade = calculate_letter_grade(record.final_grade)
            cleaned += 1

    db.commit()
    return cleaned


def fix_all_grades(db: Session) -> dict:
    """Administrative sweep: dedupe and recalculate every course."""
    course_ids = [row[0] for row in db.query(StudentGradeRecord.course_id).distinct().all()]

    summary = {"courses": len(course_ids), "duplicates_merged": 0, "records_updated": 0}
    for course_id in course_ids:
        summary["duplicates_merged"] += cleanup_duplicates_for_course(db, course_id)
        db.commit()
        summary["records_updated"] += recalculate_all_grades_for_course(db, course_id)
    logger.info(f"Grade fix sweep finished: {summary}")
    return summary


# ---------------------------------------------------------------------------
# Linked column sync
# ---------------------------------------------------------------------------

def _column_type_for(category: str | None) -> str:
    try:
        return GradeColumnType((category or "").strip().lower()).value
    except ValueError:
        return GradeColumnType.EXAM.value


def sync_linked_column(db: Session, exam: Exam) -> SyncResult:
    """
    Make sure the exam has a linked grade column whose name and max points
    follow the exam. A missing column is created with the suggested weight
    for the exam's category, shrunk so the course total stays within 100.
    """
    try:
        column = find_linked_column(db, exam.course_id, exam.id)
        if column is None:
            current_total = _active_percentage_total(db, exam.course_id)
            percentage = suggested_percentage(exam.grade_category)
            if current_total + percentage > 100:
                percentage = max(1, 100 - current_total)

            column = GradeColumn(
                course_id=exam.course_id,
                name=exam.title,
                description=f"Auto-created grade column for exam: {exam.title}",
                type=_column_type_for(exam.grade_category),
                percentage=percentage,
                max_points=exam.total_points or settings.DEFAULT_COLUMN_MAX_POINTS,
                is_active=True,
                display_order=_next_display_order(db, exam.course_id),
                linked_assignment_id=exam.id,
                auto_created=True,
                created_by=exam.instructor_id,
            )
            db.add(column)
            db.commit()
            db.refresh(column)
            logger.info(
                f"Auto-created grade column {column.id} ({percentage}%) for exam {exam.id}"
            )
            recalculate_all_grades_for_course(db, exam.course_id)
            return SyncResult(column=column, created=True)

        changed = False
        if exam.title and column.name != exam.title:
            column.name = exam.title
            changed = True
        if exam.total_points and column.max_points != exam.total_points:
            column.max_points = exam.total_points
            changed = True
        if changed:
            db.add(column)
            db.commit()
            db.refresh(column)
        return SyncResult(column=column)

    except SQLAlchemyError as e:
        db.rollback()
        return SyncResult(
            error=TransientStoreError(f"Failed to sync grade column for exam {exam.id}: {e}")
        )


def sync_exam_score(db: Session, *, response: ExamResponse, exam: Exam) -> SyncResult:
    """Push a graded attempt's percentage into the student's ledger record."""
    column_result = sync_linked_column(db, exam)
    if not column_result.ok:
        return column_result

    column = column_result.column
    if not column.is_active:
        logger.info(f"Grade column {column.id} is inactive, exam score not synced")
        return column_result

    score = max(0.0, min(100.0, float(response.percentage or 0.0)))
    try:
        record = update_student_grade(
            db, student_id=response.student_id, column_id=column.id, score=score
        )
    except (GradingError, SQLAlchemyError) as e:
        db.rollback()
        return SyncResult(
            column=column,
            error=TransientStoreError(
                f"Failed to sync exam grade of response {response.id} to column {column.id}: {e}"
            ),
        )
    return SyncResult(column=column, record=record, created=column_result.created)
