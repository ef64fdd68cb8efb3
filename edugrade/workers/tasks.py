"""
Background jobs for the grading worker.

These are the reconciliation and administrative sweeps: they re-derive
ledger state from the primary data, so running one twice is harmless.
"""

import logging

from edugrade.core.exceptions import GradingError
from edugrade.db.session import SessionLocal
from edugrade.services import grade_service, grading_service

logger = logging.getLogger(__name__)


def recalculate_course_task(course_id: str) -> dict:
    """Recompute every final grade in a course."""
    db = SessionLocal()
    try:
        logger.info(f"Starting grade recalculation for course {course_id}")
        updated = grade_service.recalculate_all_grades_for_course(db, course_id)
        return {"status": "success", "course_id": course_id, "updated_records": updated}
    except Exception as e:
        logger.error(f"Recalculation failed for course {course_id}: {e}", exc_info=True)
        return {"status": "error", "course_id": course_id, "error": str(e)}
    finally:
        db.close()


def resync_exam_grades_task(exam_id: str) -> dict:
    """Push every student's latest graded attempt back into the ledger."""
    db = SessionLocal()
    try:
        logger.info(f"Starting ledger resync for exam {exam_id}")
        synced = grading_service.resync_exam_grades(db, exam_id)
        return {"status": "success", "exam_id": exam_id, "synced_students": synced}
    except GradingError as e:
        logger.error(f"Resync failed for exam {exam_id}: {e}")
        return {"status": "error", "exam_id": exam_id, "error": str(e)}
    except Exception as e:
        logger.error(f"Unexpected error resyncing exam {exam_id}: {e}", exc_info=True)
        return {"status": "error", "exam_id": exam_id, "error": str(e)}
    finally:
        db.close()


def auto_grade_exam_task(exam_id: str) -> dict:
    db = SessionLocal()
    try:
        graded = grading_service.auto_grade_all_responses(db, exam_id)
        return {"status": "success", "exam_id": exam_id, "graded_responses": len(graded)}
    except GradingError as e:
        logger.error(f"Batch auto-grading failed for exam {exam_id}: {e}")
        return {"status": "error", "exam_id": exam_id, "error": str(e)}
    except Exception as e:
        logger.error(f"Unexpected error auto-grading exam {exam_id}: {e}", exc_info=True)
        return {"status": "error", "exam_id": exam_id, "error": str(e)}
    finally:
        db.close()


def fix_all_grades_task() -> dict:
    db = SessionLocal()
    try:
        summary = grade_service.fix_all_grades(db)
        return {"status": "success", **summary}
    except Exception as e:
        logger.error(f"Grade fix sweep failed: {e}", exc_info=True)
        return {"status": "error", "error": str(e)}
    finally:
        db.close()
