# edugrade/workers/queue.py
import logging
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from edugrade.core.config import settings

logger = logging.getLogger(__name__)

_redis_conn: Redis | None = None


def get_redis_connection() -> Redis:
    global _redis_conn
    if _redis_conn is None:
        _redis_conn = Redis.from_url(settings.REDIS_URL)
    return _redis_conn


def get_queue(name: str | None = None) -> Queue:
    return Queue(name or settings.RECONCILE_QUEUE_NAME, connection=get_redis_connection())


def enqueue_job(
    func: Callable[..., Any],
    *args: Any,
    queue_name: str | None = None,
    **kwargs: Any,
) -> str | None:
    """
    Enqueue a background job. Returns the job id, or None when the queue is
    unreachable; the job is a reconciliation step and can be re-run by hand.
    """
    try:
        job = get_queue(queue_name).enqueue(func, *args, **kwargs)
    except RedisError as e:
        logger.warning(f"Could not enqueue {func.__name__}{args}: {e}")
        return None
    return job.id


def enqueue_course_recalculation(course_id: str) -> str | None:
    from edugrade.workers.tasks import recalculate_course_task

    return enqueue_job(recalculate_course_task, course_id)


def enqueue_exam_resync(exam_id: str) -> str | None:
    from edugrade.workers.tasks import resync_exam_grades_task

    return enqueue_job(resync_exam_grades_task, exam_id)


def enqueue_auto_grade_all(exam_id: str) -> str | None:
    from edugrade.workers.tasks import auto_grade_exam_task

    return enqueue_job(auto_grade_exam_task, exam_id)


def enqueue_fix_all_grades() -> str | None:
    from edugrade.workers.tasks import fix_all_grades_task

    return enqueue_job(fix_all_grades_task)
