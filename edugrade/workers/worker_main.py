# edugrade/workers/worker_main.py

from rq import Queue, SimpleWorker

from edugrade import models  # noqa
from edugrade.core.config import settings
from edugrade.core.logging import setup_logging
from edugrade.workers.queue import get_redis_connection


def main():
    setup_logging()
    redis_conn = get_redis_connection()

    queues = [Queue(settings.RECONCILE_QUEUE_NAME, connection=redis_conn)]

    worker = SimpleWorker(queues, connection=redis_conn)

    worker.work()


if __name__ == "__main__":
    main()
