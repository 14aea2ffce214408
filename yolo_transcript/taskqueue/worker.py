"""RQ worker entrypoint: ``python -m yolo_transcript.taskqueue.worker``."""
from __future__ import annotations

from redis import Redis
from rq import Queue, Worker

from ..config import get_settings
from ..logging_config import configure_logging


def run_worker() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    redis_conn = Redis.from_url(settings.redis_url)
    queues = [Queue(settings.rq_default_queue, connection=redis_conn)]
    worker = Worker(queues, connection=redis_conn)
    # The scheduler moves enqueue_in() jobs onto the queue once they are due.
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    run_worker()
