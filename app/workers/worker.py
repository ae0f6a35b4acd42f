"""
Background worker using RQ (Redis Queue).
"""
from redis import Redis
from rq import Worker, Queue

from app.core.config import settings
from app.core.logging import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)

QUEUE_NAMES = ("default",)


def run_worker(with_scheduler: bool = True):
    """Start the RQ worker, optionally registering the periodic jobs."""
    redis_conn = Redis.from_url(settings.REDIS_URL)

    worker = Worker(
        queues=[Queue(name, connection=redis_conn) for name in QUEUE_NAMES],
        connection=redis_conn,
        name="pendamping-worker",
    )
    if with_scheduler:
        from app.workers.jobs import setup_scheduled_jobs
        setup_scheduled_jobs()

    logger.info("Starting Pendamping worker...")
    worker.work()


if __name__ == "__main__":
    run_worker()
