"""
Background job definitions.
"""
from redis import Redis
from rq_scheduler import Scheduler

from app.core.clock import utcnow
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# Unassigned tickets are retried every 15 minutes
ROUTING_RETRY_INTERVAL = 900


def get_scheduler() -> Scheduler:
    """Get RQ scheduler."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Scheduler(connection=redis_conn)


# ============= JOB FUNCTIONS =============

def route_waiting_tickets_job() -> int:
    """
    Retry automatic routing for waiting tickets that still have no consultant.

    Returns the number of tickets assigned.
    """
    from app.db.session import get_db_context
    from app.db.models import ConsultationTicket, TicketStatus
    from app.services.consultant_routing import assign_consultant

    assigned = 0
    with get_db_context() as db:
        tickets = db.query(ConsultationTicket).filter(
            ConsultationTicket.status == TicketStatus.WAITING.value,
            ConsultationTicket.consultant_id.is_(None),
        ).order_by(ConsultationTicket.id).all()

        logger.info(f"Retrying routing for {len(tickets)} unassigned ticket(s)")
        for ticket in tickets:
            if assign_consultant(db, ticket) is not None:
                assigned += 1

    logger.info(f"Routing retry assigned {assigned} ticket(s)")
    return assigned


# ============= SCHEDULING =============

def setup_scheduled_jobs():
    """Setup scheduled jobs."""
    scheduler = get_scheduler()

    # Replace the periodic job left behind by a previous worker start
    for job in scheduler.get_jobs():
        if job.func_name == f"{__name__}.route_waiting_tickets_job":
            scheduler.cancel(job)

    scheduler.schedule(
        scheduled_time=utcnow(),
        func=route_waiting_tickets_job,
        interval=ROUTING_RETRY_INTERVAL,
        repeat=None,
        queue_name="default",
    )

    logger.info("Scheduled jobs configured")
