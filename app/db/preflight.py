"""
Startup checks: database connectivity and presence of the routing schema.
"""
import sys
import time
from typing import List

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("db_preflight")

# Tables routing and triage cannot run without
REQUIRED_TABLES = (
    "users",
    "consultants",
    "consultant_schedules",
    "consultation_tickets",
    "consultation_ticket_consultants",
    "form_templates",
    "form_submissions",
    "crisis_alerts",
)


def run_db_preflight(retries: int = 5, delay: int = 2):
    """
    Connect and run `SELECT 1`, retrying while the server comes up.

    SQLite URLs are accepted without a round trip. Exits the process on an
    authentication failure or when every attempt fails.
    """
    db_url = settings.DATABASE_URL
    if not db_url:
        logger.error("CRITICAL: DATABASE_URL is not configured!")
        sys.exit(1)

    if db_url.startswith("sqlite"):
        return True

    host = db_url.split("@")[-1] if "@" in db_url else "configured URL"
    logger.info(f"Checking database at {host}")

    check_engine = create_engine(db_url, connect_args={"connect_timeout": 5})
    try:
        for attempt in range(1, retries + 1):
            try:
                with check_engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("Database reachable")
                return True
            except OperationalError as e:
                reason = str(e)
                if "password authentication failed" in reason.lower():
                    logger.error("Database rejected credentials "
                                 f"(user={settings.POSTGRES_USER}, db={settings.POSTGRES_DB})")
                    sys.exit(1)
                if attempt == retries:
                    logger.error(f"Database unreachable after {retries} attempts: {reason}")
                    sys.exit(1)
                logger.warning(f"Database attempt {attempt}/{retries} failed, retrying in {delay}s")
                time.sleep(delay)
    finally:
        check_engine.dispose()


def missing_tables(bind: Engine) -> List[str]:
    """Required tables absent from the connected database."""
    existing = set(inspect(bind).get_table_names())
    return [name for name in REQUIRED_TABLES if name not in existing]


if __name__ == "__main__":
    run_db_preflight()
