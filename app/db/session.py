"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.pool import StaticPool
from typing import Generator
from contextlib import contextmanager

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

if engine.dialect.name == "sqlite":
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; emit it explicitly
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database connection and run startup tasks.

    Schema is managed by Alembic migrations (`alembic upgrade head`).

    Startup order:
    1. Run preflight check (validates DB connectivity)
    2. Verify schema exists (tables were created by Alembic)
    3. Seed categories and the default screening form ONLY if SEED_DEMO=true
    """
    from app.db.preflight import missing_tables, run_db_preflight
    run_db_preflight()

    from app.db import models  # noqa

    missing = missing_tables(engine)
    if missing:
        logger.warning(f"Database schema missing tables: {missing}. Run `alembic upgrade head`.")
        if settings.DEBUG:
            logger.warning("DEBUG=true: Auto-creating tables (NOT for production!)")
            Base.metadata.create_all(bind=engine)
        else:
            return
    else:
        logger.info("Database schema verified")

    if settings.SEED_DEMO:
        from app.db.seed import seed_database
        logger.info("SEED_DEMO=true: Seeding categories and default screening form")
        with get_db_context() as db:
            seed_database(db)
