"""
Database engine and session management
PostgreSQL in staging/production, SQLite accepted for local development and tests
"""
import logging
import time
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import config

logger = logging.getLogger(__name__)


def create_database_engine(database_url: str):
    """
    Create the SQLAlchemy engine for the given URL

    PostgreSQL gets production pool settings; SQLite gets a single shared
    connection so in-memory databases survive across sessions.
    """
    if database_url.startswith("postgresql"):
        return create_engine(
            database_url,
            pool_pre_ping=True,  # Verify connections before using
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_recycle=config.DB_POOL_RECYCLE,
            pool_timeout=config.DB_POOL_TIMEOUT,
            echo=False,
            connect_args={
                "connect_timeout": 10,
                "keepalives": 1,
                "keepalives_idle": 60,
                "keepalives_interval": 10,
                "keepalives_count": 3,
                "application_name": "subscriber_sync",
            },
        )

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    raise ValueError(f"Unsupported DATABASE_URL scheme: {database_url[:30]}...")


engine = create_database_engine(config.get_database_url())

logger.info(f"Database engine configured for dialect: {engine.dialect.name}")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator:
    """
    Get database session with a connection health check

    Use as a dependency or with contextlib.closing-style iteration:
        db = next(get_db())
    """
    db = None
    max_retries = 3
    retry_delay = 0.1  # 100ms

    for attempt in range(max_retries):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            break
        except (OperationalError, DisconnectionError) as health_error:
            db.close()
            db = None
            if attempt < max_retries - 1:
                logger.warning(
                    f"[DB_HEALTH] Connection health check failed (attempt {attempt + 1}/{max_retries}): {health_error}. "
                    f"Retrying..."
                )
                time.sleep(retry_delay * (attempt + 1))
                continue
            raise

    try:
        yield db
    finally:
        db.close()
