"""
Database Configuration
SQLAlchemy engine and session management.
Supports both SQLite (local dev) and PostgreSQL (production).
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)


def enable_sqlite_savepoints(engine):
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINT/RELEASE stay inside the
    outer transaction (pysqlite otherwise defers BEGIN until the first write).
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


# Detect if using SQLite
is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Create database engine with appropriate settings
if is_sqlite:
    # SQLite settings
    engine = enable_sqlite_savepoints(create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},  # Needed for SQLite
    ))
else:
    # PostgreSQL settings
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def init_db(bind=None):
    """Initialize database tables."""
    from app.models import (  # noqa
        Job, Payment, ReconciliationRecord, WebhookEvent, ProcessedEvent, OperatorAlert
    )
    try:
        Base.metadata.create_all(bind=bind or engine)
    except Exception as e:
        # In production, tables are managed by migrations and may already exist
        logger.warning(f"Could not create database tables: {e}")
        logger.info("Continuing with existing database...")
