"""Database engine construction."""
import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

logger = logging.getLogger(__name__)


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite") and (
        database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url
    )


def create_db_engine(database_url: str, pool_size: int = 5, echo: bool = False) -> Engine:
    """
    Create the SQLModel engine.

    SQLite connections get foreign keys enabled and every transaction opens
    with BEGIN IMMEDIATE, so writers are serialized by the database itself.

    Args:
        database_url: SQLAlchemy database URL
        pool_size: Maximum number of pooled connections
        echo: Log emitted SQL

    Returns:
        Configured Engine
    """
    if not database_url.startswith("sqlite"):
        logger.info(f"Using database {database_url.split('@')[-1]}")
        return create_engine(
            database_url, echo=echo, pool_size=pool_size, max_overflow=0, pool_pre_ping=True
        )

    logger.info(f"Using SQLite database: {database_url}")
    connect_args = {"check_same_thread": False}
    if _is_memory_sqlite(database_url):
        engine = create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    else:
        engine = create_engine(
            database_url, echo=echo, connect_args=connect_args, pool_size=pool_size, max_overflow=0
        )
    in_memory = _is_memory_sqlite(database_url)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Hand transaction control to the "begin" listener below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine
