"""
Base database model and session management
"""
import os
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import get_settings

settings = get_settings()

# Base class for all models
Base = declarative_base()


def _resolve_database_url(url: str) -> str:
    """Resolve relative SQLite paths to absolute so cwd changes can't break it"""
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        rel_path = url[len("sqlite:///"):]
        return "sqlite:///" + os.path.abspath(rel_path)
    return url


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite connections.

    pysqlite issues its own BEGIN lazily and does not include SAVEPOINT in
    it, which breaks the per-row savepoints used by the order upsert. Turning
    the driver's transaction handling off and emitting BEGIN ourselves makes
    nested transactions behave like they do on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url: str) -> Engine:
    """Create an engine suited to the configured database"""
    url = _resolve_database_url(database_url)

    if url.startswith("sqlite"):
        # One connection per session; concurrent shop writers wait on the
        # SQLite lock instead of sharing a connection.
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
        )
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
        isolation_level="READ COMMITTED",
    )


# Create database engine
engine = create_db_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None):
    """Create any missing tables."""
    # Import models so they register on Base.metadata
    from app.models import shopify  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
