"""
PostgreSQL connection via SQLAlchemy with psycopg3.

This is the primary operational store: patients, consultations, the
queue and triage records. FHIR resources live upstream and are only
referenced from here by id.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base
from sqlalchemy.pool import StaticPool

from clinicsync.config import config

# SQLAlchemy base for model declarations
Base = declarative_base()

# Engine and session factory (initialized lazily)
_engine = None
_session_factory = None


def _build_engine(db_url: str):
    if db_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads
        return create_engine(
            db_url,
            echo=config.DEBUG,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    # Use psycopg3 dialect
    db_url = db_url.replace("postgresql://", "postgresql+psycopg://")
    engine = create_engine(
        db_url,
        echo=config.DEBUG,  # Log SQL in debug mode
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Recycle connections every 5 minutes
        pool_reset_on_return="rollback",
    )

    @event.listens_for(engine, "checkout")
    def checkout_listener(dbapi_conn, connection_record, connection_proxy):
        """Ensure connection is in clean state when checked out."""
        try:
            cursor = dbapi_conn.cursor()
            cursor.execute("ROLLBACK")
            cursor.close()
        except Exception:
            pass  # Connection already clean

    return engine


def get_engine():
    """Get or create the SQLAlchemy engine."""
    global _engine
    if _engine is None:
        _engine = _build_engine(config.get_database_url())
    return _engine


def get_db_session():
    """Get a scoped database session.

    Returns the thread-local session from the scoped session factory.
    The session is cleaned up at the end of each request via close_db_session().
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = scoped_session(
            sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
        )

    return _session_factory()


def init_db():
    """Initialize database tables (for development/testing)."""
    # Import models so they register with Base.metadata
    from clinicsync import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def drop_db():
    """Drop all tables (testing only)."""
    from clinicsync import models  # noqa: F401

    Base.metadata.drop_all(bind=get_engine())


def close_db_session(exception=None):
    """Remove the current session (call at end of request).

    Always rollback to ensure clean state for next request,
    then remove the session from the registry.
    """
    if _session_factory is not None:
        try:
            _session_factory.rollback()
        finally:
            _session_factory.remove()


def rollback_session():
    """Explicitly rollback the current session.

    Call this at the start of a request to ensure clean state,
    especially after a previous request may have left the session dirty.
    """
    if _session_factory is not None:
        session = _session_factory()
        if session.is_active:
            session.rollback()


def reset_engine():
    """Dispose the engine and session factory (testing or reconfiguration)."""
    global _engine, _session_factory
    if _session_factory is not None:
        _session_factory.remove()
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


# Alias for convenience
db = Base
