"""
ContextGrade - Persistence Wiring

One engine per process, built from Settings. Decisions, snapshots and the
append-only override/outcome tables all live behind the session factory
below; requests get a session through get_db().
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import Settings, get_settings


def build_engine(settings: Settings) -> Engine:
    """Create the engine for settings.database_url.

    SQL echo follows a DEBUG log level. SQLite connections are shared across
    the request threads of the dev server, so the same-thread check is off.
    """
    url = settings.database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        url,
        echo=settings.log_level == "DEBUG",
        # Long-lived workers outlast idle Postgres connections
        pool_pre_ping=True,
        connect_args=connect_args,
    )


engine = build_engine(get_settings())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Create every decision engine table that does not exist yet."""
    from .models import db_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
