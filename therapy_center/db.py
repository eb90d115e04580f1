# therapy_center/db.py

from contextlib import contextmanager

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import get_settings


def build_engine(database_url: str, echo: bool = False, **kwargs):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # required for SQLite + FastAPI
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, echo=echo, connect_args=connect_args, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def enable_sqlite_fk(dbapi_connection, _):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


settings = get_settings()
engine = build_engine(settings.database_url, echo=settings.sql_echo)


def init_db(bind=None):
    from . import models  # noqa: F401  registers tables on the metadata

    SQLModel.metadata.create_all(bind or engine)


# Dependency: one session per request
def get_session():
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session):
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
