"""
Database connection and setup
SQLite by default, any SQLAlchemy URL works
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from weather_display.models import Base


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the durable tier
    SQLite needs check_same_thread=False since request handlers and
    background jobs share the engine
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=echo)


def init_db(engine: Engine) -> None:
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker):
    """
    Transactional scope: commit on success, roll back on error, always close
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
