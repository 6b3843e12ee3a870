"""Engine, session and table helpers for the index queue."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import Config
from .models import Base, QueueEntry


def create_db_engine(database_url: str | None = None, *, echo: bool = False) -> Engine:
    """Create an engine for the queue database.

    Args:
        database_url: SQLAlchemy URL, defaults to Config.DATABASE_URL
        echo: Log emitted SQL

    Returns:
        SQLAlchemy engine
    """
    database_url = database_url or Config.DATABASE_URL
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Workers may share the engine across threads
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=echo)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def create_tables(engine: Engine) -> None:
    """Create the queue table and its indexes if they do not exist."""
    Base.metadata.create_all(engine, tables=[QueueEntry.__table__])  # pyright: ignore[reportArgumentType]


def drop_tables(engine: Engine) -> None:
    Base.metadata.drop_all(engine, tables=[QueueEntry.__table__])  # pyright: ignore[reportArgumentType]
