import logging
from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends
from sqlmodel import SQLModel, Session, create_engine

from config import DATABASE_URL, DB_ECHO

logger = logging.getLogger(__name__)

IS_SQLITE = DATABASE_URL.startswith("sqlite")

engine = create_engine(
    DATABASE_URL,
    echo=DB_ECHO,
    # FastAPI may hand the session to a different worker thread
    connect_args={"check_same_thread": False} if IS_SQLITE else {},
    pool_pre_ping=not IS_SQLITE,
)


def init_db() -> None:
    """Create any missing tables for the registered SQLModel models."""
    SQLModel.metadata.create_all(engine)
    logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))


def close_db() -> None:
    engine.dispose()


def get_session() -> Iterator[Session]:
    # one session per HTTP request; handlers commit explicitly
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]
