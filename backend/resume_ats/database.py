"""Database engine, session factory and declarative base."""
from contextlib import contextmanager
from typing import Iterator

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from resume_ats.config import settings
from resume_ats.errors import StorageUnavailableError

_connect_args = {}
if settings.database_url.startswith("sqlite"):
    _connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_pre_ping=True,
    connect_args=_connect_args,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@contextmanager
def storage_guard(db: Session) -> Iterator[None]:
    """
    Translate driver connectivity failures into StorageUnavailableError.

    The session is rolled back so it stays usable once the store is back.
    Domain errors raised inside the block pass through untouched.
    """
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"[storage] database unavailable: {e}")
        db.rollback()
        raise StorageUnavailableError(f"Database unavailable: {e.orig or e}") from e
