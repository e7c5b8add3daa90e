"""
Engine and sessions for the Paisen DB. Any SQLAlchemy URL works; SQLite is the default.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from paisen.config import DATABASE_URL
from paisen.models import Base


def _engine_options(url: str) -> dict:
    """Handlers and the sync job use sessions from different threads, and :memory: must stay one DB."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True}
    options: dict = {"connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db() -> Iterator[Session]:
    """Request-scoped session for Depends."""
    with session_scope() as db:
        yield db


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request (startup, background jobs). Always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
