"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `app.db` by default) and
provides the session dependency used by the routers and tests.
"""

from sqlmodel import SQLModel, create_engine, Session
from .config import settings

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)


def create_db_and_tables():
    """Create any missing tables. Runs when `portal.main` is imported."""
    # models must be imported so every table is registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def drop_db_and_tables():
    """Drop every table known to the metadata (used by the test-suite)."""
    from . import models  # noqa: F401
    SQLModel.metadata.drop_all(engine)


def get_session():
    """One session per request; routers and auth dependencies share it.

    Instances are not expired on commit: a service may commit again after
    saving its aggregate (notifications do), and the route still serializes
    that aggregate with `model_dump`, which does not trigger a reload.
    """
    with Session(engine, expire_on_commit=False) as session:
        yield session
