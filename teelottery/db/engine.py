from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from ..config import PROJECT_ROOT, load_settings
from .utils import resolve_sqlite_url


def default_database_url() -> str:
    """Return the configured database URL with relative SQLite paths resolved."""
    return resolve_sqlite_url(load_settings().database_url, PROJECT_ROOT)


def make_engine(database_url: Optional[str] = None, echo: Optional[bool] = None):
    url = database_url or default_database_url()
    if echo is None:
        echo = load_settings().sql_echo
    engine = create_engine(
        url,
        echo=echo,
        future=True,
    )
    if url.startswith("sqlite"):
        # ensure FK constraints are enforced on SQLite, and let SQLAlchemy
        # emit BEGIN itself so per-unit SAVEPOINTs behave
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_sqlite(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def get_sessionmaker(engine):
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Keep objects accessible after commit for dev convenience
        future=True,
    )
