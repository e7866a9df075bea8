"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `finance.db` by default) and
provides small helpers used by the application, scripts and tests.
"""

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import settings

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, _record):
        # SQLite ignores REFERENCES clauses unless asked per connection.
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This is intended for local development, tests and the bootstrap
    script; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    from . import models  # noqa: F401  (registers the tables)
    SQLModel.metadata.create_all(engine)


def drop_db_and_tables():
    """Drop every table known to the metadata. Used by the test suite."""
    from . import models  # noqa: F401
    SQLModel.metadata.drop_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
