from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from usersegments.core.exceptions import (
    ConflictException,
    NotFoundException,
    SegmentsException,
    TransientStoreException,
)
from usersegments.core.settings import config_settings


def _enable_sqlite_transactions(engine: Engine) -> None:
    """
    Make pysqlite honour foreign keys, transactions and savepoints.

    pysqlite defers BEGIN until the first DML statement and ignores foreign
    keys by default; take over BEGIN emission so the ORM transaction boundary
    is the real one.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine for ``database_url`` with per-dialect connection settings."""
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_size", config_settings.DB_POOL_SIZE)
        kwargs.setdefault("pool_pre_ping", True)

    engine = create_engine(database_url, **kwargs)
    if is_sqlite:
        _enable_sqlite_transactions(engine)
    return engine


engine = build_engine(config_settings.DATABASE_URL)

# Each request (and each sweep) gets its own session, a single unit of work.
SessionLocal = sessionmaker(autoflush=False, bind=engine)


def get_db():
    """
    Dependency that yields a database session for a single request,
    and ensures the session is closed afterward.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _first_line(error) -> str:
    return str(error).split("\n", 1)[0]


# SQLSTATE foreign_key_violation on PostgreSQL; pysqlite has no codes, only text
_FOREIGN_KEY_VIOLATION = "23503"


def _is_foreign_key_violation(error: IntegrityError) -> bool:
    if getattr(error.orig, "pgcode", None) == _FOREIGN_KEY_VIOLATION:
        return True
    return "FOREIGN KEY constraint failed" in str(error.orig)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Run a block inside one database transaction.

    The transaction commits when the block exits normally and rolls back on
    any exception. Domain exceptions propagate unchanged. Foreign key
    violations become NotFoundException, other integrity errors become
    ConflictException and lost or unusable connections become
    TransientStoreException. Any other database error propagates as is.
    """
    try:
        with db.begin():
            yield db
    except SegmentsException:
        raise
    except IntegrityError as e:
        if _is_foreign_key_violation(e):
            raise NotFoundException(
                f"Referenced row not found: {_first_line(e.orig)}"
            ) from e
        raise ConflictException(f"Integrity error: {_first_line(e.orig)}") from e
    except OperationalError as e:
        raise TransientStoreException(f"Database unavailable: {_first_line(e.orig)}") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise TransientStoreException("Database connection lost") from e
        raise


def create_tables(bind: Engine) -> None:
    """Create any missing tables."""
    from usersegments.models.orm import membership, segment, user  # noqa: F401
    from usersegments.models.orm.base import Base

    Base.metadata.create_all(bind=bind)
