"""
Database connection management for chatrecall.

Provides engine construction, session factories and transaction-scoped
session context managers.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from chatrecall.config import settings
from chatrecall.models.db import Base


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Make SAVEPOINT work under the pysqlite driver.

    pysqlite defers BEGIN on its own, which breaks ``Session.begin_nested()``.
    Disable the driver's handling and emit BEGIN ourselves.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # pragma: no cover - hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):  # pragma: no cover - hook
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine for the given URL (defaults to settings.database_url).

    SQLite files get their parent directory created and the SAVEPOINT recipe
    installed; the importer relies on nested transactions per conversation.
    """
    url = make_url(database_url or settings.database_url)
    echo = settings.database_echo if echo is None else echo

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        enable_sqlite_savepoints(engine)

        if url.database and url.database != ":memory:":
            db_path = Path(url.database)

            @event.listens_for(engine, "do_connect")
            def _ensure_parent(dialect, conn_rec, cargs, cparams):  # pragma: no cover
                db_path.parent.mkdir(parents=True, exist_ok=True)

        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True)


def build_background_engine(foreground: Engine) -> Engine:
    """
    Engine for background workers.

    SQLite shares the foreground engine.  Other backends get an unpooled
    engine so workers never hold connections the foreground is waiting for.
    """
    if foreground.url.get_backend_name() == "sqlite":
        return foreground
    return create_engine(foreground.url, echo=False, poolclass=NullPool)


# No connection is opened until the first session needs one
engine = build_engine()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

background_engine = build_background_engine(engine)

BackgroundSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=background_engine,
)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for the foreground session that owns record mutation.

    Yields:
        Session: A SQLAlchemy session, committed on success

    Example:
        >>> with db_session() as db:
        >>>     conversation = db.query(Conversation).first()
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def background_session() -> Generator[Session, None, None]:
    """
    Context manager for background worker sessions.

    Each background unit of work (one embedding batch) opens its own session
    so it never shares live records with the foreground session.

    Yields:
        Session: A SQLAlchemy session, committed on success
    """
    session = BackgroundSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=bind or engine)
