from collections.abc import Callable, Generator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from deadswitch.core.config import settings

SessionFactory = Callable[[], Session]


def _ensure_sqlite_dir(uri: str) -> None:
    prefix = "sqlite:///"
    if uri.startswith(prefix) and uri != prefix + ":memory:":
        Path(uri[len(prefix) :]).parent.mkdir(parents=True, exist_ok=True)


def build_engine(uri: str, **kwargs) -> Engine:
    """Create an engine; SQLite connections enforce foreign keys for cascades."""
    connect_args = kwargs.pop("connect_args", {})
    if uri.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        _ensure_sqlite_dir(uri)
    new_engine = create_engine(uri, connect_args=connect_args, **kwargs)

    if uri.startswith("sqlite"):

        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(str(settings.DATABASE_URI))


def create_db_and_tables(target: Engine | None = None) -> None:
    """Create database tables."""
    # Import models so they are registered on the metadata.
    import deadswitch.models  # noqa: F401

    SQLModel.metadata.create_all(target or engine)


def session_factory(target: Engine | None = None) -> SessionFactory:
    """Return a callable producing new sessions bound to the engine."""
    bound = target or engine

    def _factory() -> Session:
        return Session(bound, expire_on_commit=False)

    return _factory


def get_db_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine, expire_on_commit=False) as session:
        yield session


def init_db() -> None:
    """Initialize database with tables and default data."""
    create_db_and_tables()
