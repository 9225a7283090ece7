from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import settings


def build_engine(url: str, **kwargs) -> Engine:
    """
    Create an engine for ``url``.

    SQLite gets check_same_thread=False (FastAPI runs sync handlers in a
    thread pool), a busy timeout so concurrent writers queue for the write
    lock instead of failing, and foreign keys switched on.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", settings.sqlite_busy_timeout)

        engine = create_engine(url, connect_args=connect_args, **kwargs)
        event.listen(engine, "connect", enable_sqlite_fk)
        return engine

    return create_engine(url, pool_pre_ping=True, **kwargs)


# Включение поддержки внешних ключей в SQLite
def enable_sqlite_fk(dbapi_connection, _):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = build_engine(settings.resolved_database_url)

# SessionLocal: основной способ работы с БД
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine
)


def init_db(bind: Engine = engine) -> None:
    """Create the SQLite directory and any missing tables (dev convenience; Alembic owns prod)."""
    from .models import Base

    if bind.url.get_backend_name() == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=bind)


# Dependency для FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
