"""SQLModel engine construction and the module-level singleton."""
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from laneshare.config import get_settings

_engine = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str, **kwargs):
    """
    Build an engine with all connected-services tables created.

    SQLite connections get foreign-key enforcement switched on so an Asset
    or SyncRun can never point at a deleted Connection.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)  # SQLite only; safe for FastAPI
        kwargs["connect_args"] = connect_args
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    # Import all models so metadata is populated before create_all
    from laneshare.models.connection import Connection  # noqa
    from laneshare.models.sync import SyncRun  # noqa
    from laneshare.models.asset import Asset  # noqa
    SQLModel.metadata.create_all(engine)
    return engine


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_settings().database_url)
    return _engine
