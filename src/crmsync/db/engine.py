"""SQLModel engine singleton."""
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from crmsync.config import get_settings

_engine = None


def make_engine(database_url: str):
    """
    Build an engine and create the sync tables.

    In-memory SQLite gets a StaticPool so every session shares one database.
    """
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    # Import models so metadata is populated before create_all
    from crmsync.models.sync import SyncItem, SyncItemKey  # noqa
    SQLModel.metadata.create_all(engine)
    return engine


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = make_engine(get_settings().database_url)
    return _engine
