"""Persisted client state.

Purpose: Survive restarts with the session token and user identity, the way
a browser keeps them in local storage.

Pattern: Thin key/value wrapper around SQLAlchemy (one row per key).
"""
from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utc_now():
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class StoredItem(Base):
    """Client-side key/value entry."""
    __tablename__ = "client_storage"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __repr__(self):
        return f"<StoredItem(key={self.key})>"


def create_storage_engine(database_url: str):
    """
    Create the engine; SQLite connections are shared across worker threads
    because gateway calls run in asyncio.to_thread.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


class ClientStorage:
    """Key/value store with the localStorage surface used by the session."""

    def __init__(self, database_url: str):
        """
        Args:
            database_url: SQLAlchemy connection string
        """
        self.engine = create_storage_engine(database_url)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def get_item(self, key: str) -> Optional[str]:
        with self.SessionLocal() as db:
            item = db.get(StoredItem, key)
            return item.value if item else None

    def set_item(self, key: str, value: str) -> None:
        with self.SessionLocal() as db:
            item = db.get(StoredItem, key)
            if item:
                item.value = value
            else:
                db.add(StoredItem(key=key, value=value))
            db.commit()

    def remove_item(self, key: str) -> None:
        with self.SessionLocal() as db:
            db.query(StoredItem).filter(StoredItem.key == key).delete()
            db.commit()

    def clear(self) -> int:
        """Remove every key. Returns number of removed entries."""
        with self.SessionLocal() as db:
            deleted = db.query(StoredItem).delete()
            db.commit()
        return deleted
