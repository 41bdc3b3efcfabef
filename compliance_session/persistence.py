"""
Persistence Adapters
====================

Key-value storage for the session id (short-lived) and the role preference
(long-lived).

Adapters:
- MemoryStorage: process-local dict (default, tests)
- RedisStorage: ephemeral keys with TTL; Redis failures degrade to a miss
- SqlStorage: durable SQLAlchemy table (SQLite or PostgreSQL)
- TieredStorage: routes durable keys to one adapter, the rest to another
"""

import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Generator, Iterable, Optional

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class PersistenceAdapter(ABC):
    """get/set/remove contract used by the session store"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryStorage(PersistenceAdapter):
    """Process-local storage; contents vanish with the process"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


# =============================================================================
# Redis
# =============================================================================

class RedisStorage(PersistenceAdapter):
    """
    Redis-backed ephemeral storage.

    Values are written with a TTL when one is configured, so an abandoned
    session id expires on its own. Connection failures are logged and treated
    as a miss.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "compliance:",
        ttl_seconds: Optional[int] = None,
        client: Optional[Redis] = None,
    ):
        self.redis_url = redis_url
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self._client = client

    @property
    def client(self) -> Redis:
        """Lazy-load Redis client"""
        if self._client is None:
            self._client = Redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        try:
            if self.ttl_seconds and self.ttl_seconds > 0:
                self.client.setex(self._key(key), self.ttl_seconds, value)
            else:
                self.client.set(self._key(key), value)
        except RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")

    def remove(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")


# =============================================================================
# SQL
# =============================================================================

class StoredPreference(Base):
    """One persisted key/value pair"""
    __tablename__ = "stored_preferences"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def _create_engine_for_url(database_url: str):
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        return create_engine(
            database_url,
            echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
            **kwargs,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=os.environ.get("SQL_ECHO", "false").lower() == "true",
    )


class SqlStorage(PersistenceAdapter):
    """Durable storage in a single SQLAlchemy table"""

    def __init__(self, database_url: str = "sqlite:///./preferences.db"):
        self.database_url = database_url
        self.engine = _create_engine_for_url(database_url)
        self._session_factory = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, key: str) -> Optional[str]:
        with self._session() as db:
            row = db.get(StoredPreference, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with self._session() as db:
            row = db.get(StoredPreference, key)
            if row is None:
                db.add(StoredPreference(key=key, value=value))
            else:
                row.value = value

    def remove(self, key: str) -> None:
        with self._session() as db:
            db.query(StoredPreference).filter(StoredPreference.key == key).delete()

    def close(self):
        self.engine.dispose()


# =============================================================================
# Routing
# =============================================================================

class TieredStorage(PersistenceAdapter):
    """Send durable keys to one adapter and everything else to another"""

    def __init__(
        self,
        ephemeral: PersistenceAdapter,
        durable: PersistenceAdapter,
        durable_keys: Iterable[str],
    ):
        self.ephemeral = ephemeral
        self.durable = durable
        self.durable_keys = frozenset(durable_keys)

    def _route(self, key: str) -> PersistenceAdapter:
        return self.durable if key in self.durable_keys else self.ephemeral

    def get(self, key: str) -> Optional[str]:
        return self._route(key).get(key)

    def set(self, key: str, value: str) -> None:
        self._route(key).set(key, value)

    def remove(self, key: str) -> None:
        self._route(key).remove(key)
