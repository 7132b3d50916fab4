from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from threading import RLock
from typing import Dict, Optional

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class KeyValueStore(ABC):
    """Abstract durable byte storage used to persist the countdown list."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the bytes stored under key, or None if absent or unreadable."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> bool:
        """Store value under key. Return True on success, False on failure."""


class InMemoryStore(KeyValueStore):
    """
    Thread-safe in-memory store suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: bytes) -> bool:
        with self._lock:
            self._items[key] = bytes(value)
        return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._items


# PUBLIC_INTERFACE
def get_store(settings: Optional[Settings] = None) -> KeyValueStore:
    """
    Factory to return the configured store based on settings.
    - memory: InMemoryStore
    - sqlite: SQLiteStore backed by settings.sqlite_db_path
    """
    settings = settings or get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteStore

        logger.info("Using sqlite store at %s", settings.sqlite_db_path)
        return SQLiteStore(settings.sqlite_db_path)
    logger.info("Using in-memory store")
    return InMemoryStore()
