"""
Entity store factory.
Configures which backing the application runs on.
"""

from typing import Optional

from busline.core.config import Settings, get_settings
from busline.core.logging import get_logger
from busline.store.base import EntityStore

logger = get_logger(__name__)


def create_store(settings: Optional[Settings] = None) -> EntityStore:
    """
    Build the configured entity store.

    Backing selection via STORE_BACKEND:
    - memory: transient, per-process (development, tests)
    - sql: SQLAlchemy async engine on DATABASE_URL (production)
    """
    settings = settings or get_settings()
    backend = settings.STORE_BACKEND.lower()

    if backend == "sql":
        from busline.db.session import create_engine
        from busline.store.sql import SqlStore

        logger.info("store_selected", backend="sql")
        return SqlStore(create_engine(settings))
    if backend == "memory":
        from busline.store.memory import MemoryStore

        logger.info("store_selected", backend="memory")
        return MemoryStore()
    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
