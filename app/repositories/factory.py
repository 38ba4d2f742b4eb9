from typing import Optional

import structlog

from app.core import database
from app.core.config import settings
from app.repositories.base import PersistencePort
from app.repositories.memory import MemoryPersistence
from app.repositories.sql import SqlPersistence

logger = structlog.get_logger(__name__)


def build_persistence(backend: Optional[str] = None) -> PersistencePort:
    """Persistence backend named by ``PERSISTENCE_BACKEND`` (or implied by ``DATABASE_URL``)."""
    backend = backend or settings.persistence_backend
    if backend == "memory":
        logger.info("Using in-memory persistence")
        return MemoryPersistence()
    if backend == "sql":
        if database.AsyncSessionLocal is None:
            raise RuntimeError("PERSISTENCE_BACKEND=sql requires DATABASE_URL")
        logger.info("Using SQL persistence")
        return SqlPersistence(database.AsyncSessionLocal)
    raise ValueError(f"Unknown persistence backend: {backend}")
