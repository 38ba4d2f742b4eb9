"""
Celery tasks for notification delivery and the completion sweep.

Workers run each task in a fresh event loop with a non-pooled engine, since
pooled asyncpg connections cannot be shared across loops.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from app.core.celery import celery_app
from app.core.config import settings
from app.core.database import create_engine, create_session_factory
from app.repositories.sql import SqlPersistence
from app.services.notifications import LogNotificationSink, StoreNotificationSink

logger = structlog.get_logger(__name__)


async def _deliver(user_id: str, message: str, meta: Optional[Dict[str, Any]]) -> bool:
    if not settings.DATABASE_URL:
        await LogNotificationSink().emit(user_id, message, meta)
        return False

    engine = create_engine(settings.DATABASE_URL, worker=True)
    try:
        persistence = SqlPersistence(create_session_factory(engine))
        await StoreNotificationSink(persistence).emit(user_id, message, meta)
        return True
    finally:
        await engine.dispose()


async def _complete_elapsed() -> List[str]:
    # Imported here to keep the worker import graph free of the API layer
    from app.services.portal import BookingPortal

    if not settings.DATABASE_URL:
        logger.warning("Completion sweep needs DATABASE_URL, skipping")
        return []

    engine = create_engine(settings.DATABASE_URL, worker=True)
    try:
        persistence = SqlPersistence(create_session_factory(engine))
        portal = BookingPortal(persistence, sink=StoreNotificationSink(persistence))
        completed = await portal.complete_elapsed()
        return [appointment.id for appointment in completed]
    finally:
        await engine.dispose()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def deliver_notification(
    self, user_id: str, message: str, meta: Optional[Dict[str, Any]] = None
) -> bool:
    """Persist an in-app notification queued by the Celery sink."""
    try:
        return asyncio.run(_deliver(user_id, message, meta))
    except Exception as e:
        logger.error(
            "Notification task failed",
            user_id=user_id,
            attempt=self.request.retries,
            exc_info=e,
        )
        raise self.retry(exc=e)


@celery_app.task
def complete_elapsed_appointments() -> List[str]:
    """Periodic sweep moving finished confirmed appointments to completed."""
    completed = asyncio.run(_complete_elapsed())
    logger.info("Completion sweep task finished", completed=len(completed))
    return completed
