"""Idempotency record sweep.

Stored responses stop being replayable once expired; this task deletes them
so the table does not grow without bound. Expired records that have not been
swept yet are ignored by the coordinator anyway.
"""

import structlog

from matchday.models.base import get_task_session, utc_now
from matchday.services.idempotency import purge_expired_records
from matchday.tasks import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True, soft_time_limit=120, time_limit=150)
def purge_idempotency_records(self):
    """
    Scheduled: every idempotency_cleanup_interval_seconds (1 hour)
    Timeout: 2 minutes
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_purge_idempotency_records_async())
    finally:
        loop.close()


async def _purge_idempotency_records_async() -> dict:
    """Async implementation of the sweep."""
    now = utc_now()
    async with get_task_session() as session:
        try:
            deleted = await purge_expired_records(session, now)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("idempotency_purge_failed", error=str(e))
            raise

    logger.info("idempotency_purge_completed", deleted=deleted)
    return {"deleted": deleted, "ran_at": now.isoformat()}
